"""
Tender scraper for TenderAlert.
Collects open tenders from Kenyan government procurement portals and saves
new ones to the database.
"""

import os
import logging
import sqlite3
import requests
from bs4 import BeautifulSoup
from typing import List, Dict, Optional
from urllib.parse import urljoin, urlparse

from . import database as db
from .dates import normalize_date, today_str

logger = logging.getLogger(__name__)

SCRAPER_CONFIG = {
    'tenders_go_ke_url': os.environ.get('TENDERS_GO_KE_URL', 'https://tenders.go.ke/api/ocds/tenders'),
    'financial_year': os.environ.get('TENDERS_FINANCIAL_YEAR', '2024-2025'),
    'mygov_url': os.environ.get('MYGOV_TENDERS_URL', 'https://www.mygov.go.ke/all-tenders'),
    'timeout': 30,
}

HEADERS = {
    'User-Agent': 'Mozilla/5.0 (compatible; TenderAlert/1.0)',
    'Accept': 'application/json',
}

HTML_HEADERS = {
    'User-Agent': 'Mozilla/5.0 (compatible; TenderAlert/1.0)',
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
    'Accept-Language': 'en-US,en;q=0.5',
}

SOURCES = ('tenders.go.ke', 'mygov')

# Header keywords used to locate columns in portal tables
COLUMN_HINTS = {
    'tender_number': ('ref', 'tender no', 'number'),
    'organization': ('entity', 'organization', 'organisation', 'ministry', 'agency'),
    'deadline': ('closing', 'deadline', 'close'),
    'title': ('title', 'description', 'tender', 'subject'),
}


def _first(item: Dict, *keys, default=''):
    for key in keys:
        value = item.get(key)
        if value not in (None, ''):
            return value
    return default


def _to_float(value) -> Optional[float]:
    try:
        return float(str(value).replace(',', ''))
    except (TypeError, ValueError):
        return None


class TenderScraper:
    """Scrapes procurement portals and stores new tenders."""

    def __init__(self, config: Dict = None):
        self.config = SCRAPER_CONFIG.copy()
        if config:
            self.config.update(config)

    # ============== tenders.go.ke ==============

    def parse_tenders_go_ke_item(self, item: Dict) -> Optional[Dict]:
        """Map one tenders.go.ke API record to a tender dict."""
        tender = {
            'title': str(_first(item, 'tender_name', 'title')).strip(),
            'description': _first(item, 'tender_description', 'description'),
            'organization': _first(item, 'procuring_entity', 'organization'),
            'category': _first(item, 'tender_category', 'category', default='General'),
            'location': _first(item, 'county', 'location', default='Kenya'),
            'budget_estimate': _to_float(item.get('tender_value')),
            'deadline': normalize_date(_first(item, 'closing_date', 'deadline')),
            'tender_number': _first(item, 'tender_no', 'reference_number') or None,
            'requirements': [],
            'contact_email': _first(item, 'contact_person') or None,
            'source_url': 'https://tenders.go.ke/',
            'scraped_from': 'tenders.go.ke',
        }

        if not tender['title'] or not tender['deadline']:
            return None
        return tender

    def scrape_tenders_go_ke(self) -> List[Dict]:
        """Fetch the tenders.go.ke OCDS feed for the configured financial year."""
        logger.info("Scraping tenders.go.ke...")
        try:
            response = requests.get(
                self.config['tenders_go_ke_url'],
                params={'fy': self.config['financial_year']},
                headers=HEADERS,
                timeout=self.config['timeout'],
            )
            if response.status_code != 200:
                logger.error(f"Failed to fetch tenders.go.ke: {response.status_code}")
                return []
            payload = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Error scraping tenders.go.ke: {e}")
            return []

        items = payload.get('data') if isinstance(payload, dict) else None
        if not isinstance(items, list):
            return []

        tenders = []
        for item in items:
            if not isinstance(item, dict):
                continue
            tender = self.parse_tenders_go_ke_item(item)
            if tender:
                tenders.append(tender)

        logger.info(f"Found {len(tenders)} tenders from tenders.go.ke")
        return tenders

    # ============== mygov.go.ke ==============

    def _locate_columns(self, header_cells: List[str]) -> Dict[str, int]:
        columns = {}
        for field, hints in COLUMN_HINTS.items():
            for index, text in enumerate(header_cells):
                if index in columns.values():
                    continue
                if any(hint in text for hint in hints):
                    columns[field] = index
                    break
        return columns

    def parse_mygov_page(self, html: str, base_url: str) -> List[Dict]:
        """Extract tenders from the tables on a mygov.go.ke tenders page."""
        soup = BeautifulSoup(html, 'html.parser')
        tenders = []

        for table in soup.find_all('table'):
            rows = table.find_all('tr')
            if len(rows) < 2:
                continue

            header = [cell.get_text(' ', strip=True).lower() for cell in rows[0].find_all(['th', 'td'])]
            columns = self._locate_columns(header)
            if 'title' not in columns or 'deadline' not in columns:
                # Positional fallback: title, entity, closing date
                columns = {'title': 0, 'organization': 1, 'deadline': 2}

            for row in rows[1:]:
                tender = self._parse_mygov_row(row, columns, base_url)
                if tender:
                    tenders.append(tender)

        return tenders

    def _parse_mygov_row(self, row, columns: Dict[str, int], base_url: str) -> Optional[Dict]:
        cells = row.find_all('td')
        if not cells:
            return None

        def cell_text(field):
            index = columns.get(field)
            if index is None or index >= len(cells):
                return ''
            return cells[index].get_text(' ', strip=True)

        title = cell_text('title')
        deadline = normalize_date(cell_text('deadline'))
        if not title or not deadline:
            return None

        link = row.find('a', href=True)
        source_url = urljoin(base_url, link['href']) if link else base_url

        return {
            'title': title,
            'description': title,
            'organization': cell_text('organization'),
            'category': 'General',
            'location': 'Kenya',
            'deadline': deadline,
            'tender_number': cell_text('tender_number') or None,
            'requirements': [],
            'source_url': source_url,
            'scraped_from': 'mygov',
        }

    def scrape_mygov(self) -> List[Dict]:
        """Scrape the mygov.go.ke all-tenders listing."""
        url = self.config['mygov_url']
        logger.info("Scraping mygov.go.ke...")
        try:
            response = requests.get(url, headers=HTML_HEADERS, timeout=self.config['timeout'])
            if response.status_code != 200:
                logger.error(f"Failed to fetch mygov.go.ke: {response.status_code}")
                return []
        except requests.RequestException as e:
            logger.error(f"Error scraping mygov.go.ke: {e}")
            return []

        tenders = self.parse_mygov_page(response.text, url)
        logger.info(f"Found {len(tenders)} tenders from mygov.go.ke")
        return tenders

    # ============== Save / Run ==============

    def is_duplicate(self, tender: Dict) -> bool:
        if tender.get('tender_number'):
            return db.get_tender_by_number(tender['tender_number']) is not None
        return db.find_tender(tender['title'], tender.get('organization') or '') is not None

    def save_tenders(self, tenders: List[Dict]) -> List[Dict]:
        """Save tenders that are not in the database yet. Returns the saved records."""
        saved = []
        for tender in tenders:
            if self.is_duplicate(tender):
                continue
            try:
                tender_id = db.create_tender(**tender)
            except sqlite3.Error as e:
                logger.error(f"Error saving tender {tender.get('title', '')[:50]}: {e}")
                continue
            saved.append(db.get_tender(tender_id))
            logger.info(f"  + {tender['title'][:60]}... ({tender['scraped_from']})")
        return saved

    def run(self, source: str = None) -> Dict:
        """Scrape one source, or every source when source is empty or 'all'."""
        if source and source != 'all' and source not in SOURCES:
            raise ValueError(f'Unknown source: {source}')

        logger.info(f"Starting tender scraping for source: {source or 'all'}")
        portals = {
            'tenders.go.ke': self.scrape_tenders_go_ke,
            'mygov': self.scrape_mygov,
        }

        scraped = []
        for name, scrape_func in portals.items():
            if source and source != 'all' and source != name:
                continue
            scraped.extend(scrape_func())

        saved = self.save_tenders(scraped)
        logger.info(f"Scraping completed. Processed {len(scraped)} tenders, saved {len(saved)} new ones.")

        return {
            'success': True,
            'processed': len(scraped),
            'saved': len(saved),
            'tenders': saved,
        }


def manual_add_tender(url: str, title: str = None, **kwargs) -> Optional[int]:
    """Add a tender from its web page. Fields passed in override what the page shows."""
    try:
        response = requests.get(url, headers=HTML_HEADERS, timeout=SCRAPER_CONFIG['timeout'])
        soup = BeautifulSoup(response.text, 'html.parser')
    except requests.RequestException as e:
        logger.error(f"Error adding tender from {url}: {e}")
        return None

    if not title:
        title_elem = soup.find('h1') or soup.find('title')
        if title_elem:
            title = title_elem.get_text(strip=True)
    if not title:
        title = 'Untitled Tender'

    description = kwargs.pop('description', None)
    if not description:
        for selector in ['article', 'main', 'div.content', 'div.description']:
            elem = soup.select_one(selector)
            if elem:
                description = elem.get_text(' ', strip=True)[:2000]
                break

    fields = {
        'description': description or '',
        'deadline': normalize_date(kwargs.pop('deadline', None)) or today_str(),
        'source_url': url,
        'scraped_from': kwargs.pop('scraped_from', None) or urlparse(url).netloc or 'manual',
    }
    fields.update(kwargs)

    tender_id = db.create_tender(title, **fields)
    logger.info(f"Added tender: {title[:50]}... from {url}")
    return tender_id
