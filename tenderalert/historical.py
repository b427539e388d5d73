"""
Historical award importer for TenderAlert.
Loads past contract awards from the Kenya published contracts dataset and from
award notice pages, giving the win probability engine real prices to learn from.
"""

import csv
import io
import os
import re
import logging
import sqlite3
import requests
from bs4 import BeautifulSoup
from dateutil import parser
from typing import List, Dict, Optional, Tuple

from . import database as db
from .scraper import HTML_HEADERS
from .win_probability import CURRENT_YEAR, adjust_for_inflation

logger = logging.getLogger(__name__)

HISTORICAL_CONFIG = {
    'dataset_csv_url': os.environ.get(
        'HISTORICAL_DATASET_URL',
        'https://huggingface.co/datasets/Olive254/AwardedPublicProcurementTendersKenya/'
        'raw/main/Kenya%20published_contracts.csv'
    ),
    'dataset_page': 'https://huggingface.co/datasets/Olive254/AwardedPublicProcurementTendersKenya',
    'egp_awards_url': os.environ.get('EGP_AWARDS_URL', 'https://eprocure.go.ke/award-notices'),
    'ppra_awards_url': os.environ.get('PPRA_AWARDS_URL', 'https://ppra.go.ke/contract-awards/'),
    'default_limit': 1000,
    'timeout': 60,
}

DATASET_SOURCE = 'huggingface_kenya_contracts'
INFLATION_NOTE = f'Amounts adjusted for inflation to {CURRENT_YEAR} KES using CBK rates'

# Dataset header names
DATASET_COLUMNS = {
    'contract_number': 'Contract Number',
    'amount': 'Amount',
    'award_date': 'Award Date',
    'title': 'Tender Title',
    'tender_ref': 'Tender Ref.',
    'organization': 'PE Name',
    'supplier': 'Supplier Name',
    'agpo_group': 'Awarded Agpo Group Id',
}

# First match wins
CATEGORY_KEYWORDS = [
    ('Construction', ['road', 'construction', 'building', 'renovation']),
    ('Healthcare', ['medical', 'health', 'hospital', 'pharmaceutical', 'drug']),
    ('Technology', ['ict', 'software', 'computer', 'technology', 'system']),
    ('Supplies', ['supply', 'delivery', 'furniture', 'stationery']),
    ('Consultancy', ['consult', 'advisory', 'study', 'design']),
    ('Security', ['security', 'guard']),
    ('Transport', ['transport', 'vehicle', 'fleet', 'fuel']),
    ('Water & Sanitation', ['water', 'sanitation', 'sewage', 'borehole']),
    ('Energy', ['energy', 'power', 'electricity', 'solar']),
    ('Education', ['education', 'school', 'training', 'text']),
    ('Agriculture', ['agriculture', 'farm', 'livestock', 'seed']),
    ('Catering', ['catering', 'food', 'meal']),
    ('Cleaning', ['cleaning', 'laundry']),
    ('Insurance', ['insurance', 'cover']),
    ('Printing', ['printing', 'publication']),
]

COUNTIES = [
    'Nairobi', 'Mombasa', 'Kisumu', 'Nakuru', 'Eldoret', 'Thika', 'Kiambu', 'Machakos',
    'Nyeri', 'Meru', 'Kakamega', 'Kisii', 'Garissa', 'Turkana', 'Bungoma',
    'Uasin Gishu', 'Siaya', 'Migori', 'Kilifi', 'Kwale', 'Taita', 'Taveta',
    'Kitui', 'Makueni', 'Embu', 'Tharaka', 'Nithi', 'Laikipia', 'Nyandarua',
    'Baringo', 'Elgeyo', 'Marakwet', 'West Pokot', 'Samburu', 'Trans Nzoia',
    'Nandi', 'Bomet', 'Kericho', 'Narok', 'Kajiado', 'Homabay', 'Nyamira',
    'Vihiga', 'Busia', 'Mandera', 'Wajir', 'Marsabit', 'Isiolo', 'Tana River',
    'Lamu', 'Muranga', 'Kirinyaga',
]

NATIONAL_HINTS = ['national', 'kenya', 'ministry']

# Supplier name hints, checked in order after the AGPO group
WINNER_TYPE_HINTS = [
    ('consortium', ['consortium', 'joint venture', 'jv']),
    ('youth', ['youth', 'young']),
    ('women', ['women', 'female']),
    ('pwd', ['pwd', 'disabled']),
    ('sme', ['group', 'self help', 'sme', 'small', 'micro']),
    ('large_enterprise', ['ltd', 'limited', 'plc']),
]

AGPO_GROUPS = ['youth', 'women', 'pwd']


# ============== Field Inference ==============

def parse_amount(value) -> Optional[float]:
    """Shilling amount from strings like 'KES 1,250,000.50'. Zero counts as missing."""
    if value in (None, ''):
        return None
    match = re.search(r'\d+(?:\.\d+)?', re.sub(r'[,\s]', '', str(value)))
    if not match:
        return None
    amount = float(match.group(0))
    return amount or None


def extract_year(date_str: Optional[str]) -> int:
    match = re.search(r'(\d{4})', date_str or '')
    return int(match.group(1)) if match else CURRENT_YEAR


def infer_category(title: str, explicit: str = None) -> str:
    if explicit and explicit.strip():
        return explicit.strip()[:100]
    lower = (title or '').lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in lower for keyword in keywords):
            return category
    return 'General'


def infer_location(text: str) -> str:
    """County named in the entity or notice text; national bodies sit in Nairobi."""
    lower = (text or '').lower()
    for county in COUNTIES:
        if county.lower() in lower:
            return county
    if any(hint in lower for hint in NATIONAL_HINTS):
        return 'Nairobi'
    return 'Kenya'


def infer_winner_type(supplier: str, agpo_group: str = None) -> str:
    group = (agpo_group or '').lower()
    for winner_type in AGPO_GROUPS:
        if winner_type in group:
            return winner_type

    lower = (supplier or '').lower()
    for winner_type, hints in WINNER_TYPE_HINTS:
        if any(hint in lower for hint in hints):
            return winner_type
    return 'sme'


def competition_from_bids(bid_count: Optional[int]) -> str:
    if not bid_count:
        return 'medium'
    if bid_count < 3:
        return 'low'
    if bid_count > 7:
        return 'high'
    return 'medium'


def save_award(award: Dict) -> str:
    """Insert one award. Returns 'inserted', 'duplicates' or 'errors'."""
    try:
        db.create_historical_award(**award)
    except sqlite3.IntegrityError:
        return 'duplicates'
    except sqlite3.Error as e:
        logger.error(f"Error saving award {award['title'][:50]}: {e}")
        return 'errors'
    return 'inserted'


# ============== Published Contracts Dataset ==============

def read_dataset(csv_text: str) -> Tuple[List[str], List[List[str]]]:
    """Header and non-blank data rows of the contracts CSV."""
    rows = [row for row in csv.reader(io.StringIO(csv_text)) if any(cell.strip() for cell in row)]
    if not rows:
        return [], []
    header = [cell.strip() for cell in rows[0]]
    return header, rows[1:]


def parse_contract_row(row: List[str], columns: Dict[str, Optional[int]]) -> Optional[Dict]:
    """Map one dataset row to an award record, or None when it is unusable."""
    if len(row) < 5:
        return None

    def cell(key):
        index = columns.get(key)
        if index is None or index >= len(row):
            return ''
        return row[index].strip()

    title = cell('title')
    organization = cell('organization')
    if not title or not organization:
        return None

    amount = parse_amount(cell('amount'))
    award_date = cell('award_date') or None
    supplier = cell('supplier')
    agpo_group = cell('agpo_group')

    # Stored as the multiplier that brings the award to current prices
    ratio = None
    if amount:
        ratio = round(adjust_for_inflation(amount, extract_year(award_date)) / amount, 4)

    return {
        'tender_number': (cell('tender_ref') or cell('contract_number'))[:255] or None,
        'title': title[:500],
        'organization': organization[:255],
        'category': infer_category(title),
        'location': infer_location(organization),
        'awarded_amount': amount,
        'winner_name': supplier[:255] or None,
        'winner_type': infer_winner_type(supplier, agpo_group),
        'award_date': award_date,
        'tender_type': 'agpo' if agpo_group else 'open',
        'procurement_method': 'Open Tender',
        'source_url': HISTORICAL_CONFIG['dataset_page'],
        'scraped_from': DATASET_SOURCE,
        'price_to_budget_ratio': ratio,
    }


def import_historical_data(limit: int = None, offset: int = 0) -> Dict:
    """Import one page of the published contracts dataset.

    Rows are read from `offset` for at most `limit` rows; call again with
    `next_offset` while `has_more` is true. Contracts already imported are
    counted as duplicates.
    """
    limit = int(limit or HISTORICAL_CONFIG['default_limit'])
    offset = int(offset or 0)
    if limit < 1 or offset < 0:
        raise ValueError('limit must be positive and offset cannot be negative')

    logger.info(f"Fetching historical contracts (limit: {limit}, offset: {offset})")
    try:
        response = requests.get(HISTORICAL_CONFIG['dataset_csv_url'], timeout=HISTORICAL_CONFIG['timeout'])
        response.raise_for_status()
    except requests.RequestException as e:
        logger.error(f"Failed to fetch contracts dataset: {e}")
        db.log_automation('import-historical-data', 'failed', error_message=str(e))
        raise

    header, rows = read_dataset(response.text)
    columns = {key: header.index(name) if name in header else None
               for key, name in DATASET_COLUMNS.items()}

    window = rows[offset:offset + limit]
    stats = {'inserted': 0, 'duplicates': 0, 'errors': 0}
    for row in window:
        award = parse_contract_row(row, columns)
        if award:
            stats[save_award(award)] += 1

    has_more = offset + len(window) < len(rows)
    logger.info(f"Historical import: {stats['inserted']} inserted, {stats['duplicates']} duplicates, "
                f"{stats['errors']} errors")

    db.log_automation('import-historical-data', 'completed', result_data={
        'source': 'huggingface',
        'total_rows': len(rows),
        'processed': len(window),
        **stats,
        'offset': offset,
        'limit': limit,
        'has_more': has_more,
    })

    return {
        'success': True,
        'message': f"Imported {stats['inserted']} historical contracts",
        'data': {
            'total_available': len(rows),
            'processed': len(window),
            **stats,
            'has_more': has_more,
            'next_offset': offset + len(window),
            'inflation_note': INFLATION_NOTE,
        },
    }


# ============== Award Notice Pages ==============

class HistoricalAwardsScraper:
    """Parses award notices published on the e-GP and PPRA portals."""

    NOTICE_SPLIT = re.compile(r'(?:Award Notice|Contract Award|Tender Award|Notification of Award)', re.I)
    MIN_SECTION_LENGTH = 50

    PATTERNS = {
        'tender_number': r'(?:Tender|Reference|Contract)\s*(?:No|Number|#)?[:\s]*([A-Z]{2,}[-/][A-Z0-9/-]+)',
        'title': r'(?:Title|Subject|Description|For)[:\s]*([^\n]+)',
        'organization': r'(?:Procuring Entity|Organization|Ministry|Authority|County)[:\s]*([^\n]+)',
        'amount': r'(?:Contract Amount|Award Amount|Contract Value|KES|Kshs?)[:\s]*([0-9,]+(?:\.[0-9]+)?)',
        'winner': r'(?:Awarded to|Winner|Successful Bidder|Contractor)[:\s]*([^\n]+)',
        'award_date': r'(?:Award Date|Date of Award|Contract Date)[:\s]*'
                      r'(\d{1,2}[-/]\d{1,2}[-/]\d{2,4}|\d{4}[-/]\d{1,2}[-/]\d{1,2})',
        'bid_count': r'(?:Number of Bids|Bidders|Tenders Received)[:\s]*(\d+)',
        'category': r'(?:Category|Sector|Type)[:\s]*([^\n]+)',
        'location': r'(?:Location|County|Region)[:\s]*([^\n]+)',
    }

    KNOWN_ENTITIES = [
        'Ministry of', 'County Government', 'Kenya Rural Roads Authority', 'Kenya Urban Roads Authority',
        'Kenya Ports Authority', 'Kenya Airways', 'Kenya Power', 'KETRACO', 'KEMSA', 'NTSA', 'NEMA',
        'KWS', 'KPLC', 'KRA', 'CBK', 'KURA', 'KERRA', 'KeNHA', 'KICD', 'KNEC', 'TSC',
    ]

    TENDER_TYPES = [
        ('restricted', ['restricted', 'invitation']),
        ('direct', ['direct', 'single source']),
        ('framework', ['framework', 'standing']),
        ('agpo', ['agpo', 'access to government']),
    ]

    PROCUREMENT_METHODS = [
        ('Request for Quotation', ['rfq', 'request for quotation']),
        ('Request for Proposal', ['rfp', 'request for proposal']),
        ('Expression of Interest', ['expression of interest', 'eoi']),
        ('Framework Agreement', ['framework']),
    ]

    def __init__(self, config: Dict = None):
        self.config = HISTORICAL_CONFIG.copy()
        if config:
            self.config.update(config)

    @property
    def sources(self) -> Dict[str, str]:
        return {
            'egp_kenya': self.config['egp_awards_url'],
            'ppra': self.config['ppra_awards_url'],
        }

    def _match(self, field: str, text: str) -> str:
        match = re.search(self.PATTERNS[field], text, re.I)
        return match.group(1).strip() if match else ''

    def _first_hint(self, table, text: str, default: str) -> str:
        lower = text.lower()
        for label, hints in table:
            if any(hint in lower for hint in hints):
                return label
        return default

    def extract_organization(self, text: str) -> str:
        for entity in self.KNOWN_ENTITIES:
            if entity in text:
                match = re.search(rf'({re.escape(entity)}[^,\n]*?)(?:,|\n|$)', text)
                if match:
                    return match.group(1).strip()
        return 'Government of Kenya'

    @staticmethod
    def parse_award_date(value: str) -> Optional[str]:
        """Notice dates are day first unless they lead with the year."""
        if not value:
            return None
        try:
            parsed = parser.parse(value, dayfirst=not re.match(r'\d{4}', value))
        except (ValueError, OverflowError):
            return None
        return parsed.strftime('%Y-%m-%d')

    def parse_award_notices(self, content: str, source: str) -> List[Dict]:
        """Split page text into notices and pull out the award fields."""
        awards = []
        for section in self.NOTICE_SPLIT.split(content or ''):
            if len(section) < self.MIN_SECTION_LENGTH:
                continue

            tender_number = self._match('tender_number', section)
            title = self._match('title', section)
            if not title and not tender_number:
                continue

            title = title or f'Award {tender_number}'
            organization = self._match('organization', section) or self.extract_organization(section)
            winner = self._match('winner', section)
            bid_count = self._match('bid_count', section)
            bid_count = int(bid_count) if bid_count else None

            awards.append({
                'tender_number': tender_number or None,
                'title': title[:500],
                'organization': organization[:255],
                'category': infer_category(title, self._match('category', section)),
                'location': self._match('location', section)[:100] or infer_location(section),
                'awarded_amount': parse_amount(self._match('amount', section)),
                'winner_name': winner[:255] or None,
                'winner_type': infer_winner_type(winner),
                'bid_count': bid_count,
                'competition_level': competition_from_bids(bid_count),
                'award_date': self.parse_award_date(self._match('award_date', section)),
                'tender_type': self._first_hint(self.TENDER_TYPES, section, 'open'),
                'procurement_method': self._first_hint(self.PROCUREMENT_METHODS, section, 'Open Tender'),
                'source_url': self.sources[source],
                'scraped_from': source,
            })
        return awards

    def fetch_page_text(self, url: str) -> str:
        try:
            response = requests.get(url, headers=HTML_HEADERS, timeout=self.config['timeout'])
            if response.status_code != 200:
                logger.error(f"Failed to fetch {url}: {response.status_code}")
                return ''
        except requests.RequestException as e:
            logger.error(f"Error fetching {url}: {e}")
            return ''

        soup = BeautifulSoup(response.text, 'html.parser')
        for tag in soup(['script', 'style', 'nav', 'footer']):
            tag.decompose()
        return soup.get_text('\n', strip=True)

    def run(self, source: str = 'all') -> Dict:
        """Scrape award notices from one portal, or from both when source is 'all'."""
        source = source or 'all'
        if source != 'all' and source not in self.sources:
            raise ValueError(f'Unknown source: {source}')

        logger.info(f"Starting historical awards scrape for source: {source}")
        awards = []
        for name, url in self.sources.items():
            if source not in ('all', name):
                continue
            found = self.parse_award_notices(self.fetch_page_text(url), name)
            logger.info(f"Scraped {len(found)} awards from {name}")
            awards.extend(found)

        stats = {'inserted': 0, 'duplicates': 0, 'errors': 0}
        for award in awards:
            stats[save_award(award)] += 1

        db.log_automation('historical-awards-scraper', 'completed', result_data={
            'source': source,
            'total_scraped': len(awards),
            'inserted': stats['inserted'],
            'duplicates': stats['duplicates'],
        })

        return {
            'success': True,
            'message': 'Historical awards scraper completed',
            'data': {
                'total_scraped': len(awards),
                'inserted': stats['inserted'],
                'duplicates': stats['duplicates'],
            },
        }
