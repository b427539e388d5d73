"""
Database module for TenderAlert.
Handles all database operations for tenders, profiles, collaboration records,
billing state, alerts and automation logs.
"""

import json
import sqlite3
import os
import uuid
import logging
from datetime import timedelta
from typing import Optional, List, Dict, Any, Tuple

from .dates import now_str, utc_now, to_str

logger = logging.getLogger(__name__)

# Database path
DB_PATH = os.environ.get(
    'TENDERALERT_DB_PATH',
    os.path.join(os.path.dirname(os.path.dirname(__file__)), 'data', 'tenderalert.db')
)

# Columns stored as JSON text
JSON_FIELDS = {
    'tenders': ('requirements', 'documents'),
    'consortiums': ('required_skills',),
    'service_providers': ('certifications', 'portfolio'),
    'rfqs': ('requirements', 'documents', 'preferred_suppliers', 'tags'),
    'rfq_quotes': ('attachments',),
    'user_alerts': ('data',),
    'user_preferences': ('sectors', 'counties', 'keywords', 'eligibility_types'),
    'ai_analyses': ('recommendations', 'analysis_data'),
    'automation_logs': ('result_data',),
}

# Columns stored as 0/1
BOOL_FIELDS = {
    'is_read', 'is_early_user', 'twitter_followed',
    'notification_email', 'notification_push', 'notification_sms',
}


def get_connection() -> sqlite3.Connection:
    """Get database connection with row factory."""
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute('PRAGMA foreign_keys = ON')
    return conn


def _encode(table: str, data: Dict) -> Dict:
    """Serialize list/dict columns before writing."""
    encoded = dict(data)
    for field in JSON_FIELDS.get(table, ()):
        if field in encoded and encoded[field] is not None and not isinstance(encoded[field], str):
            encoded[field] = json.dumps(encoded[field])
    for field in BOOL_FIELDS:
        if field in encoded and isinstance(encoded[field], bool):
            encoded[field] = 1 if encoded[field] else 0
    return encoded


def _decode(table: str, row: Optional[sqlite3.Row]) -> Optional[Dict]:
    """Turn a row into a plain dict, decoding JSON and boolean columns."""
    if row is None:
        return None
    result = dict(row)
    for field in JSON_FIELDS.get(table, ()):
        value = result.get(field)
        if isinstance(value, str):
            try:
                result[field] = json.loads(value)
            except ValueError:
                pass
    for field in BOOL_FIELDS:
        if field in result and result[field] is not None:
            result[field] = bool(result[field])
    return result


def _insert(cursor: sqlite3.Cursor, table: str, data: Dict) -> int:
    data = _encode(table, data)
    columns = ', '.join(data.keys())
    placeholders = ', '.join(['?'] * len(data))
    cursor.execute(f'INSERT INTO {table} ({columns}) VALUES ({placeholders})', list(data.values()))
    return cursor.lastrowid


def _update(table: str, key_column: str, key_value, valid_fields: set, kwargs: Dict,
            touch: bool = True) -> bool:
    """Update whitelisted fields of one row. Returns True when a row changed."""
    updates = {k: v for k, v in kwargs.items() if k in valid_fields}
    if not updates:
        return False
    if touch:
        updates['updated_at'] = now_str()
    updates = _encode(table, updates)

    set_clause = ', '.join(f'{k} = ?' for k in updates)
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute(f'UPDATE {table} SET {set_clause} WHERE {key_column} = ?',
                   list(updates.values()) + [key_value])
    changed = cursor.rowcount > 0
    conn.commit()
    conn.close()
    return changed


def init_database():
    """Initialize the database with all required tables."""
    os.makedirs(os.path.dirname(os.path.abspath(DB_PATH)), exist_ok=True)

    conn = get_connection()
    cursor = conn.cursor()

    # Procurement opportunities
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS tenders (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            organization TEXT NOT NULL DEFAULT '',
            category TEXT NOT NULL DEFAULT 'General',
            location TEXT NOT NULL DEFAULT 'Kenya',
            budget_estimate REAL,
            deadline TEXT NOT NULL,
            publish_date TEXT,
            tender_number TEXT UNIQUE,
            requirements TEXT,  -- JSON list
            documents TEXT,  -- JSON list
            contact_email TEXT,
            contact_phone TEXT,
            source_url TEXT,
            scraped_from TEXT,
            status TEXT DEFAULT 'active' CHECK (status IN ('active', 'closed', 'awarded', 'cancelled')),
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    ''')

    # User profiles (one per account)
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS profiles (
            id TEXT PRIMARY KEY,
            email TEXT NOT NULL UNIQUE,
            first_name TEXT,
            last_name TEXT,
            company TEXT,
            business_type TEXT,
            location TEXT,
            phone_number TEXT,
            profile_image_url TEXT,
            subscription_type TEXT DEFAULT 'free' CHECK (subscription_type IN ('free', 'pro', 'business')),
            subscription_status TEXT DEFAULT 'inactive'
                CHECK (subscription_status IN ('inactive', 'active', 'expired', 'cancelled')),
            subscription_start_date TIMESTAMP,
            subscription_end_date TIMESTAMP,
            loyalty_points INTEGER DEFAULT 0,
            referral_code TEXT UNIQUE,
            referred_by TEXT,
            total_referrals INTEGER DEFAULT 0,
            twitter_followed INTEGER DEFAULT 0,
            is_early_user INTEGER DEFAULT 0,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    ''')

    # Credentials and API tokens
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS auth_users (
            user_id TEXT PRIMARY KEY,
            password_hash TEXT NOT NULL,
            FOREIGN KEY (user_id) REFERENCES profiles(id) ON DELETE CASCADE
        )
    ''')

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS auth_tokens (
            token TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES profiles(id) ON DELETE CASCADE
        )
    ''')

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS user_roles (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            role TEXT NOT NULL CHECK (role IN ('admin', 'moderator', 'user')),
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES profiles(id) ON DELETE CASCADE,
            UNIQUE(user_id, role)
        )
    ''')

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS saved_tenders (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            tender_id INTEGER NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES profiles(id) ON DELETE CASCADE,
            FOREIGN KEY (tender_id) REFERENCES tenders(id) ON DELETE CASCADE,
            UNIQUE(user_id, tender_id)
        )
    ''')

    # Bidding groups
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS consortiums (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            description TEXT,
            tender_id INTEGER,
            created_by TEXT NOT NULL,
            max_members INTEGER DEFAULT 10 CHECK (max_members > 0),
            required_skills TEXT,  -- JSON list
            status TEXT DEFAULT 'forming' CHECK (status IN ('forming', 'active', 'closed')),
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (tender_id) REFERENCES tenders(id) ON DELETE SET NULL,
            FOREIGN KEY (created_by) REFERENCES profiles(id)
        )
    ''')

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS consortium_members (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            consortium_id INTEGER NOT NULL,
            user_id TEXT NOT NULL,
            role TEXT DEFAULT 'member' CHECK (role IN ('leader', 'member')),
            expertise TEXT,
            contribution TEXT,
            joined_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (consortium_id) REFERENCES consortiums(id) ON DELETE CASCADE,
            FOREIGN KEY (user_id) REFERENCES profiles(id) ON DELETE CASCADE,
            UNIQUE(consortium_id, user_id)
        )
    ''')

    # Marketplace listings
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS service_providers (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            name TEXT NOT NULL,
            email TEXT NOT NULL,
            phone TEXT,
            specialization TEXT NOT NULL,
            description TEXT,
            experience INTEGER,
            hourly_rate REAL,
            rating REAL DEFAULT 0,
            review_count INTEGER DEFAULT 0,
            availability TEXT DEFAULT 'available'
                CHECK (availability IN ('available', 'busy', 'unavailable')),
            certifications TEXT,  -- JSON list
            portfolio TEXT,  -- JSON list
            profile_image TEXT,
            website TEXT,
            linkedin TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES profiles(id) ON DELETE CASCADE
        )
    ''')

    # Buyer-initiated requests for quote
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS rfqs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            title TEXT NOT NULL,
            description TEXT NOT NULL,
            category TEXT NOT NULL,
            location TEXT NOT NULL,
            deadline TEXT NOT NULL,
            budget_range_min REAL,
            budget_range_max REAL,
            requirements TEXT,
            documents TEXT,
            preferred_suppliers TEXT,
            tags TEXT,
            status TEXT DEFAULT 'open' CHECK (status IN ('open', 'closed', 'awarded', 'cancelled')),
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES profiles(id) ON DELETE CASCADE
        )
    ''')

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS rfq_quotes (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            rfq_id INTEGER NOT NULL,
            supplier_id TEXT NOT NULL,
            quoted_amount REAL NOT NULL CHECK (quoted_amount >= 0),
            delivery_timeline TEXT,
            proposal_text TEXT,
            terms_and_conditions TEXT,
            validity_period INTEGER,
            attachments TEXT,
            status TEXT DEFAULT 'pending' CHECK (status IN ('pending', 'accepted', 'rejected')),
            submitted_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (rfq_id) REFERENCES rfqs(id) ON DELETE CASCADE,
            FOREIGN KEY (supplier_id) REFERENCES profiles(id) ON DELETE CASCADE
        )
    ''')

    # In-app notifications
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS user_alerts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            type TEXT NOT NULL,
            title TEXT NOT NULL,
            message TEXT NOT NULL,
            data TEXT,  -- JSON object
            is_read INTEGER DEFAULT 0,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES profiles(id) ON DELETE CASCADE
        )
    ''')

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS user_preferences (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL UNIQUE,
            sectors TEXT,
            counties TEXT,
            budget_min REAL,
            budget_max REAL,
            keywords TEXT,
            eligibility_types TEXT,
            notification_email INTEGER DEFAULT 1,
            notification_push INTEGER DEFAULT 1,
            notification_sms INTEGER DEFAULT 0,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES profiles(id) ON DELETE CASCADE
        )
    ''')

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS tender_analytics (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            tender_id INTEGER NOT NULL UNIQUE,
            views_count INTEGER DEFAULT 0,
            saves_count INTEGER DEFAULT 0,
            applications_count INTEGER DEFAULT 0,
            last_viewed TIMESTAMP,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (tender_id) REFERENCES tenders(id) ON DELETE CASCADE
        )
    ''')

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS tender_categories (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL UNIQUE,
            description TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    ''')

    # Cached tender analyses
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS ai_analyses (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            tender_id INTEGER NOT NULL UNIQUE,
            estimated_value_min REAL,
            estimated_value_max REAL,
            win_probability REAL,
            confidence_score REAL,
            recommendations TEXT,
            analysis_data TEXT,
            model_version TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (tender_id) REFERENCES tenders(id) ON DELETE CASCADE
        )
    ''')

    # Past awards used for win probability
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS historical_tender_awards (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            tender_number TEXT,
            title TEXT NOT NULL,
            category TEXT NOT NULL,
            location TEXT DEFAULT 'Kenya',
            organization TEXT,
            original_budget REAL,
            awarded_amount REAL,
            price_to_budget_ratio REAL,
            bid_count INTEGER,
            award_date TEXT,
            winner_name TEXT,
            winner_type TEXT,  -- sme, youth, women, pwd, consortium, large_enterprise
            competition_level TEXT DEFAULT 'medium' CHECK (competition_level IN ('low', 'medium', 'high')),
            tender_type TEXT DEFAULT 'open',
            procurement_method TEXT,
            source_url TEXT,
            scraped_from TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    ''')

    # Scheduled job outcomes
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS automation_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            function_name TEXT NOT NULL,
            status TEXT NOT NULL CHECK (status IN ('completed', 'failed')),
            result_data TEXT,
            error_message TEXT,
            executed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    ''')

    # Export runs of the backup manager
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS backup_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            backup_type TEXT NOT NULL,
            backup_location TEXT DEFAULT '',
            backup_status TEXT NOT NULL CHECK (backup_status IN ('completed', 'failed')),
            error_message TEXT,
            file_size INTEGER,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            completed_at TIMESTAMP
        )
    ''')

    # Create indexes for performance
    cursor.execute('CREATE INDEX IF NOT EXISTS idx_tenders_status ON tenders(status)')
    cursor.execute('CREATE INDEX IF NOT EXISTS idx_tenders_category ON tenders(category)')
    cursor.execute('CREATE INDEX IF NOT EXISTS idx_tenders_deadline ON tenders(deadline)')
    cursor.execute('CREATE INDEX IF NOT EXISTS idx_alerts_user ON user_alerts(user_id, is_read)')
    cursor.execute('CREATE INDEX IF NOT EXISTS idx_awards_category ON historical_tender_awards(category)')
    # Awards without a reference number are never treated as duplicates
    cursor.execute('''
        CREATE UNIQUE INDEX IF NOT EXISTS idx_awards_reference
        ON historical_tender_awards(tender_number, organization)
    ''')

    conn.commit()
    conn.close()
    logger.info(f"Database initialized at {DB_PATH}")


def seed_categories():
    """Seed the tender category list."""
    categories = [
        ('Construction', 'Buildings, civil works and renovations'),
        ('Infrastructure', 'Roads, bridges, rail and large public works'),
        ('Technology', 'ICT systems, software, networks and equipment'),
        ('Healthcare', 'Medical supplies, equipment and health services'),
        ('Education', 'School supplies, furniture and learning services'),
        ('Water & Sanitation', 'Boreholes, water supply and sewerage'),
        ('Energy', 'Power generation, solar and electrical works'),
        ('Security', 'Guarding, surveillance and security systems'),
        ('Agriculture', 'Farm inputs, irrigation and extension services'),
        ('Consultancy', 'Advisory, audit and professional services'),
        ('Transport', 'Vehicles, fleet management and logistics'),
        ('General', 'Goods and services not otherwise classified'),
    ]

    conn = get_connection()
    cursor = conn.cursor()
    for name, description in categories:
        cursor.execute('''
            INSERT OR IGNORE INTO tender_categories (name, description) VALUES (?, ?)
        ''', (name, description))
    conn.commit()
    conn.close()
    logger.info(f"Seeded {len(categories)} tender categories")


# Demo tenders inserted when a manual scrape finds nothing new.
# Deadlines are days from today so the records stay active.
SAMPLE_TENDERS = [
    {
        'title': 'Construction of Office Building',
        'description': 'Design and construction of a modern 5-story office building with parking facilities',
        'organization': 'Ministry of Public Works',
        'category': 'Construction',
        'location': 'Nairobi',
        'budget_estimate': 50000000,
        'deadline_days': 45,
        'tender_number': 'MPW/001/2025',
        'requirements': ['Valid construction license', '5+ years experience', 'Financial capacity'],
        'contact_email': 'procurement@publicworks.go.ke',
        'source_url': 'https://tenders.go.ke/tender/mpw-001-2025',
        'scraped_from': 'tenders.go.ke',
    },
    {
        'title': 'Supply of Medical Equipment',
        'description': 'Procurement of medical equipment for regional hospitals including X-ray machines and patient beds',
        'organization': 'Ministry of Health',
        'category': 'Healthcare',
        'location': 'Mombasa',
        'budget_estimate': 25000000,
        'deadline_days': 30,
        'tender_number': 'MOH/MED/002/2025',
        'requirements': ['ISO certification', 'Warranty terms', 'After-sales support'],
        'contact_email': 'supplies@health.go.ke',
        'source_url': 'https://tenders.go.ke/tender/moh-med-002-2025',
        'scraped_from': 'tenders.go.ke',
    },
    {
        'title': 'Road Maintenance Services',
        'description': 'Annual road maintenance and rehabilitation services for county roads',
        'organization': 'Kiambu County Government',
        'category': 'Infrastructure',
        'location': 'Kiambu',
        'budget_estimate': 75000000,
        'deadline_days': 60,
        'tender_number': 'KCG/ROADS/003/2025',
        'requirements': ['Road construction experience', 'Equipment availability', 'Quality assurance'],
        'contact_email': 'procurement@kiambu.go.ke',
        'source_url': 'https://kiambu.go.ke/tenders/roads-003-2025',
        'scraped_from': 'county_portal',
    },
    {
        'title': 'IT Infrastructure Upgrade',
        'description': 'Upgrade of government IT systems including servers, networking equipment and software licensing',
        'organization': 'ICT Authority',
        'category': 'Technology',
        'location': 'Nairobi',
        'budget_estimate': 35000000,
        'deadline_days': 50,
        'tender_number': 'ICTA/IT/004/2025',
        'requirements': ['Cisco certification', 'Microsoft partnership', 'Local support presence'],
        'contact_email': 'procurement@icta.go.ke',
        'source_url': 'https://icta.go.ke/tender/it-004-2025',
        'scraped_from': 'icta_portal',
    },
    {
        'title': 'School Furniture Supply',
        'description': 'Supply and delivery of desks, chairs and other furniture for primary schools',
        'organization': 'Ministry of Education',
        'category': 'Education',
        'location': 'Nakuru',
        'budget_estimate': 15000000,
        'deadline_days': 21,
        'tender_number': 'MOE/FURN/005/2025',
        'requirements': ['Quality standards compliance', 'Bulk delivery capacity', 'Installation services'],
        'contact_email': 'procurement@education.go.ke',
        'source_url': 'https://education.go.ke/tender/furn-005-2025',
        'scraped_from': 'education_portal',
    },
    {
        'title': 'Water Borehole Drilling',
        'description': 'Drilling and equipping of boreholes for water supply in rural areas',
        'organization': 'Water Resources Authority',
        'category': 'Water & Sanitation',
        'location': 'Turkana',
        'budget_estimate': 40000000,
        'deadline_days': 75,
        'tender_number': 'WRA/DRILL/006/2025',
        'requirements': ['Water drilling license', 'Geological expertise', 'Equipment certification'],
        'contact_email': 'contracts@wra.go.ke',
        'source_url': 'https://wra.go.ke/tender/drill-006-2025',
        'scraped_from': 'wra_portal',
    },
    {
        'title': 'Solar Energy Installation',
        'description': 'Installation of solar panels and energy systems for government buildings',
        'organization': 'Ministry of Energy',
        'category': 'Energy',
        'location': 'Kisumu',
        'budget_estimate': 60000000,
        'deadline_days': 65,
        'tender_number': 'MOE/SOLAR/007/2025',
        'requirements': ['Solar installation certification', 'Grid-tie experience', 'Maintenance agreement'],
        'contact_email': 'renewable@energy.go.ke',
        'source_url': 'https://energy.go.ke/tender/solar-007-2025',
        'scraped_from': 'energy_portal',
    },
    {
        'title': 'Security Services Contract',
        'description': 'Provision of security services for government facilities including guards and surveillance',
        'organization': 'Ministry of Interior',
        'category': 'Security',
        'location': 'Mombasa',
        'budget_estimate': 30000000,
        'deadline_days': 35,
        'tender_number': 'MOI/SEC/008/2025',
        'requirements': ['Security license', 'Trained personnel', 'Insurance coverage'],
        'contact_email': 'security@interior.go.ke',
        'source_url': 'https://interior.go.ke/tender/sec-008-2025',
        'scraped_from': 'interior_portal',
    },
]


def seed_sample_tenders() -> int:
    """Insert the demo tenders that are not present yet. Returns count inserted."""
    inserted = 0
    today = utc_now()
    for sample in SAMPLE_TENDERS:
        if get_tender_by_number(sample['tender_number']):
            continue
        fields = {k: v for k, v in sample.items() if k != 'deadline_days'}
        fields['deadline'] = (today + timedelta(days=sample['deadline_days'])).strftime('%Y-%m-%d')
        create_tender(**fields)
        inserted += 1

    logger.info(f"Inserted {inserted} sample tenders")
    return inserted


# ============== Tender Operations ==============

TENDER_FIELDS = {
    'title', 'description', 'organization', 'category', 'location', 'budget_estimate',
    'deadline', 'publish_date', 'tender_number', 'requirements', 'documents',
    'contact_email', 'contact_phone', 'source_url', 'scraped_from', 'status',
}


def create_tender(title: str, **kwargs) -> int:
    """Create a new tender record."""
    data = {'title': title}
    data.update({k: v for k, v in kwargs.items() if k in TENDER_FIELDS})

    conn = get_connection()
    cursor = conn.cursor()
    try:
        tender_id = _insert(cursor, 'tenders', data)
        conn.commit()
        return tender_id
    finally:
        conn.close()


def get_tender(tender_id: int) -> Optional[Dict]:
    """Get tender by ID."""
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('SELECT * FROM tenders WHERE id = ?', (tender_id,))
    row = cursor.fetchone()
    conn.close()
    return _decode('tenders', row)


def get_tender_by_number(tender_number: str) -> Optional[Dict]:
    """Get tender by its procuring-entity reference number."""
    if not tender_number:
        return None
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('SELECT * FROM tenders WHERE tender_number = ?', (tender_number,))
    row = cursor.fetchone()
    conn.close()
    return _decode('tenders', row)


def find_tender(title: str, organization: str) -> Optional[Dict]:
    """Get tender by exact title and organization."""
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('SELECT * FROM tenders WHERE title = ? AND organization = ?', (title, organization))
    row = cursor.fetchone()
    conn.close()
    return _decode('tenders', row)


def get_all_tenders(category: str = None, status: str = None, location: str = None,
                    search: str = None, limit: int = 50, offset: int = 0) -> Tuple[List[Dict], int]:
    """Get tenders with optional filters, newest first. Returns (page, total count)."""
    where = ' WHERE 1=1'
    params = []

    if category:
        where += ' AND category = ?'
        params.append(category)

    if status:
        where += ' AND status = ?'
        params.append(status)

    if location:
        where += ' AND location LIKE ?'
        params.append(f'%{location}%')

    if search:
        where += ' AND (title LIKE ? OR description LIKE ?)'
        params.extend([f'%{search}%', f'%{search}%'])

    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute(f'SELECT COUNT(*) FROM tenders{where}', params)
    total = cursor.fetchone()[0]

    cursor.execute(f'SELECT * FROM tenders{where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?',
                   params + [limit, offset])
    rows = [_decode('tenders', row) for row in cursor.fetchall()]
    conn.close()
    return rows, total


def get_tenders_by_category(category: str, exclude_id: int = None, limit: int = 20) -> List[Dict]:
    """Get tenders in a category, optionally excluding one tender."""
    query = 'SELECT * FROM tenders WHERE category = ?'
    params = [category]
    if exclude_id is not None:
        query += ' AND id != ?'
        params.append(exclude_id)
    query += ' LIMIT ?'
    params.append(limit)

    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute(query, params)
    rows = [_decode('tenders', row) for row in cursor.fetchall()]
    conn.close()
    return rows


def get_other_tenders(exclude_id: int, limit: int = 100) -> List[Dict]:
    """Get tenders other than the given one."""
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('SELECT * FROM tenders WHERE id != ? LIMIT ?', (exclude_id, limit))
    rows = [_decode('tenders', row) for row in cursor.fetchall()]
    conn.close()
    return rows


def get_open_tenders(min_deadline: str, limit: int = 100) -> List[Dict]:
    """Get active tenders whose deadline is on or after the given date, newest first."""
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('''
        SELECT * FROM tenders
        WHERE status = 'active' AND deadline >= ?
        ORDER BY created_at DESC, id DESC
        LIMIT ?
    ''', (min_deadline, limit))
    rows = [_decode('tenders', row) for row in cursor.fetchall()]
    conn.close()
    return rows


def get_tenders_created_since(since: str, status: Optional[str] = 'active') -> List[Dict]:
    """Get tenders created at or after a timestamp, newest first. status=None admits any status."""
    query = 'SELECT * FROM tenders WHERE created_at >= ?'
    params = [since]
    if status:
        query += ' AND status = ?'
        params.append(status)
    query += ' ORDER BY created_at DESC, id DESC'

    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute(query, params)
    rows = [_decode('tenders', row) for row in cursor.fetchall()]
    conn.close()
    return rows


def update_tender(tender_id: int, **kwargs) -> bool:
    """Update tender fields."""
    return _update('tenders', 'id', tender_id, TENDER_FIELDS, kwargs)


def delete_tender(tender_id: int) -> bool:
    """Delete a tender. Returns True if a row was removed."""
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('DELETE FROM tenders WHERE id = ?', (tender_id,))
    deleted = cursor.rowcount > 0
    conn.commit()
    conn.close()
    return deleted


def get_all_categories() -> List[Dict]:
    """Get all tender categories."""
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('SELECT * FROM tender_categories ORDER BY name')
    rows = [dict(row) for row in cursor.fetchall()]
    conn.close()
    return rows


# ============== Profile Operations ==============

PROFILE_FIELDS = {
    'first_name', 'last_name', 'company', 'business_type', 'location',
    'phone_number', 'profile_image_url',
}

SUBSCRIPTION_FIELDS = {
    'subscription_type', 'subscription_status', 'subscription_start_date',
    'subscription_end_date', 'is_early_user',
}

LOYALTY_FIELDS = {'loyalty_points', 'referred_by', 'total_referrals', 'twitter_followed'}


def create_profile(email: str, **kwargs) -> str:
    """Create a profile and return its generated user ID."""
    user_id = kwargs.pop('id', None) or str(uuid.uuid4())
    data = {'id': user_id, 'email': email,
            'referral_code': kwargs.pop('referral_code', None) or uuid.uuid4().hex[:8].upper()}
    valid = PROFILE_FIELDS | SUBSCRIPTION_FIELDS | LOYALTY_FIELDS
    data.update({k: v for k, v in kwargs.items() if k in valid})

    conn = get_connection()
    cursor = conn.cursor()
    try:
        _insert(cursor, 'profiles', data)
        conn.commit()
        return user_id
    finally:
        conn.close()


def get_profile(user_id: str) -> Optional[Dict]:
    """Get profile by user ID."""
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('SELECT * FROM profiles WHERE id = ?', (user_id,))
    row = cursor.fetchone()
    conn.close()
    return _decode('profiles', row)


def get_profile_by_email(email: str) -> Optional[Dict]:
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('SELECT * FROM profiles WHERE email = ?', (email,))
    row = cursor.fetchone()
    conn.close()
    return _decode('profiles', row)


def get_profile_by_referral_code(code: str) -> Optional[Dict]:
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('SELECT * FROM profiles WHERE referral_code = ?', (code,))
    row = cursor.fetchone()
    conn.close()
    return _decode('profiles', row)


def update_profile(user_id: str, **kwargs) -> bool:
    """Update editable profile fields."""
    return _update('profiles', 'id', user_id, PROFILE_FIELDS, kwargs)


def update_subscription(user_id: str, **kwargs) -> bool:
    """Update subscription state of a profile."""
    return _update('profiles', 'id', user_id, SUBSCRIPTION_FIELDS, kwargs)


def update_loyalty(user_id: str, **kwargs) -> bool:
    return _update('profiles', 'id', user_id, LOYALTY_FIELDS, kwargs)


def add_loyalty_points(user_id: str, points: int) -> Optional[int]:
    """Add points to a profile. Returns the new balance, or None if no such profile."""
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('''
        UPDATE profiles SET loyalty_points = COALESCE(loyalty_points, 0) + ?, updated_at = ?
        WHERE id = ?
    ''', (points, now_str(), user_id))
    if cursor.rowcount == 0:
        conn.close()
        return None
    conn.commit()
    cursor.execute('SELECT loyalty_points FROM profiles WHERE id = ?', (user_id,))
    balance = cursor.fetchone()[0]
    conn.close()
    return balance


def get_active_subscriptions(end_before: str = None, end_from: str = None,
                             end_to: str = None) -> List[Dict]:
    """Get profiles with an active subscription, filtered on end date bounds."""
    query = "SELECT * FROM profiles WHERE subscription_status = 'active' AND subscription_end_date IS NOT NULL"
    params = []

    if end_before:
        query += ' AND subscription_end_date < ?'
        params.append(end_before)

    if end_from:
        query += ' AND subscription_end_date >= ?'
        params.append(end_from)

    if end_to:
        query += ' AND subscription_end_date <= ?'
        params.append(end_to)

    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute(query, params)
    rows = [_decode('profiles', row) for row in cursor.fetchall()]
    conn.close()
    return rows


def count_early_users() -> int:
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('SELECT COUNT(*) FROM profiles WHERE is_early_user = 1')
    count = cursor.fetchone()[0]
    conn.close()
    return count


# ============== Auth Operations ==============

def create_auth_user(user_id: str, password_hash: str):
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('INSERT INTO auth_users (user_id, password_hash) VALUES (?, ?)', (user_id, password_hash))
    conn.commit()
    conn.close()


def get_password_hash(user_id: str) -> Optional[str]:
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('SELECT password_hash FROM auth_users WHERE user_id = ?', (user_id,))
    row = cursor.fetchone()
    conn.close()
    return row['password_hash'] if row else None


def create_token(user_id: str) -> str:
    """Issue a new API token for a user."""
    token = uuid.uuid4().hex + uuid.uuid4().hex
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('INSERT INTO auth_tokens (token, user_id) VALUES (?, ?)', (token, user_id))
    conn.commit()
    conn.close()
    return token


def get_token_user(token: str) -> Optional[str]:
    """Resolve an API token to its user ID."""
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('SELECT user_id FROM auth_tokens WHERE token = ?', (token,))
    row = cursor.fetchone()
    conn.close()
    return row['user_id'] if row else None


def add_user_role(user_id: str, role: str) -> int:
    """Grant a role. Granting an existing role returns the existing row ID."""
    conn = get_connection()
    cursor = conn.cursor()
    try:
        cursor.execute('INSERT INTO user_roles (user_id, role) VALUES (?, ?)', (user_id, role))
        conn.commit()
        return cursor.lastrowid
    except sqlite3.IntegrityError as e:
        cursor.execute('SELECT id FROM user_roles WHERE user_id = ? AND role = ?', (user_id, role))
        row = cursor.fetchone()
        if row is None:
            raise e
        return row['id']
    finally:
        conn.close()


def get_user_roles(user_id: str) -> List[str]:
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('SELECT role FROM user_roles WHERE user_id = ?', (user_id,))
    roles = [row['role'] for row in cursor.fetchall()]
    conn.close()
    return roles


# ============== Saved Tender Operations ==============

def save_tender(user_id: str, tender_id: int) -> int:
    """Bookmark a tender. Raises sqlite3.IntegrityError if already saved."""
    conn = get_connection()
    cursor = conn.cursor()
    try:
        cursor.execute('INSERT INTO saved_tenders (user_id, tender_id) VALUES (?, ?)', (user_id, tender_id))
        conn.commit()
        return cursor.lastrowid
    finally:
        conn.close()


def unsave_tender(user_id: str, tender_id: int) -> bool:
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('DELETE FROM saved_tenders WHERE user_id = ? AND tender_id = ?', (user_id, tender_id))
    deleted = cursor.rowcount > 0
    conn.commit()
    conn.close()
    return deleted


def get_saved_tenders(user_id: str, limit: int = None) -> List[Dict]:
    """Get a user's saved tenders with tender details, newest save first."""
    query = '''
        SELECT t.*, s.id as saved_id, s.created_at as saved_at
        FROM saved_tenders s
        JOIN tenders t ON s.tender_id = t.id
        WHERE s.user_id = ?
        ORDER BY s.created_at DESC, s.id DESC
    '''
    params = [user_id]
    if limit:
        query += ' LIMIT ?'
        params.append(limit)

    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute(query, params)
    rows = [_decode('tenders', row) for row in cursor.fetchall()]
    conn.close()
    return rows


def get_users_with_saved_tenders() -> List[str]:
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('SELECT DISTINCT user_id FROM saved_tenders')
    user_ids = [row['user_id'] for row in cursor.fetchall()]
    conn.close()
    return user_ids


def is_tender_saved(user_id: str, tender_id: int) -> bool:
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('SELECT 1 FROM saved_tenders WHERE user_id = ? AND tender_id = ?', (user_id, tender_id))
    saved = cursor.fetchone() is not None
    conn.close()
    return saved


# ============== Consortium Operations ==============

CONSORTIUM_FIELDS = {'name', 'description', 'tender_id', 'max_members', 'required_skills', 'status'}


def create_consortium(name: str, created_by: str, **kwargs) -> int:
    """Create a consortium and enrol its creator as leader in one transaction."""
    data = {'name': name, 'created_by': created_by}
    data.update({k: v for k, v in kwargs.items() if k in CONSORTIUM_FIELDS})

    conn = get_connection()
    cursor = conn.cursor()
    try:
        consortium_id = _insert(cursor, 'consortiums', data)
        cursor.execute('''
            INSERT INTO consortium_members (consortium_id, user_id, role) VALUES (?, ?, 'leader')
        ''', (consortium_id, created_by))
        conn.commit()
        return consortium_id
    except sqlite3.Error:
        conn.rollback()
        raise
    finally:
        conn.close()


CONSORTIUM_SELECT = '''
    SELECT c.*, (SELECT COUNT(*) FROM consortium_members m WHERE m.consortium_id = c.id) as member_count
    FROM consortiums c
'''


def get_consortium(consortium_id: int) -> Optional[Dict]:
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute(CONSORTIUM_SELECT + ' WHERE c.id = ?', (consortium_id,))
    row = cursor.fetchone()
    conn.close()
    return _decode('consortiums', row)


def get_all_consortiums(status: str = None) -> List[Dict]:
    query = CONSORTIUM_SELECT + ' WHERE 1=1'
    params = []
    if status:
        query += ' AND c.status = ?'
        params.append(status)
    query += ' ORDER BY c.created_at DESC, c.id DESC'

    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute(query, params)
    rows = [_decode('consortiums', row) for row in cursor.fetchall()]
    conn.close()
    return rows


def update_consortium(consortium_id: int, **kwargs) -> bool:
    return _update('consortiums', 'id', consortium_id, CONSORTIUM_FIELDS, kwargs)


def add_consortium_member(consortium_id: int, user_id: str, role: str = 'member', **kwargs) -> int:
    """Add a member. Raises sqlite3.IntegrityError if already a member."""
    data = {'consortium_id': consortium_id, 'user_id': user_id, 'role': role}
    data.update({k: v for k, v in kwargs.items() if k in ('expertise', 'contribution')})

    conn = get_connection()
    cursor = conn.cursor()
    try:
        member_id = _insert(cursor, 'consortium_members', data)
        conn.commit()
        return member_id
    finally:
        conn.close()


def remove_consortium_member(consortium_id: int, user_id: str) -> bool:
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('DELETE FROM consortium_members WHERE consortium_id = ? AND user_id = ?',
                   (consortium_id, user_id))
    deleted = cursor.rowcount > 0
    conn.commit()
    conn.close()
    return deleted


def get_consortium_member(consortium_id: int, user_id: str) -> Optional[Dict]:
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('SELECT * FROM consortium_members WHERE consortium_id = ? AND user_id = ?',
                   (consortium_id, user_id))
    row = cursor.fetchone()
    conn.close()
    return dict(row) if row else None


def get_consortium_members(consortium_id: int) -> List[Dict]:
    """Get consortium members with profile names."""
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('''
        SELECT m.*, p.first_name, p.last_name, p.company, p.email
        FROM consortium_members m
        JOIN profiles p ON m.user_id = p.id
        WHERE m.consortium_id = ?
        ORDER BY m.joined_at, m.id
    ''', (consortium_id,))
    rows = [dict(row) for row in cursor.fetchall()]
    conn.close()
    return rows


# ============== Service Provider Operations ==============

PROVIDER_FIELDS = {
    'name', 'email', 'phone', 'specialization', 'description', 'experience', 'hourly_rate',
    'availability', 'certifications', 'portfolio', 'profile_image', 'website', 'linkedin',
}


def create_service_provider(user_id: str, name: str, email: str, specialization: str, **kwargs) -> int:
    data = {'user_id': user_id, 'name': name, 'email': email, 'specialization': specialization}
    data.update({k: v for k, v in kwargs.items() if k in PROVIDER_FIELDS})

    conn = get_connection()
    cursor = conn.cursor()
    try:
        provider_id = _insert(cursor, 'service_providers', data)
        conn.commit()
        return provider_id
    finally:
        conn.close()


def get_service_provider(provider_id: int) -> Optional[Dict]:
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('SELECT * FROM service_providers WHERE id = ?', (provider_id,))
    row = cursor.fetchone()
    conn.close()
    return _decode('service_providers', row)


def get_all_service_providers(specialization: str = None, availability: str = None,
                              search: str = None) -> List[Dict]:
    """Get providers with optional filters, best rated first."""
    query = 'SELECT * FROM service_providers WHERE 1=1'
    params = []

    if specialization:
        query += ' AND specialization = ?'
        params.append(specialization)

    if availability:
        query += ' AND availability = ?'
        params.append(availability)

    if search:
        query += ' AND (name LIKE ? OR description LIKE ? OR specialization LIKE ?)'
        params.extend([f'%{search}%'] * 3)

    query += ' ORDER BY rating DESC, review_count DESC'

    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute(query, params)
    rows = [_decode('service_providers', row) for row in cursor.fetchall()]
    conn.close()
    return rows


def update_service_provider(provider_id: int, **kwargs) -> bool:
    return _update('service_providers', 'id', provider_id, PROVIDER_FIELDS, kwargs)


# ============== RFQ Operations ==============

RFQ_FIELDS = {
    'title', 'description', 'category', 'location', 'deadline', 'budget_range_min',
    'budget_range_max', 'requirements', 'documents', 'preferred_suppliers', 'tags', 'status',
}


def create_rfq(user_id: str, **kwargs) -> int:
    data = {'user_id': user_id}
    data.update({k: v for k, v in kwargs.items() if k in RFQ_FIELDS})

    conn = get_connection()
    cursor = conn.cursor()
    try:
        rfq_id = _insert(cursor, 'rfqs', data)
        conn.commit()
        return rfq_id
    finally:
        conn.close()


RFQ_SELECT = '''
    SELECT r.*, (SELECT COUNT(*) FROM rfq_quotes q WHERE q.rfq_id = r.id) as quote_count
    FROM rfqs r
'''


def get_rfq(rfq_id: int) -> Optional[Dict]:
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute(RFQ_SELECT + ' WHERE r.id = ?', (rfq_id,))
    row = cursor.fetchone()
    conn.close()
    return _decode('rfqs', row)


def get_all_rfqs(user_id: str = None, category: str = None, status: str = None,
                 limit: int = 20, offset: int = 0) -> Tuple[List[Dict], int]:
    """Get RFQs with optional filters, newest first. Returns (page, total count)."""
    where = ' WHERE 1=1'
    params = []

    if user_id:
        where += ' AND r.user_id = ?'
        params.append(user_id)

    if category:
        where += ' AND r.category = ?'
        params.append(category)

    if status:
        where += ' AND r.status = ?'
        params.append(status)

    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute(f'SELECT COUNT(*) FROM rfqs r{where}', params)
    total = cursor.fetchone()[0]

    cursor.execute(RFQ_SELECT + where + ' ORDER BY r.created_at DESC, r.id DESC LIMIT ? OFFSET ?',
                   params + [limit, offset])
    rows = [_decode('rfqs', row) for row in cursor.fetchall()]
    conn.close()
    return rows, total


def update_rfq(rfq_id: int, **kwargs) -> bool:
    return _update('rfqs', 'id', rfq_id, RFQ_FIELDS, kwargs)


def delete_rfq(rfq_id: int) -> bool:
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('DELETE FROM rfqs WHERE id = ?', (rfq_id,))
    deleted = cursor.rowcount > 0
    conn.commit()
    conn.close()
    return deleted


QUOTE_FIELDS = {
    'quoted_amount', 'delivery_timeline', 'proposal_text', 'terms_and_conditions',
    'validity_period', 'attachments', 'status',
}


def create_quote(rfq_id: int, supplier_id: str, quoted_amount: float, **kwargs) -> int:
    data = {'rfq_id': rfq_id, 'supplier_id': supplier_id, 'quoted_amount': quoted_amount}
    data.update({k: v for k, v in kwargs.items() if k in QUOTE_FIELDS and k != 'status'})

    conn = get_connection()
    cursor = conn.cursor()
    try:
        quote_id = _insert(cursor, 'rfq_quotes', data)
        conn.commit()
        return quote_id
    finally:
        conn.close()


def get_quote(quote_id: int) -> Optional[Dict]:
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('SELECT * FROM rfq_quotes WHERE id = ?', (quote_id,))
    row = cursor.fetchone()
    conn.close()
    return _decode('rfq_quotes', row)


def get_rfq_quotes(rfq_id: int, supplier_id: str = None) -> List[Dict]:
    query = 'SELECT * FROM rfq_quotes WHERE rfq_id = ?'
    params = [rfq_id]
    if supplier_id:
        query += ' AND supplier_id = ?'
        params.append(supplier_id)
    query += ' ORDER BY submitted_at DESC, id DESC'

    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute(query, params)
    rows = [_decode('rfq_quotes', row) for row in cursor.fetchall()]
    conn.close()
    return rows


def update_quote(quote_id: int, **kwargs) -> bool:
    return _update('rfq_quotes', 'id', quote_id, QUOTE_FIELDS, kwargs)


def award_quote(rfq_id: int, quote_id: int):
    """Accept one quote, reject the other pending ones and mark the RFQ awarded."""
    timestamp = now_str()
    conn = get_connection()
    cursor = conn.cursor()
    try:
        cursor.execute("UPDATE rfq_quotes SET status = 'accepted', updated_at = ? WHERE id = ?",
                       (timestamp, quote_id))
        cursor.execute('''
            UPDATE rfq_quotes SET status = 'rejected', updated_at = ?
            WHERE rfq_id = ? AND id != ? AND status = 'pending'
        ''', (timestamp, rfq_id, quote_id))
        cursor.execute("UPDATE rfqs SET status = 'awarded', updated_at = ? WHERE id = ?",
                       (timestamp, rfq_id))
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        raise
    finally:
        conn.close()


# ============== Alert Operations ==============

def create_alert(user_id: str, alert_type: str, title: str, message: str, data: Dict = None) -> int:
    """Create an in-app alert for a user."""
    conn = get_connection()
    cursor = conn.cursor()
    try:
        alert_id = _insert(cursor, 'user_alerts', {
            'user_id': user_id,
            'type': alert_type,
            'title': title,
            'message': message,
            'data': data or {},
        })
        conn.commit()
        return alert_id
    finally:
        conn.close()


def get_alerts(user_id: str, limit: int = 50, unread_only: bool = False) -> List[Dict]:
    query = 'SELECT * FROM user_alerts WHERE user_id = ?'
    params = [user_id]
    if unread_only:
        query += ' AND is_read = 0'
    query += ' ORDER BY created_at DESC, id DESC LIMIT ?'
    params.append(limit)

    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute(query, params)
    rows = [_decode('user_alerts', row) for row in cursor.fetchall()]
    conn.close()
    return rows


def mark_alert_read(alert_id: int, user_id: str) -> bool:
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('UPDATE user_alerts SET is_read = 1 WHERE id = ? AND user_id = ?', (alert_id, user_id))
    updated = cursor.rowcount > 0
    conn.commit()
    conn.close()
    return updated


def mark_all_alerts_read(user_id: str) -> int:
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('UPDATE user_alerts SET is_read = 1 WHERE user_id = ? AND is_read = 0', (user_id,))
    updated = cursor.rowcount
    conn.commit()
    conn.close()
    return updated


def count_unread_alerts(user_id: str) -> int:
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('SELECT COUNT(*) FROM user_alerts WHERE user_id = ? AND is_read = 0', (user_id,))
    count = cursor.fetchone()[0]
    conn.close()
    return count


def tender_alert_exists(user_id: str, alert_type: str, tender_id: int) -> bool:
    """Check whether a user already has an alert of this type about a tender."""
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('''
        SELECT 1 FROM user_alerts
        WHERE user_id = ? AND type = ? AND json_extract(data, '$.tender_id') = ?
        LIMIT 1
    ''', (user_id, alert_type, tender_id))
    exists = cursor.fetchone() is not None
    conn.close()
    return exists


def alert_exists_since(user_id: str, alert_type: str, since: str) -> bool:
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('''
        SELECT 1 FROM user_alerts WHERE user_id = ? AND type = ? AND created_at >= ? LIMIT 1
    ''', (user_id, alert_type, since))
    exists = cursor.fetchone() is not None
    conn.close()
    return exists


# ============== Preference Operations ==============

PREFERENCE_FIELDS = {
    'sectors', 'counties', 'budget_min', 'budget_max', 'keywords', 'eligibility_types',
    'notification_email', 'notification_push', 'notification_sms',
}


def get_user_preferences(user_id: str) -> Optional[Dict]:
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('SELECT * FROM user_preferences WHERE user_id = ?', (user_id,))
    row = cursor.fetchone()
    conn.close()
    return _decode('user_preferences', row)


def upsert_user_preferences(user_id: str, **kwargs) -> Dict:
    """Create or update a user's matching preferences."""
    updates = {k: v for k, v in kwargs.items() if k in PREFERENCE_FIELDS}
    if get_user_preferences(user_id) is None:
        conn = get_connection()
        cursor = conn.cursor()
        try:
            _insert(cursor, 'user_preferences', dict(updates, user_id=user_id))
            conn.commit()
        finally:
            conn.close()
    else:
        _update('user_preferences', 'user_id', user_id, PREFERENCE_FIELDS, updates)
    return get_user_preferences(user_id)


def get_notifiable_user_ids() -> List[str]:
    """Users with email or push notifications switched on."""
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('''
        SELECT user_id FROM user_preferences WHERE notification_email = 1 OR notification_push = 1
    ''')
    user_ids = [row['user_id'] for row in cursor.fetchall()]
    conn.close()
    return user_ids


# ============== Analytics Operations ==============

def _bump_analytics(tender_id: int, column: str, touch_viewed: bool = False):
    timestamp = now_str()
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('INSERT OR IGNORE INTO tender_analytics (tender_id) VALUES (?)', (tender_id,))
    extra = ', last_viewed = ?' if touch_viewed else ''
    params = [timestamp] + ([timestamp] if touch_viewed else []) + [tender_id]
    cursor.execute(f'''
        UPDATE tender_analytics SET {column} = {column} + 1, updated_at = ?{extra}
        WHERE tender_id = ?
    ''', params)
    conn.commit()
    conn.close()


def increment_tender_views(tender_id: int):
    _bump_analytics(tender_id, 'views_count', touch_viewed=True)


def increment_tender_saves(tender_id: int):
    _bump_analytics(tender_id, 'saves_count')


def get_tender_analytics(tender_id: int) -> Optional[Dict]:
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('SELECT * FROM tender_analytics WHERE tender_id = ?', (tender_id,))
    row = cursor.fetchone()
    conn.close()
    return dict(row) if row else None


def get_trending_tenders(limit: int = 10) -> List[Dict]:
    """Most viewed tenders with their analytics counters."""
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('''
        SELECT t.*, a.views_count, a.saves_count, a.last_viewed
        FROM tender_analytics a
        JOIN tenders t ON a.tender_id = t.id
        ORDER BY a.views_count DESC, a.saves_count DESC
        LIMIT ?
    ''', (limit,))
    rows = [_decode('tenders', row) for row in cursor.fetchall()]
    conn.close()
    return rows


# ============== AI Analysis Operations ==============

def get_ai_analysis(tender_id: int) -> Optional[Dict]:
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('SELECT * FROM ai_analyses WHERE tender_id = ?', (tender_id,))
    row = cursor.fetchone()
    conn.close()
    return _decode('ai_analyses', row)


def save_ai_analysis(tender_id: int, **kwargs) -> Dict:
    """Insert or replace the cached analysis of a tender."""
    valid_fields = ['estimated_value_min', 'estimated_value_max', 'win_probability',
                    'confidence_score', 'recommendations', 'analysis_data', 'model_version']
    data = _encode('ai_analyses', {k: kwargs.get(k) for k in valid_fields})
    columns = ['tender_id'] + valid_fields
    assignments = ', '.join(f'{k} = excluded.{k}' for k in valid_fields)

    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute(f'''
        INSERT INTO ai_analyses ({', '.join(columns)}, created_at)
        VALUES ({', '.join(['?'] * len(columns))}, ?)
        ON CONFLICT(tender_id) DO UPDATE SET {assignments}, created_at = excluded.created_at
    ''', [tender_id] + [data[k] for k in valid_fields] + [now_str()])
    conn.commit()
    conn.close()
    return get_ai_analysis(tender_id)


# ============== Historical Award Operations ==============

AWARD_FIELDS = {
    'tender_number', 'location', 'organization', 'original_budget', 'awarded_amount',
    'price_to_budget_ratio', 'bid_count', 'award_date', 'winner_name', 'winner_type',
    'competition_level', 'tender_type', 'procurement_method', 'source_url', 'scraped_from',
}


def create_historical_award(title: str, category: str, **kwargs) -> int:
    data = {'title': title, 'category': category}
    data.update({k: v for k, v in kwargs.items() if k in AWARD_FIELDS})

    conn = get_connection()
    cursor = conn.cursor()
    try:
        award_id = _insert(cursor, 'historical_tender_awards', data)
        conn.commit()
        return award_id
    finally:
        conn.close()


def get_historical_awards(category: str, location: str = None, limit: int = 500) -> List[Dict]:
    """Past awards in a category; a specific location also admits national ('Kenya') awards."""
    query = 'SELECT * FROM historical_tender_awards WHERE category = ?'
    params = [category]
    if location and location != 'Kenya':
        query += " AND (location = ? OR location = 'Kenya')"
        params.append(location)
    query += ' LIMIT ?'
    params.append(limit)

    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute(query, params)
    rows = [dict(row) for row in cursor.fetchall()]
    conn.close()
    return rows


# ============== Automation Log Operations ==============

def log_automation(function_name: str, status: str, result_data: Dict = None,
                   error_message: str = None) -> int:
    """Record the outcome of a scheduled or triggered job."""
    conn = get_connection()
    cursor = conn.cursor()
    try:
        log_id = _insert(cursor, 'automation_logs', {
            'function_name': function_name,
            'status': status,
            'result_data': result_data,
            'error_message': error_message,
            'executed_at': now_str(),
        })
        conn.commit()
        return log_id
    finally:
        conn.close()


def get_automation_logs(function_name: str = None, limit: int = 50) -> List[Dict]:
    query = 'SELECT * FROM automation_logs WHERE 1=1'
    params = []
    if function_name:
        query += ' AND function_name = ?'
        params.append(function_name)
    query += ' ORDER BY executed_at DESC, id DESC LIMIT ?'
    params.append(limit)

    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute(query, params)
    rows = [_decode('automation_logs', row) for row in cursor.fetchall()]
    conn.close()
    return rows


# ============== Backups ==============

def get_all_profiles() -> List[Dict]:
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('SELECT * FROM profiles ORDER BY created_at, id')
    rows = [_decode('profiles', row) for row in cursor.fetchall()]
    conn.close()
    return rows


def get_rfqs_with_quotes() -> List[Dict]:
    """Every RFQ with its quotes attached under 'rfq_quotes'."""
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('SELECT * FROM rfqs ORDER BY created_at, id')
    rfqs = [_decode('rfqs', row) for row in cursor.fetchall()]
    for rfq in rfqs:
        cursor.execute('SELECT * FROM rfq_quotes WHERE rfq_id = ? ORDER BY id', (rfq['id'],))
        rfq['rfq_quotes'] = [_decode('rfq_quotes', row) for row in cursor.fetchall()]
    conn.close()
    return rfqs


def log_backup(backup_type: str, status: str, location: str = '', file_size: int = None,
               error_message: str = None) -> int:
    conn = get_connection()
    cursor = conn.cursor()
    try:
        log_id = _insert(cursor, 'backup_logs', {
            'backup_type': backup_type,
            'backup_location': location,
            'backup_status': status,
            'error_message': error_message,
            'file_size': file_size,
            'completed_at': now_str() if status == 'completed' else None,
        })
        conn.commit()
        return log_id
    finally:
        conn.close()


def get_backup_logs(limit: int = 50) -> List[Dict]:
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('SELECT * FROM backup_logs ORDER BY created_at DESC, id DESC LIMIT ?', (limit,))
    rows = [dict(row) for row in cursor.fetchall()]
    conn.close()
    return rows


# ============== Dashboard Stats ==============

def get_dashboard_stats(user_id: str) -> Dict:
    """Get per-user dashboard counters."""
    conn = get_connection()
    cursor = conn.cursor()

    stats = {}

    cursor.execute('SELECT COUNT(*) FROM saved_tenders WHERE user_id = ?', (user_id,))
    stats['saved_tenders'] = cursor.fetchone()[0]

    cursor.execute("SELECT COUNT(*) FROM tenders WHERE status = 'active'")
    stats['active_tenders'] = cursor.fetchone()[0]

    cursor.execute('SELECT COUNT(*) FROM rfqs WHERE user_id = ?', (user_id,))
    stats['my_rfqs'] = cursor.fetchone()[0]

    cursor.execute('SELECT COUNT(*) FROM consortium_members WHERE user_id = ?', (user_id,))
    stats['consortiums'] = cursor.fetchone()[0]

    cursor.execute('SELECT COUNT(*) FROM user_alerts WHERE user_id = ? AND is_read = 0', (user_id,))
    stats['unread_alerts'] = cursor.fetchone()[0]

    conn.close()
    return stats


def get_recent_timestamp(hours: int) -> str:
    """Timestamp string for N hours ago, comparable with created_at columns."""
    return to_str(utc_now() - timedelta(hours=hours))
