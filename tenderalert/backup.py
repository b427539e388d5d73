"""
Backup manager for TenderAlert.
Exports user profiles, the last week's tenders and RFQs with their quotes to
dated JSON files, recording every export in backup_logs.
"""

import os
import json
import logging
import sqlite3
from typing import List, Dict, Tuple

from . import database as db
from .dates import utc_now

logger = logging.getLogger(__name__)

BACKUP_CONFIG = {
    'backup_dir': os.environ.get(
        'BACKUP_DIR',
        os.path.join(os.path.dirname(os.path.dirname(__file__)), 'data', 'backups')
    ),
    'tender_window_days': 7,
}

BACKUP_TYPES = ('user_data', 'tenders', 'rfqs')


def collect_records(backup_type: str) -> List[Dict]:
    if backup_type == 'user_data':
        return db.get_all_profiles()
    if backup_type == 'tenders':
        since = db.get_recent_timestamp(BACKUP_CONFIG['tender_window_days'] * 24)
        return db.get_tenders_created_since(since, status=None)
    return db.get_rfqs_with_quotes()


def write_backup(backup_type: str, records: List[Dict], timestamp: str) -> Tuple[str, int]:
    """Write one export file, named by type and date. Returns (path, size in bytes)."""
    backup_dir = BACKUP_CONFIG['backup_dir']
    os.makedirs(backup_dir, exist_ok=True)

    payload = json.dumps({
        'type': backup_type,
        'timestamp': timestamp,
        'count': len(records),
        'data': records,
    }, indent=2, default=str)

    filepath = os.path.join(backup_dir, f"{backup_type}_{timestamp[:10]}.json")
    with open(filepath, 'w', encoding='utf-8') as f:
        f.write(payload)
    return filepath, len(payload.encode('utf-8'))


def run_backup(backup_type: str = 'all') -> Dict:
    """Export one backup type, or all of them. A failed export does not stop the others."""
    backup_type = backup_type or 'all'
    if backup_type != 'all' and backup_type not in BACKUP_TYPES:
        raise ValueError(f'Unknown backup type: {backup_type}')

    logger.info(f"Starting backup for type: {backup_type}")
    timestamp = utc_now().isoformat()
    results = []

    for name in BACKUP_TYPES:
        if backup_type not in ('all', name):
            continue
        try:
            records = collect_records(name)
            location, size = write_backup(name, records, timestamp)
        except (sqlite3.Error, OSError) as e:
            logger.error(f"Error backing up {name}: {e}")
            db.log_backup(name, 'failed', error_message=str(e))
            results.append({'type': name, 'status': 'failed', 'error': str(e)})
            continue

        db.log_backup(name, 'completed', location=location, file_size=size)
        results.append({'type': name, 'status': 'completed', 'location': location, 'count': len(records)})

    logger.info(f"Backup completed. Processed {len(results)} backup operations.")
    return {
        'success': True,
        'timestamp': timestamp,
        'backupType': backup_type,
        'results': results,
        'totalOperations': len(results),
    }
