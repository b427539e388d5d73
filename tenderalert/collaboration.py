"""
Consortium and service provider rules for TenderAlert.
Membership limits, leadership and ownership checks on top of the database layer.
"""

import logging
from typing import Dict, List

from . import database as db

logger = logging.getLogger(__name__)

JOINABLE_STATUSES = ('forming', 'active')


# ============== Consortiums ==============

def create_consortium(user_id: str, data: Dict) -> Dict:
    """Create a consortium led by the given user."""
    if not data.get('name'):
        raise ValueError('name is required')

    fields = {k: v for k, v in data.items() if k not in ('name', 'created_by')}
    consortium_id = db.create_consortium(data['name'], user_id, **fields)
    logger.info(f"Consortium {consortium_id} created by {user_id}")
    return db.get_consortium(consortium_id)


def join_consortium(consortium_id: int, user_id: str, expertise: str = None,
                    contribution: str = None) -> Dict:
    """Join a consortium as a member. Raises ValueError when it cannot take members."""
    consortium = db.get_consortium(consortium_id)
    if not consortium:
        raise LookupError('Consortium not found')

    if consortium['status'] not in JOINABLE_STATUSES:
        raise ValueError('Consortium is not accepting members')

    if db.get_consortium_member(consortium_id, user_id):
        raise ValueError('Already a member of this consortium')

    if consortium['member_count'] >= (consortium.get('max_members') or 0):
        raise ValueError('Consortium is full')

    db.add_consortium_member(consortium_id, user_id, 'member',
                             expertise=expertise, contribution=contribution)
    logger.info(f"User {user_id} joined consortium {consortium_id}")
    return db.get_consortium(consortium_id)


def leave_consortium(consortium_id: int, user_id: str) -> Dict:
    """Leave a consortium. The consortium closes when its leader leaves."""
    member = db.get_consortium_member(consortium_id, user_id)
    if not member:
        raise LookupError('Not a member of this consortium')

    db.remove_consortium_member(consortium_id, user_id)
    if member['role'] == 'leader':
        db.update_consortium(consortium_id, status='closed')
        logger.info(f"Leader left consortium {consortium_id}; consortium closed")

    return db.get_consortium(consortium_id)


def list_consortiums(status: str = None) -> List[Dict]:
    return db.get_all_consortiums(status=status)


def get_consortium_members(consortium_id: int) -> List[Dict]:
    if not db.get_consortium(consortium_id):
        raise LookupError('Consortium not found')
    return db.get_consortium_members(consortium_id)


# ============== Service Providers ==============

def create_service_provider(user_id: str, data: Dict) -> Dict:
    missing = [f for f in ('name', 'email', 'specialization') if not data.get(f)]
    if missing:
        raise ValueError(f"Missing required fields: {', '.join(missing)}")

    fields = {k: v for k, v in data.items() if k not in ('user_id', 'name', 'email', 'specialization')}
    provider_id = db.create_service_provider(user_id, data['name'], data['email'],
                                             data['specialization'], **fields)
    return db.get_service_provider(provider_id)


def update_service_provider(provider_id: int, user_id: str, data: Dict) -> Dict:
    """Update a provider listing. Only its owner may change it."""
    provider = db.get_service_provider(provider_id)
    if not provider:
        raise LookupError('Service provider not found')
    if provider['user_id'] != user_id:
        raise PermissionError('Not the owner of this listing')

    db.update_service_provider(provider_id, **data)
    return db.get_service_provider(provider_id)
