"""
Authentication and role checks for TenderAlert.
Issues bearer tokens, resolves them to users and guards Flask views by role.
"""

import os
import logging
from functools import wraps
from typing import Optional, Dict

from flask import request, jsonify, g
from werkzeug.security import generate_password_hash, check_password_hash

from . import database as db
from .loyalty import use_referral

logger = logging.getLogger(__name__)

AUTH_CONFIG = {
    'service_role_key': os.environ.get('SERVICE_ROLE_KEY', ''),
    'min_password_length': 8,
}

SERVICE_USER = '__service__'


def signup(email: str, password: str, **profile_fields) -> Dict:
    """Create an account. Returns the profile and a fresh token."""
    if not email or not password:
        raise ValueError('email and password are required')
    if len(password) < AUTH_CONFIG['min_password_length']:
        raise ValueError(f"Password must be at least {AUTH_CONFIG['min_password_length']} characters")
    if db.get_profile_by_email(email):
        raise ValueError('An account with this email already exists')

    referral_code = profile_fields.pop('referral_code', None)

    user_id = db.create_profile(email, **profile_fields)
    db.create_auth_user(user_id, generate_password_hash(password))
    db.add_user_role(user_id, 'user')
    token = db.create_token(user_id)
    logger.info(f"Created account {user_id} for {email}")

    if referral_code:
        try:
            use_referral(user_id, referral_code)
        except ValueError as e:
            logger.warning(f"Referral code ignored for {email}: {e}")

    return {'user': db.get_profile(user_id), 'token': token}


def login(email: str, password: str) -> Optional[str]:
    """Check credentials and return a new token, or None."""
    profile = db.get_profile_by_email(email or '')
    if not profile:
        return None
    password_hash = db.get_password_hash(profile['id'])
    if not password_hash or not check_password_hash(password_hash, password or ''):
        return None
    return db.create_token(profile['id'])


def resolve_token(token: str) -> Optional[str]:
    """Map a bearer token to a user ID, or SERVICE_USER for the service key."""
    if not token:
        return None
    service_key = AUTH_CONFIG['service_role_key']
    if service_key and token == service_key:
        return SERVICE_USER
    return db.get_token_user(token)


def has_role(user_id: str, role: str) -> bool:
    return role in db.get_user_roles(user_id)


def grant_role(user_id: str, role: str) -> int:
    return db.add_user_role(user_id, role)


def _bearer_token() -> Optional[str]:
    header = request.headers.get('Authorization', '')
    if header.lower().startswith('bearer '):
        return header[7:].strip()
    return None


def load_current_user():
    """Populate g.user_id / g.is_service from the Authorization header."""
    user_id = resolve_token(_bearer_token())
    g.is_service = user_id == SERVICE_USER
    g.user_id = None if g.is_service else user_id


def login_required(view):
    """Require a signed-in user."""
    @wraps(view)
    def wrapped(*args, **kwargs):
        load_current_user()
        if not g.user_id:
            return jsonify({'error': 'Unauthorized'}), 401
        return view(*args, **kwargs)
    return wrapped


def admin_required(view):
    """Require a signed-in user holding the admin role."""
    @wraps(view)
    def wrapped(*args, **kwargs):
        load_current_user()
        if not g.user_id:
            return jsonify({'error': 'Unauthorized'}), 401
        if not has_role(g.user_id, 'admin'):
            return jsonify({'error': 'Requires admin role'}), 403
        return view(*args, **kwargs)
    return wrapped


def service_required(view):
    """Require the service key or an admin user."""
    @wraps(view)
    def wrapped(*args, **kwargs):
        load_current_user()
        if g.is_service:
            return view(*args, **kwargs)
        if not g.user_id:
            return jsonify({'error': 'Unauthorized'}), 401
        if not has_role(g.user_id, 'admin'):
            return jsonify({'error': 'Requires service role or admin'}), 403
        return view(*args, **kwargs)
    return wrapped


def caller_may_act_for(user_id: str) -> bool:
    """Service callers and admins may act for anyone; users only for themselves."""
    if g.get('is_service'):
        return True
    if not g.get('user_id'):
        return False
    return g.user_id == user_id or has_role(g.user_id, 'admin')
