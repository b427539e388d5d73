"""
Loyalty points and referrals.
"""

import logging
from typing import Dict

from . import database as db

logger = logging.getLogger(__name__)

LOYALTY_CONFIG = {
    'referrer_bonus': 100,
    'referee_bonus': 50,
    'twitter_follow_bonus': 50,
    'points_per_step': 100,  # every 100 points...
    'percent_per_step': 5,   # ...earns 5% off
    'max_discount': 50,
}


def discount_percent(points: int) -> int:
    """Subscription discount earned from loyalty points."""
    steps = max(0, points or 0) // LOYALTY_CONFIG['points_per_step']
    return min(LOYALTY_CONFIG['max_discount'], steps * LOYALTY_CONFIG['percent_per_step'])


def add_points(user_id: str, points: int) -> int:
    """Add loyalty points. Raises ValueError for bad input or unknown user."""
    try:
        points = int(points)
    except (TypeError, ValueError):
        raise ValueError('points must be an integer')
    if points <= 0:
        raise ValueError('points must be positive')

    balance = db.add_loyalty_points(user_id, points)
    if balance is None:
        raise ValueError('Profile not found')
    return balance


def use_referral(user_id: str, code: str) -> Dict:
    """Apply a referral code: the referrer and the new user both earn points."""
    profile = db.get_profile(user_id)
    if not profile:
        raise ValueError('Profile not found')
    if profile.get('referred_by'):
        raise ValueError('Referral code already used')

    referrer = db.get_profile_by_referral_code((code or '').strip().upper())
    if not referrer:
        raise ValueError('Invalid referral code')
    if referrer['id'] == user_id:
        raise ValueError('Cannot use your own referral code')

    db.update_loyalty(user_id, referred_by=referrer['id'])
    db.update_loyalty(referrer['id'], total_referrals=(referrer.get('total_referrals') or 0) + 1)
    db.add_loyalty_points(referrer['id'], LOYALTY_CONFIG['referrer_bonus'])
    balance = db.add_loyalty_points(user_id, LOYALTY_CONFIG['referee_bonus'])

    db.create_alert(
        referrer['id'], 'referral_reward', 'Referral Bonus Earned',
        f"Someone joined with your referral code. You earned {LOYALTY_CONFIG['referrer_bonus']} points!",
        {'points': LOYALTY_CONFIG['referrer_bonus']},
    )
    logger.info(f"Referral applied: {user_id} referred by {referrer['id']}")

    return {'points_earned': LOYALTY_CONFIG['referee_bonus'], 'loyalty_points': balance}


def follow_twitter(user_id: str) -> Dict:
    """One-time bonus for following the project on Twitter."""
    profile = db.get_profile(user_id)
    if not profile:
        raise ValueError('Profile not found')
    if profile.get('twitter_followed'):
        raise ValueError('Twitter follow bonus already claimed')

    db.update_loyalty(user_id, twitter_followed=True)
    balance = db.add_loyalty_points(user_id, LOYALTY_CONFIG['twitter_follow_bonus'])
    return {'points_earned': LOYALTY_CONFIG['twitter_follow_bonus'], 'loyalty_points': balance}


def get_loyalty_summary(user_id: str) -> Dict:
    profile = db.get_profile(user_id)
    if not profile:
        raise ValueError('Profile not found')

    points = profile.get('loyalty_points') or 0
    return {
        'loyalty_points': points,
        'referral_code': profile.get('referral_code'),
        'total_referrals': profile.get('total_referrals') or 0,
        'twitter_followed': bool(profile.get('twitter_followed')),
        'discount_percent': discount_percent(points),
    }
