"""
Subscription billing for TenderAlert.
Talks to the Paystack REST API for payments and manages the subscription
lifecycle: activation, access checks, expiry sweeps and the early-user program.
"""

import os
import hmac
import hashlib
import logging
import requests
from datetime import timedelta
from typing import Dict, Optional

from . import database as db
from .dates import utc_now, to_str, add_months, parse_datetime, today_str

logger = logging.getLogger(__name__)

PAYSTACK_CONFIG = {
    'secret_key': os.environ.get('PAYSTACK_SECRET_KEY', ''),
    'base_url': os.environ.get('PAYSTACK_BASE_URL', 'https://api.paystack.co'),
    'callback_url': os.environ.get('PAYSTACK_CALLBACK_URL', 'http://localhost:5003/subscription/callback'),
    'currency': 'KES',
    'timeout': 30,
}

# Amounts are in kobo (1/100 KES)
PLANS = {
    'pro': {
        'name': 'Pro',
        'amount': 260000,
        'interval': 'monthly',
        'features': ['unlimited_alerts', 'ai_analysis', 'save_unlimited', 'consortium', 'rfq_3'],
    },
    'business': {
        'name': 'Business',
        'amount': 650000,
        'interval': 'monthly',
        'features': ['all_pro', 'unlimited_rfq', 'marketplace', 'api_access', 'white_label'],
    },
    'pro_annual': {
        'name': 'Pro Annual',
        'amount': 2496000,
        'interval': 'annually',
        'features': ['unlimited_alerts', 'ai_analysis', 'save_unlimited', 'consortium', 'rfq_3'],
    },
    'business_annual': {
        'name': 'Business Annual',
        'amount': 6240000,
        'interval': 'annually',
        'features': ['all_pro', 'unlimited_rfq', 'marketplace', 'api_access', 'white_label'],
    },
}

EARLY_USER_CONFIG = {
    'limit': 100,
    'free_months': 12,
}

EXPIRY_CONFIG = {
    'reminder_days': 7,
    'urgent_days': 3,
}


class PaystackError(Exception):
    """Raised when Paystack rejects a request or is not configured."""


class PaystackClient:
    """Minimal client for the Paystack transaction API."""

    def __init__(self, secret_key: str = None, base_url: str = None):
        self.secret_key = secret_key if secret_key is not None else PAYSTACK_CONFIG['secret_key']
        self.base_url = (base_url or PAYSTACK_CONFIG['base_url']).rstrip('/')
        if not self.secret_key:
            raise PaystackError('PAYSTACK_SECRET_KEY not configured')

    def _headers(self) -> Dict:
        return {
            'Authorization': f'Bearer {self.secret_key}',
            'Content-Type': 'application/json',
        }

    def initialize_transaction(self, email: str, amount: int, callback_url: str, metadata: Dict) -> Dict:
        response = requests.post(
            f'{self.base_url}/transaction/initialize',
            json={
                'email': email,
                'amount': amount,
                'currency': PAYSTACK_CONFIG['currency'],
                'callback_url': callback_url,
                'metadata': metadata,
            },
            headers=self._headers(),
            timeout=PAYSTACK_CONFIG['timeout'],
        )
        data = response.json()
        if not data.get('status'):
            raise PaystackError(data.get('message') or 'Failed to initialize payment')
        return data['data']

    def verify_transaction(self, reference: str) -> Dict:
        response = requests.get(
            f'{self.base_url}/transaction/verify/{reference}',
            headers=self._headers(),
            timeout=PAYSTACK_CONFIG['timeout'],
        )
        data = response.json()
        if not data.get('status'):
            raise PaystackError(data.get('message') or 'Verification failed')
        return data['data']

    def verify_signature(self, raw_body: bytes, signature: str) -> bool:
        """Check the x-paystack-signature header (HMAC-SHA512 of the raw body)."""
        expected = hmac.new(self.secret_key.encode('utf-8'), raw_body, hashlib.sha512).hexdigest()
        return hmac.compare_digest(expected, signature or '')


def subscription_type_for_plan(plan: str) -> str:
    return 'business' if 'business' in plan else 'pro'


def activate_subscription(user_id: str, plan: str) -> Dict:
    """Activate a paid plan on a profile. Annual plans run 12 months, others 1."""
    now = utc_now()
    end = add_months(now, 12 if 'annual' in plan else 1)
    subscription_type = subscription_type_for_plan(plan)

    db.update_subscription(
        user_id,
        subscription_type=subscription_type,
        subscription_status='active',
        subscription_start_date=to_str(now),
        subscription_end_date=to_str(end),
    )
    logger.info(f"Activated {subscription_type} subscription for {user_id} until {to_str(end)}")
    return {'subscription_type': subscription_type, 'end_date': to_str(end)}


def initialize_payment(email: str, plan: str, user_id: str, callback_url: str = None,
                       client: PaystackClient = None) -> Dict:
    client = client or PaystackClient()
    if not email or not plan or not user_id:
        raise ValueError('email, plan, and user_id are required')

    plan_details = PLANS.get(plan)
    if not plan_details:
        raise ValueError('Invalid plan')

    data = client.initialize_transaction(
        email=email,
        amount=plan_details['amount'],
        callback_url=callback_url or PAYSTACK_CONFIG['callback_url'],
        metadata={
            'user_id': user_id,
            'plan': plan,
            'plan_name': plan_details['name'],
            'custom_fields': [
                {'display_name': 'Plan', 'variable_name': 'plan', 'value': plan_details['name']},
            ],
        },
    )
    return {
        'authorization_url': data.get('authorization_url'),
        'access_code': data.get('access_code'),
        'reference': data.get('reference'),
    }


def verify_payment(reference: str, client: PaystackClient = None) -> Dict:
    """Verify a transaction and activate the subscription it paid for.

    Returns a dict with 'success'. Non-successful payments come back with
    success False and an 'error' such as 'Payment abandoned'.
    """
    client = client or PaystackClient()
    if not reference:
        raise ValueError('reference is required')

    transaction = client.verify_transaction(reference)
    if transaction.get('status') != 'success':
        return {'success': False, 'error': f"Payment {transaction.get('status')}"}

    metadata = transaction.get('metadata') or {}
    plan = metadata.get('plan') or 'pro'
    user_id = metadata.get('user_id')

    if user_id:
        activation = activate_subscription(user_id, plan)
        db.log_automation('paystack-payment', 'completed', {
            'action': 'subscription_activated',
            'user_id': user_id,
            'plan': activation['subscription_type'],
            'amount': transaction.get('amount'),
            'reference': reference,
        })

    return {
        'success': True,
        'data': {
            'status': 'success',
            'plan': metadata.get('plan'),
            'amount': (transaction.get('amount') or 0) / 100,
            'currency': transaction.get('currency'),
            'message': 'Subscription activated successfully!',
        },
    }


def handle_webhook(event: Dict, raw_body: bytes = None, signature: str = None,
                   client: PaystackClient = None) -> Dict:
    """Process a Paystack webhook event. Unsigned or forged events are rejected."""
    client = client or PaystackClient()
    if not signature or raw_body is None or not client.verify_signature(raw_body, signature):
        raise PaystackError('Invalid webhook signature')

    if event.get('event') == 'charge.success':
        metadata = (event.get('data') or {}).get('metadata') or {}
        user_id = metadata.get('user_id')
        plan = metadata.get('plan')
        if user_id and plan:
            activate_subscription(user_id, plan)

    return {'received': True}


def has_active_access(profile: Dict) -> bool:
    if profile.get('subscription_status') != 'active':
        return False
    if profile.get('subscription_type') not in ('pro', 'business'):
        return False
    end = parse_datetime(profile.get('subscription_end_date'))
    return end is None or end > utc_now()


def check_access(user_id: str) -> Dict:
    if not user_id:
        raise ValueError('user_id is required')

    profile = db.get_profile(user_id)
    if not profile:
        return {'has_access': False, 'reason': 'no_profile'}

    return {
        'has_access': has_active_access(profile),
        'subscription_type': profile.get('subscription_type'),
        'subscription_status': profile.get('subscription_status'),
        'expires': profile.get('subscription_end_date'),
    }


def update_subscription(user_id: str, subscription_type: str, subscription_status: str) -> Optional[Dict]:
    """Set plan and status directly. An active status starts a one-month period."""
    fields = {
        'subscription_type': subscription_type,
        'subscription_status': subscription_status,
    }
    if subscription_status == 'active':
        now = utc_now()
        fields['subscription_start_date'] = to_str(now)
        fields['subscription_end_date'] = to_str(add_months(now, 1))

    if not db.update_subscription(user_id, **fields):
        return None
    return db.get_profile(user_id)


def check_subscription_expiry() -> Dict:
    """Expire lapsed subscriptions and remind users whose plan ends soon."""
    now = utc_now()
    today = today_str()
    seven_days = (now + timedelta(days=EXPIRY_CONFIG['reminder_days'])).date().isoformat()
    three_days = (now + timedelta(days=EXPIRY_CONFIG['urgent_days'])).date().isoformat()
    # End-of-day bounds so timestamps on the last day are included
    seven_days_str = f"{seven_days} 23:59:59"
    three_days_str = f"{three_days} 23:59:59"

    expired = db.get_active_subscriptions(end_before=today)
    for profile in expired:
        db.update_subscription(profile['id'], subscription_status='expired', subscription_type='free')
        db.create_alert(
            profile['id'], 'subscription_expired', 'Subscription Expired',
            f"Your {profile['subscription_type']} subscription has expired. "
            f"Renew now to continue accessing premium features.",
            {'subscription_type': profile['subscription_type']},
        )
        logger.info(f"Expired subscription for {profile['id']}")

    expiring = db.get_active_subscriptions(end_from=today, end_to=seven_days_str)
    for profile in expiring:
        if db.alert_exists_since(profile['id'], 'subscription_expiring', today):
            continue

        end = parse_datetime(profile['subscription_end_date'])
        days_remaining = max(0, (end.date() - now.date()).days)
        plural = '' if days_remaining == 1 else 's'
        db.create_alert(
            profile['id'], 'subscription_expiring', 'Subscription Expiring Soon',
            f"Your {profile['subscription_type']} subscription expires in {days_remaining} day{plural}. "
            f"Renew now to avoid service interruption.",
            {
                'subscription_type': profile['subscription_type'],
                'days_remaining': days_remaining,
                'expiry_date': profile['subscription_end_date'],
            },
        )

    expiring_urgent = db.get_active_subscriptions(end_from=today, end_to=three_days_str)

    db.log_automation('check-subscription-expiry', 'completed', {
        'expired_count': len(expired),
        'expiring_7_days': len(expiring),
        'expiring_3_days': len(expiring_urgent),
        'checked_at': today,
    })
    logger.info(f"Subscription check: {len(expired)} expired, {len(expiring)} expiring soon")

    return {
        'success': True,
        'message': 'Subscription check completed',
        'stats': {'expired': len(expired), 'expiring_soon': len(expiring)},
    }


def grant_early_user_access(user_id: str) -> Dict:
    """Give one of the first users a free year of Pro."""
    if not user_id:
        raise ValueError('user_id is required')

    profile = db.get_profile(user_id)
    if not profile:
        raise ValueError('Profile not found')

    limit = EARLY_USER_CONFIG['limit']
    current_count = db.count_early_users()
    logger.info(f"Current early user count: {current_count}/{limit}")

    if profile.get('is_early_user'):
        return {
            'success': True,
            'message': 'User already has early user access',
            'is_early_user': True,
            'early_user_count': current_count,
            'spots_remaining': limit - current_count,
        }

    if current_count >= limit:
        return {
            'success': False,
            'message': f'Early user program is full. All {limit} spots have been claimed.',
            'is_early_user': False,
            'early_user_count': current_count,
            'spots_remaining': 0,
        }

    now = utc_now()
    end = to_str(add_months(now, EARLY_USER_CONFIG['free_months']))
    db.update_subscription(
        user_id,
        is_early_user=True,
        subscription_type='pro',
        subscription_status='active',
        subscription_start_date=to_str(now),
        subscription_end_date=end,
    )

    db.create_alert(
        user_id, 'early_user_welcome', '🎉 Welcome, Early Adopter!',
        f"Congratulations! You're one of our first {limit} users and have been granted FREE Pro access "
        f"for 1 year! Enjoy all premium features including AI analysis, smart matching, and unlimited "
        f"tender saves.",
        {'early_user_number': current_count + 1, 'free_until': end},
    )

    return {
        'success': True,
        'message': 'Early user access granted!',
        'is_early_user': True,
        'early_user_number': current_count + 1,
        'spots_remaining': limit - current_count - 1,
        'free_until': end,
        'subscription': {'type': 'pro', 'status': 'active', 'end_date': end},
    }
