"""
TenderAlert Web Application
Flask API for tender discovery, procurement collaboration and bid intelligence.
"""

import logging
import sqlite3
from functools import wraps

import requests
from flask import Flask, request, jsonify, g

from tenderalert import database as db
from tenderalert import collaboration, loyalty, notifications, subscriptions
from tenderalert.analysis import TenderAnalyzer, find_similar_tenders
from tenderalert.auth import (
    signup, login, has_role, load_current_user,
    login_required, admin_required, service_required, caller_may_act_for,
)
from tenderalert.automation import add_tender_from_url, run_automated_scraper, trigger_manual_scrape
from tenderalert.backup import run_backup
from tenderalert.bid_strategy import BidStrategyOptimizer
from tenderalert.historical import HistoricalAwardsScraper, import_historical_data
from tenderalert.matching import SmartMatcher, check_recent_matches
from tenderalert.scraper import TenderScraper
from tenderalert.subscriptions import PaystackError
from tenderalert.win_probability import WinProbabilityEngine

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = Flask(__name__)

CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Headers': 'authorization, x-client-info, apikey, content-type',
}


@app.after_request
def add_cors_headers(response):
    for header, value in CORS_HEADERS.items():
        response.headers[header] = value
    return response


def get_body() -> dict:
    return request.get_json(silent=True) or {}


def get_pagination(data: dict, default_limit: int):
    try:
        limit = int(data.get('limit', default_limit))
        offset = int(data.get('offset', 0))
    except (TypeError, ValueError):
        raise ValueError('limit and offset must be integers')
    return limit, offset


# ============== Edge Function Dispatch ==============

EDGE_FUNCTIONS = {}


def edge_function(name):
    """Register a handler under /functions/<name> and map its errors to JSON."""
    def register(view):
        @wraps(view)
        def wrapped():
            try:
                return view()
            except (ValueError, sqlite3.IntegrityError) as e:
                return jsonify({'error': str(e)}), 400
            except Exception as e:
                logger.error(f"Error in {name}: {e}")
                return jsonify({'error': str(e)}), 500
        EDGE_FUNCTIONS[name] = wrapped
        return wrapped
    return register


@app.route('/functions/<name>', methods=['POST', 'OPTIONS'])
def call_function(name):
    """Invoke an edge function by name."""
    if request.method == 'OPTIONS':
        return 'ok'

    handler = EDGE_FUNCTIONS.get(name)
    if not handler:
        return jsonify({'error': f'Function not found: {name}'}), 404
    return handler()


# ============== Tender Operations ==============

@edge_function('tender-operations')
@login_required
def tender_operations():
    body = get_body()
    operation = body.get('operation')
    data = body.get('data') or {}

    if operation in ('create', 'update', 'delete') and not has_role(g.user_id, 'admin'):
        return jsonify({'error': 'Requires admin role'}), 403

    if operation == 'create':
        if not data.get('title'):
            raise ValueError('title is required')
        fields = {k: v for k, v in data.items() if k != 'title'}
        tender_id = db.create_tender(data['title'], **fields)
        logger.info(f"Tender {tender_id} created by {g.user_id}")
        return jsonify({'data': db.get_tender(tender_id)})

    if operation == 'update':
        tender_id = data.get('id')
        if not db.get_tender(tender_id):
            return jsonify({'error': 'Tender not found'}), 404
        db.update_tender(tender_id, **{k: v for k, v in data.items() if k != 'id'})
        return jsonify({'data': db.get_tender(tender_id)})

    if operation == 'delete':
        db.delete_tender(data.get('id'))
        return jsonify({'success': True})

    if operation == 'list':
        filters = data.get('filters') or {}
        limit, offset = get_pagination(data, 50)
        tenders, total = db.get_all_tenders(
            category=filters.get('category'),
            status=filters.get('status'),
            location=filters.get('location'),
            search=filters.get('search'),
            limit=limit,
            offset=offset,
        )
        return jsonify({'data': tenders, 'count': total})

    return jsonify({'error': 'Invalid operation'}), 400


# ============== Profile Operations ==============

@edge_function('profile-operations')
@login_required
def profile_operations():
    body = get_body()
    operation = body.get('operation')
    data = body.get('data') or {}

    if operation == 'get':
        profile = db.get_profile(g.user_id)
        if not profile:
            return jsonify({'error': 'Profile not found'}), 404
        return jsonify({'data': profile})

    if operation == 'update':
        db.update_profile(g.user_id, **data)
        return jsonify({'data': db.get_profile(g.user_id)})

    if operation == 'update-subscription':
        profile = subscriptions.update_subscription(
            g.user_id, data.get('subscription_type'), data.get('subscription_status'))
        return jsonify({'data': profile})

    if operation == 'add-loyalty-points':
        loyalty.add_points(g.user_id, data.get('points'))
        return jsonify({'data': db.get_profile(g.user_id)})

    return jsonify({'error': 'Invalid operation'}), 400


# ============== RFQ Operations ==============

@edge_function('rfq-operations')
@login_required
def rfq_operations():
    body = get_body()
    operation = body.get('operation')
    data = body.get('data') or {}

    if operation == 'create-rfq':
        if not data.get('title'):
            raise ValueError('title is required')
        rfq_id = db.create_rfq(g.user_id, **{k: v for k, v in data.items() if k != 'user_id'})
        return jsonify({'data': db.get_rfq(rfq_id)})

    if operation == 'update-rfq':
        rfq = db.get_rfq(data.get('id'))
        if not rfq or rfq['user_id'] != g.user_id:
            return jsonify({'error': 'RFQ not found or unauthorized'}), 404
        db.update_rfq(rfq['id'], **{k: v for k, v in data.items() if k != 'id'})
        return jsonify({'data': db.get_rfq(rfq['id'])})

    if operation == 'delete-rfq':
        rfq = db.get_rfq(data.get('id'))
        if not rfq or rfq['user_id'] != g.user_id:
            return jsonify({'error': 'RFQ not found or unauthorized'}), 404
        db.delete_rfq(rfq['id'])
        return jsonify({'success': True})

    if operation == 'submit-quote':
        rfq = db.get_rfq(data.get('rfq_id'))
        if not rfq:
            return jsonify({'error': 'RFQ not found'}), 404
        if rfq['status'] != 'open':
            raise ValueError('RFQ is not open for quotes')
        if data.get('quoted_amount') is None:
            raise ValueError('quoted_amount is required')

        fields = {k: v for k, v in data.items() if k not in ('rfq_id', 'supplier_id', 'quoted_amount')}
        quote_id = db.create_quote(rfq['id'], g.user_id, data['quoted_amount'], **fields)
        db.create_alert(
            rfq['user_id'], 'rfq_quote', 'New Quote Received',
            f"A supplier has submitted a quote for your RFQ: {rfq['title']}",
            {'rfq_id': rfq['id'], 'quote_id': quote_id},
        )
        return jsonify({'data': db.get_quote(quote_id)})

    if operation == 'update-quote':
        quote = db.get_quote(data.get('id'))
        if not quote or quote['supplier_id'] != g.user_id:
            return jsonify({'error': 'Quote not found or unauthorized'}), 404
        updates = {k: v for k, v in data.items() if k not in ('id', 'status')}
        db.update_quote(quote['id'], **updates)
        return jsonify({'data': db.get_quote(quote['id'])})

    if operation == 'accept-quote':
        quote = db.get_quote(data.get('quote_id'))
        rfq = db.get_rfq(data.get('rfq_id') or (quote or {}).get('rfq_id'))
        if not rfq or rfq['user_id'] != g.user_id:
            return jsonify({'error': 'RFQ not found or unauthorized'}), 403
        if not quote or quote['rfq_id'] != rfq['id']:
            return jsonify({'error': 'Quote not found'}), 404

        db.award_quote(rfq['id'], quote['id'])
        db.create_alert(
            quote['supplier_id'], 'quote_accepted', 'Quote Accepted!',
            f"Your quote for RFQ: {rfq['title']} has been accepted!",
            {'rfq_id': rfq['id'], 'quote_id': quote['id']},
        )
        logger.info(f"Quote {quote['id']} accepted for RFQ {rfq['id']}")
        return jsonify({'data': db.get_quote(quote['id'])})

    if operation == 'list-rfqs':
        filters = data.get('filters') or {}
        limit, offset = get_pagination(data, 20)
        rfqs, total = db.get_all_rfqs(
            user_id=g.user_id if filters.get('my_rfqs') else None,
            category=filters.get('category'),
            status=filters.get('status'),
            limit=limit,
            offset=offset,
        )
        return jsonify({'data': rfqs, 'count': total})

    if operation == 'list-quotes':
        rfq = db.get_rfq(data.get('rfq_id'))
        if not rfq:
            return jsonify({'error': 'RFQ not found'}), 404
        supplier = None if rfq['user_id'] == g.user_id else g.user_id
        return jsonify({'data': db.get_rfq_quotes(rfq['id'], supplier_id=supplier)})

    return jsonify({'error': 'Invalid operation'}), 400


# ============== Notifications & Matching ==============

@edge_function('tender-notifications')
@login_required
def tender_notifications():
    body = get_body()
    action = body.get('action')
    user_id = body.get('userId') or g.user_id

    if not caller_may_act_for(user_id):
        return jsonify({'error': 'Forbidden'}), 403

    if action == 'check-matches':
        return jsonify(check_recent_matches(user_id, body.get('preferences')))

    if action == 'get-alerts':
        return jsonify({'success': True, 'alerts': notifications.get_alerts(user_id, limit=20)})

    if action == 'mark-read':
        notifications.mark_read(body.get('alertId'), user_id)
        return jsonify({'success': True})

    return jsonify({'success': False, 'error': 'Invalid action'}), 400


@edge_function('smart-tender-matcher')
def smart_tender_matcher():
    load_current_user()
    if not g.user_id and not g.is_service:
        return jsonify({'error': 'Unauthorized'}), 401

    body = get_body()
    action = body.get('action')
    matcher = SmartMatcher()

    if action == 'match-tenders':
        user_id = body.get('userId')
        if user_id and not caller_may_act_for(user_id):
            return jsonify({'error': 'Forbidden'}), 403
        return jsonify(matcher.match_tenders_for_user(user_id))

    if action == 'run-for-all-users':
        if not (g.is_service or has_role(g.user_id, 'admin')):
            return jsonify({'error': 'Requires service role or admin'}), 403
        return jsonify(matcher.run_for_all_users())

    return jsonify({'success': False,
                    'error': 'Invalid action. Use: match-tenders, run-for-all-users'}), 400


# ============== Analytics ==============

@edge_function('analytics-operations')
@login_required
def analytics_operations():
    body = get_body()
    operation = body.get('operation')
    data = body.get('data') or {}

    if operation == 'track-tender-view':
        db.increment_tender_views(data.get('tender_id'))
        return jsonify({'success': True})

    if operation == 'track-tender-save':
        db.increment_tender_saves(data.get('tender_id'))
        return jsonify({'success': True})

    if operation == 'get-dashboard-stats':
        stats = db.get_dashboard_stats(g.user_id)
        return jsonify({'data': {
            'savedTenders': stats['saved_tenders'],
            'activeTenders': stats['active_tenders'],
            'rfqs': stats['my_rfqs'],
            'consortiums': stats['consortiums'],
            'unreadAlerts': stats['unread_alerts'],
        }})

    if operation == 'get-trending-tenders':
        return jsonify({'data': db.get_trending_tenders(limit=10)})

    return jsonify({'error': 'Invalid operation'}), 400


# ============== Payments & Subscriptions ==============

def paystack_payment():
    """Paystack billing: initialize, verify, webhook and access checks."""
    body = get_body()
    action = body.get('action')

    try:
        if not subscriptions.PAYSTACK_CONFIG['secret_key']:
            raise PaystackError('PAYSTACK_SECRET_KEY not configured')

        if action == 'initialize':
            data = subscriptions.initialize_payment(
                body.get('email'), body.get('plan'), body.get('user_id'), body.get('callback_url'))
            return jsonify({'success': True, 'data': data})

        if action == 'verify':
            result = subscriptions.verify_payment(body.get('reference'))
            if not result['success']:
                return jsonify(result), 400
            return jsonify(result)

        if action == 'webhook':
            return jsonify(subscriptions.handle_webhook(
                body,
                raw_body=request.get_data(),
                signature=request.headers.get('x-paystack-signature'),
            ))

        if action == 'check_access':
            return jsonify({'success': True, 'data': subscriptions.check_access(body.get('user_id'))})

        raise PaystackError(f'Unknown action: {action}')

    except (PaystackError, ValueError, requests.RequestException) as e:
        logger.error(f"Paystack error: {e}")
        return jsonify({'error': str(e)}), 500


EDGE_FUNCTIONS['paystack-payment'] = paystack_payment


@edge_function('check-subscription-expiry')
@service_required
def check_subscription_expiry():
    return jsonify(subscriptions.check_subscription_expiry())


@edge_function('grant-early-user-access')
@service_required
def grant_early_user_access():
    result = subscriptions.grant_early_user_access(get_body().get('user_id'))
    return jsonify(result)


# ============== Scraping & Automation ==============

@edge_function('tender-scraper')
@service_required
def tender_scraper():
    return jsonify(TenderScraper().run(get_body().get('source')))


@edge_function('automated-scraper')
@service_required
def automated_scraper():
    return jsonify(run_automated_scraper(get_body().get('source') or 'all'))


@edge_function('manual-scraper-trigger')
@admin_required
def manual_scraper_trigger():
    body = get_body()
    if body.get('url'):
        result = add_tender_from_url(body['url'], body)
        if not result['success']:
            return jsonify(result), 502
        return jsonify(result)
    return jsonify(trigger_manual_scrape(body.get('source') or 'all'))


@edge_function('import-historical-data')
@service_required
def import_historical_data_function():
    body = get_body()
    return jsonify(import_historical_data(body.get('limit'), body.get('offset') or 0))


@edge_function('historical-awards-scraper')
@service_required
def historical_awards_scraper():
    return jsonify(HistoricalAwardsScraper().run(get_body().get('source') or 'all'))


@edge_function('backup-manager')
@service_required
def backup_manager():
    return jsonify(run_backup(get_body().get('backupType') or 'all'))


# ============== Bid Intelligence ==============

@edge_function('bid-strategy-optimizer')
@login_required
def bid_strategy_optimizer():
    body = get_body()
    strategy = BidStrategyOptimizer().optimize(
        body.get('tenderId'),
        company_capabilities=body.get('companyCapabilities') or [],
        historical_win_rate=body.get('historicalWinRate', 70),
        target_profit_margin=body.get('targetProfitMargin', 15),
    )
    return jsonify(strategy)


@edge_function('ai-tender-analysis')
@login_required
def ai_tender_analysis():
    body = get_body()
    analysis = TenderAnalyzer().analyze(body.get('tenderId'), bool(body.get('forceRegenerate', False)))
    return jsonify(analysis)


@edge_function('tender-similarity-analysis')
@login_required
def tender_similarity_analysis():
    body = get_body()
    return jsonify(find_similar_tenders(body.get('tenderId'), limit=int(body.get('limit', 10))))


@edge_function('win-probability-engine')
@login_required
def win_probability_engine():
    body = get_body()
    result = WinProbabilityEngine().calculate(
        body.get('tender_id'),
        category=body.get('category'),
        location=body.get('location'),
        budget_estimate=body.get('budget_estimate'),
    )
    return jsonify({'success': True, 'data': result})


# ============== Auth Routes ==============

@app.route('/auth/signup', methods=['POST'])
def auth_signup():
    """Create an account and return a token."""
    data = get_body()
    email = data.pop('email', None)
    password = data.pop('password', None)
    try:
        result = signup(email, password, **data)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    return jsonify(result), 201


@app.route('/auth/login', methods=['POST'])
def auth_login():
    data = get_body()
    token = login(data.get('email'), data.get('password'))
    if not token:
        return jsonify({'error': 'Invalid email or password'}), 401
    return jsonify({'token': token, 'user': db.get_profile_by_email(data['email'])})


@app.route('/auth/me')
@login_required
def auth_me():
    profile = db.get_profile(g.user_id)
    return jsonify({'user': profile, 'roles': db.get_user_roles(g.user_id)})


# ============== Tender Routes ==============

@app.route('/api/tenders')
def api_tenders():
    """List tenders with filters."""
    try:
        limit, offset = get_pagination(request.args, 50)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    tenders, total = db.get_all_tenders(
        category=request.args.get('category'),
        status=request.args.get('status'),
        location=request.args.get('location'),
        search=request.args.get('search'),
        limit=limit,
        offset=offset,
    )
    return jsonify({'data': tenders, 'count': total})


@app.route('/api/tenders/<int:tender_id>')
def api_tender(tender_id):
    """Get a single tender and record the view."""
    tender = db.get_tender(tender_id)
    if not tender:
        return jsonify({'error': 'Not found'}), 404
    db.increment_tender_views(tender_id)
    return jsonify(tender)


@app.route('/api/categories')
def api_categories():
    return jsonify(db.get_all_categories())


# ============== Saved Tender Routes ==============

@app.route('/api/saved-tenders', methods=['GET'])
@login_required
def api_saved_tenders():
    return jsonify(db.get_saved_tenders(g.user_id))


@app.route('/api/saved-tenders', methods=['POST'])
@login_required
def api_save_tender():
    """Bookmark a tender."""
    tender_id = get_body().get('tender_id')
    if not db.get_tender(tender_id):
        return jsonify({'error': 'Tender not found'}), 404
    try:
        saved_id = db.save_tender(g.user_id, tender_id)
    except sqlite3.IntegrityError as e:
        return jsonify({'error': str(e)}), 400
    db.increment_tender_saves(tender_id)
    return jsonify({'id': saved_id, 'tender_id': tender_id}), 201


@app.route('/api/saved-tenders/<int:tender_id>', methods=['DELETE'])
@login_required
def api_unsave_tender(tender_id):
    if not db.unsave_tender(g.user_id, tender_id):
        return jsonify({'error': 'Not found'}), 404
    return jsonify({'success': True})


@app.route('/api/saved-tenders/<int:tender_id>/check')
@login_required
def api_check_saved(tender_id):
    return jsonify({'saved': db.is_tender_saved(g.user_id, tender_id)})


# ============== Consortium Routes ==============

@app.route('/api/consortiums', methods=['GET'])
def api_consortiums():
    return jsonify(collaboration.list_consortiums(status=request.args.get('status')))


@app.route('/api/consortiums', methods=['POST'])
@login_required
def api_create_consortium():
    """Create a consortium led by the caller."""
    try:
        consortium = collaboration.create_consortium(g.user_id, get_body())
    except (ValueError, sqlite3.IntegrityError) as e:
        return jsonify({'error': str(e)}), 400
    return jsonify(consortium), 201


@app.route('/api/consortiums/<int:consortium_id>')
def api_consortium(consortium_id):
    consortium = db.get_consortium(consortium_id)
    if not consortium:
        return jsonify({'error': 'Not found'}), 404
    return jsonify(consortium)


@app.route('/api/consortiums/<int:consortium_id>/join', methods=['POST'])
@login_required
def api_join_consortium(consortium_id):
    data = get_body()
    try:
        consortium = collaboration.join_consortium(
            consortium_id, g.user_id, data.get('expertise'), data.get('contribution'))
    except LookupError as e:
        return jsonify({'error': str(e)}), 404
    except (ValueError, sqlite3.IntegrityError) as e:
        return jsonify({'error': str(e)}), 400
    return jsonify(consortium)


@app.route('/api/consortiums/<int:consortium_id>/leave', methods=['POST'])
@login_required
def api_leave_consortium(consortium_id):
    try:
        consortium = collaboration.leave_consortium(consortium_id, g.user_id)
    except LookupError as e:
        return jsonify({'error': str(e)}), 404
    return jsonify(consortium)


@app.route('/api/consortiums/<int:consortium_id>/members')
def api_consortium_members(consortium_id):
    try:
        members = collaboration.get_consortium_members(consortium_id)
    except LookupError as e:
        return jsonify({'error': str(e)}), 404
    return jsonify(members)


# ============== Service Provider Routes ==============

@app.route('/api/service-providers', methods=['GET'])
def api_service_providers():
    """List providers with filters."""
    providers = db.get_all_service_providers(
        specialization=request.args.get('specialization'),
        availability=request.args.get('availability'),
        search=request.args.get('search'),
    )
    return jsonify(providers)


@app.route('/api/service-providers', methods=['POST'])
@login_required
def api_create_service_provider():
    try:
        provider = collaboration.create_service_provider(g.user_id, get_body())
    except (ValueError, sqlite3.IntegrityError) as e:
        return jsonify({'error': str(e)}), 400
    return jsonify(provider), 201


@app.route('/api/service-providers/<int:provider_id>', methods=['GET'])
def api_service_provider(provider_id):
    provider = db.get_service_provider(provider_id)
    if not provider:
        return jsonify({'error': 'Not found'}), 404
    return jsonify(provider)


@app.route('/api/service-providers/<int:provider_id>', methods=['PUT'])
@login_required
def api_update_service_provider(provider_id):
    try:
        provider = collaboration.update_service_provider(provider_id, g.user_id, get_body())
    except LookupError as e:
        return jsonify({'error': str(e)}), 404
    except PermissionError as e:
        return jsonify({'error': str(e)}), 403
    except sqlite3.IntegrityError as e:
        return jsonify({'error': str(e)}), 400
    return jsonify(provider)


# ============== Notification Routes ==============

@app.route('/api/notifications')
@login_required
def api_notifications():
    unread_only = request.args.get('unread') == 'true'
    return jsonify(notifications.get_alerts(g.user_id, unread_only=unread_only))


@app.route('/api/notifications/<int:alert_id>/read', methods=['POST'])
@login_required
def api_mark_notification_read(alert_id):
    if not notifications.mark_read(alert_id, g.user_id):
        return jsonify({'error': 'Not found'}), 404
    return jsonify({'success': True})


@app.route('/api/notifications/read-all', methods=['POST'])
@login_required
def api_mark_all_read():
    return jsonify({'success': True, 'updated': notifications.mark_all_read(g.user_id)})


@app.route('/api/notifications/unread-count')
@login_required
def api_unread_count():
    return jsonify({'count': notifications.unread_count(g.user_id)})


# ============== Preference & Loyalty Routes ==============

@app.route('/api/preferences', methods=['GET'])
@login_required
def api_get_preferences():
    return jsonify(db.get_user_preferences(g.user_id) or {})


@app.route('/api/preferences', methods=['PUT'])
@login_required
def api_update_preferences():
    try:
        data = {k: v for k, v in get_body().items() if k != 'user_id'}
        preferences = db.upsert_user_preferences(g.user_id, **data)
    except sqlite3.IntegrityError as e:
        return jsonify({'error': str(e)}), 400
    return jsonify(preferences)


@app.route('/api/user/loyalty')
@login_required
def api_loyalty():
    return jsonify(loyalty.get_loyalty_summary(g.user_id))


@app.route('/api/referral/use', methods=['POST'])
@login_required
def api_use_referral():
    try:
        result = loyalty.use_referral(g.user_id, get_body().get('referral_code'))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    return jsonify(result)


@app.route('/api/social/follow-twitter', methods=['POST'])
@login_required
def api_follow_twitter():
    try:
        result = loyalty.follow_twitter(g.user_id)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    return jsonify(result)


# ============== Analysis & Admin Routes ==============

@app.route('/api/ai-analysis/<int:tender_id>')
@login_required
def api_ai_analysis(tender_id):
    """Get the cached analysis of a tender, computing it on first request."""
    try:
        analysis = TenderAnalyzer().analyze(tender_id)
    except LookupError as e:
        return jsonify({'error': str(e)}), 404
    return jsonify(analysis)


@app.route('/api/automation/logs')
@admin_required
def api_automation_logs():
    logs = db.get_automation_logs(
        function_name=request.args.get('function'),
        limit=request.args.get('limit', 50, type=int),
    )
    return jsonify(logs)


@app.route('/api/dashboard')
@login_required
def api_dashboard():
    return jsonify(db.get_dashboard_stats(g.user_id))


# ============== Initialize ==============

def init_app():
    """Initialize the application."""
    db.init_database()
    db.seed_categories()
    logger.info("Application initialized")


if __name__ == '__main__':
    init_app()
    app.run(debug=True, port=5003)
