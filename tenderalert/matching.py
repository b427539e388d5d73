"""
Smart Tender Matcher for TenderAlert.
Scores open tenders against each user's stated and inferred preferences and
raises in-app alerts for the strongest matches.
"""

import math
import logging
from typing import Dict, Optional, Tuple

from . import database as db
from .dates import utc_now, today_str, days_until, parse_datetime
from .notifications import NotificationService, notify_tender_match

logger = logging.getLogger(__name__)


class SmartMatcher:
    """Rule-based matcher between user preferences and tenders."""

    # Points awarded per matching factor
    POINTS = {
        'sector': 30,
        'location': 25,
        'budget_in_range': 20,
        'budget_close': 10,
        'keyword': 15,
        'urgent': 15,
        'soon': 10,
        'same_organization': 10,
        'posted_today': 10,
        'recently_posted': 5,
    }

    LEVEL_THRESHOLDS = [
        (80, 'High Chance'),
        (55, 'Good Fit'),
        (35, 'Moderate'),
        (0, 'Low Fit'),
    ]

    MIN_MATCH_SCORE = 25
    MIN_ALERT_SCORE = 40
    MAX_KEYWORD_HITS = 2
    BUDGET_TOLERANCE = 0.3
    SAVED_TENDER_LIMIT = 50
    CANDIDATE_LIMIT = 100
    ALERT_LIMIT = 10
    RESPONSE_LIMIT = 20

    def __init__(self, notifier: NotificationService = None):
        self.notifier = notifier

    def build_preferences(self, user_id: str) -> Dict:
        """Merge stored preferences with what the user's saved tenders imply."""
        stored = db.get_user_preferences(user_id) or {}
        saved = db.get_saved_tenders(user_id, limit=self.SAVED_TENDER_LIMIT)

        categories = list(dict.fromkeys(stored.get('sectors') or []))
        locations = list(dict.fromkeys(stored.get('counties') or []))
        keywords = list(dict.fromkeys(k.lower() for k in (stored.get('keywords') or [])))

        for tender in saved:
            if tender.get('category') and tender['category'] not in categories:
                categories.append(tender['category'])
            if tender.get('location') and tender['location'] not in locations:
                locations.append(tender['location'])
            for word in (tender.get('title') or '').lower().split():
                if len(word) > 5 and word not in keywords:
                    keywords.append(word)

        return {
            'categories': categories,
            'locations': locations,
            'keywords': keywords,
            'budget_min': stored.get('budget_min'),
            'budget_max': stored.get('budget_max'),
            'saved_organizations': {t['organization'] for t in saved if t.get('organization')},
            'notification_email': stored.get('notification_email', True),
        }

    def get_match_level(self, score: int) -> str:
        for threshold, level in self.LEVEL_THRESHOLDS:
            if score >= threshold:
                return level
        return 'Low Fit'

    def score_budget(self, budget: float, preferences: Dict) -> Tuple[int, Optional[str]]:
        if not budget or budget <= 0:
            return 0, None

        budget_min = preferences.get('budget_min') or 0
        budget_max = preferences.get('budget_max') or math.inf

        if budget_min <= budget <= budget_max:
            return self.POINTS['budget_in_range'], f"Budget: KES {budget / 1000000:.1f}M (within range)"

        if budget < budget_min:
            distance = (budget_min - budget) / budget_min
        else:
            distance = (budget - budget_max) / budget_max
        if distance < self.BUDGET_TOLERANCE:
            return self.POINTS['budget_close'], 'Budget close to preferences'
        return 0, None

    def score_tender(self, tender: Dict, preferences: Dict, now=None) -> Dict:
        """Score one tender. Returns score, level and the reasons behind it."""
        now = now or utc_now()
        score = 0
        reasons = []

        if tender.get('category') in preferences['categories']:
            score += self.POINTS['sector']
            reasons.append(f"Sector match: {tender['category']}")

        if tender.get('location') in preferences['locations']:
            score += self.POINTS['location']
            reasons.append(f"Location: {tender['location']}")

        points, reason = self.score_budget(tender.get('budget_estimate'), preferences)
        if points:
            score += points
            reasons.append(reason)

        text = f"{tender.get('title') or ''} {tender.get('description') or ''} " \
               f"{tender.get('organization') or ''}".lower()
        hits = 0
        for keyword in preferences['keywords']:
            if hits >= self.MAX_KEYWORD_HITS:
                break
            if keyword in text:
                score += self.POINTS['keyword']
                hits += 1
                if hits == 1:
                    reasons.append(f'Keyword match: "{keyword}"')

        remaining = days_until(tender.get('deadline'), now)
        if remaining is not None:
            days_left = math.ceil(remaining)
            if 0 < days_left <= 7:
                score += self.POINTS['urgent']
                reasons.append(f"🔥 Urgent: {days_left} days left")
            elif days_left <= 14:
                score += self.POINTS['soon']
                reasons.append(f"⏰ {days_left} days remaining")

        if tender.get('organization') and tender['organization'] in preferences['saved_organizations']:
            score += self.POINTS['same_organization']
            reasons.append(f"Previously interested in {tender['organization']}")

        created = parse_datetime(tender.get('created_at'))
        if created:
            hours_old = (now - created).total_seconds() / 3600
            if hours_old <= 24:
                score += self.POINTS['posted_today']
                reasons.append("🆕 Posted today")
            elif hours_old <= 72:
                score += self.POINTS['recently_posted']
                reasons.append('Recently posted')

        return {'score': score, 'level': self.get_match_level(score), 'reasons': reasons}

    def match_tenders_for_user(self, user_id: str) -> Dict:
        """Score all open tenders for a user and alert on the best new matches."""
        if not user_id:
            raise ValueError('userId is required')

        preferences = self.build_preferences(user_id)
        logger.info(f"User preferences: {len(preferences['categories'])} categories, "
                    f"{len(preferences['locations'])} locations, {len(preferences['keywords'])} keywords")

        tenders = db.get_open_tenders(today_str(), limit=self.CANDIDATE_LIMIT)
        now = utc_now()

        matches = []
        for tender in tenders:
            result = self.score_tender(tender, preferences, now)
            if result['score'] >= self.MIN_MATCH_SCORE:
                matches.append(dict(result, tender=tender))

        matches.sort(key=lambda m: m['score'], reverse=True)
        logger.info(f"Found {len(matches)} matching tenders for user {user_id}")

        alerts_created = 0
        for match in matches[:self.ALERT_LIMIT]:
            if match['score'] < self.MIN_ALERT_SCORE:
                continue
            tender = match['tender']
            alert_id = notify_tender_match(
                user_id, tender,
                title=f"{match['level']}: {tender['title'][:60]}...",
                message=' • '.join(match['reasons'][:3]),
                data={
                    'match_score': match['score'],
                    'match_level': match['level'],
                    'match_reasons': match['reasons'],
                    'tender_deadline': tender.get('deadline'),
                    'tender_budget': tender.get('budget_estimate'),
                },
            )
            if alert_id:
                alerts_created += 1

        top_matches = [self._summarize(m) for m in matches[:self.RESPONSE_LIMIT]]

        if alerts_created and self.notifier and preferences['notification_email']:
            profile = db.get_profile(user_id)
            if profile:
                self.notifier.send_match_digest(profile['email'], top_matches)

        return {
            'success': True,
            'totalTenders': len(tenders),
            'matchesFound': len(matches),
            'alertsCreated': alerts_created,
            'preferences': {
                'categories': preferences['categories'],
                'locations': preferences['locations'],
                'keywordCount': len(preferences['keywords']),
            },
            'topMatches': top_matches,
        }

    def _summarize(self, match: Dict) -> Dict:
        tender = match['tender']
        return {
            'id': tender['id'],
            'title': tender['title'],
            'organization': tender.get('organization'),
            'category': tender.get('category'),
            'location': tender.get('location'),
            'deadline': tender.get('deadline'),
            'budget': tender.get('budget_estimate'),
            'score': match['score'],
            'level': match['level'],
            'reasons': match['reasons'],
            'source_url': tender.get('source_url'),
        }

    def run_for_all_users(self) -> Dict:
        """Match tenders for every user who has notifications switched on."""
        users_processed = 0
        total_alerts = 0

        for user_id in db.get_notifiable_user_ids():
            try:
                result = self.match_tenders_for_user(user_id)
            except Exception as e:
                logger.error(f"Error processing user {user_id}: {e}")
                continue
            if result['alertsCreated']:
                total_alerts += result['alertsCreated']
                users_processed += 1

        logger.info(f"Smart matching run: {users_processed} users alerted, {total_alerts} alerts")
        return {
            'success': True,
            'usersProcessed': users_processed,
            'totalAlertsCreated': total_alerts,
        }


# ============== Recent Match Check ==============

RECENT_MATCH_POINTS = {
    'category': 30,
    'location': 25,
    'budget': 20,
    'keyword': 15,
    'urgent': 10,
}


def check_recent_matches(user_id: str, preferences: Dict = None) -> Dict:
    """Alert a user about tenders posted in the last day that fit their interests."""
    if not user_id:
        raise ValueError('userId is required')
    preferences = preferences or {}

    saved = db.get_saved_tenders(user_id, limit=20)
    categories = {t['category'] for t in saved if t.get('category')}
    locations = {t['location'] for t in saved if t.get('location')}

    budget_min = preferences.get('budgetMin')
    budget_max = preferences.get('budgetMax')
    keywords = preferences.get('keywords') or []

    now = utc_now()
    matches = []
    for tender in db.get_tenders_created_since(db.get_recent_timestamp(24)):
        score = 0
        reasons = []

        if tender.get('category') in categories:
            score += RECENT_MATCH_POINTS['category']
            reasons.append(f"Matches your interest in {tender['category']}")

        if tender.get('location') in locations:
            score += RECENT_MATCH_POINTS['location']
            reasons.append(f"Located in {tender['location']}")

        if budget_min and budget_max:
            budget = tender.get('budget_estimate') or 0
            if budget_min <= budget <= budget_max:
                score += RECENT_MATCH_POINTS['budget']
                reasons.append('Within your budget range')

        text = f"{tender.get('title') or ''} {tender.get('description') or ''}".lower()
        for keyword in keywords:
            if keyword.lower() in text:
                score += RECENT_MATCH_POINTS['keyword']
                reasons.append(f"Contains keyword: {keyword}")
                break

        remaining = days_until(tender.get('deadline'), now)
        if remaining is not None:
            days_left = math.ceil(remaining)
            if 0 < days_left <= 7:
                score += RECENT_MATCH_POINTS['urgent']
                reasons.append(f"Urgent: {days_left} days left")

        if score >= SmartMatcher.MIN_MATCH_SCORE:
            matches.append({'tender': tender, 'score': score, 'reasons': reasons})

    matches.sort(key=lambda m: m['score'], reverse=True)

    alerts_created = 0
    for match in matches[:5]:
        tender = match['tender']
        alert_id = notify_tender_match(
            user_id, tender,
            title=f"New Matching Tender: {tender['title'][:50]}...",
            message='. '.join(match['reasons']),
            data={'match_score': match['score'], 'match_reasons': match['reasons']},
        )
        if alert_id:
            alerts_created += 1

    return {
        'success': True,
        'matchesFound': len(matches),
        'alertsCreated': alerts_created,
        'topMatches': [
            {'id': m['tender']['id'], 'title': m['tender']['title'], 'score': m['score'], 'reasons': m['reasons']}
            for m in matches[:5]
        ],
    }


def run_smart_matching(notifier: NotificationService = None) -> Dict:
    """Scheduler entry point."""
    result = SmartMatcher(notifier=notifier).run_for_all_users()
    db.log_automation('smart-tender-matcher', 'completed', result_data=result)
    return result
