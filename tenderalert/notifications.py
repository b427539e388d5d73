"""
Notification Service for TenderAlert.
Creates in-app alerts and sends email digests for tender matches and
approaching deadlines on saved tenders.
"""

import os
import re
import json
import smtplib
import logging
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from email.utils import formataddr, formatdate
from datetime import datetime
from typing import List, Dict, Optional
from bs4 import BeautifulSoup
from jinja2 import Template

from . import database as db
from .dates import days_until, utc_now

logger = logging.getLogger(__name__)

# Email configuration - uses environment variables for security
EMAIL_CONFIG = {
    'smtp_server': os.environ.get('SMTP_SERVER', 'smtp.gmail.com'),
    'smtp_port': int(os.environ.get('SMTP_PORT', 587)),
    'sender_email': os.environ.get('SENDER_EMAIL', ''),
    'sender_password': os.environ.get('SENDER_PASSWORD', ''),
    'sender_name': os.environ.get('SENDER_NAME', 'TenderAlert'),
    'smtp_timeout': 30,
    'outbox_dir': os.environ.get(
        'EMAIL_OUTBOX_DIR',
        os.path.join(os.path.dirname(os.path.dirname(__file__)), 'data', 'emails')
    ),
    'app_url': os.environ.get('APP_BASE_URL', 'http://localhost:5003'),
}

# Email templates
MATCH_DIGEST_TEMPLATE = """
<!DOCTYPE html>
<html>
<head>
    <style>
        body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }
        .header { background: #047857; color: white; padding: 20px; text-align: center; }
        .content { padding: 20px; }
        .tender-card { border: 1px solid #ddd; border-radius: 8px; padding: 15px; margin: 10px 0; }
        .tender-card.high { border-left: 4px solid #059669; }
        .tender-card.good { border-left: 4px solid #2563eb; }
        .badge { display: inline-block; padding: 3px 8px; border-radius: 4px; font-size: 12px; margin-right: 5px; }
        .badge-success { background: #d1fae5; color: #059669; }
        .badge-info { background: #dbeafe; color: #2563eb; }
        .badge-warning { background: #fef3c7; color: #d97706; }
        .footer { background: #f3f4f6; padding: 15px; text-align: center; font-size: 12px; color: #666; }
        a { color: #047857; }
    </style>
</head>
<body>
    <div class="header">
        <h1>{{ title }}</h1>
        <p>{{ subtitle }}</p>
    </div>

    <div class="content">
        {% for match in matches %}
        <div class="tender-card {{ 'high' if match.score >= 80 else 'good' }}">
            <h3>{% if match.source_url %}<a href="{{ match.source_url }}">{{ match.title }}</a>{% else %}{{ match.title }}{% endif %}</h3>
            <p>
                <span class="badge badge-success">{{ match.level }} ({{ match.score }})</span>
                <span class="badge badge-info">{{ match.organization or 'Unknown Entity' }}</span>
                <span class="badge badge-info">{{ match.location }}</span>
                {% if match.deadline %}
                <span class="badge badge-warning">Closes: {{ match.deadline[:10] }}</span>
                {% endif %}
                {% if match.budget %}
                <span class="badge badge-info">KES {{ "{:,.0f}".format(match.budget) }}</span>
                {% endif %}
            </p>
            <p>{{ match.reasons[:3]|join(' &bull; ') }}</p>
        </div>
        {% endfor %}

        <p style="text-align: center; margin-top: 30px;">
            <a href="{{ app_url }}" style="background: #047857; color: white; padding: 10px 20px; text-decoration: none; border-radius: 5px;">
                View All Matches
            </a>
        </p>
    </div>

    <div class="footer">
        <p>Generated by TenderAlert at {{ generated_at }}</p>
        <p>Update your sectors, counties and keywords to tune these matches.</p>
    </div>
</body>
</html>
"""

DEADLINE_REMINDER_TEMPLATE = """
<!DOCTYPE html>
<html>
<head>
    <style>
        body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }
        .header { background: #dc2626; color: white; padding: 20px; text-align: center; }
        .content { padding: 20px; }
        .tender-card { border: 1px solid #ddd; border-left: 4px solid #dc2626; border-radius: 8px; padding: 15px; margin: 10px 0; }
        .countdown { font-size: 24px; font-weight: bold; color: #dc2626; }
        .footer { background: #f3f4f6; padding: 15px; text-align: center; font-size: 12px; color: #666; }
        a { color: #2563eb; }
    </style>
</head>
<body>
    <div class="header">
        <h1>Saved Tender Deadlines</h1>
        <p>{{ tenders|length }} saved tender(s) close within {{ days }} days</p>
    </div>

    <div class="content">
        {% for tender in tenders %}
        <div class="tender-card">
            <div class="countdown">
                {% if tender.days_left == 0 %}
                DUE TODAY
                {% elif tender.days_left == 1 %}
                DUE TOMORROW
                {% else %}
                {{ tender.days_left }} DAYS LEFT
                {% endif %}
            </div>
            <h3>{% if tender.source_url %}<a href="{{ tender.source_url }}">{{ tender.title }}</a>{% else %}{{ tender.title }}{% endif %}</h3>
            <p><strong>Entity:</strong> {{ tender.organization or 'Unknown' }}</p>
            <p><strong>Closes:</strong> {{ tender.deadline[:10] }}</p>
            {% if tender.tender_number %}
            <p><strong>Reference:</strong> {{ tender.tender_number }}</p>
            {% endif %}
        </div>
        {% endfor %}
    </div>

    <div class="footer">
        <p>Generated by TenderAlert at {{ generated_at }}</p>
    </div>
</body>
</html>
"""


def html_to_text(html_content: str) -> str:
    """Plain-text rendering of an email body, without the stylesheet."""
    soup = BeautifulSoup(html_content, 'html.parser')
    for tag in soup(['style', 'script', 'head']):
        tag.decompose()
    return soup.get_text('\n', strip=True)


class NotificationService:
    """Handles email notifications for tender alerts."""

    def __init__(self, config: Dict = None):
        self.config = EMAIL_CONFIG.copy()
        if config:
            self.config.update(config)

    # ============== Delivery ==============

    @property
    def smtp_configured(self) -> bool:
        return bool(self.config['sender_email'] and self.config['sender_password'])

    def build_message(self, subject: str, html_content: str, text_content: str,
                      recipient: str) -> MIMEMultipart:
        msg = MIMEMultipart('alternative')
        msg['Subject'] = subject
        msg['From'] = formataddr((self.config['sender_name'], self.config['sender_email']))
        msg['To'] = recipient
        msg['Date'] = formatdate(localtime=True)
        # Clients show the last part they support, so HTML goes last
        msg.attach(MIMEText(text_content, 'plain', 'utf-8'))
        msg.attach(MIMEText(html_content, 'html', 'utf-8'))
        return msg

    def send_email(self, subject: str, html_content: str, recipient: str) -> bool:
        """Deliver an email over SMTP.

        Without SMTP credentials, or when delivery fails, the message is queued
        in the outbox directory instead. Returns True only when SMTP accepted it.
        """
        text_content = html_to_text(html_content)
        msg = self.build_message(subject, html_content, text_content, recipient)

        if not self.smtp_configured:
            logger.info(f"SMTP not configured, queuing email to {recipient}: {subject}")
            self.queue_in_outbox(msg, html_content, text_content)
            return False

        try:
            self._deliver(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Delivery to {recipient} failed: {e}")
            self.queue_in_outbox(msg, html_content, text_content, error=str(e))
            return False

        logger.info(f"Email delivered to {recipient}: {subject}")
        return True

    def _deliver(self, msg: MIMEMultipart):
        with smtplib.SMTP(self.config['smtp_server'], self.config['smtp_port'],
                          timeout=self.config['smtp_timeout']) as server:
            server.starttls()
            server.login(self.config['sender_email'], self.config['sender_password'])
            server.send_message(msg)

    def queue_in_outbox(self, msg: MIMEMultipart, html_content: str, text_content: str,
                        error: str = None) -> str:
        """Write one JSON record per undelivered message. Returns the file path."""
        outbox = self.config['outbox_dir']
        os.makedirs(outbox, exist_ok=True)

        mailbox = re.sub(r'[^a-z0-9]+', '-', (msg['To'] or 'unknown').lower()).strip('-')
        filepath = os.path.join(outbox, f"{utc_now().strftime('%Y%m%dT%H%M%S%f')}-{mailbox}.json")

        record = {
            'to': msg['To'],
            'from': msg['From'],
            'subject': msg['Subject'],
            'date': msg['Date'],
            'text': text_content,
            'html': html_content,
            'error': error,
        }
        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(record, f, ensure_ascii=False, indent=2)

        logger.info(f"Email queued at {filepath}")
        return filepath

    # ============== Messages ==============

    def send_match_digest(self, recipient: str, matches: List[Dict]) -> bool:
        """Send a digest of the best tender matches for one user."""
        if not matches:
            logger.info("No matches to notify about")
            return False

        template = Template(MATCH_DIGEST_TEMPLATE)
        html_content = template.render(
            title="New Tenders Matching Your Profile",
            subtitle=f"{len(matches)} opportunities found",
            matches=matches[:10],
            app_url=self.config['app_url'],
            generated_at=datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        )

        best = matches[0]
        subject = f"[TenderAlert] {len(matches)} matching tenders - top: {best['title'][:40]}"
        return self.send_email(subject, html_content, recipient)

    def send_deadline_reminder(self, recipient: str, tenders: List[Dict], days: int) -> bool:
        """Send a reminder for saved tenders closing soon."""
        if not tenders:
            return False

        template = Template(DEADLINE_REMINDER_TEMPLATE)
        html_content = template.render(
            tenders=tenders,
            days=days,
            generated_at=datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        )

        due_today = [t for t in tenders if t.get('days_left') == 0]
        subject = f"[Deadline Reminder] {len(tenders)} saved tenders close within {days} days"
        if due_today:
            subject = f"[DUE TODAY] {len(due_today)} saved tender(s) + {len(tenders)} total due soon"

        return self.send_email(subject, html_content, recipient)


# ============== In-app Alerts ==============

def get_alerts(user_id: str, limit: int = 50, unread_only: bool = False) -> List[Dict]:
    return db.get_alerts(user_id, limit=limit, unread_only=unread_only)


def mark_read(alert_id: int, user_id: str) -> bool:
    return db.mark_alert_read(alert_id, user_id)


def mark_all_read(user_id: str) -> int:
    return db.mark_all_alerts_read(user_id)


def unread_count(user_id: str) -> int:
    return db.count_unread_alerts(user_id)


def notify_tender_match(user_id: str, tender: Dict, title: str, message: str, data: Dict) -> Optional[int]:
    """Create a tender_match alert unless the user was already alerted about this tender."""
    if db.tender_alert_exists(user_id, 'tender_match', tender['id']):
        return None
    data = dict(data, tender_id=tender['id'])
    return db.create_alert(user_id, 'tender_match', title, message, data)


def saved_tenders_due_soon(user_id: str, days: int) -> List[Dict]:
    """Saved tenders that close within the given number of days, soonest first."""
    now = utc_now()
    upcoming = []
    for tender in db.get_saved_tenders(user_id):
        remaining = days_until(tender.get('deadline'), now)
        if remaining is None:
            continue
        days_left = int(remaining) if remaining >= 0 else -1
        if 0 <= days_left <= days:
            tender['days_left'] = days_left
            upcoming.append(tender)

    upcoming.sort(key=lambda t: t['days_left'])
    return upcoming


def send_deadline_reminders(days: int = 3, service: NotificationService = None) -> Dict:
    """Email every user with saved tenders closing within `days`."""
    service = service or NotificationService()
    stats = {'users_checked': 0, 'reminders_sent': 0, 'tenders_due': 0}

    for user_id in db.get_users_with_saved_tenders():
        stats['users_checked'] += 1
        profile = db.get_profile(user_id)
        if not profile:
            continue

        upcoming = saved_tenders_due_soon(profile['id'], days)
        if not upcoming:
            continue

        stats['tenders_due'] += len(upcoming)
        service.send_deadline_reminder(profile['email'], upcoming, days)
        stats['reminders_sent'] += 1

    logger.info(f"Deadline reminders: {stats}")
    return stats
