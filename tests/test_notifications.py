"""
Tests for in-app alerts, the tender-notifications function and email delivery.
"""

import json
import os
import smtplib
from unittest.mock import patch

from tenderalert import database as db
from tenderalert import notifications
from tenderalert.notifications import NotificationService, html_to_text, send_deadline_reminders
from tests.helpers import bearer


class TestAlerts:
    def test_read_state(self, user):
        user_id = user['user']['id']
        first = db.create_alert(user_id, 'system', 'One', 'First alert')
        db.create_alert(user_id, 'system', 'Two', 'Second alert')

        assert notifications.unread_count(user_id) == 2
        assert notifications.mark_read(first, user_id)
        assert notifications.unread_count(user_id) == 1
        assert notifications.mark_all_read(user_id) == 1
        assert notifications.unread_count(user_id) == 0

    def test_cannot_mark_someone_elses_alert(self, user, other_user):
        alert_id = db.create_alert(user['user']['id'], 'system', 'Private', 'Mine')
        assert not notifications.mark_read(alert_id, other_user['user']['id'])

    def test_tender_match_deduplicated(self, user, make_tender):
        tender = make_tender()
        user_id = user['user']['id']
        assert notifications.notify_tender_match(user_id, tender, 'Match', 'Because', {'match_score': 50})
        assert notifications.notify_tender_match(user_id, tender, 'Match', 'Again', {'match_score': 60}) is None


class TestNotificationRoutes:
    def test_list_and_mark(self, client, user):
        user_id = user['user']['id']
        alert_id = db.create_alert(user_id, 'system', 'Hello', 'World')
        headers = bearer(user)

        assert client.get('/api/notifications/unread-count', headers=headers).get_json() == {'count': 1}
        assert client.post(f'/api/notifications/{alert_id}/read', headers=headers).status_code == 200
        assert client.get('/api/notifications?unread=true', headers=headers).get_json() == []
        assert client.post('/api/notifications/999/read', headers=headers).status_code == 404

    def test_read_all(self, client, user):
        for i in range(3):
            db.create_alert(user['user']['id'], 'system', f'Alert {i}', 'Body')
        response = client.post('/api/notifications/read-all', headers=bearer(user))
        assert response.get_json()['updated'] == 3


class TestTenderNotificationsFunction:
    def call(self, client, account, body):
        return client.post('/functions/tender-notifications', headers=bearer(account), json=body)

    def test_check_matches_uses_saved_interests(self, client, user, make_tender):
        user_id = user['user']['id']
        saved = make_tender('Old Health Tender', category='Healthcare', location='Kisumu')
        db.save_tender(user_id, saved['id'])
        make_tender('Hospital Beds Supply', category='Healthcare', location='Kisumu', days_left=5)
        make_tender('Unrelated Fencing', category='Security', location='Turkana')

        body = self.call(client, user, {'action': 'check-matches', 'userId': user_id,
                                        'preferences': {'keywords': ['beds']}}).get_json()
        titles = [m['title'] for m in body['topMatches']]
        assert 'Hospital Beds Supply' in titles
        assert 'Unrelated Fencing' not in titles

        match = next(m for m in body['topMatches'] if m['title'] == 'Hospital Beds Supply')
        assert match['score'] == 30 + 25 + 15 + 10

        again = self.call(client, user, {'action': 'check-matches', 'userId': user_id}).get_json()
        assert again['alertsCreated'] == 0

    def test_get_alerts_and_mark_read(self, client, user):
        user_id = user['user']['id']
        alert_id = db.create_alert(user_id, 'system', 'Hi', 'There')

        alerts = self.call(client, user, {'action': 'get-alerts', 'userId': user_id}).get_json()['alerts']
        assert [a['id'] for a in alerts] == [alert_id]

        assert self.call(client, user, {'action': 'mark-read', 'userId': user_id, 'alertId': alert_id}).status_code == 200
        assert db.count_unread_alerts(user_id) == 0

    def test_other_users_alerts_forbidden(self, client, user, other_user):
        response = self.call(client, user, {'action': 'get-alerts', 'userId': other_user['user']['id']})
        assert response.status_code == 403

    def test_invalid_action(self, client, user):
        response = self.call(client, user, {'action': 'shout'})
        assert response.status_code == 400
        assert response.get_json() == {'success': False, 'error': 'Invalid action'}


class TestEmail:
    MATCH = {
        'id': 1, 'title': 'Construction of Office Building', 'organization': 'Ministry of Public Works',
        'category': 'Construction', 'location': 'Nairobi', 'deadline': '2030-01-01', 'budget': 50000000,
        'score': 85, 'level': 'High Chance', 'reasons': ['Sector match: Construction'],
        'source_url': None,
    }

    def smtp_service(self):
        return NotificationService({'sender_email': 'alerts@tenderalert.co.ke', 'sender_password': 'app-pass'})

    def test_unconfigured_smtp_writes_outbox(self):
        service = NotificationService()
        sent = service.send_match_digest('alice@example.com', [self.MATCH])
        assert sent is False

        files = os.listdir(service.config['outbox_dir'])
        assert len(files) == 1
        assert files[0].endswith('-alice-example-com.json')
        with open(os.path.join(service.config['outbox_dir'], files[0]), encoding='utf-8') as f:
            record = json.load(f)

        assert record['to'] == 'alice@example.com'
        assert record['subject'].startswith('[TenderAlert] 1 matching tenders')
        assert record['error'] is None
        assert 'Construction of Office Building' in record['html']
        assert 'Construction of Office Building' in record['text']
        assert 'font-family' not in record['text']

    def test_smtp_delivery(self):
        service = self.smtp_service()
        with patch('tenderalert.notifications.smtplib.SMTP') as smtp:
            sent = service.send_match_digest('alice@example.com', [self.MATCH])

        assert sent is True
        server = smtp.return_value.__enter__.return_value
        server.starttls.assert_called_once()
        server.login.assert_called_once_with('alerts@tenderalert.co.ke', 'app-pass')

        msg = server.send_message.call_args.args[0]
        assert msg['To'] == 'alice@example.com'
        assert msg['From'] == 'TenderAlert <alerts@tenderalert.co.ke>'
        assert [part.get_content_type() for part in msg.get_payload()] == ['text/plain', 'text/html']
        assert not os.path.exists(service.config['outbox_dir'])

    def test_failed_delivery_is_queued(self):
        service = self.smtp_service()
        with patch('tenderalert.notifications.smtplib.SMTP') as smtp:
            server = smtp.return_value.__enter__.return_value
            server.login.side_effect = smtplib.SMTPAuthenticationError(535, b'Bad credentials')
            sent = service.send_email('Weekly digest', '<p>Three new tenders</p>', 'bob@example.com')

        assert sent is False
        files = os.listdir(service.config['outbox_dir'])
        with open(os.path.join(service.config['outbox_dir'], files[0]), encoding='utf-8') as f:
            record = json.load(f)
        assert record['text'] == 'Three new tenders'
        assert 'Bad credentials' in record['error']

    def test_html_to_text_drops_styles(self):
        html = '<html><head><style>p { color: red; }</style></head><body><h1>Hi</h1><p>Two tenders</p></body></html>'
        assert html_to_text(html) == 'Hi\nTwo tenders'

    def test_deadline_reminders(self, user, make_tender):
        user_id = user['user']['id']
        soon = make_tender('Closing Soon', days_left=2)
        later = make_tender('Closing Later', days_left=20)
        db.save_tender(user_id, soon['id'])
        db.save_tender(user_id, later['id'])

        stats = send_deadline_reminders(days=3)
        assert stats == {'users_checked': 1, 'reminders_sent': 1, 'tenders_due': 1}
