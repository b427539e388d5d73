"""
Tests for the SQLite database layer.
"""

import sqlite3

import pytest

from tenderalert import database as db


class TestSchemaAndSeeds:
    def test_categories_seeded_once(self):
        db.seed_categories()
        names = [c['name'] for c in db.get_all_categories()]
        assert len(names) == 12
        assert 'Technology' in names

    def test_sample_tenders_deduplicated_by_number(self):
        first = db.seed_sample_tenders()
        second = db.seed_sample_tenders()
        assert first == len(db.SAMPLE_TENDERS)
        assert second == 0

    def test_sample_tender_deadlines_are_in_future(self):
        db.seed_sample_tenders()
        tenders, total = db.get_all_tenders(status='active')
        assert total == len(db.SAMPLE_TENDERS)
        assert all(t['deadline'] >= db.get_recent_timestamp(0)[:10] for t in tenders)


class TestTenders:
    def test_json_columns_round_trip(self, make_tender):
        tender = make_tender(requirements=['Valid tax compliance', 'NCA 4 registration'])
        assert tender['requirements'] == ['Valid tax compliance', 'NCA 4 registration']

    def test_list_filters(self, make_tender):
        make_tender('Road Rehabilitation', category='Infrastructure', location='Mombasa County')
        make_tender('School Desks', category='Education', location='Nairobi')
        make_tender('ICT Network Upgrade', category='Technology', location='Kisumu',
                    description='Structured cabling and switches')

        rows, total = db.get_all_tenders(category='Education')
        assert total == 1 and rows[0]['title'] == 'School Desks'

        rows, total = db.get_all_tenders(location='mombasa')
        assert [r['title'] for r in rows] == ['Road Rehabilitation']

        rows, total = db.get_all_tenders(search='CABLING')
        assert [r['title'] for r in rows] == ['ICT Network Upgrade']

    def test_list_pagination_returns_total(self, make_tender):
        for i in range(5):
            make_tender(f'Tender {i}')
        rows, total = db.get_all_tenders(limit=2, offset=0)
        assert len(rows) == 2
        assert total == 5

    def test_list_newest_first(self, make_tender):
        make_tender('Older')
        make_tender('Newer')
        rows, _ = db.get_all_tenders()
        assert rows[0]['title'] == 'Newer'

    def test_bad_status_rejected(self):
        with pytest.raises(sqlite3.IntegrityError):
            db.create_tender('Bad', status='pending-review')

    def test_update_ignores_unknown_fields(self, make_tender):
        tender = make_tender()
        assert db.update_tender(tender['id'], title='Renamed', bogus='x')
        assert db.get_tender(tender['id'])['title'] == 'Renamed'


class TestSavedTenders:
    def test_duplicate_save_is_integrity_error(self, user, make_tender):
        tender = make_tender()
        user_id = user['user']['id']
        db.save_tender(user_id, tender['id'])
        with pytest.raises(sqlite3.IntegrityError):
            db.save_tender(user_id, tender['id'])

    def test_saved_list_joins_tender_fields(self, user, make_tender):
        user_id = user['user']['id']
        first = make_tender('First')
        second = make_tender('Second')
        db.save_tender(user_id, first['id'])
        db.save_tender(user_id, second['id'])

        saved = db.get_saved_tenders(user_id)
        assert [t['title'] for t in saved] == ['Second', 'First']
        assert db.is_tender_saved(user_id, first['id'])
        assert db.unsave_tender(user_id, first['id'])
        assert not db.is_tender_saved(user_id, first['id'])


class TestCollaborationRecords:
    def test_consortium_creator_is_leader(self, user):
        user_id = user['user']['id']
        consortium_id = db.create_consortium('Road Builders JV', user_id, max_members=3)
        consortium = db.get_consortium(consortium_id)
        assert consortium['member_count'] == 1
        assert db.get_consortium_member(consortium_id, user_id)['role'] == 'leader'

    def test_award_quote_rejects_other_pending(self, user, other_user, make_user, make_rfq):
        owner = user['user']['id']
        rfq_id = make_rfq(owner, 'Laptops')
        winner = db.create_quote(rfq_id, other_user['user']['id'], 100000)
        loser = db.create_quote(rfq_id, make_user()['user']['id'], 120000)

        db.award_quote(rfq_id, winner)

        assert db.get_quote(winner)['status'] == 'accepted'
        assert db.get_quote(loser)['status'] == 'rejected'
        assert db.get_rfq(rfq_id)['status'] == 'awarded'
        assert db.get_rfq(rfq_id)['quote_count'] == 2

    def test_negative_quote_rejected(self, user, make_rfq):
        rfq_id = make_rfq(user['user']['id'], 'Printers')
        with pytest.raises(sqlite3.IntegrityError):
            db.create_quote(rfq_id, user['user']['id'], -5)


class TestAnalytics:
    def test_view_counter_created_on_first_touch(self, make_tender):
        tender = make_tender()
        db.increment_tender_views(tender['id'])
        db.increment_tender_views(tender['id'])
        db.increment_tender_saves(tender['id'])

        analytics = db.get_tender_analytics(tender['id'])
        assert analytics['views_count'] == 2
        assert analytics['saves_count'] == 1
        assert analytics['last_viewed'] is not None

    def test_trending_ordered_by_views(self, make_tender):
        quiet = make_tender('Quiet')
        busy = make_tender('Busy')
        db.increment_tender_views(quiet['id'])
        for _ in range(3):
            db.increment_tender_views(busy['id'])

        trending = db.get_trending_tenders()
        assert [t['title'] for t in trending] == ['Busy', 'Quiet']
        assert trending[0]['views_count'] == 3

    def test_dashboard_stats(self, user, make_tender, make_rfq):
        user_id = user['user']['id']
        tender = make_tender()
        db.save_tender(user_id, tender['id'])
        make_rfq(user_id, 'Cement', category='Construction')
        db.create_alert(user_id, 'system', 'Hello', 'Welcome')

        stats = db.get_dashboard_stats(user_id)
        assert stats == {
            'saved_tenders': 1,
            'active_tenders': 1,
            'my_rfqs': 1,
            'consortiums': 0,
            'unread_alerts': 1,
        }


class TestAutomationLogs:
    def test_logs_filter_by_function(self):
        db.log_automation('tender-scraper', 'completed', result_data={'saved': 2})
        db.log_automation('smart-tender-matcher', 'failed', error_message='boom')

        logs = db.get_automation_logs('tender-scraper')
        assert len(logs) == 1
        assert logs[0]['result_data'] == {'saved': 2}
