"""
Tests for the rfq-operations function: RFQs, quotes and awarding.
"""

import pytest

from tenderalert import database as db
from tests.helpers import bearer


def rfq_call(client, account, operation, data=None):
    return client.post('/functions/rfq-operations', headers=bearer(account),
                       json={'operation': operation, 'data': data or {}})


@pytest.fixture
def rfq(client, user):
    response = rfq_call(client, user, 'create-rfq', {
        'title': 'Supply of 50 Laptops', 'category': 'Technology',
        'budget_range_min': 2000000, 'budget_range_max': 3000000, 'tags': ['ict', 'hardware'],
    })
    return response.get_json()['data']


class TestRfqLifecycle:
    def test_create_sets_owner(self, rfq, user):
        assert rfq['user_id'] == user['user']['id']
        assert rfq['status'] == 'open'
        assert rfq['tags'] == ['ict', 'hardware']

    def test_only_owner_updates(self, client, rfq, other_user, user):
        response = rfq_call(client, other_user, 'update-rfq', {'id': rfq['id'], 'title': 'Hijacked'})
        assert response.status_code == 404
        assert response.get_json()['error'] == 'RFQ not found or unauthorized'

        response = rfq_call(client, user, 'update-rfq', {'id': rfq['id'], 'title': 'Supply of 60 Laptops'})
        assert response.get_json()['data']['title'] == 'Supply of 60 Laptops'

    def test_only_owner_deletes(self, client, rfq, other_user, user):
        assert rfq_call(client, other_user, 'delete-rfq', {'id': rfq['id']}).status_code == 404
        assert rfq_call(client, user, 'delete-rfq', {'id': rfq['id']}).get_json() == {'success': True}
        assert db.get_rfq(rfq['id']) is None

    def test_list_my_rfqs(self, client, rfq, other_user, user):
        rfq_call(client, other_user, 'create-rfq', {'title': 'Cleaning Services'})

        everything = rfq_call(client, user, 'list-rfqs').get_json()
        assert everything['count'] == 2

        mine = rfq_call(client, user, 'list-rfqs', {'filters': {'my_rfqs': True}}).get_json()
        assert mine['count'] == 1
        assert mine['data'][0]['quote_count'] == 0


class TestQuotes:
    def test_submit_quote_alerts_owner(self, client, rfq, user, other_user):
        response = rfq_call(client, other_user, 'submit-quote', {
            'rfq_id': rfq['id'], 'quoted_amount': 2500000, 'delivery_timeline': '30 days',
        })
        quote = response.get_json()['data']
        assert quote['supplier_id'] == other_user['user']['id']
        assert quote['status'] == 'pending'

        alerts = db.get_alerts(user['user']['id'])
        assert alerts[0]['type'] == 'rfq_quote'
        assert alerts[0]['title'] == 'New Quote Received'
        assert alerts[0]['message'] == 'A supplier has submitted a quote for your RFQ: Supply of 50 Laptops'
        assert alerts[0]['data'] == {'rfq_id': rfq['id'], 'quote_id': quote['id']}

    def test_quote_requires_open_rfq(self, client, rfq, user, other_user):
        rfq_call(client, user, 'update-rfq', {'id': rfq['id'], 'status': 'closed'})
        response = rfq_call(client, other_user, 'submit-quote', {'rfq_id': rfq['id'], 'quoted_amount': 1})
        assert response.status_code == 400

    def test_supplier_updates_own_quote_only(self, client, rfq, user, other_user):
        quote = rfq_call(client, other_user, 'submit-quote',
                         {'rfq_id': rfq['id'], 'quoted_amount': 2500000}).get_json()['data']

        response = rfq_call(client, user, 'update-quote', {'id': quote['id'], 'quoted_amount': 1})
        assert response.status_code == 404

        response = rfq_call(client, other_user, 'update-quote', {'id': quote['id'], 'quoted_amount': 2400000})
        assert response.get_json()['data']['quoted_amount'] == 2400000

    def test_accept_quote(self, client, rfq, user, other_user, make_user):
        third = make_user()
        winning = rfq_call(client, other_user, 'submit-quote',
                           {'rfq_id': rfq['id'], 'quoted_amount': 2500000}).get_json()['data']
        losing = rfq_call(client, third, 'submit-quote',
                          {'rfq_id': rfq['id'], 'quoted_amount': 2900000}).get_json()['data']

        response = rfq_call(client, other_user, 'accept-quote', {'quote_id': winning['id'], 'rfq_id': rfq['id']})
        assert response.status_code == 403

        response = rfq_call(client, user, 'accept-quote', {'quote_id': winning['id'], 'rfq_id': rfq['id']})
        assert response.get_json()['data']['status'] == 'accepted'
        assert db.get_quote(losing['id'])['status'] == 'rejected'
        assert db.get_rfq(rfq['id'])['status'] == 'awarded'

        supplier_alerts = db.get_alerts(other_user['user']['id'])
        assert supplier_alerts[0]['type'] == 'quote_accepted'
        assert supplier_alerts[0]['title'] == 'Quote Accepted!'

    def test_list_quotes_visibility(self, client, rfq, user, other_user, make_user):
        third = make_user()
        rfq_call(client, other_user, 'submit-quote', {'rfq_id': rfq['id'], 'quoted_amount': 1000})
        rfq_call(client, third, 'submit-quote', {'rfq_id': rfq['id'], 'quoted_amount': 2000})

        owner_view = rfq_call(client, user, 'list-quotes', {'rfq_id': rfq['id']}).get_json()['data']
        supplier_view = rfq_call(client, third, 'list-quotes', {'rfq_id': rfq['id']}).get_json()['data']
        assert len(owner_view) == 2
        assert [q['quoted_amount'] for q in supplier_view] == [2000]

    def test_invalid_operation(self, client, user):
        assert rfq_call(client, user, 'bid-everything').status_code == 400
