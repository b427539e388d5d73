"""
Tests for consortiums and the service provider directory.
"""

import pytest

from tenderalert import collaboration
from tenderalert import database as db
from tests.helpers import bearer


class TestConsortiumRules:
    def test_join_until_full(self, user, other_user, make_user):
        consortium = collaboration.create_consortium(user['user']['id'], {'name': 'Solar JV', 'max_members': 2})
        joined = collaboration.join_consortium(consortium['id'], other_user['user']['id'], expertise='Electrical')
        assert joined['member_count'] == 2

        with pytest.raises(ValueError, match='full'):
            collaboration.join_consortium(consortium['id'], make_user()['user']['id'])

    def test_cannot_join_twice(self, user, other_user):
        consortium = collaboration.create_consortium(user['user']['id'], {'name': 'Roads JV'})
        collaboration.join_consortium(consortium['id'], other_user['user']['id'])
        with pytest.raises(ValueError):
            collaboration.join_consortium(consortium['id'], other_user['user']['id'])

    def test_closed_consortium_not_joinable(self, user, other_user):
        consortium = collaboration.create_consortium(user['user']['id'], {'name': 'Old JV'})
        db.update_consortium(consortium['id'], status='closed')
        with pytest.raises(ValueError, match='not accepting'):
            collaboration.join_consortium(consortium['id'], other_user['user']['id'])

    def test_leader_leaving_closes(self, user, other_user):
        consortium = collaboration.create_consortium(user['user']['id'], {'name': 'Water JV'})
        collaboration.join_consortium(consortium['id'], other_user['user']['id'])

        after_member = collaboration.leave_consortium(consortium['id'], other_user['user']['id'])
        assert after_member['status'] == 'forming'

        after_leader = collaboration.leave_consortium(consortium['id'], user['user']['id'])
        assert after_leader['status'] == 'closed'

    def test_leave_when_not_member(self, user, other_user):
        consortium = collaboration.create_consortium(user['user']['id'], {'name': 'ICT JV'})
        with pytest.raises(LookupError):
            collaboration.leave_consortium(consortium['id'], other_user['user']['id'])


class TestConsortiumRoutes:
    def test_create_join_members(self, client, user, other_user):
        response = client.post('/api/consortiums', headers=bearer(user),
                               json={'name': 'Health Supplies JV', 'required_skills': ['logistics']})
        assert response.status_code == 201
        consortium = response.get_json()
        assert consortium['required_skills'] == ['logistics']

        response = client.post(f"/api/consortiums/{consortium['id']}/join", headers=bearer(other_user),
                               json={'expertise': 'Cold chain'})
        assert response.get_json()['member_count'] == 2

        members = client.get(f"/api/consortiums/{consortium['id']}/members").get_json()
        assert {m['first_name'] for m in members} == {'Alice', 'Bob'}
        assert [c['name'] for c in client.get('/api/consortiums').get_json()] == ['Health Supplies JV']

    def test_missing_name(self, client, user):
        assert client.post('/api/consortiums', headers=bearer(user), json={}).status_code == 400

    def test_unknown_consortium(self, client, user):
        assert client.get('/api/consortiums/77').status_code == 404
        assert client.post('/api/consortiums/77/join', headers=bearer(user), json={}).status_code == 404


class TestServiceProviders:
    def provider_data(self, **overrides):
        data = {
            'name': 'Kamau Engineering', 'email': 'info@kamau.co.ke', 'specialization': 'Civil Engineering',
            'description': 'Bridges and culverts', 'certifications': ['NCA 1'],
        }
        data.update(overrides)
        return data

    def test_search_and_filters(self, user, other_user):
        collaboration.create_service_provider(user['user']['id'], self.provider_data())
        collaboration.create_service_provider(other_user['user']['id'], self.provider_data(
            name='Wanjiru ICT', email='hi@wanjiru.co.ke', specialization='Networking',
            description='Structured cabling', availability='busy'))

        assert [p['name'] for p in db.get_all_service_providers(search='cabling')] == ['Wanjiru ICT']
        assert [p['name'] for p in db.get_all_service_providers(availability='busy')] == ['Wanjiru ICT']
        assert len(db.get_all_service_providers()) == 2

    def test_missing_fields(self, user):
        with pytest.raises(ValueError, match='email'):
            collaboration.create_service_provider(user['user']['id'], {'name': 'X', 'specialization': 'Y'})

    def test_only_owner_updates(self, client, user, other_user):
        response = client.post('/api/service-providers', headers=bearer(user), json=self.provider_data())
        provider = response.get_json()
        assert provider['certifications'] == ['NCA 1']

        response = client.put(f"/api/service-providers/{provider['id']}", headers=bearer(other_user),
                              json={'hourly_rate': 1})
        assert response.status_code == 403

        response = client.put(f"/api/service-providers/{provider['id']}", headers=bearer(user),
                              json={'hourly_rate': 4500})
        assert response.get_json()['hourly_rate'] == 4500
