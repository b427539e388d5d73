"""
Tests for loyalty points, referrals and the related routes.
"""

import pytest

from tenderalert import database as db
from tenderalert import loyalty
from tests.helpers import bearer


class TestDiscount:
    @pytest.mark.parametrize('points,expected', [(0, 0), (99, 0), (100, 5), (450, 20), (5000, 50)])
    def test_discount_steps(self, points, expected):
        assert loyalty.discount_percent(points) == expected


class TestReferrals:
    def test_referral_rewards_both(self, user, other_user):
        code = user['user']['referral_code']
        result = loyalty.use_referral(other_user['user']['id'], code.lower())
        assert result['loyalty_points'] == 50

        referrer = db.get_profile(user['user']['id'])
        assert referrer['loyalty_points'] == 100
        assert referrer['total_referrals'] == 1
        assert db.get_alerts(user['user']['id'])[0]['type'] == 'referral_reward'

    def test_only_once(self, user, other_user, make_user):
        loyalty.use_referral(other_user['user']['id'], user['user']['referral_code'])
        third = make_user()
        with pytest.raises(ValueError, match='already used'):
            loyalty.use_referral(other_user['user']['id'], third['user']['referral_code'])

    def test_own_code_rejected(self, user):
        with pytest.raises(ValueError, match='own referral code'):
            loyalty.use_referral(user['user']['id'], user['user']['referral_code'])

    def test_signup_with_referral_code(self, user, make_user):
        newcomer = make_user(referral_code=user['user']['referral_code'])
        assert db.get_profile(newcomer['user']['id'])['loyalty_points'] == 50
        assert db.get_profile(user['user']['id'])['loyalty_points'] == 100


class TestLoyaltyRoutes:
    def test_twitter_bonus_once(self, client, user):
        headers = bearer(user)
        assert client.post('/api/social/follow-twitter', headers=headers).get_json()['points_earned'] == 50
        assert client.post('/api/social/follow-twitter', headers=headers).status_code == 400

        summary = client.get('/api/user/loyalty', headers=headers).get_json()
        assert summary['loyalty_points'] == 50
        assert summary['twitter_followed'] is True
        assert summary['discount_percent'] == 0

    def test_referral_route(self, client, user, other_user):
        response = client.post('/api/referral/use', headers=bearer(other_user),
                               json={'referral_code': 'NOPE1234'})
        assert response.status_code == 400
        assert response.get_json()['error'] == 'Invalid referral code'
