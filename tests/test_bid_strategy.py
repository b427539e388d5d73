"""
Tests for the bid strategy optimizer.
"""

from datetime import timedelta

import pytest

from tenderalert import database as db
from tenderalert.bid_strategy import BidStrategyOptimizer
from tenderalert.dates import utc_now
from tests.helpers import bearer


def in_days(days):
    return (utc_now() + timedelta(days=days)).strftime('%Y-%m-%d')


NEUTRAL = {'label': 'NEUTRAL', 'score': 0.5}


class TestRisk:
    def test_high_risk(self):
        tender = {'deadline': in_days(10), 'budget_estimate': 60000000}
        risk = BidStrategyOptimizer().assess_risk(tender, {'technical complexity': 0.8}, NEUTRAL)
        assert risk['total_risk'] == 0.75
        assert risk['assessment'] == 'High Risk'
        assert risk['risks'][0] == 'Tight deadline may increase execution risks'

    def test_medium_risk(self):
        tender = {'deadline': in_days(10), 'budget_estimate': 1000000}
        risk = BidStrategyOptimizer().assess_risk(tender, {}, {'label': 'NEGATIVE', 'score': 1.0})
        assert risk['total_risk'] == 0.45
        assert risk['assessment'] == 'Medium Risk'

    def test_threshold_is_exclusive(self):
        risk = BidStrategyOptimizer().assess_risk({'deadline': in_days(10)}, {}, NEUTRAL)
        assert risk['total_risk'] == 0.3
        assert risk['assessment'] == 'Low Risk'

    def test_mitigations_follow_risks(self):
        optimizer = BidStrategyOptimizer()
        risk = optimizer.assess_risk({'deadline': in_days(10)}, {'regulatory compliance': 0.9}, NEUTRAL)
        assert optimizer.mitigation_strategies(risk) == [
            'Deploy dedicated project management team with proven track record',
            'Implement agile methodology for faster delivery cycles',
            'Early engagement with regulatory bodies and compliance experts',
            'Comprehensive documentation and audit trail processes',
        ]
        assert optimizer.mitigation_strategies({'risks': []}) == optimizer.DEFAULT_MITIGATIONS

    def test_premium_pricing_follows_assessment(self):
        optimizer = BidStrategyOptimizer()
        calm = {'competition_penalty': 0}
        # Rounds to 0.6 while the unrounded sum is just above the threshold
        edge = {'risks': [], 'total_risk': 0.6, 'assessment': 'High Risk'}
        assert optimizer.pricing_strategy(calm, edge).startswith('Premium pricing')

        flat = {'risks': [], 'total_risk': 0.6, 'assessment': 'Medium Risk'}
        assert optimizer.pricing_strategy(calm, flat).startswith('Value-based pricing')

    def test_pricing_agrees_with_computed_risk(self):
        optimizer = BidStrategyOptimizer()
        requirements = {'technical complexity': 0.8, 'regulatory compliance': 0.9}
        risk = optimizer.assess_risk({}, requirements, {'label': 'NEGATIVE', 'score': 1.0})

        premium = optimizer.pricing_strategy({'competition_penalty': 0}, risk).startswith('Premium pricing')
        assert risk['total_risk'] == 0.6
        assert premium == (risk['assessment'] == 'High Risk')


class TestCapabilities:
    def test_technical_match(self):
        tender = {'category': 'Technology'}
        match = BidStrategyOptimizer().assess_capabilities(
            tender, ['IT services', 'technology'], {'technical complexity': 0.9})
        assert match == {'gap': 0.0, 'bonus': 15}

    def test_technical_gap(self):
        match = BidStrategyOptimizer().assess_capabilities(
            {'category': 'Technology'}, ['catering'], {'technical complexity': 0.9})
        assert match == {'gap': 0.4, 'bonus': 0}

    def test_differentiators(self):
        optimizer = BidStrategyOptimizer()
        items = optimizer.key_differentiators(
            {'category': 'Technology'}, ['innovation', 'local presence'], {'bonus': 15})
        assert items == [
            'Strong technical expertise matching tender requirements',
            'Local presence and community engagement',
            'Innovative approaches and cutting-edge solutions',
            'Advanced cybersecurity and data protection measures',
        ]


class TestTimeline:
    @pytest.mark.parametrize('days,phases', [(90, 4), (45, 3), (10, 3)])
    def test_phases_by_time_left(self, days, phases):
        timeline = BidStrategyOptimizer().execution_timeline({'deadline': in_days(days)})
        assert len(timeline) == phases

    def test_urgent_when_undated(self):
        timeline = BidStrategyOptimizer().execution_timeline({'deadline': None})
        assert timeline[0] == 'Phase 1: Immediate team mobilization and planning (Days 1-5)'


class TestOptimize:
    def test_strategy_fields(self, make_tender):
        tender = make_tender(days_left=60)
        strategy = BidStrategyOptimizer().optimize(tender['id'])

        assert strategy['optimal_bid_amount'] < 5000000
        assert strategy['profit_margin'] == 15.0
        assert strategy['risk_assessment'] == 'Low Risk'
        assert strategy['potential_risks'] == []
        assert strategy['pricing_strategy'].startswith('Value-based pricing')
        assert len(strategy['execution_timeline']) == 3

    @pytest.mark.parametrize('rate,expected', [(200, 90), (-50, 10)])
    def test_win_probability_clamped(self, make_tender, rate, expected):
        tender = make_tender(days_left=60)
        strategy = BidStrategyOptimizer().optimize(tender['id'], historical_win_rate=rate)
        assert strategy['win_probability'] == expected

    def test_uses_cached_analysis(self, make_tender):
        tender = make_tender(days_left=60, organization='Acme Ltd')
        db.save_ai_analysis(tender['id'], estimated_value_min=4000000, estimated_value_max=8000000,
                            win_probability=50)
        strategy = BidStrategyOptimizer().optimize(tender['id'])
        assert strategy['optimal_bid_amount'] == 6000000
        assert strategy['win_probability'] == 50

    def test_endpoint(self, client, user, make_tender):
        tender = make_tender(days_left=60)
        response = client.post('/functions/bid-strategy-optimizer', headers=bearer(user), json={
            'tenderId': tender['id'], 'companyCapabilities': ['ISO certification'],
        })
        assert response.status_code == 200
        assert response.get_json()['competitive_advantages'] == ['ISO certified quality management systems']

    def test_unknown_tender(self, client, user):
        response = client.post('/functions/bid-strategy-optimizer', headers=bearer(user), json={'tenderId': 999})
        assert response.status_code == 500
        assert response.get_json() == {'error': 'Tender not found'}
