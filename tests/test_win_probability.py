"""
Tests for the win probability engine.
"""

import pytest

from tenderalert import database as db
from tenderalert.win_probability import (
    WinProbabilityEngine, adjust_for_inflation, award_year, std_dev, CURRENT_YEAR,
)
from tests.helpers import bearer


class TestHelpers:
    def test_inflation_compounds_per_year(self):
        assert adjust_for_inflation(1000, 2024) == 1128
        assert adjust_for_inflation(1000, CURRENT_YEAR) == 1000

    @pytest.mark.parametrize('value,year', [
        ('2021-06-30', 2021), ('Awarded March 2019', 2019), (None, CURRENT_YEAR - 1), ('n/a', CURRENT_YEAR - 1),
    ])
    def test_award_year(self, value, year):
        assert award_year(value) == year

    def test_std_dev(self):
        assert std_dev([5]) == 0.0
        assert std_dev([2, 4, 4, 4, 5, 5, 7, 9]) == 2.0


class TestCalculate:
    def test_without_history(self, make_tender):
        tender = make_tender()
        result = WinProbabilityEngine().calculate(tender['id'])

        assert result['factors'] == {
            'categoryMatch': 40, 'locationMatch': 50, 'budgetFit': 50,
            'historicalTrend': 30, 'competitionIntensity': 55,
        }
        assert result['winProbability'] == 44
        assert result['competitionLevel'] == 'medium'
        assert result['confidence'] == 30
        assert result['estimatedBidRange'] == {
            'low': 4000000, 'optimal': 5000000, 'high': 6000000, 'inflationAdjusted': True,
        }
        assert 'based on 0 historical contracts' in result['disclaimer']
        assert f"±{result['percentageError']}%" in result['disclaimer']

    def test_with_history(self, make_tender):
        tender = make_tender()
        for _ in range(3):
            db.create_historical_award('Desks', 'Education', location='Nairobi', awarded_amount=1000000,
                                       award_date='2025-01-01', competition_level='high', winner_type='sme')
        db.create_historical_award('Desks', 'Education', location='Mombasa', awarded_amount=9000000)

        result = WinProbabilityEngine().calculate(tender['id'])

        assert result['historicalComparison'] == {
            'similarContractsCount': 3,
            'avgAwardedAmount': 1000000,
            'avgInflationAdjusted': 1055000,
            'priceVariance': 0,
            'commonWinnerTypes': ['sme'],
        }
        assert result['factors'] == {
            'categoryMatch': 80, 'locationMatch': 90, 'budgetFit': 20,
            'historicalTrend': 45, 'competitionIntensity': 35,
        }
        assert result['winProbability'] == 56
        assert result['confidence'] == 56
        assert result['percentageError'] == 29
        assert result['estimatedBidRange']['optimal'] == 1055000

    def test_overrides(self, make_tender):
        tender = make_tender()
        db.create_historical_award('Clinic', 'Health', location='Kenya', awarded_amount=2000000,
                                   award_date='2026-01-01')
        result = WinProbabilityEngine().calculate(tender['id'], category='Health', location='Kisumu')
        assert result['historicalComparison']['similarContractsCount'] == 1
        assert result['factors']['locationMatch'] == 90

    def test_errors(self):
        with pytest.raises(ValueError):
            WinProbabilityEngine().calculate(None)
        with pytest.raises(LookupError):
            WinProbabilityEngine().calculate(999)

    def test_endpoint(self, client, user, make_tender):
        tender = make_tender()
        response = client.post('/functions/win-probability-engine', headers=bearer(user),
                               json={'tender_id': tender['id']})
        body = response.get_json()
        assert body['success'] is True
        assert body['data']['tenderTitle'] == 'Supply of Office Furniture'

        assert client.post('/functions/win-probability-engine', headers=bearer(user),
                           json={}).status_code == 400
