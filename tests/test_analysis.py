"""
Tests for requirement signals, tender analysis and similarity.
"""

import pytest

from tenderalert import database as db
from tenderalert.analysis import (
    RequirementAnalyzer, TenderAnalyzer, MODEL_VERSION,
    find_similar_tenders, similarity_score, term_vector,
)
from tests.helpers import bearer


class TestRequirementAnalyzer:
    def test_requirement_scores(self):
        scores = RequirementAnalyzer().score_requirements(
            'Technical design and engineering of a solar system; ISO certification required')
        assert scores['technical complexity'] == 1.0
        assert scores['regulatory compliance'] == 0.7
        assert scores['innovation required'] == 0.35
        assert scores['partnership needed'] == 0.0

    def test_empty_text(self):
        scores = RequirementAnalyzer().score_requirements(None)
        assert set(scores.values()) == {0.0}
        assert len(scores) == 6

    @pytest.mark.parametrize('text,label,score', [
        ('Quality improvement and growth', 'POSITIVE', 1.0),
        ('Penalty for delay and breach of contract', 'NEGATIVE', 1.0),
        ('Quality works, delay penalty applies', 'NEGATIVE', 0.67),
        ('Quality but risk', 'NEUTRAL', 0.5),
        ('', 'NEUTRAL', 0.5),
    ])
    def test_sentiment(self, text, label, score):
        assert RequirementAnalyzer().analyze_sentiment(text) == {'label': label, 'score': score}


class TestTenderAnalyzer:
    def test_historical_insights(self):
        tender = {'category': 'Education', 'organization': 'Ministry of Education'}
        similar = [
            {'category': 'Education', 'organization': 'Ministry of Education', 'budget_estimate': 3000000},
            {'category': 'Education', 'organization': 'Ministry of Education', 'budget_estimate': 1000000},
            {'category': 'Education', 'organization': 'TSC', 'budget_estimate': 2000000},
            {'category': 'Health', 'organization': 'KEMSA', 'budget_estimate': 9000000},
        ]
        insights = TenderAnalyzer().historical_insights(tender, similar)
        assert insights['average_budget'] == 2000000
        assert insights['win_rate'] == pytest.approx(80)
        assert insights['competitor_count'] == 7

    def test_complexity_bounds(self):
        analyzer = TenderAnalyzer()
        heavy = {'budget_estimate': 60000000, 'requirements': ['r'] * 11,
                 'category': 'Technology', 'deadline': None}
        light = {'budget_estimate': 1000000, 'requirements': [], 'category': 'Education', 'deadline': '2099-01-01'}
        assert analyzer.calculate_complexity(heavy) == 0.9
        assert analyzer.calculate_complexity(light) == 0.3

    def test_competition(self):
        analyzer = TenderAnalyzer()
        crowded = {'budget_estimate': 5000000, 'organization': 'Ministry of Health', 'category': 'Technology'}
        quiet = {'budget_estimate': 1000000, 'organization': 'Acme', 'category': 'Education'}
        assert analyzer.calculate_competition(crowded, {'average_budget': 2000000}) == 0.9
        assert analyzer.calculate_competition(quiet, {'average_budget': 2000000}) == 0.2

    def test_analysis_saved(self, make_tender):
        tender = make_tender()
        analysis = TenderAnalyzer().analyze(tender['id'])

        assert analysis['model_version'] == MODEL_VERSION
        assert analysis['estimated_value_min'] < analysis['estimated_value_max']
        assert 20 <= analysis['win_probability'] <= 95
        assert 60 <= analysis['confidence_score'] <= 95
        assert 'Focus on community engagement and local capacity building' in analysis['recommendations']
        assert analysis['analysis_data']['sentiment_analysis']['label'] == 'NEUTRAL'
        assert db.get_ai_analysis(tender['id'])['id'] == analysis['id']

    def test_cached_unless_forced(self, make_tender):
        tender = make_tender()
        db.save_ai_analysis(tender['id'], win_probability=42, model_version='manual')

        assert TenderAnalyzer().analyze(tender['id'])['win_probability'] == 42
        regenerated = TenderAnalyzer().analyze(tender['id'], force_regenerate=True)
        assert regenerated['model_version'] == MODEL_VERSION
        assert regenerated['win_probability'] != 42

    def test_unknown_tender(self):
        with pytest.raises(LookupError):
            TenderAnalyzer().analyze(999)

    def test_function_endpoint(self, client, user, make_tender):
        tender = make_tender()
        response = client.post('/functions/ai-tender-analysis', headers=bearer(user),
                               json={'tenderId': tender['id']})
        assert response.status_code == 200
        assert response.get_json()['tender_id'] == tender['id']

        missing = client.post('/functions/ai-tender-analysis', headers=bearer(user), json={'tenderId': 999})
        assert missing.status_code == 500
        assert missing.get_json() == {'error': 'Tender not found'}

    def test_rest_route(self, client, user, make_tender):
        tender = make_tender()
        assert client.get(f"/api/ai-analysis/{tender['id']}", headers=bearer(user)).status_code == 200
        assert client.get('/api/ai-analysis/999', headers=bearer(user)).status_code == 404


class TestSimilarity:
    def test_term_vector_drops_stop_words(self):
        assert term_vector('Supply of the Laptops and laptops') == {'supply': 1, 'laptops': 2}

    def test_identical_tenders(self):
        tender = {'title': 'Bridge works', 'category': 'Infrastructure',
                  'organization': 'KeNHA', 'budget_estimate': 100}
        assert similarity_score(tender, dict(tender)) == 1.2

    def test_unrelated_tenders(self):
        a = {'title': 'Bridge works', 'category': 'Infrastructure', 'budget_estimate': 100}
        b = {'title': 'School meals', 'category': 'Education', 'budget_estimate': 50}
        assert similarity_score(a, b) == 0.0

    def test_find_similar(self, make_tender):
        target = make_tender('Supply of Laptops', description='Laptops and computers for schools',
                             category='Technology', organization='ICT Authority')
        close = make_tender('Supply of Laptops and Tablets', description='Tablets and laptops for schools',
                            category='Technology', organization='ICT Authority')
        far = make_tender('Road Rehabilitation', description='Tarmac resurfacing',
                          category='Infrastructure', organization='KURA', budget_estimate=90000000)
        db.save_ai_analysis(close['id'], win_probability=55, estimated_value_min=1, estimated_value_max=2)

        similar = find_similar_tenders(target['id'], limit=5)

        assert [s['id'] for s in similar] == [close['id'], far['id']]
        assert similar[0]['analysis'] == {'win_probability': 55, 'estimated_value_min': 1,
                                          'estimated_value_max': 2}
        assert 'analysis' not in similar[1]
        assert similar[0]['similarity_score'] > similar[1]['similarity_score']

    def test_limit_and_missing_target(self, client, user, make_tender):
        target = make_tender()
        make_tender('Another')
        make_tender('Third')
        response = client.post('/functions/tender-similarity-analysis', headers=bearer(user),
                               json={'tenderId': target['id'], 'limit': 1})
        assert len(response.get_json()) == 1

        with pytest.raises(LookupError, match='Target tender not found'):
            find_similar_tenders(999)
