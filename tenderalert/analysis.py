"""
Tender analysis for TenderAlert.
Rule-based estimates of tender value, win probability and bid
recommendations, plus text similarity between tenders.

Includes:
- Keyword requirement signals and sentiment (RequirementAnalyzer)
- Value and win-probability analysis with caching (TenderAnalyzer)
- Term-frequency cosine similarity between tenders
"""

import re
import math
import logging
from collections import Counter
from typing import List, Dict, Optional

from . import database as db
from .dates import days_until

logger = logging.getLogger(__name__)

MODEL_VERSION = 'rules-v1'

PRESTIGIOUS_ORGANIZATIONS = ['Ministry', 'Kenya Urban Roads Authority', 'World Bank']


class RequirementAnalyzer:
    """
    Keyword-based reading of tender text.
    Scores how strongly a tender signals each requirement theme and
    gives a coarse sentiment label.
    """

    REQUIREMENT_KEYWORDS = {
        'technical complexity': [
            'technical', 'engineering', 'design', 'integration', 'system', 'software',
            'specification', 'installation', 'networking', 'infrastructure', 'servers',
        ],
        'financial requirements': [
            'financial', 'capacity', 'bond', 'guarantee', 'audited', 'turnover',
            'insurance', 'bank', 'credit', 'budget',
        ],
        'time sensitive': [
            'urgent', 'immediate', 'deadline', 'fast-track', 'within', 'emergency',
            'annual', 'timeline', 'schedule',
        ],
        'regulatory compliance': [
            'license', 'licence', 'certification', 'certified', 'compliance', 'iso',
            'regulation', 'standards', 'permit', 'registration', 'nca', 'kebs',
        ],
        'innovation required': [
            'innovation', 'innovative', 'modern', 'digital', 'smart', 'solar',
            'automation', 'upgrade', 'cutting-edge', 'new technology',
        ],
        'partnership needed': [
            'partner', 'partnership', 'consortium', 'joint venture', 'subcontract',
            'collaboration', 'local presence', 'support presence',
        ],
    }

    # Each distinct keyword hit adds this much to a theme score (capped at 1)
    HIT_WEIGHT = 0.35

    POSITIVE_WORDS = {
        'improve', 'improvement', 'modern', 'quality', 'support', 'growth', 'development',
        'benefit', 'efficient', 'sustainable', 'upgrade', 'success', 'opportunity', 'new',
    }

    NEGATIVE_WORDS = {
        'penalty', 'penalties', 'termination', 'delay', 'dispute', 'failure', 'risk',
        'damage', 'liability', 'cancelled', 'cancellation', 'breach', 'fraud', 'debarment',
    }

    def score_requirements(self, text: str) -> Dict[str, float]:
        """Score each requirement theme in [0, 1]."""
        text_lower = (text or '').lower()
        scores = {}
        for label, keywords in self.REQUIREMENT_KEYWORDS.items():
            hits = sum(1 for kw in keywords if kw in text_lower)
            scores[label] = round(min(1.0, hits * self.HIT_WEIGHT), 2)
        return scores

    def analyze_sentiment(self, text: str) -> Dict:
        """
        Label text POSITIVE, NEGATIVE or NEUTRAL.

        Returns:
            Dict with 'label' and 'score' (confidence of the label, 0.5-1.0)
        """
        words = Counter(re.findall(r"[a-z']+", (text or '').lower()))
        positive = sum(count for word, count in words.items() if word in self.POSITIVE_WORDS)
        negative = sum(count for word, count in words.items() if word in self.NEGATIVE_WORDS)
        total = positive + negative

        if total == 0 or positive == negative:
            return {'label': 'NEUTRAL', 'score': 0.5}
        if positive > negative:
            return {'label': 'POSITIVE', 'score': round(positive / total, 2)}
        return {'label': 'NEGATIVE', 'score': round(negative / total, 2)}


def tender_text(tender: Dict, include_context: bool = True) -> str:
    """Concatenate the descriptive fields of a tender."""
    parts = [tender.get('title'), tender.get('description')]
    if include_context:
        parts += [tender.get('category'), tender.get('organization'), tender.get('location')]
    parts += list(tender.get('requirements') or [])
    return ' '.join(str(p) for p in parts if p)


def is_prestigious(organization: str) -> bool:
    return any(org in (organization or '') for org in PRESTIGIOUS_ORGANIZATIONS)


class TenderAnalyzer:
    """Estimates value range, win probability and recommendations for a tender."""

    HIGH_COMPLEXITY_CATEGORIES = ['Technology', 'Healthcare', 'Infrastructure']
    HIGH_COMPETITION_CATEGORIES = ['Technology', 'Infrastructure', 'Healthcare']

    CATEGORY_RECOMMENDATIONS = {
        'Infrastructure': [
            'Include environmental impact assessments',
            'Demonstrate experience with large-scale projects',
        ],
        'Technology': [
            'Highlight cybersecurity measures and compliance',
            'Provide comprehensive training and support packages',
        ],
        'Healthcare': [
            'Ensure compliance with medical regulations and standards',
            'Include maintenance and calibration services',
        ],
        'Education': [
            'Focus on community engagement and local capacity building',
            'Include teacher training and curriculum support',
        ],
    }

    MAX_RECOMMENDATIONS = 5
    HISTORY_LIMIT = 50

    def __init__(self, requirement_analyzer: RequirementAnalyzer = None):
        self.requirements = requirement_analyzer or RequirementAnalyzer()

    def historical_insights(self, tender: Dict, similar: List[Dict]) -> Dict:
        """Average budget and win-rate baseline from same-category tenders."""
        same_category = [t for t in similar if t.get('category') == tender.get('category')]
        average_budget = sum(t.get('budget_estimate') or 0 for t in same_category) / max(len(same_category), 1)

        same_org = [t for t in same_category if t.get('organization') == tender.get('organization')]
        org_share = len(same_org) / len(same_category) if same_category else 0

        return {
            'organization': tender.get('organization'),
            'category': tender.get('category'),
            'average_budget': average_budget,
            'win_rate': 60 + 30 * org_share,
            'competitor_count': 3 + (len(similar) % 10),
        }

    def calculate_complexity(self, tender: Dict) -> float:
        complexity = 0.0
        budget = tender.get('budget_estimate') or 0

        if budget > 50000000:
            complexity += 0.3
        elif budget > 20000000:
            complexity += 0.2
        else:
            complexity += 0.1

        requirement_count = len(tender.get('requirements') or [])
        if requirement_count > 10:
            complexity += 0.3
        elif requirement_count > 5:
            complexity += 0.2
        else:
            complexity += 0.1

        if tender.get('category') in self.HIGH_COMPLEXITY_CATEGORIES:
            complexity += 0.2

        remaining = days_until(tender.get('deadline'))
        if remaining is not None and remaining < 14:
            complexity += 0.3
        elif remaining is not None and remaining < 30:
            complexity += 0.2
        else:
            complexity += 0.1

        return min(1.0, round(complexity, 2))

    def calculate_competition(self, tender: Dict, historical: Dict) -> float:
        competition = 0.0
        budget = tender.get('budget_estimate') or 0
        average = historical['average_budget']

        if budget > average * 1.5:
            competition += 0.4
        elif budget > average:
            competition += 0.3
        else:
            competition += 0.2

        if is_prestigious(tender.get('organization')):
            competition += 0.3

        if tender.get('category') in self.HIGH_COMPETITION_CATEGORIES:
            competition += 0.2

        return min(1.0, round(competition, 2))

    def generate_recommendations(self, tender: Dict, historical: Dict,
                                 complexity: float, competition: float) -> List[str]:
        recommendations = []

        if complexity > 0.7:
            recommendations += [
                'Form strategic partnerships to handle complex requirements',
                'Allocate additional time for proposal preparation',
                'Engage specialized consultants for technical components',
            ]
        elif complexity > 0.4:
            recommendations += [
                'Highlight relevant past experience in similar projects',
                'Provide detailed technical specifications and methodologies',
            ]

        if competition > 0.7:
            recommendations += [
                'Focus on unique value propositions and differentiators',
                'Consider competitive pricing while maintaining quality',
                'Emphasize local presence and community impact',
            ]
        elif competition > 0.4:
            recommendations += [
                'Balance competitive pricing with quality delivery',
                'Showcase innovation and efficiency improvements',
            ]

        recommendations += self.CATEGORY_RECOMMENDATIONS.get(tender.get('category'), [])

        budget = tender.get('budget_estimate')
        if budget and budget > historical['average_budget']:
            recommendations += [
                'Justify higher costs with superior quality and outcomes',
                'Break down costs transparently with detailed line items',
            ]

        remaining = days_until(tender.get('deadline'))
        if remaining is not None and remaining < 21:
            recommendations += [
                'Prioritize proposal completion with dedicated team',
                'Focus on key requirements rather than comprehensive extras',
            ]

        return recommendations[:self.MAX_RECOMMENDATIONS]

    def build_analysis(self, tender: Dict, historical: Dict, sentiment: Dict) -> Dict:
        """Combine the factor scores into the stored analysis fields."""
        base_estimate = tender.get('budget_estimate') or historical['average_budget']
        complexity = self.calculate_complexity(tender)
        competition = self.calculate_competition(tender, historical)

        variance = 1 + complexity * 0.2 + competition * 0.15
        min_estimate = math.floor(base_estimate * 0.85 * variance)
        max_estimate = math.floor(base_estimate * 1.15 * variance)

        sentiment_bonus = {'POSITIVE': 10, 'NEGATIVE': -10}.get(sentiment['label'], 0)
        win_probability = historical['win_rate'] + sentiment_bonus - complexity * 15 - competition * 20
        win_probability = max(20, min(95, win_probability))

        confidence = math.floor(85 - complexity * 10 - competition * 5 + sentiment['score'] * 10)

        return {
            'estimated_value_min': min_estimate,
            'estimated_value_max': max_estimate,
            'win_probability': math.floor(win_probability),
            'confidence_score': max(60, min(95, confidence)),
            'recommendations': self.generate_recommendations(tender, historical, complexity, competition),
            'analysis_data': {
                'complexity_score': complexity,
                'competition_level': competition,
                'sentiment_analysis': sentiment,
                'historical_win_rate': round(historical['win_rate'], 2),
                'avg_competitors': historical['competitor_count'],
            },
        }

    def analyze(self, tender_id: int, force_regenerate: bool = False) -> Dict:
        """Return the cached analysis of a tender, computing it when missing or forced."""
        if not force_regenerate:
            existing = db.get_ai_analysis(tender_id)
            if existing:
                logger.info(f"Returning existing analysis for tender {tender_id}")
                return existing

        tender = db.get_tender(tender_id)
        if not tender:
            raise LookupError('Tender not found')

        logger.info(f"Analyzing tender: {tender['title'][:60]}")
        similar = db.get_tenders_by_category(tender['category'], exclude_id=tender_id, limit=self.HISTORY_LIMIT)
        historical = self.historical_insights(tender, similar)
        sentiment = self.requirements.analyze_sentiment(tender_text(tender, include_context=False))

        analysis = self.build_analysis(tender, historical, sentiment)
        return db.save_ai_analysis(tender_id, model_version=MODEL_VERSION, **analysis)


# ============== Similarity ==============

STOP_WORDS = {
    'a', 'an', 'and', 'are', 'as', 'at', 'be', 'by', 'for', 'from', 'in', 'including',
    'into', 'is', 'it', 'its', 'of', 'on', 'or', 'other', 'the', 'to', 'with',
}


def term_vector(text: str) -> Counter:
    """Term frequencies of a text, lowercased and without stop words."""
    return Counter(w for w in re.findall(r'[a-z0-9]+', (text or '').lower())
                   if w not in STOP_WORDS and len(w) > 1)


def cosine_similarity(a: Counter, b: Counter) -> float:
    if not a or not b:
        return 0.0
    dot = sum(count * b[term] for term, count in a.items() if term in b)
    norm_a = math.sqrt(sum(c * c for c in a.values()))
    norm_b = math.sqrt(sum(c * c for c in b.values()))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def similarity_score(target: Dict, other: Dict, target_vector: Counter = None) -> float:
    """Text similarity plus bonuses for shared category, organization and budget size."""
    target_vector = target_vector if target_vector is not None else term_vector(tender_text(target))
    score = cosine_similarity(target_vector, term_vector(tender_text(other)))

    if other.get('category') == target.get('category'):
        score += 0.1
    if other.get('organization') and other.get('organization') == target.get('organization'):
        score += 0.05

    budget_a = target.get('budget_estimate')
    budget_b = other.get('budget_estimate')
    if budget_a and budget_b:
        ratio = min(budget_a / budget_b, budget_b / budget_a)
        if ratio > 0.7:
            score += 0.05

    return round(score, 2)


def find_similar_tenders(tender_id: int, limit: int = 10) -> List[Dict]:
    """Most similar tenders to the given one, with their cached analyses."""
    target = db.get_tender(tender_id)
    if not target:
        raise LookupError('Target tender not found')

    others = db.get_other_tenders(tender_id, limit=100)
    target_vector = term_vector(tender_text(target))

    similarities = []
    for tender in others:
        similarities.append({
            'id': tender['id'],
            'title': tender['title'],
            'organization': tender.get('organization'),
            'category': tender.get('category'),
            'budget_estimate': tender.get('budget_estimate'),
            'similarity_score': similarity_score(target, tender, target_vector),
        })

    similarities.sort(key=lambda s: s['similarity_score'], reverse=True)
    top_similar = similarities[:limit]

    for similar in top_similar:
        analysis = db.get_ai_analysis(similar['id'])
        if analysis:
            similar['analysis'] = {
                'win_probability': analysis['win_probability'],
                'estimated_value_min': analysis['estimated_value_min'],
                'estimated_value_max': analysis['estimated_value_max'],
            }

    logger.info(f"Found {len(top_similar)} similar tenders for tender {tender_id}")
    return top_similar


def get_requirement_signals(tender: Dict, analyzer: RequirementAnalyzer = None) -> Dict:
    """Requirement theme scores and sentiment for a tender."""
    analyzer = analyzer or RequirementAnalyzer()
    text = tender_text(tender, include_context=False)
    return {
        'requirements': analyzer.score_requirements(text),
        'sentiment': analyzer.analyze_sentiment(text),
    }
