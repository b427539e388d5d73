"""
Win Probability Engine for TenderAlert.
Estimates the chance of winning a tender and a sensible bid range from
inflation-adjusted historical contract awards.
"""

import re
import math
import logging
from collections import Counter
from typing import Dict, List, Optional

from . import database as db

logger = logging.getLogger(__name__)

# Kenya inflation rates (CBK historical data), percent per year
INFLATION_RATES = {
    2019: 5.2, 2020: 5.4, 2021: 6.1, 2022: 7.6, 2023: 7.7, 2024: 6.9, 2025: 5.5, 2026: 5.0,
}
DEFAULT_INFLATION_RATE = 5.0
CURRENT_YEAR = 2026

DISCLAIMER_TEMPLATE = (
    "⚠️ DISCLAIMER: These estimates are based on {count} historical contracts and include a "
    "±{error}% margin of error. Amounts are adjusted for inflation using CBK rates. This is NOT "
    "financial advice. Actual tender outcomes depend on many factors including technical capabilities, "
    "pricing strategy, competition, and evaluation criteria. ALWAYS conduct your own due diligence and "
    "consult professionals before bidding. TenderAlert Pro is not liable for any decisions made based "
    "on these estimates."
)


def adjust_for_inflation(amount: float, from_year: int, to_year: int = CURRENT_YEAR) -> int:
    """Compound an amount from one year's prices to another's."""
    adjusted = amount
    for year in range(from_year, to_year):
        adjusted *= 1 + INFLATION_RATES.get(year, DEFAULT_INFLATION_RATE) / 100
    return round(adjusted)


def award_year(date_str: Optional[str]) -> int:
    """Year of an award date; undated awards count as last year."""
    if not date_str:
        return CURRENT_YEAR - 1
    match = re.search(r'(\d{4})', str(date_str))
    return int(match.group(1)) if match else CURRENT_YEAR - 1


def std_dev(values: List[float]) -> float:
    """Population standard deviation; 0 for fewer than two values."""
    if len(values) < 2:
        return 0.0
    mean = sum(values) / len(values)
    return math.sqrt(sum((v - mean) ** 2 for v in values) / len(values))


class WinProbabilityEngine:
    """Weights historical evidence into a win probability."""

    WEIGHTS = {
        'category_match': 0.25,
        'location_match': 0.20,
        'budget_fit': 0.20,
        'historical_trend': 0.20,
        'competition': 0.15,
    }

    COMPETITION_SCORES = {
        'low': 80,
        'medium': 55,
        'high': 35,
    }

    # (minimum awards, score)
    TREND_SCORES = [
        (10, 75),
        (5, 60),
        (2, 45),
        (0, 30),
    ]

    BASE_MARGIN = 0.15
    INFLATION_UNCERTAINTY = 0.05
    HISTORY_LIMIT = 500

    def adjusted_awards(self, awards: List[Dict]) -> List[Dict]:
        adjusted = []
        for award in awards:
            amount = award.get('awarded_amount') or 0
            if amount <= 0:
                continue
            year = award_year(award.get('award_date'))
            adjusted.append({
                'original': amount,
                'adjusted': adjust_for_inflation(amount, year),
                'year': year,
                'winner_type': award.get('winner_type') or 'unknown',
                'competition_level': award.get('competition_level') or 'medium',
            })
        return adjusted

    def dominant_competition(self, adjusted: List[Dict]) -> str:
        if not adjusted:
            return 'medium'
        counts = Counter({'low': 0, 'medium': 0, 'high': 0})
        counts.update(a['competition_level'] for a in adjusted)
        return counts.most_common(1)[0][0]

    def calculate_trend_score(self, count: int) -> int:
        for minimum, score in self.TREND_SCORES:
            if count >= minimum:
                return score
        return 30

    def calculate(self, tender_id: int, category: str = None, location: str = None,
                  budget_estimate: float = None) -> Dict:
        """Win probability, bid range and supporting factors for a tender."""
        if not tender_id:
            raise ValueError('tender_id is required')

        tender = db.get_tender(tender_id)
        if not tender:
            raise LookupError('Tender not found')

        tender_category = category or tender['category']
        tender_location = location or tender['location']
        tender_budget = budget_estimate or tender.get('budget_estimate') or 0

        awards = db.get_historical_awards(tender_category, tender_location, limit=self.HISTORY_LIMIT)
        adjusted = self.adjusted_awards(awards)

        avg_original = sum(a['original'] for a in adjusted) / len(adjusted) if adjusted else 0
        avg_adjusted = sum(a['adjusted'] for a in adjusted) / len(adjusted) if adjusted else 0
        price_variance = std_dev([a['adjusted'] for a in adjusted]) / avg_adjusted * 100 if avg_adjusted > 0 else 30

        uncertainty = self.BASE_MARGIN + self.INFLATION_UNCERTAINTY
        optimal_bid = avg_adjusted if avg_adjusted > 0 else tender_budget

        winner_types = Counter(a['winner_type'] for a in adjusted)
        competition_level = self.dominant_competition(adjusted)

        category_score = 80 if awards else 40

        if awards:
            location_hits = sum(1 for a in awards if a.get('location') in (tender_location, 'Kenya'))
            location_score = min(90, location_hits / len(awards) * 100)
        else:
            location_score = 50

        if tender_budget > 0 and avg_adjusted > 0:
            budget_score = max(20, 100 - abs((tender_budget - avg_adjusted) / avg_adjusted) * 50)
        else:
            budget_score = 50

        trend_score = self.calculate_trend_score(len(adjusted))
        competition_score = self.COMPETITION_SCORES[competition_level]

        win_probability = round(
            category_score * self.WEIGHTS['category_match']
            + location_score * self.WEIGHTS['location_match']
            + budget_score * self.WEIGHTS['budget_fit']
            + trend_score * self.WEIGHTS['historical_trend']
            + competition_score * self.WEIGHTS['competition']
        )

        confidence = min(95, max(30, 30 + len(adjusted) * 2 + (20 if price_variance < 30 else 0)))
        percentage_error = round(uncertainty * 100 + price_variance / 2 + (100 - confidence) / 5)
        percentage_error = min(50, max(10, percentage_error))

        logger.info(f"Win probability for tender {tender_id}: {win_probability}% "
                    f"from {len(adjusted)} historical awards")

        return {
            'tenderId': tender_id,
            'tenderTitle': tender['title'],
            'winProbability': min(95, max(5, win_probability)),
            'confidence': confidence,
            'percentageError': percentage_error,
            'estimatedBidRange': {
                'low': round(optimal_bid * (1 - uncertainty)),
                'optimal': round(optimal_bid),
                'high': round(optimal_bid * (1 + uncertainty)),
                'inflationAdjusted': True,
            },
            'historicalComparison': {
                'similarContractsCount': len(adjusted),
                'avgAwardedAmount': round(avg_original),
                'avgInflationAdjusted': round(avg_adjusted),
                'priceVariance': round(price_variance),
                'commonWinnerTypes': [t for t, _ in winner_types.most_common(3)],
            },
            'competitionLevel': competition_level,
            'factors': {
                'categoryMatch': category_score,
                'locationMatch': round(location_score),
                'budgetFit': round(budget_score),
                'historicalTrend': trend_score,
                'competitionIntensity': competition_score,
            },
            'disclaimer': DISCLAIMER_TEMPLATE.format(count=len(adjusted), error=percentage_error),
        }
