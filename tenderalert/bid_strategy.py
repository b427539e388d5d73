"""
Bid Strategy Optimizer for TenderAlert.
Suggests a bid amount, win probability and supporting strategy for a tender
from fixed lookup tables, the tender's requirement signals and its deadline.
"""

import math
import logging
from typing import Dict, List

from . import database as db
from .analysis import RequirementAnalyzer, get_requirement_signals, is_prestigious
from .dates import days_until

logger = logging.getLogger(__name__)


class BidStrategyOptimizer:
    """Rule-based bid strategy generator."""

    DEFAULT_BUDGET = 10000000  # KES, used when nothing better is known
    SIMILAR_LIMIT = 20

    # (risk message, weight)
    RISKS = {
        'deadline': ('Tight deadline may increase execution risks', 0.3),
        'budget': ('Large budget requires significant financial capacity', 0.2),
        'complexity': ('High technical complexity identified', 0.25),
        'sentiment': ('Negative market sentiment detected', 0.15),
        'regulatory': ('Significant regulatory compliance requirements', 0.2),
    }

    RISK_LEVELS = [
        (0.6, 'High Risk'),
        (0.3, 'Medium Risk'),
    ]

    TECH_CAPABILITY_KEYWORDS = ['technical', 'engineering', 'IT', 'technology']
    INNOVATION_CAPABILITY_KEYWORDS = ['innovation', 'research', 'development', 'cutting-edge']

    CAPABILITY_DIFFERENTIATORS = [
        ('local presence', 'Local presence and community engagement'),
        ('sustainability', 'Proven track record in sustainable development'),
        ('innovation', 'Innovative approaches and cutting-edge solutions'),
    ]

    CATEGORY_DIFFERENTIATORS = {
        'Infrastructure': 'Extensive experience in large-scale infrastructure projects',
        'Technology': 'Advanced cybersecurity and data protection measures',
        'Healthcare': 'Compliance with international medical standards',
    }

    CAPABILITY_ADVANTAGES = [
        ('ISO certification', 'ISO certified quality management systems'),
        ('local partnerships', 'Strong local partnerships and supplier networks'),
        ('24/7 support', 'Round-the-clock support and maintenance services'),
    ]

    # Risk keyword -> mitigation strategies
    MITIGATIONS = [
        ('deadline', [
            'Deploy dedicated project management team with proven track record',
            'Implement agile methodology for faster delivery cycles',
        ]),
        ('budget', [
            'Establish comprehensive financial controls and monitoring systems',
            'Secure pre-approved credit facilities and bonding capacity',
        ]),
        ('complexity', [
            'Engage subject matter experts and specialized consultants',
            'Implement rigorous testing and quality assurance protocols',
        ]),
        ('regulatory', [
            'Early engagement with regulatory bodies and compliance experts',
            'Comprehensive documentation and audit trail processes',
        ]),
    ]

    DEFAULT_MITIGATIONS = [
        'Regular stakeholder communication and progress reporting',
        'Proactive risk monitoring and early warning systems',
    ]

    TIMELINES = [
        (60, [
            'Phase 1: Planning and resource allocation (Days 1-30)',
            'Phase 2: Implementation and development (Days 31-75)',
            'Phase 3: Testing and quality assurance (Days 76-90)',
            'Phase 4: Delivery and handover (Days 91-100)',
        ]),
        (30, [
            'Phase 1: Rapid planning and team mobilization (Days 1-10)',
            'Phase 2: Accelerated implementation (Days 11-40)',
            'Phase 3: Quality assurance and delivery (Days 41-50)',
        ]),
    ]

    URGENT_TIMELINE = [
        'Phase 1: Immediate team mobilization and planning (Days 1-5)',
        'Phase 2: Fast-track implementation (Days 6-20)',
        'Phase 3: Final testing and delivery (Days 21-30)',
    ]

    MAX_ITEMS = 4

    def __init__(self, requirement_analyzer: RequirementAnalyzer = None):
        self.requirement_analyzer = requirement_analyzer or RequirementAnalyzer()

    def estimate_budget(self, similar_tenders: List[Dict]) -> float:
        """Mean positive budget of similar tenders, or the default."""
        budgets = [t['budget_estimate'] for t in similar_tenders if (t.get('budget_estimate') or 0) > 0]
        if not budgets:
            return self.DEFAULT_BUDGET
        return sum(budgets) / len(budgets)

    def assess_risk(self, tender: Dict, requirements: Dict, sentiment: Dict) -> Dict:
        risks = []
        total = 0.0

        def flag(key):
            nonlocal total
            message, weight = self.RISKS[key]
            risks.append(message)
            total += weight

        remaining = days_until(tender.get('deadline'))
        if remaining is not None and remaining < 30:
            flag('deadline')
        if (tender.get('budget_estimate') or 0) > 50000000:
            flag('budget')
        if requirements.get('technical complexity', 0) > 0.7:
            flag('complexity')
        if sentiment.get('label') == 'NEGATIVE':
            flag('sentiment')
        if requirements.get('regulatory compliance', 0) > 0.6:
            flag('regulatory')

        assessment = 'Low Risk'
        for threshold, label in self.RISK_LEVELS:
            if total > threshold:
                assessment = label
                break

        return {'risks': risks, 'total_risk': round(total, 2), 'assessment': assessment}

    def _has_capability(self, capabilities: List[str], keywords: List[str]) -> bool:
        return any(kw.lower() in cap.lower() for cap in capabilities for kw in keywords)

    def assess_capabilities(self, tender: Dict, capabilities: List[str], requirements: Dict) -> Dict:
        gap = 0.0
        bonus = 0

        category = (tender.get('category') or '').lower()
        if category and any(category in cap.lower() for cap in capabilities):
            bonus += 5

        if requirements.get('technical complexity', 0) > 0.6:
            if self._has_capability(capabilities, self.TECH_CAPABILITY_KEYWORDS):
                bonus += 10
            else:
                gap += 0.4

        if requirements.get('innovation required', 0) > 0.6 and \
                self._has_capability(capabilities, self.INNOVATION_CAPABILITY_KEYWORDS):
            bonus += 8

        return {'gap': gap, 'bonus': bonus}

    def analyze_competition(self, tender: Dict, similar_tenders: List[Dict]) -> Dict:
        average = self.estimate_budget(similar_tenders)
        penalty = 0
        multiplier = 1.0

        if (tender.get('budget_estimate') or 0) > average * 1.5:
            penalty = 15
            multiplier = 0.95

        if is_prestigious(tender.get('organization')):
            penalty += 10
            multiplier *= 0.97

        return {'competition_penalty': penalty, 'bid_multiplier': multiplier}

    def key_differentiators(self, tender: Dict, capabilities: List[str], capability_match: Dict) -> List[str]:
        differentiators = []
        if capability_match['bonus'] > 10:
            differentiators.append('Strong technical expertise matching tender requirements')
        for capability, text in self.CAPABILITY_DIFFERENTIATORS:
            if capability in capabilities:
                differentiators.append(text)
        if tender.get('category') in self.CATEGORY_DIFFERENTIATORS:
            differentiators.append(self.CATEGORY_DIFFERENTIATORS[tender['category']])
        return differentiators[:self.MAX_ITEMS]

    def competitive_advantages(self, capabilities: List[str], capability_match: Dict) -> List[str]:
        advantages = [text for capability, text in self.CAPABILITY_ADVANTAGES if capability in capabilities]
        if capability_match['bonus'] > 15:
            advantages.append('Exceptional technical capability alignment with requirements')
        if 'green technology' in capabilities:
            advantages.append('Commitment to environmental sustainability and green practices')
        return advantages[:self.MAX_ITEMS]

    def pricing_strategy(self, competition: Dict, risk: Dict) -> str:
        if risk['assessment'] == 'High Risk':
            return 'Premium pricing strategy to account for high risk factors and ensure adequate contingency'
        if competition['competition_penalty'] > 20:
            return ('Competitive pricing strategy with value-based differentiation '
                    'to win in high-competition environment')
        return 'Value-based pricing strategy balancing competitiveness with profitability'

    def execution_timeline(self, tender: Dict) -> List[str]:
        remaining = days_until(tender.get('deadline'))
        total_days = math.floor(remaining) if remaining is not None else 0
        for threshold, phases in self.TIMELINES:
            if total_days > threshold:
                return list(phases)
        return list(self.URGENT_TIMELINE)

    def mitigation_strategies(self, risk: Dict) -> List[str]:
        strategies = []
        for keyword, items in self.MITIGATIONS:
            if any(keyword in message for message in risk['risks']):
                strategies.extend(items)
        if not strategies:
            strategies = list(self.DEFAULT_MITIGATIONS)
        return strategies[:self.MAX_ITEMS]

    def optimize(self, tender_id: int, company_capabilities: List[str] = None,
                 historical_win_rate: float = 70, target_profit_margin: float = 15) -> Dict:
        """Build a bid strategy for a tender."""
        tender = db.get_tender(tender_id)
        if not tender:
            raise LookupError('Tender not found')

        capabilities = [str(c) for c in (company_capabilities or [])]
        ai_analysis = db.get_ai_analysis(tender_id)
        similar = db.get_tenders_by_category(tender['category'], exclude_id=tender_id, limit=self.SIMILAR_LIMIT)

        signals = get_requirement_signals(tender, self.requirement_analyzer)
        requirements = signals['requirements']
        sentiment = signals['sentiment']

        base_budget = tender.get('budget_estimate') or self.estimate_budget(similar)
        if ai_analysis and ai_analysis.get('estimated_value_min') is not None \
                and ai_analysis.get('estimated_value_max') is not None:
            ai_estimate = (ai_analysis['estimated_value_min'] + ai_analysis['estimated_value_max']) / 2
        else:
            ai_estimate = base_budget

        risk = self.assess_risk(tender, requirements, sentiment)
        capability_match = self.assess_capabilities(tender, capabilities, requirements)
        competition = self.analyze_competition(tender, similar)

        optimal_bid = math.floor(
            ai_estimate
            * (1 + risk['total_risk'] * 0.1)
            * (1 - capability_match['gap'] * 0.05)
            * competition['bid_multiplier']
        )

        base_win = (ai_analysis or {}).get('win_probability') or historical_win_rate
        win_probability = base_win + capability_match['bonus'] - risk['total_risk'] * 5 \
            - competition['competition_penalty']
        win_probability = max(10, min(90, win_probability))

        profit_margin = 0.0
        if optimal_bid:
            costs = optimal_bid * (1 - target_profit_margin / 100)
            profit_margin = round((optimal_bid - costs) / optimal_bid * 100, 2)

        logger.info(f"Bid strategy for tender {tender_id}: bid={optimal_bid}, win={round(win_probability)}%")

        return {
            'optimal_bid_amount': optimal_bid,
            'win_probability': round(win_probability),
            'profit_margin': profit_margin,
            'risk_assessment': risk['assessment'],
            'key_differentiators': self.key_differentiators(tender, capabilities, capability_match),
            'pricing_strategy': self.pricing_strategy(competition, risk),
            'execution_timeline': self.execution_timeline(tender),
            'competitive_advantages': self.competitive_advantages(capabilities, capability_match),
            'potential_risks': risk['risks'],
            'mitigation_strategies': self.mitigation_strategies(risk),
        }
