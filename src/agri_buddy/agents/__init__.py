"""
Agents module containing the rule-based analyzers.

Each agent handles one aspect of the diary interview: emotional risk,
slot extraction and record confidence.
"""

from agri_buddy.agents.confidence import ProfitEstimate, estimate_profit
from agri_buddy.agents.risk_classifier import RiskClassifier, RiskThresholds, analyze_emotion
from agri_buddy.agents.slot_extraction import apply_answer, extract_slots, local_extraction_response

__all__ = [
    "ProfitEstimate",
    "RiskClassifier",
    "RiskThresholds",
    "analyze_emotion",
    "apply_answer",
    "estimate_profit",
    "extract_slots",
    "local_extraction_response",
]
