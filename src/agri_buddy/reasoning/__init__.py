"""
Reasoning module with the keyword rule tables used by the analyzers.
"""

from agri_buddy.reasoning.rules import Rule, RuleMatch, RuleTable

__all__ = ["Rule", "RuleMatch", "RuleTable"]
