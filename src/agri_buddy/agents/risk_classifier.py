"""
Emotion and risk classification.

Scores an utterance against a fixed table of distress phrases and maps the
score to an escalation tier:

- tier 3: score >= tier-3 threshold, or any SOS phrase at all
- tier 2: score >= tier-2 threshold (deferred comfort at save time)
- tier 1: score >= tier-1 threshold (one spoken nudge)
- tier 0: nothing detected
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from agri_buddy.orchestrator.schemas import EmotionAnalysis, EmotionCategory, EmotionSignal
from agri_buddy.reasoning.rules import RuleTable

logger = logging.getLogger(__name__)

_P = EmotionCategory.PHYSICAL.value
_W = EmotionCategory.WEATHER.value
_I = EmotionCategory.ISOLATION.value
_F = EmotionCategory.FINANCIAL.value
_M = EmotionCategory.MOTIVATION.value
_R = EmotionCategory.RESIGNATION.value
_S = EmotionCategory.SOS.value

EMOTION_RULES = RuleTable.from_entries(
    "emotion",
    [
        # Physical fatigue
        (r"腰(が)?痛", _P, 2),
        (r"足(が)?痛", _P, 1),
        (r"体(が)?痛", _P, 2),
        (r"頭(が)?痛", _P, 1),
        (r"寝不足", _P, 1),
        (r"眠(い|たい|れな)", _P, 1),
        (r"バテ(た|てる|気味)", _P, 2),
        (r"ふらふら", _P, 2),
        (r"熱中症", _P, 3),
        (r"疲れた|つかれた", _P, 1),
        (r"だるい", _P, 1),
        (r"きつい", _P, 1),
        # Weather stress
        (r"暑すぎ|あつすぎ", _W, 1),
        (r"寒すぎ|さむすぎ", _W, 1),
        (r"雨(が)?続", _W, 1),
        (r"台風", _W, 2),
        (r"日照り", _W, 1),
        # Isolation
        (r"一人(で|だ|じゃ)", _I, 2),
        (r"誰も(いない|来ない|手伝)", _I, 2),
        (r"孤独", _I, 2),
        (r"相談(する人|できる人|相手).*(いない|おらん)", _I, 3),
        # Financial stress
        (r"赤字", _F, 2),
        (r"お金(が)?ない", _F, 2),
        (r"儲から(ない|ん)", _F, 2),
        (r"借金", _F, 2),
        (r"経営.*(苦|厳|大変)", _F, 2),
        # Low motivation
        (r"やる気.*(ない|出ない|でない)", _M, 2),
        (r"めんどくさい|めんどい", _M, 1),
        (r"やりたくない", _M, 2),
        # Resignation
        (r"もう(いい|ええ)", _R, 2),
        (r"どうでもいい", _R, 3),
        (r"意味(が)?ない", _R, 2),
        (r"何やっても", _R, 2),
        (r"報われ(ない|ん)", _R, 2),
        # SOS
        (r"死にたい|しにたい", _S, 6),
        (r"消えたい|きえたい", _S, 6),
        (r"助けて|たすけて", _S, 3),
        (r"もう無理|もうむり", _S, 3),
        (r"辞めたい|やめたい", _S, 3),
        (r"しんどい", _S, 3),
        (r"つらい|辛い", _S, 3),
        (r"限界", _S, 3),
        (r"逃げたい|にげたい", _S, 3),
        (r"潰れ(そう|る)", _S, 3),
        (r"(?i:sos)", _S, 6),
    ],
)


@dataclass(frozen=True)
class RiskThresholds:
    """Score thresholds for tiers 3, 2 and 1."""

    tier3: int = 6
    tier2: int = 3
    tier1: int = 1


class RiskClassifier:
    """
    Pure utterance -> EmotionAnalysis classifier.

    The rule table and thresholds are injectable so deployments can tune
    routing without touching the matching algorithm.
    """

    def __init__(
        self,
        thresholds: RiskThresholds | None = None,
        rules: RuleTable | None = None,
    ) -> None:
        self._thresholds = thresholds or RiskThresholds()
        self._rules = rules or EMOTION_RULES

    @property
    def thresholds(self) -> RiskThresholds:
        return self._thresholds

    def analyze(self, text: str) -> EmotionAnalysis:
        """
        Classify one utterance.

        Args:
            text: Raw utterance.

        Returns:
            Tier, score, matched signals and the primary category.
        """
        matches = self._rules.evaluate(text or "")
        if not matches:
            return EmotionAnalysis()

        signals = tuple(
            EmotionSignal(category=EmotionCategory(m.category), phrase=m.phrase, weight=m.weight)
            for m in matches
        )
        score = sum(s.weight for s in signals)
        has_sos = any(s.category == EmotionCategory.SOS for s in signals)

        t = self._thresholds
        if has_sos or score >= t.tier3:
            tier = 3
        elif score >= t.tier2:
            tier = 2
        elif score >= t.tier1:
            tier = 1
        else:
            tier = 0

        # Highest weight wins; ties keep table order.
        primary = signals[0]
        for s in signals[1:]:
            if s.weight > primary.weight:
                primary = s

        if tier >= 2:
            logger.info(f"[RISK] tier={tier} score={score} primary={primary.category.value}")

        return EmotionAnalysis(
            tier=tier,
            score=score,
            signals=signals,
            primary_category=primary.category,
        )


_default_classifier = RiskClassifier()


def analyze_emotion(text: str) -> EmotionAnalysis:
    """Classify `text` with the default thresholds."""
    return _default_classifier.analyze(text)
