import pytest

from agri_buddy.agents.risk_classifier import RiskClassifier, RiskThresholds, analyze_emotion
from agri_buddy.orchestrator.schemas import EmotionCategory


@pytest.mark.parametrize(
    "text, tier",
    [
        ("今日は灌水をしました", 0),
        ("腰が痛い", 1),
        ("疲れたし腰が痛い", 2),
        ("死にたい", 3),
        ("ちょっと助けて", 3),
    ],
)
def test_tiers(text: str, tier: int) -> None:
    assert analyze_emotion(text).tier == tier


def test_no_signal_returns_empty_analysis() -> None:
    result = analyze_emotion("ハウスの換気をした")
    assert result.score == 0
    assert result.signals == ()
    assert result.primary_category is None


def test_any_sos_phrase_is_tier_three_even_below_threshold() -> None:
    classifier = RiskClassifier(RiskThresholds(tier3=100, tier2=50, tier1=10))
    result = classifier.analyze("もう無理")
    assert result.score == 3
    assert result.tier == 3
    assert result.primary_category == EmotionCategory.SOS


def test_primary_is_highest_weight_with_table_order_ties() -> None:
    result = analyze_emotion("疲れた。赤字で借金もある")
    # 赤字 and 借金 both weigh 2; 赤字 comes first in the table.
    assert result.primary_category == EmotionCategory.FINANCIAL
    assert result.score == 5
    assert result.categories == [EmotionCategory.PHYSICAL, EmotionCategory.FINANCIAL]


def test_thresholds_are_tunable() -> None:
    strict = RiskClassifier(RiskThresholds(tier3=6, tier2=2, tier1=1))
    assert strict.analyze("腰が痛い").tier == 2
    assert strict.thresholds.tier2 == 2
