"""
Local, deterministic generators for confidence, advice and the admin log.

These run when the AI path is degraded, and seed the review screen before
the richer AI version arrives. Every tip is guarded by `is_negative_input`
so an explicit "none" never reads as data.
"""

from __future__ import annotations

import re
from datetime import date

from pydantic import BaseModel, Field

from agri_buddy.orchestrator.schemas import Confidence, PartialSlots, format_number

NEGATIVE_EXACT_RE = re.compile(
    r"^(なし|ない|いない|大丈夫|問題ない|異常なし|特になし|特にない|とくにない|特にありません|"
    r"なかった|なかったです|いなかった|いなかったです|ありませんでした|使いませんでした|"
    r"やりませんでした|していません|やっていません)$",
    re.IGNORECASE,
)
NEGATIVE_SUFFIX_RE = re.compile(
    r"(ません(でした)?|てない|ていない|やってない|してない|していない|なかった(です)?|"
    r"いなかった(です)?|ありません(でした)?|使わなかった(です)?|使いません(でした)?|"
    r"かかりません(でした)?|かからなかった(です)?|やりません(でした)?|やらなかった(です)?|"
    r"あげてない|あげていない|出てない|出ていない|なさそう|なさそうです)$"
)
# Longer sentences can carry a negated clause next to real data
# ("カイガラムシが出ていたけど薬をやっていない").
NEGATIVE_SUFFIX_MAX_LEN = 15

PEST_VERB_RE = re.compile(
    r"(が|を|は)?(い(た|ました|ます|る)|あっ(た|て)|出(た|て(い(た|る))?)|"
    r"発生(し(た|て(い(た|る))?)?)?|見つか(った|って)|確認(し(た|て(い(た|る))?)?)?)$"
)

LOW_CONFIDENCE_ADVICE = "記録しました。詳細を追加すると、具体的な分析が可能になります。"
DEFAULT_STRATEGIC_ADVICE = "記録完了。次回の入力で傾向分析が可能になります。"

REFERENCE_LINKS: tuple[str, ...] = (
    "長崎県農林技術開発センター: https://www.pref.nagasaki.jp/section/nougisen/",
    "農研機構 果樹研究部門: https://www.naro.go.jp/laboratory/nifts/",
    "JA長崎せいひ 枇杷栽培情報: https://www.ja-nagasakiseihi.jp/",
)

PRICE_PER_KG = 800


def is_negative_input(value: str | None) -> bool:
    """True when `value` is an explicit "none / didn't do it" answer."""
    if not value:
        return False
    t = value.strip()
    if NEGATIVE_EXACT_RE.match(t):
        return True
    return len(t) <= NEGATIVE_SUFFIX_MAX_LEN and NEGATIVE_SUFFIX_RE.search(t) is not None


def clean_pest_name(raw: str) -> str:
    """Strip trailing verbs ("アブラムシがいた" -> "アブラムシ")."""
    return PEST_VERB_RE.sub("", raw).strip() or raw


def _meaningful(value: str | None) -> bool:
    return bool(value) and not is_negative_input(value)


def _has_pest(slots: PartialSlots) -> bool:
    return _meaningful(slots.pest_status) and slots.pest_status != "なし"


def _first_int(text: str | None) -> int | None:
    m = re.search(r"(\d+)", text or "")
    return int(m.group(1)) if m else None


def count_meaningful_fields(slots: PartialSlots) -> int:
    """Fields that are present and not a detected negative utterance."""
    filled = 0
    filled += slots.max_temp is not None
    filled += slots.min_temp is not None
    filled += slots.humidity is not None
    filled += bool(slots.work_log)
    filled += bool(slots.plant_status) and slots.plant_status != "良好"
    filled += _meaningful(slots.fertilizer)
    filled += _has_pest(slots)
    filled += _meaningful(slots.harvest_amount)
    filled += bool(slots.material_cost)
    return int(filled)


def confidence(slots: PartialSlots) -> Confidence:
    filled = count_meaningful_fields(slots)
    if filled >= 5:
        return Confidence.HIGH
    if filled >= 1:
        return Confidence.MEDIUM
    return Confidence.LOW


def _temperature_tips(slots: PartialSlots) -> list[str]:
    tips: list[str] = []
    max_t = slots.max_temp
    if max_t is None:
        return tips
    t = format_number(max_t)
    if max_t >= 35:
        tips.append(f"{t}℃は暑すぎて葉が働けない温度。遮光ネット50%を張って、15時すぎたら天窓を全開に。実が焼けないよう葉陰を確保。")
    elif max_t >= 30:
        tips.append(f"{t}℃はやや高め。暑いとハウスが乾きやすいから、水やりを普段より1割ほど増やす。午後は遮光して実の温度を下げる。")
    elif max_t <= 3:
        tips.append(f"{t}℃は枇杷がやられる寒さ。二重カーテン＋暖房機を確認しましょう。花は-3℃、小さい実は-1℃でダメになる。")
    elif max_t <= 8:
        tips.append(f"{t}℃。保温資材を点検しましょう。夜の気温に注意。")
    else:
        tips.append(f"{t}℃は枇杷がよく育つ温度帯。このまま続けて大丈夫。")

    if slots.min_temp is not None and max_t - slots.min_temp > 10:
        spread = format_number(max_t - slots.min_temp)
        tips.append(f"昼夜の温度差{spread}℃。10℃超えると甘くなりやすいけど、結露しやすい。朝イチで換気して結露を飛ばし、灰色かび病を防ぐ。")
    return tips


def _humidity_tip(humidity: float | None) -> str | None:
    if humidity is None:
        return None
    if humidity < 40:
        return "乾燥しすぎると葉が閉じて育ちが悪くなる。ミスト灌水か葉水で湿度60%以上を目標に。"
    if humidity < 50:
        return "葉水をすると楽になる。午前中がいい。"
    if humidity > 90:
        return "灰色かびやすす病が出やすい。扇風機と天窓で80%以下まで下げる。"
    if humidity > 85:
        return "カビが出やすい条件。換気を強めて、通路の草を刈って風通しを良くする。"
    return None


def _pest_tip(pest_status: str) -> str:
    pest = clean_pest_name(pest_status)
    if "カイガラムシ" in pest:
        return "マシン油乳剤95%の散布（発生初期）が有効。放置するとすす病を併発し、商品価値が著しく低下する可能性。"
    if "うどんこ" in pest:
        return "トリフミン水和剤またはカリグリーンの散布が有効。風通しをよくすると再発しにくい。"
    if "アブラムシ" in pest:
        return "モスピラン水溶剤の散布が有効。天敵（テントウムシ）の活用も検討。ウイルス媒介リスクがあるため早めに防除しましょう。"
    return "拡大前の早期防除が大事。被害面積を記録し、次の散布計画を考えましょう。"


def _next_actions(slots: PartialSlots) -> list[str]:
    actions: list[str] = []
    if slots.max_temp is not None and slots.max_temp >= 30:
        actions.append("遮光ネットの確認と灌水量の調整")
    if slots.max_temp is not None and slots.max_temp <= 8:
        actions.append("保温資材と暖房機の点検")
    if slots.humidity is not None and slots.humidity > 85:
        actions.append("換気扇の稼働確認と天窓開度の調整")
    if slots.humidity is not None and slots.humidity < 50:
        actions.append("葉水の実施（午前中推奨）")
    if _meaningful(slots.fertilizer):
        actions.append("施肥後3〜5日で葉色変化を観察")
    if _has_pest(slots):
        actions.append(f"{clean_pest_name(slots.pest_status or '')}の経過観察と防除記録の更新")
    if _meaningful(slots.harvest_amount):
        actions.append("樹勢回復に礼肥を考えましょう")
    return actions


def advice(slots: PartialSlots, conf: Confidence | None = None) -> str:
    """
    Rule-based cultivation advice.

    Args:
        slots: Collected slots.
        conf: Confidence bucket; computed from `slots` when omitted.

    Returns:
        Tips, a 【次のアクション】 block and a 【参考】 block, or the
        low-confidence placeholder.
    """
    conf = conf or confidence(slots)
    if conf == Confidence.LOW:
        return LOW_CONFIDENCE_ADVICE

    tips = _temperature_tips(slots)
    humidity_tip = _humidity_tip(slots.humidity)
    if humidity_tip:
        tips.append(humidity_tip)
    if _meaningful(slots.fertilizer):
        tips.append("根に届くまで3〜5日、葉の色に出るまで7〜10日。肥料のやりすぎに注意。根っこが傷みます。")
    if _has_pest(slots):
        tips.append(_pest_tip(slots.pest_status or ""))
    if _meaningful(slots.harvest_amount):
        qty = _first_int(slots.harvest_amount)
        if qty is not None:
            tips.append("収穫後は礼肥（お礼の肥料）を検討。粒を揃えて、いいタイミングで出すと値段が変わる。")
            if qty >= 50:
                tips.append("たくさん穫れたぶん、木への負担が大きい。来年の花が減る可能性があるから、秋の肥料を早めに計画。")

    if not tips:
        return LOW_CONFIDENCE_ADVICE

    result = "\n".join(tips)
    actions = _next_actions(slots)
    if actions:
        result += "\n\n【次のアクション】\n" + "\n".join(f"・{a}" for a in actions)
    result += "\n\n【参考】\n" + "\n".join(REFERENCE_LINKS)
    return result


def _dedupe_lines(lines: list[str]) -> list[str]:
    """Drop exact duplicates and lines contained in a longer line."""
    unique = list(dict.fromkeys(lines))
    return [
        line
        for line in unique
        if not any(other != line and len(other) > len(line) and line in other for other in unique)
    ]


def strategic_advice(slots: PartialSlots) -> str:
    lines: list[str] = []
    if slots.max_temp is not None:
        if slots.max_temp >= 35:
            lines.append("【緊急】遮光ネットを張る・天窓全開で換気・葉水をすぐやる")
        elif slots.max_temp >= 30:
            lines.append("次回: 遮光ネット50%を確認、水やり1割増し、午後は換気を強める")
        elif slots.max_temp <= 3:
            lines.append("【緊急】二重カーテン確認・暖房をつける・霜対策")
        elif slots.max_temp <= 8:
            lines.append("次回: 保温資材を点検、夜の気温をよく見る")
    if slots.humidity is not None:
        if slots.humidity < 50:
            lines.append("次回: 午前中に葉水をして、湿度60%以上をキープ")
        if slots.humidity > 85:
            lines.append("次回: 扇風機が動いてるか確認、天窓を調整して80%以下に")
    if _has_pest(slots):
        lines.append(f"次回: {clean_pest_name(slots.pest_status or '')}の様子を最優先で見る、防除記録を更新")
    if _meaningful(slots.fertilizer):
        lines.append("次回: 肥料をやって3〜5日で葉の色をチェック")
    if _meaningful(slots.harvest_amount):
        lines.append("次回: 礼肥を検討、来年の花への影響も考える")
    cost = _first_int(slots.material_cost)
    if cost is not None and cost >= 10000:
        lines.append(f"経営注記: 資材費{slots.material_cost}、月の予算と合ってるか確認しましょう")

    unique = _dedupe_lines(lines)
    return "\n".join(unique) if unique else DEFAULT_STRATEGIC_ADVICE


def extract_next_actions(advice_text: str, strategic: str = "") -> list[str]:
    """Collect action lines from advice and 次回: lines, dropping negated ones."""
    actions: list[str] = []
    marker = "【次のアクション】"
    if marker in advice_text:
        for line in advice_text[advice_text.index(marker):].split("\n")[1:]:
            t = line.lstrip("・").strip()
            if not t or t.startswith("【参考】"):
                break
            actions.append(t)
    for line in (strategic or "").split("\n"):
        if line.startswith("次回:"):
            actions.append(line[len("次回:"):].strip())
    cleaned = [a for a in actions if not is_negative_input(re.split(r"[のを、]", a)[0])]
    return _dedupe_lines(cleaned)


def _fmt(value: float | None, unit: str) -> str:
    return f"{format_number(value)}{unit}" if value is not None else "-"


def admin_log(slots: PartialSlots, location: str, today: date | None = None) -> str:
    """
    Deterministic diary template.

    Args:
        slots: Collected slots.
        location: Location name (omitted when empty).
        today: Header date; defaults to the current date.

    Returns:
        Labelled plain-text lines.
    """
    day = (today or date.today()).isoformat()
    lines: list[str | None] = [
        f"【日付】{day}",
        f"【圃場】{location}" if location else None,
        (
            f"【ハウス環境】最高{_fmt(slots.max_temp, '℃')} / 最低{_fmt(slots.min_temp, '℃')} / 湿度{_fmt(slots.humidity, '%')}"
            if slots.max_temp is not None or slots.humidity is not None
            else "【ハウス環境】未計測"
        ),
        f"【作業】{slots.work_log or '-'}",
        f"【作業時間】{slots.work_duration}" if slots.work_duration else None,
        f"【施肥】{slots.fertilizer}" if _meaningful(slots.fertilizer) else None,
        f"【収穫】{slots.harvest_amount}" if _meaningful(slots.harvest_amount) else None,
        f"【資材費】{slots.material_cost}" if slots.material_cost else None,
        f"【燃料費】{slots.fuel_cost}" if slots.fuel_cost else None,
        f"【病害虫】{slots.pest_status if _meaningful(slots.pest_status) else 'なし'}",
        f"【所見】{'特記事項なし' if (slots.plant_status or '良好') == '良好' else slots.plant_status}",
        f"【信頼度】{confidence(slots).value}",
    ]
    return "\n".join(line for line in lines if line)


class ProfitEstimate(BaseModel):
    """Harvest value preview shown after saving."""

    total: int = Field(default=0, description="Estimated value (yen)")
    details: list[str] = Field(default_factory=list, description="Calculation lines")
    praise: str = Field(default="本日もお疲れさまです。", description="Encouragement")
    market_tip: str = Field(default="", description="Caveat about the price assumption")


def estimate_profit(slots: PartialSlots) -> ProfitEstimate:
    total = 0
    details: list[str] = []
    m = re.search(r"(\d+)\s*(kg|キロ)", slots.harvest_amount or "", re.IGNORECASE)
    if m:
        kg = int(m.group(1))
        amount = kg * PRICE_PER_KG
        total += amount
        shown = f"{amount / 10000:.1f}万円" if amount >= 10000 else f"{amount:,}円"
        details.append(f"収穫 {kg}kg × {PRICE_PER_KG}円/kg = +{shown}")

    praises: list[str] = []
    if slots.fertilizer:
        praises.append("施肥作業、お疲れさまです")
    if slots.pest_status:
        praises.append("早期対応、的確です")
    if slots.harvest_amount:
        praises.append("収穫作業、お疲れさまです")
    if slots.has_house_data:
        praises.append("環境計測、継続できています")

    return ProfitEstimate(
        total=total,
        details=details,
        praise=praises[0] + "。" if praises else "本日もお疲れさまです。",
        market_tip="※ 収穫量 × 800円/kg で試算。市場価格により変動します。" if total > 0 else "",
    )
