"""
Local slot extraction.

Deterministic counterpart of the AI extraction service: speech-recognition
term correction, keyword tables for free narration, and the step tables
used to route follow-up answers into the right slot.
"""

from __future__ import annotations

import re

from agri_buddy.agents import confidence as conf_engine
from agri_buddy.orchestrator.schemas import (
    ExtractionRequest,
    ExtractionResponse,
    FollowUpStep,
    PartialSlots,
    format_number,
    is_valid_humidity,
    is_valid_temp,
)
from agri_buddy.reasoning.rules import RuleTable

# Frequent misrecognitions of farm vocabulary.
AGRI_CORRECTIONS: tuple[tuple[str, str], ...] = (
    (r"感謝", "換気"),
    (r"剣定|選定", "剪定"),
    (r"接ぎ|席", "施肥"),
    (r"果樹園|貸主", "灌水"),
    (r"監視|関数", "灌水"),
    (r"観水|完水", "灌水"),
    (r"飛行|比較", "肥料"),
    (r"視界|しかい|指揮", "資材"),
    (r"燃料日|ねんりょうひ", "燃料費"),
    (r"日格差|格差", "日較差"),
    (r"車庫|社交", "遮光"),
    (r"貝殻虫", "カイガラムシ"),
    (r"うどん粉", "うどんこ病"),
    (r"白い粉", "うどんこ病"),
    (r"灰色カビ", "灰色かび病"),
    (r"あぶら虫|油虫", "アブラムシ"),
    (r"びわ|ビワ|琵琶", "枇杷"),
    (r"摘下", "摘果"),
    (r"線定|洗定", "剪定"),
    (r"市場|至宝", "施肥"),
    (r"殺菌際", "殺菌剤"),
    (r"線香", "選果"),
    (r"用燐", "ようりん"),
    (r"再配|さいはい", "栽培"),
    (r"転園|てんえん", "点検"),
    (r"正規|せいき", "生育"),
)
_CORRECTIONS = tuple((re.compile(p), r) for p, r in AGRI_CORRECTIONS)

# Nagasaki dialect and colloquial phrasing rewritten for the diary.
_LOG_REWRITES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"ばさろ(暑|熱)か"), "非常に高温"),
    (re.compile(r"ちょっとばかし"), "少量"),
    (re.compile(r"よかばい|よかたい"), "良好"),
    (re.compile(r"いっちょん"), "全く"),
    (re.compile(r"水をやっ(た|て)"), "灌水"),
    (re.compile(r"薬をかけ(た|て)"), "薬剤散布"),
)
NAV_NOISE_RE = re.compile(r"(次へ|つぎへ|スキップ|確定|送信)[。、]?")
FILLER_RE = re.compile(r"(えーと|えっと|えー|あのー|あの|うーん|んー)[、。]?")

TEMP_RE = re.compile(r"(\d+(?:\.\d+)?)\s*[度℃]")
HUMIDITY_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(?:%|％|パーセント)")
_DIGITS = str.maketrans("０１２３４５６７８９．", "0123456789.")

WORK_KEYWORDS = RuleTable.from_entries(
    "work_keywords",
    [
        (r"水やり|灌水|かんすい|みずやり", "work", 1, "灌水"),
        (r"剪定|せんてい", "work", 1, "剪定"),
        (r"薬|散布|消毒", "work", 1, "薬剤散布"),
        (r"摘果|てきか", "work", 1, "摘果"),
        (r"施肥|肥料|ひりょう", "work", 1, "施肥"),
        (r"観察|かんさつ|見回", "work", 1, "観察・巡回"),
        (r"収穫|しゅうかく", "work", 1, "収穫"),
        (r"換気|かんき", "work", 1, "換気"),
        (r"袋かけ|袋掛", "work", 1, "袋かけ"),
    ],
)

FERTILIZER_NAMES = RuleTable.from_entries(
    "fertilizer_names",
    [
        (r"硫安", "fertilizer", 1, "硫安"),
        (r"尿素", "fertilizer", 1, "尿素"),
        (r"有機", "fertilizer", 1, "有機肥料"),
        (r"化成", "fertilizer", 1, "化成肥料"),
        (r"石灰", "fertilizer", 1, "石灰"),
    ],
)

PEST_NAMES = RuleTable.from_entries(
    "pest_names",
    [
        (r"うどんこ", "pest", 1, "うどんこ病"),
        (r"カビ", "pest", 1, "カビ発生"),
        (r"アブラムシ", "pest", 1, "アブラムシ"),
        (r"カイガラムシ", "pest", 1, "カイガラムシ"),
        (r"害虫|虫|病気", "pest", 1, "病害虫確認あり"),
    ],
)

# Answer routing: every answer is tested against all steps, not only the
# step being asked.
STEP_RULES = RuleTable.from_entries(
    "follow_up_steps",
    [
        (r"灌水|剪定|散布|摘果|施肥|観察|収穫|換気|袋かけ|消毒|出荷|作業|草刈|定植", FollowUpStep.WORK.value, 1),
        (r"\d+度|\d+℃|温度|気温|最高|最低", FollowUpStep.HOUSE_TEMP.value, 1),
        (r"肥料|追肥|元肥|窒素|リン|カリ|有機|化成|施肥|撒いた|まいた", FollowUpStep.FERTILIZER.value, 1),
        (r"病|虫|害|薬|殺虫|殺菌|防除|散布|カイガラ|すす|紋羽|灰斑|黒点", FollowUpStep.PEST.value, 1),
        (r"収穫|穫れた|取れた|出荷|kg|キロ|コンテナ|箱|個|玉", FollowUpStep.HARVEST.value, 1),
        (r"円|費|コスト|経費|支出|買った|購入|万|千", FollowUpStep.COST.value, 1),
        (r"時間|分|午前|午後|朝|昼|夕|始め|終わ", FollowUpStep.DURATION.value, 1),
        (r"撮った|とった|写真|画像", FollowUpStep.PHOTO.value, 1),
    ],
    ignore_case=True,
)

FUEL_RE = re.compile(r"燃料|ガソリン|軽油|灯油")
_BARE_NUMBER_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*$")

_HOUSE_NAME_RE = re.compile(r"[A-Za-zＡ-Ｚａ-ｚ0-9０-９]+号?\s*ハウス")
_PLACE_NAME_RE = re.compile(r"山の上の畑|[^\s、。,.はがをのにでもへとて]+(?:ハウス|畑|園|圃場)")
_GHOST_PARTICLE_RE = re.compile(r"[はがをのにでもへとて](?:ハウス|畑|園|圃場)$")
_GHOST_BARE_RE = re.compile(r"^(?:ハウス|畑|園|圃場)$")


def correct_agri_terms(text: str) -> str:
    result = text
    for pattern, replacement in _CORRECTIONS:
        result = pattern.sub(replacement, result)
    return result


def correct_for_log(text: str) -> str:
    """Term correction, dialect rewrite, and removal of navigation words and fillers."""
    result = correct_agri_terms(text)
    for pattern, replacement in _LOG_REWRITES:
        result = pattern.sub(replacement, result)
    result = NAV_NOISE_RE.sub("", result)
    result = FILLER_RE.sub("", result)
    return re.sub(r"\s{2,}", " ", result).strip()


def extract_temperatures(text: str) -> list[float]:
    """All in-range temperatures mentioned in `text`, in order of appearance."""
    values = [float(v) for v in TEMP_RE.findall(text.translate(_DIGITS))]
    return [v for v in values if is_valid_temp(v)]


def extract_humidity(text: str) -> float | None:
    m = HUMIDITY_RE.search(text.translate(_DIGITS))
    if not m:
        return None
    value = float(m.group(1))
    return value if is_valid_humidity(value) else None


def temperature_updates(temps: list[float]) -> dict[str, float]:
    """Max/min of the extracted set; a single value is the maximum."""
    if len(temps) >= 2:
        return {"max_temp": max(temps), "min_temp": min(temps)}
    if len(temps) == 1:
        return {"max_temp": temps[0]}
    return {}


def extract_slots(text: str, partial: PartialSlots | None = None) -> PartialSlots:
    """
    Keyword extraction over free narration.

    Args:
        text: Narration (already joined with earlier user turns if desired).
        partial: Slots from earlier turns; kept unless the text overrides them.

    Returns:
        Updated slots.
    """
    partial = partial or PartialSlots()
    corrected = correct_for_log(text)
    lowered = corrected.lower()
    updates: dict[str, object] = {}

    temps = extract_temperatures(corrected)
    if len(temps) >= 2:
        updates.update(temperature_updates(temps))
    elif len(temps) == 1 and partial.max_temp is None:
        updates["max_temp"] = temps[0]

    humidity = extract_humidity(corrected)
    if humidity is not None:
        updates["humidity"] = humidity

    work_labels = WORK_KEYWORDS.labels(lowered)
    if work_labels:
        work = "・".join(work_labels)
        bags = re.search(r"(\d+)\s*袋", corrected)
        if bags:
            work += f"（{bags.group(0)}）"
        updates["work_log"] = work

    if "黄" in lowered or "きいろ" in lowered:
        updates["plant_status"] = "葉の黄化あり（Mg欠乏の可能性）"
    elif "斑点" in lowered or "はんてん" in lowered:
        updates["plant_status"] = "斑点あり（がんしゅ病の可能性）"
    elif partial.plant_status is None:
        updates["plant_status"] = "良好"

    if re.search(r"肥料|施肥|硫安|尿素|有機|化成|石灰", lowered):
        names = FERTILIZER_NAMES.labels(lowered)
        amount = re.search(r"(\d+)\s*(kg|キロ|グラム|g)", corrected, re.IGNORECASE)
        fert = "・".join(names) if names else "肥料"
        updates["fertilizer"] = f"{fert} {amount.group(0)}" if amount else fert

    pests = PEST_NAMES.labels(lowered)
    if pests:
        updates["pest_status"] = pests[0]

    harvest = re.search(r"(\d+)\s*(kg|キロ|個|箱|パック)", corrected, re.IGNORECASE)
    if harvest and re.search(r"収穫|とれ|採れ|穫", lowered):
        updates["harvest_amount"] = harvest.group(0)

    cost = re.search(r"(\d+)\s*(円|えん)", corrected)
    if cost:
        updates["material_cost"] = cost.group(0)

    duration = re.search(r"(\d+)\s*(時間|じかん)", corrected)
    if duration:
        updates["work_duration"] = duration.group(0)

    if FUEL_RE.search(lowered):
        fuel = re.search(r"(?:燃料|ガソリン|軽油|灯油)[代費]?\s*(\d+)\s*円", corrected)
        updates["fuel_cost"] = fuel.group(0) if fuel else "燃料費あり"
        # A yen amount attached to fuel is not a material cost.
        if fuel and cost and cost.group(0) in fuel.group(0):
            updates.pop("material_cost", None)

    return partial.merged(**updates)


def estimate_revenue(slots: PartialSlots) -> int | None:
    """Harvest kg x 800 yen plus work hours x 1500 yen, when either is known."""
    kg = re.search(r"(\d+)\s*(kg|キロ)", slots.harvest_amount or "", re.IGNORECASE)
    hours = re.search(r"(\d+)\s*(時間|じかん)", slots.work_duration or "")
    if not kg and not hours:
        return None
    total = 0
    if kg:
        total += int(kg.group(1)) * conf_engine.PRICE_PER_KG
    if hours:
        total += int(hours.group(1)) * 1500
    return total


def local_extraction_response(request: ExtractionRequest) -> ExtractionResponse:
    """Build an extraction response without the AI service."""
    history = " ".join(m.text for m in request.history if m.role == "user")
    text = f"{history} {request.utterance}".strip()
    slots = extract_slots(text, request.partial)

    extracted: list[str] = []
    if slots.max_temp is not None:
        extracted.append(f"気温{format_number(slots.max_temp)}℃")
    if slots.humidity is not None:
        extracted.append(f"湿度{format_number(slots.humidity)}%")
    if slots.work_log:
        extracted.append(slots.work_log)
    if slots.fertilizer:
        extracted.append(f"施肥: {slots.fertilizer}")
    if slots.harvest_amount:
        extracted.append(f"収穫: {slots.harvest_amount}")
    if slots.work_duration:
        extracted.append(f"作業時間: {slots.work_duration}")
    reply = (
        f"お疲れさまです。{'、'.join(extracted)}で記録しました。"
        if extracted
        else "お疲れさまです。記録しました。"
    )

    return ExtractionResponse(
        reply=reply,
        slots=slots,
        missing_questions=None,
        confidence=conf_engine.confidence(slots),
        new_location=detect_location_override(request.utterance, request.location),
        estimated_revenue=estimate_revenue(slots),
        degraded=True,
    )


def classify_answer(text: str) -> list[FollowUpStep]:
    """Every step whose pattern matches `text`."""
    return [FollowUpStep(c) for c in STEP_RULES.categories(text)]


def _join(existing: str | None, addition: str, sep: str) -> str:
    if existing and addition not in existing:
        return f"{existing}{sep}{addition}"
    return existing or addition


def _apply_step(step: FollowUpStep, text: str, slots: PartialSlots) -> PartialSlots:
    if step == FollowUpStep.WORK:
        return slots.merged(work_log=_join(slots.work_log, text, "・"))
    if step == FollowUpStep.HOUSE_TEMP:
        updates: dict[str, object] = dict(temperature_updates(extract_temperatures(text)))
        humidity = extract_humidity(text)
        if humidity is not None:
            updates["humidity"] = humidity
        return slots.merged(**updates) if updates else slots
    if step == FollowUpStep.FERTILIZER:
        return slots.merged(fertilizer=_join(slots.fertilizer, text, "、"))
    if step == FollowUpStep.PEST:
        return slots.merged(pest_status=text)
    if step == FollowUpStep.HARVEST:
        return slots.merged(harvest_amount=text)
    if step == FollowUpStep.COST:
        if FUEL_RE.search(text):
            return slots.merged(fuel_cost=text)
        return slots.merged(material_cost=text)
    if step == FollowUpStep.DURATION:
        return slots.merged(work_duration=text)
    return slots


def _apply_verbatim(step: FollowUpStep, text: str, slots: PartialSlots) -> PartialSlots:
    bare = _BARE_NUMBER_RE.match(text.translate(_DIGITS))
    if step == FollowUpStep.HOUSE_TEMP:
        # Out-of-range numbers are dropped by slot validation.
        return slots.merged(max_temp=bare.group(1)) if bare else slots
    if step == FollowUpStep.DURATION and bare:
        return slots.merged(work_duration=f"{format_number(float(bare.group(1)))}時間")
    if step == FollowUpStep.COST and bare:
        return slots.merged(material_cost=f"{format_number(float(bare.group(1)))}円")
    return _apply_step(step, text, slots)


def apply_answer(
    current: FollowUpStep,
    text: str,
    slots: PartialSlots,
) -> tuple[PartialSlots, list[FollowUpStep]]:
    """
    Route a follow-up answer into slots.

    Args:
        current: Step that was asked.
        text: Cleaned answer.
        slots: Slots before the answer.

    Returns:
        (updated slots, steps whose patterns matched). An empty list means
        the answer was assigned verbatim to `current`.
    """
    corrected = correct_agri_terms(text)
    matched = classify_answer(corrected)
    if matched:
        for step in matched:
            slots = _apply_step(step, corrected, slots)
        return slots, matched
    return _apply_verbatim(current, corrected, slots), []


def sanitize_location(name: str | None) -> str:
    """Empty string for particle ghosts like "はハウス" or a bare "ハウス"."""
    loc = (name or "").strip()
    if not loc or _GHOST_BARE_RE.match(loc) or _GHOST_PARTICLE_RE.search(loc):
        return ""
    return loc


def detect_location_override(text: str, current: str | None) -> str | None:
    """A location named in `text` that differs from `current`, if any."""
    m = _HOUSE_NAME_RE.search(text) or _PLACE_NAME_RE.search(text)
    if not m:
        return None
    found = sanitize_location(m.group(0))
    if not found or found == current:
        return None
    return found
