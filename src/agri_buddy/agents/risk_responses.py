"""Supportive responses for each risk tier."""

from __future__ import annotations

import random

from pydantic import BaseModel, Field

from agri_buddy.orchestrator.schemas import EmotionCategory, TomorrowWeather

MENTOR_COMFORT_LINE = "きもち、うけとめました。ひとりでかかえこまないで。"
MENTOR_ASK_LINE = "だれかに相談してみませんか？「はい」か「いいえ」で教えてください。"
MENTOR_SHEET_READY_LINE = "相談シートを用意しました。コピーして使ってください。"

TIER1_NUDGES: dict[EmotionCategory, tuple[str, ...]] = {
    EmotionCategory.PHYSICAL: (
        "むりせんでね。",
        "からだ、だいじにしてね。",
        "きょうはこのへんで、じゅうぶん。",
    ),
    EmotionCategory.WEATHER: (
        "こまめに休憩、わすれんでね。",
        "てんきにむりせず、いきましょう。",
    ),
    EmotionCategory.ISOLATION: (
        "ひとりでよくがんばってる。",
        "いつでもここにおるよ。",
    ),
    EmotionCategory.FINANCIAL: (
        "かんがえすぎんでね。",
        "いっぽずつ、いきましょう。",
    ),
    EmotionCategory.MOTIVATION: (
        "やる気がでないときもある。だいじょうぶ。",
        "きょうはこのくらいで、よか。",
    ),
    EmotionCategory.RESIGNATION: (
        "きもち、わかるよ。",
        "そうおもうときもある。だいじょうぶ。",
    ),
}


class Tier2Content(BaseModel):
    """Comfort card shown instead of the save celebration."""

    title: str = Field(..., description="Card title")
    message: str = Field(..., description="Empathetic message")
    suggestion: str = Field(..., description="Gentle next step")


TIER2_COMFORT: dict[EmotionCategory, tuple[Tier2Content, ...]] = {
    EmotionCategory.PHYSICAL: (
        Tier2Content(
            title="からだ、おつかれさま",
            message="痛みや疲れを感じながらの作業、ほんとうにお疲れさまです。",
            suggestion="15分だけでも横になって、からだを休めてみませんか。",
        ),
        Tier2Content(
            title="よくがんばった",
            message="からだが悲鳴をあげてるサイン。聞いてあげて。",
            suggestion="ストレッチや入浴で、筋肉をほぐしてみて。",
        ),
    ),
    EmotionCategory.WEATHER: (
        Tier2Content(
            title="きびしい天気のなかで",
            message="この天候での作業、ほんとうに大変だったはず。",
            suggestion="水分補給と休憩を忘れずに。明日の天気も確認しておきましょう。",
        ),
    ),
    EmotionCategory.ISOLATION: (
        Tier2Content(
            title="ひとりでがんばってる",
            message="だれにも言えないこと、ここに話してくれてありがとう。",
            suggestion="地域の農業者交流会やJAの相談窓口、使ってみませんか。",
        ),
    ),
    EmotionCategory.FINANCIAL: (
        Tier2Content(
            title="お金のこと、きついよね",
            message="経営のプレッシャー、ひとりで抱えなくていい。",
            suggestion="農業経営アドバイザーや融資相談窓口に、一度話してみるのもあり。",
        ),
    ),
    EmotionCategory.MOTIVATION: (
        Tier2Content(
            title="やる気が出ないとき",
            message="そういう日もある。サボりじゃなくて、こころの休憩日。",
            suggestion="最低限だけやって、あとは好きなことしましょう。",
        ),
    ),
    EmotionCategory.RESIGNATION: (
        Tier2Content(
            title="つらいよね",
            message="報われない気持ち、よくわかる。でも、記録を続けてるだけですごい。",
            suggestion="信頼できるだれかに、今の気持ちを話してみて。",
        ),
    ),
}

CONSULTATION_CONTACTS: tuple[str, ...] = (
    "長崎県新規就農相談センター 095-895-2946",
    "JA長崎せいひ 095-838-5200",
    "よりそいホットライン 0120-279-338（24時間無料）",
)


def pick_nudge(category: EmotionCategory | None, rng: random.Random | None = None) -> str | None:
    """One short spoken line for a tier-1 category (None for SOS or unknown)."""
    pool = TIER1_NUDGES.get(category) if category else None
    if not pool:
        return None
    return (rng or random).choice(pool)


def get_comfort(category: EmotionCategory | None, rng: random.Random | None = None) -> Tier2Content:
    """Comfort card for a tier-2 category, defaulting to the physical pool."""
    pool = TIER2_COMFORT.get(category) if category else None
    pool = pool or TIER2_COMFORT[EmotionCategory.PHYSICAL]
    return (rng or random).choice(pool)


def weather_care(temp: float) -> str | None:
    if temp >= 33:
        return "気温が高いです。こまめな水分補給と日陰での休憩を。"
    if temp >= 30:
        return "暑い日です。15分おきに水を飲んで。"
    if temp <= 5:
        return "冷え込みます。防寒をしっかり。温かい飲み物を手元に。"
    return None


def tomorrow_hint(weather: TomorrowWeather) -> str:
    """Spoken advice for tomorrow in mentor mode."""
    if weather.max_temp >= 30:
        hint = "あさの涼しいうちだけ作業。ごごはやすむ。"
    elif weather.max_temp <= 10:
        hint = "さむいので、むりしないで。"
    else:
        hint = "てんきにあわせて、むりなく。"
    return f"あしたは{weather.description}、最高{int(weather.max_temp)}度。{hint}"


def build_consultation_sheet(
    concern: str,
    date_label: str,
    weather: TomorrowWeather | None = None,
) -> str:
    """
    Static consultation sheet text offered for copy in mentor mode.

    Args:
        concern: What the farmer said.
        date_label: Date rendered as "YYYY年M月D日".
        weather: Optional next-day forecast.

    Returns:
        Plain text sheet.
    """
    lines = [
        "【営農相談シート】",
        f"日付: {date_label}",
        "営農者: ＿＿＿＿＿＿",
        "就農地: 長崎県長崎市茂木町",
        "",
        "【相談内容】",
        concern.strip() or "（記入してください）",
    ]
    if weather is not None:
        lines += [
            "",
            "【当日の天気】",
            f"{weather.description} 最高{int(weather.max_temp)}℃ / 最低{int(weather.min_temp)}℃",
        ]
    lines += ["", "【相談先】"]
    lines += [f"・{c}" for c in CONSULTATION_CONTACTS]
    return "\n".join(lines)
