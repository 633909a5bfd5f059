"""
Console commands shared by the text and voice front ends.

Anything that is not a command is fed to the interview as typed narration.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import Callable

from agri_buddy.agents.confidence import extract_next_actions
from agri_buddy.orchestrator.interview_orchestrator import InterviewOrchestrator
from agri_buddy.orchestrator.interview_state import InterviewContext
from agri_buddy.orchestrator.schemas import MentorStep, Phase
from agri_buddy.records.finalizer import SaveOutcome

logger = logging.getLogger(__name__)

Write = Callable[[str], None]

HELP_TEXT = """コマンド:
  /new              新しい記録をはじめる
  /stop             聞き取りを止める
  /skip             この質問をとばす
  /skipall          残りの質問をとばして確認へ
  /photo            写真を追加
  /image <path>     作業シートの写真を読み取る
  /edit <key> <値>  確認画面の項目を修正
  /save             保存
  /discard          記録を破棄
  /yes, /no         相談シートを作るかどうか
  /help             このヘルプ
  /quit             終了
それ以外の入力は、話した内容として扱います。"""

QUIT_WORDS = {"/quit", "/exit", "quit", "exit"}
NEXT_ACTIONS_MARKER = "【次のアクション】"


def render_context(ctx: InterviewContext) -> str:
    """Text for the screens a terminal can show: review, consultation sheet, notices."""
    lines: list[str] = []
    if ctx.notice:
        lines.append(f"[お知らせ] {ctx.notice}")
    if ctx.phase == Phase.CONFIRM:
        lines.append("---- 内容の確認 ----")
        for item in ctx.confirm_items:
            lines.append(f"  {item.key:<15} {item.label}: {item.value or '-'}")
        source = "AI" if ctx.admin_log_source == "ai" else "テンプレート"
        lines.append(f"---- 日誌 ({source}) ----")
        lines.append(ctx.admin_log)
        lines.append("/edit で修正、/save で保存、/discard で破棄")
    elif ctx.phase == Phase.MENTOR and ctx.mentor_step == MentorStep.SHEET:
        lines.append(ctx.consultation_sheet)
    return "\n".join(lines)


def render_outcome(outcome: SaveOutcome) -> str:
    record = outcome.record
    lines = [f"保存しました: {record.date} {record.location} (id={record.id})"]
    if outcome.comfort is not None:
        lines += [f"【{outcome.comfort.title}】", outcome.comfort.message, outcome.comfort.suggestion]
        if outcome.weather_tip:
            lines.append(outcome.weather_tip)
    else:
        lines.append(outcome.message)
        lines += outcome.profit.details
        if outcome.profit.market_tip:
            lines.append(outcome.profit.market_tip)
    if record.advice:
        analysis = record.advice.split(NEXT_ACTIONS_MARKER)[0].strip()
        lines += ["", analysis]
    actions = extract_next_actions(record.advice or "", record.strategic_advice or "")
    if actions:
        lines += ["", NEXT_ACTIONS_MARKER] + [f"  □ {a}" for a in actions]
    return "\n".join(lines)


async def _read_image(path_text: str) -> tuple[bytes, str]:
    path = Path(path_text).expanduser()
    data = await asyncio.to_thread(path.read_bytes)
    mime_type = mimetypes.guess_type(path.name)[0] or "image/jpeg"
    return data, mime_type


async def handle_line(orchestrator: InterviewOrchestrator, line: str, write: Write = print) -> bool:
    """
    Run one console line.

    Args:
        orchestrator: Interview to drive.
        line: Raw input.
        write: Output sink.

    Returns:
        False when the user asked to quit.
    """
    text = line.strip()
    if not text:
        return True
    if text.lower() in QUIT_WORDS:
        return False
    if not text.startswith("/"):
        await orchestrator.submit_text(text)
        return True

    command, _, rest = text.partition(" ")
    rest = rest.strip()
    if command == "/help":
        write(HELP_TEXT)
    elif command == "/new":
        await orchestrator.begin()
    elif command == "/stop":
        await orchestrator.stop_listening()
    elif command == "/skip":
        await orchestrator.skip_step()
    elif command == "/skipall":
        await orchestrator.skip_all()
    elif command == "/discard":
        await orchestrator.discard()
        write("記録を破棄しました。")
    elif command == "/photo":
        await orchestrator.attach_photo()
    elif command == "/yes":
        await orchestrator.mentor_answer(True)
    elif command == "/no":
        await orchestrator.mentor_answer(False)
    elif command == "/edit":
        key, _, value = rest.partition(" ")
        if not key:
            write("使い方: /edit <key> <値>")
        else:
            await orchestrator.edit_item(key, value.strip())
    elif command == "/image":
        if not rest:
            write("使い方: /image <path>")
            return True
        try:
            data, mime_type = await _read_image(rest)
        except OSError as e:
            write(f"画像を開けませんでした: {e}")
            return True
        await orchestrator.seed_from_image(data, mime_type)
    elif command == "/save":
        outcome = await orchestrator.save()
        if outcome is None:
            write("保存できる記録がありません。")
        else:
            write(render_outcome(outcome))
    else:
        write(f"不明なコマンドです: {command}（/help で一覧）")
    return True
