"""AI admin-log service: labelled fields in, one diary paragraph out."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from agri_buddy.models.llm_client import LLMClient, LLMError, Message

logger = logging.getLogger(__name__)

ADMIN_LOG_PROMPT = """あなたは農業日誌の清書係です。
以下の項目から、行政提出用の作業日誌を自然な日本語で200字以内にまとめてください。
書かれていないことは書き足さないでください。JSON {"admin_log": "..."} だけを返してください。"""


class AdminLogService(ABC):
    @abstractmethod
    async def generate(self, items: list[tuple[str, str]]) -> str:
        """
        Summarize labelled fields.

        Args:
            items: Non-empty (label, value) pairs.

        Returns:
            Diary text.

        Raises:
            LLMError: When no summary could be produced.
        """
        ...


class LLMAdminLogService(AdminLogService):
    def __init__(self, llm_client: LLMClient) -> None:
        self._llm = llm_client

    async def generate(self, items: list[tuple[str, str]]) -> str:
        body = "\n".join(f"{label}: {value}" for label, value in items)
        data = await self._llm.chat_with_json(
            [
                Message(role="system", content=ADMIN_LOG_PROMPT),
                Message(role="user", content=body),
            ]
        )
        text = data.get("admin_log")
        if not isinstance(text, str) or not text.strip():
            raise LLMError("Admin log response had no text", retryable=False)
        return text.strip()
