"""
Work-sheet OCR.

Reads a photographed handwritten work sheet through a multimodal model and
returns seed data for the review screen.
"""

from __future__ import annotations

import base64
import logging
from abc import ABC, abstractmethod

from pydantic import BaseModel, Field

from agri_buddy.config import get_settings
from agri_buddy.models.llm_client import LLMClient, LLMError, Message
from agri_buddy.orchestrator.schemas import ExtractionResponse, PartialSlots

logger = logging.getLogger(__name__)

OCR_PROMPT = """写真は枇杷ハウスの作業記録シートです。読み取れた内容をJSONで返してください。
キー: raw_text, date (YYYY-MM-DD または null), work_log, fertilizer, material_cost,
harvest_amount, work_duration, house_data {max_temp, min_temp, humidity}。
読めない項目は null にしてください。"""


class OcrError(Exception):
    """Raised when an image could not be read."""


class OcrResult(BaseModel):
    raw_text: str = Field(default="", description="Recognized text")
    slots: PartialSlots = Field(default_factory=PartialSlots, description="Recognized slots")
    date: str | None = Field(default=None, description="Date written on the sheet")

    @property
    def has_data(self) -> bool:
        return bool(self.slots.filled_fields())


class OcrService(ABC):
    @abstractmethod
    async def read(self, image: bytes, mime_type: str = "image/jpeg") -> OcrResult:
        ...


class LLMOcrService(OcrService):
    def __init__(self, llm_client: LLMClient, model: str | None = None) -> None:
        self._llm = llm_client
        self._model = model or get_settings().llm_vision_model_name

    async def read(self, image: bytes, mime_type: str = "image/jpeg") -> OcrResult:
        encoded = base64.b64encode(image).decode("ascii")
        try:
            data = await self._llm.chat_with_json(
                [Message(role="user", content=OCR_PROMPT, images=[encoded])],
                model=self._model,
            )
        except LLMError as e:
            raise OcrError(f"OCR request failed: {e}") from e
        if not data:
            raise OcrError("OCR response was empty or unparseable")

        parsed = ExtractionResponse.from_payload(data)
        date = data.get("date") if isinstance(data.get("date"), str) else None
        raw_text = data.get("raw_text") if isinstance(data.get("raw_text"), str) else ""
        logger.info(f"OCR read {len(parsed.slots.filled_fields())} fields ({mime_type})")
        return OcrResult(raw_text=raw_text, slots=parsed.slots, date=date)
