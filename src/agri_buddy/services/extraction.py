"""
AI slot extraction service.

`LLMExtractionService` asks the LLM to turn a narration into slots and the
list of questions still worth asking. `LocalExtractionService` produces the
same response shape from keyword tables and is used whenever the AI path
fails.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod

from agri_buddy.agents.slot_extraction import correct_for_log, local_extraction_response
from agri_buddy.models.llm_client import LLMClient, LLMError, Message
from agri_buddy.orchestrator.schemas import ExtractionRequest, ExtractionResponse

logger = logging.getLogger(__name__)

EXTRACTION_SYSTEM_PROMPT = """あなたは長崎県茂木町の枇杷（びわ）ハウス農家の作業日誌アシスタントです。
農家の話し言葉から作業記録を抽出し、JSONだけを返してください。

ルール:
- 推測で値を埋めない。話に出てこない項目は null。
- 気温は -20〜60、湿度は 0〜100 の範囲外なら null。
- 複数の温度が出たら最高と最低に振り分ける。
- 「なし」「やってない」などの否定はその項目を「なし」として記録する。
- 方言や誤認識（例: 感謝→換気、飛行→肥料）は農業用語に直す。
- missing_questions には、まだ聞くべき項目を次から選んで入れる:
  WORK, HOUSE_TEMP, FERTILIZER, PEST, HARVEST, COST, DURATION
- 新しい圃場名（例: A号ハウス）が出たら new_location に入れる。
- 強い苦痛や「死にたい」などの発言があれば mentor_mode を true にする。
- reply は「お疲れさまです。」で始まる、やさしい短い一文。
"""

EXTRACTION_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "reply": {"type": "string"},
        "house_data": {
            "type": ["object", "null"],
            "properties": {
                "max_temp": {"type": ["number", "null"]},
                "min_temp": {"type": ["number", "null"]},
                "humidity": {"type": ["number", "null"]},
            },
        },
        "work_log": {"type": ["string", "null"]},
        "plant_status": {"type": ["string", "null"]},
        "fertilizer": {"type": ["string", "null"]},
        "pest_status": {"type": ["string", "null"]},
        "harvest_amount": {"type": ["string", "null"]},
        "material_cost": {"type": ["string", "null"]},
        "work_duration": {"type": ["string", "null"]},
        "fuel_cost": {"type": ["string", "null"]},
        "missing_questions": {"type": "array", "items": {"type": "string"}},
        "confidence": {"enum": ["low", "medium", "high"]},
        "new_location": {"type": ["string", "null"]},
        "mentor_mode": {"type": "boolean"},
        "advice": {"type": ["string", "null"]},
        "strategic_advice": {"type": ["string", "null"]},
        "estimated_revenue": {"type": ["number", "null"]},
    },
    "required": ["reply"],
}


class ExtractionService(ABC):
    """Turns one narration into an ExtractionResponse."""

    @abstractmethod
    async def extract(self, request: ExtractionRequest) -> ExtractionResponse:
        """
        Extract slots from a narration.

        Raises:
            LLMError: When the service is unavailable (callers fall back).
        """
        ...


class LocalExtractionService(ExtractionService):
    """Keyword-table extraction; never fails."""

    async def extract(self, request: ExtractionRequest) -> ExtractionResponse:
        return local_extraction_response(request)


class LLMExtractionService(ExtractionService):
    """Extraction through the LLM."""

    def __init__(self, llm_client: LLMClient) -> None:
        self._llm = llm_client

    def _build_messages(self, request: ExtractionRequest) -> list[Message]:
        history = "\n".join(
            f"{'ユーザー' if m.role == 'user' else 'AI'}: {m.text}" for m in request.history
        )
        weather = (
            f"{request.weather.description} {request.weather.temperature}℃"
            if request.weather
            else "不明"
        )
        partial = json.dumps(request.partial.model_dump(exclude_none=True), ensure_ascii=False)
        user = (
            f"【登録済みの圃場】{'、'.join(request.known_locations) or 'なし'}\n"
            f"【現在の圃場】{request.location or '未設定'}\n"
            f"【外の天気】{weather}\n"
            f"【前回までの抽出結果】{partial}\n"
            f"【会話履歴】\n{history or '（なし）'}\n"
            f"【今回の入力（原文）】\n{request.utterance}\n"
            f"【補正済み入力】\n{correct_for_log(request.utterance)}"
        )
        return [
            Message(role="system", content=EXTRACTION_SYSTEM_PROMPT),
            Message(role="user", content=user),
        ]

    async def extract(self, request: ExtractionRequest) -> ExtractionResponse:
        data = await self._llm.chat_with_json(self._build_messages(request), schema=EXTRACTION_SCHEMA)
        if not data:
            raise LLMError("Extraction response was empty or unparseable", retryable=False)
        response = ExtractionResponse.from_payload(data)
        logger.info(
            f"[INTERVIEW] AI extraction filled={response.slots.filled_fields()} "
            f"missing={response.missing_questions}"
        )
        return response
