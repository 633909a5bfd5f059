import base64

import httpx
import pytest

from agri_buddy.models.llm_client import LLMError
from agri_buddy.orchestrator.schemas import ExtractionRequest, FollowUpStep, OutdoorWeather, PartialSlots
from agri_buddy.services.admin_log import LLMAdminLogService
from agri_buddy.services.extraction import LLMExtractionService, LocalExtractionService
from agri_buddy.services.ocr import LLMOcrService, OcrError
from agri_buddy.services.weather import OpenMeteoWeatherService, WeatherError, weather_description


class FakeLLM:
    def __init__(self, payload=None, error: Exception | None = None) -> None:
        self.payload = payload if payload is not None else {}
        self.error = error
        self.calls: list[dict] = []

    async def chat_with_json(self, messages, schema=None, temperature=0.2, **kwargs):
        self.calls.append({"messages": messages, "schema": schema, **kwargs})
        if self.error:
            raise self.error
        return self.payload


class TestExtractionService:
    @pytest.mark.asyncio
    async def test_llm_payload_becomes_response(self) -> None:
        llm = FakeLLM(
            {
                "reply": "お疲れさまです。灌水ですね。",
                "work_log": "灌水",
                "house_data": {"max_temp": 28},
                "missing_questions": ["FERTILIZER", "PEST"],
                "confidence": "medium",
            }
        )
        service = LLMExtractionService(llm)  # type: ignore[arg-type]
        request = ExtractionRequest(
            utterance="感謝して灌水",
            known_locations=["茂木町ハウス"],
            weather=OutdoorWeather(description="晴れ", temperature=21.0, code=1),
            partial=PartialSlots(humidity=60),
            location="茂木町ハウス",
        )

        response = await service.extract(request)

        assert response.slots.work_log == "灌水"
        assert response.slots.max_temp == 28.0
        assert response.missing_questions == [FollowUpStep.FERTILIZER, FollowUpStep.PEST]
        assert response.degraded is False

        prompt = llm.calls[0]["messages"][1].content
        assert "【登録済みの圃場】茂木町ハウス" in prompt
        assert "【外の天気】晴れ 21.0℃" in prompt
        assert '"humidity": 60.0' in prompt
        assert "【補正済み入力】\n換気して灌水" in prompt
        assert llm.calls[0]["schema"] is not None

    @pytest.mark.asyncio
    async def test_empty_payload_raises(self) -> None:
        service = LLMExtractionService(FakeLLM({}))  # type: ignore[arg-type]
        with pytest.raises(LLMError):
            await service.extract(ExtractionRequest(utterance="灌水"))

    @pytest.mark.asyncio
    async def test_local_service_is_degraded(self) -> None:
        response = await LocalExtractionService().extract(ExtractionRequest(utterance="灌水した"))
        assert response.degraded is True
        assert response.slots.work_log == "灌水"


class TestAdminLogService:
    @pytest.mark.asyncio
    async def test_generates_text_from_labelled_items(self) -> None:
        llm = FakeLLM({"admin_log": " 本日は灌水を行った。 "})
        text = await LLMAdminLogService(llm).generate([("作業内容", "灌水"), ("最高気温 (℃)", "28")])  # type: ignore[arg-type]

        assert text == "本日は灌水を行った。"
        assert llm.calls[0]["messages"][1].content == "作業内容: 灌水\n最高気温 (℃): 28"

    @pytest.mark.asyncio
    async def test_missing_text_raises(self) -> None:
        with pytest.raises(LLMError):
            await LLMAdminLogService(FakeLLM({"admin_log": ""})).generate([("作業内容", "灌水")])  # type: ignore[arg-type]


class TestOcrService:
    @pytest.mark.asyncio
    async def test_reads_sheet(self) -> None:
        llm = FakeLLM({"raw_text": "5/1 灌水", "date": "2024-05-01", "work_log": "灌水", "house_data": {"max_temp": "27"}})
        result = await LLMOcrService(llm, model="vision").read(b"img")  # type: ignore[arg-type]

        assert result.has_data
        assert result.date == "2024-05-01"
        assert result.slots.max_temp == 27.0
        message = llm.calls[0]["messages"][0]
        assert message.images == [base64.b64encode(b"img").decode("ascii")]
        assert llm.calls[0]["model"] == "vision"

    @pytest.mark.asyncio
    async def test_llm_failure_becomes_ocr_error(self) -> None:
        service = LLMOcrService(FakeLLM(error=LLMError("down")), model="vision")  # type: ignore[arg-type]
        with pytest.raises(OcrError):
            await service.read(b"img")

    @pytest.mark.asyncio
    async def test_unreadable_sheet_has_no_data(self) -> None:
        result = await LLMOcrService(FakeLLM({"raw_text": "???"}), model="vision").read(b"img")  # type: ignore[arg-type]
        assert not result.has_data


class TestWeatherService:
    def _service(self, handler) -> OpenMeteoWeatherService:
        return OpenMeteoWeatherService(
            latitude=32.75,
            longitude=129.87,
            endpoint="https://weather.test/v1/forecast",
            timeout=1.0,
            transport=httpx.MockTransport(handler),
        )

    @pytest.mark.asyncio
    async def test_current(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["current"] == "temperature_2m,weather_code"
            assert request.url.params["timezone"] == "Asia/Tokyo"
            return httpx.Response(200, json={"current": {"temperature_2m": 21.5, "weather_code": 2}})

        service = self._service(handler)
        weather = await service.current()
        await service.close()

        assert weather.description == "晴れ"
        assert weather.temperature == 21.5

    @pytest.mark.asyncio
    async def test_tomorrow_uses_second_day(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "daily": {
                        "weather_code": [0, 61],
                        "temperature_2m_max": [25.0, 19.0],
                        "temperature_2m_min": [15.0, 12.0],
                    }
                },
            )

        tomorrow = await self._service(handler).tomorrow()
        assert tomorrow.description == "雨"
        assert (tomorrow.max_temp, tomorrow.min_temp) == (19.0, 12.0)

    @pytest.mark.asyncio
    async def test_http_error_becomes_weather_error(self) -> None:
        service = self._service(lambda request: httpx.Response(503))
        with pytest.raises(WeatherError) as exc_info:
            await service.current()
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_malformed_payload_becomes_weather_error(self) -> None:
        service = self._service(lambda request: httpx.Response(200, json={"daily": {}}))
        with pytest.raises(WeatherError):
            await service.tomorrow()


def test_weather_description() -> None:
    assert weather_description(0) == "快晴"
    assert weather_description(45) == "曇り"
    assert weather_description(95) == "荒天"
