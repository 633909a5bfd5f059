"""
Application wiring.

Builds the long-lived clients (LLM, weather, database) and the interview
orchestrator on top of them, for both the text and voice front ends.
"""

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine

from agri_buddy.config import Settings
from agri_buddy.db.session import create_engine, create_session_factory, init_db
from agri_buddy.db.store import SqlRecordStore
from agri_buddy.models.llm_client import LLMClient
from agri_buddy.orchestrator.interview_orchestrator import InterviewOrchestrator
from agri_buddy.records.finalizer import RecordFinalizer
from agri_buddy.services.admin_log import LLMAdminLogService
from agri_buddy.services.extraction import LLMExtractionService
from agri_buddy.services.ocr import LLMOcrService
from agri_buddy.services.weather import OpenMeteoWeatherService
from agri_buddy.voice.capture import CaptureSessionManager
from agri_buddy.voice.playback import PlaybackController


@dataclass
class AppServices:
    """Long-lived clients shared by every session."""

    llm_client: LLMClient
    weather: OpenMeteoWeatherService
    engine: AsyncEngine
    finalizer: RecordFinalizer

    async def close(self) -> None:
        await self.llm_client.close()
        await self.weather.close()
        await self.engine.dispose()


async def build_services(settings: Settings) -> AppServices:
    engine = create_engine(settings.database_url, echo=settings.debug)
    await init_db(engine)
    store = SqlRecordStore(create_session_factory(engine))
    return AppServices(
        llm_client=LLMClient(
            endpoint=settings.llm_endpoint,
            model=settings.llm_model_name,
            timeout=settings.llm_timeout,
        ),
        weather=OpenMeteoWeatherService(
            latitude=settings.weather_latitude,
            longitude=settings.weather_longitude,
            endpoint=settings.weather_endpoint,
            timeout=settings.weather_timeout,
        ),
        engine=engine,
        finalizer=RecordFinalizer(
            store,
            default_location=settings.default_location,
            retention_days=settings.mood_retention_days,
        ),
    )


def build_orchestrator(
    services: AppServices,
    settings: Settings,
    *,
    capture: CaptureSessionManager | None = None,
    playback: PlaybackController | None = None,
) -> InterviewOrchestrator:
    return InterviewOrchestrator(
        capture=capture,
        playback=playback,
        extraction=LLMExtractionService(services.llm_client),
        admin_log=LLMAdminLogService(services.llm_client),
        weather=services.weather,
        ocr=LLMOcrService(services.llm_client, model=settings.llm_vision_model_name),
        finalizer=services.finalizer,
        settings=settings,
    )
