"""
External services: LLM extraction, admin-log polishing, sheet OCR and weather.
"""

from agri_buddy.services.admin_log import AdminLogService, LLMAdminLogService
from agri_buddy.services.extraction import ExtractionService, LLMExtractionService, LocalExtractionService
from agri_buddy.services.ocr import LLMOcrService, OcrError, OcrResult, OcrService
from agri_buddy.services.weather import OpenMeteoWeatherService, WeatherError, WeatherService

__all__ = [
    "AdminLogService",
    "LLMAdminLogService",
    "ExtractionService",
    "LLMExtractionService",
    "LocalExtractionService",
    "LLMOcrService",
    "OcrError",
    "OcrResult",
    "OcrService",
    "OpenMeteoWeatherService",
    "WeatherError",
    "WeatherService",
]
