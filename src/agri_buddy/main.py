"""
Main entry point for the agri-buddy farm diary.
"""

import argparse
import asyncio
import logging
import sys

from agri_buddy.app import build_orchestrator, build_services
from agri_buddy.config import get_settings
from agri_buddy.io.text_interface import TextInterface
from agri_buddy.voice.playback import ConsoleSynthesizer, PlaybackConfig, PlaybackController


def setup_logging() -> None:
    """Configure application logging."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


async def run_diary(argv: list[str] | None = None) -> None:
    """
    Run an interactive diary session.

    This is the main async entry point that initializes all components
    and runs the interview loop.
    """
    settings = get_settings()
    logger = logging.getLogger(__name__)

    parser = argparse.ArgumentParser(prog="agri_buddy")
    parser.add_argument(
        "--mode",
        choices=["text", "voice"],
        default="text",
        help="Run in text or voice mode",
    )
    args = parser.parse_args(argv)

    logger.info("Initializing agri-buddy...")
    logger.debug(f"Using LLM model: {settings.llm_model_name}")
    services = await build_services(settings)

    try:
        if args.mode == "voice":
            # Lazy import so text mode doesn't require optional voice deps.
            from agri_buddy.io.voice_interface import VoiceInterface

            interface = VoiceInterface(services, settings)
        else:
            playback = PlaybackController(ConsoleSynthesizer(), PlaybackConfig.from_settings(settings))
            interface = TextInterface(build_orchestrator(services, settings, playback=playback))

        logger.info("Starting diary session...")
        await interface.run()
    finally:
        await services.close()


def main() -> None:
    """Main entry point for the application."""
    setup_logging()

    try:
        asyncio.run(run_diary(sys.argv[1:]))
    except KeyboardInterrupt:
        print("\n記録を中断しました。")
        sys.exit(0)
    except Exception as e:
        logging.error(f"Application error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
