# orchestration/cli_runner.py
"""Command-line runner for the narrative orchestrator."""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import structlog
from config import load_settings
from core.errors import ConfigurationError, NarrativeError
from core.llm_interface import LLMService
from rich.console import Console
from storage.file_manager import FileManager
from ui.rich_display import RichDisplayManager
from utils.logging import setup_logging

from orchestration.models import PipelineState
from orchestration.narrative_orchestrator import NarrativeOrchestrator
from orchestration.output_service import OutputService

logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130


async def _run(orchestrator: NarrativeOrchestrator) -> PipelineState:
    orchestrator.display.start()
    try:
        return await orchestrator.run()
    finally:
        await orchestrator.display.stop()
        await orchestrator.llm.aclose()


def run(overrides: dict[str, Any] | None = None) -> int:
    """Validate settings, run the pipeline and print the finished book."""
    try:
        settings = load_settings(**(overrides or {}))
        setup_logging(settings)
        settings.ensure_ready_for_run()
    except ConfigurationError as config_err:
        logger.critical("Invalid configuration: %s", config_err)
        return EXIT_CONFIG_ERROR

    orchestrator = NarrativeOrchestrator(
        settings,
        LLMService.from_settings(settings),
        output_service=OutputService(FileManager(settings.BASE_OUTPUT_DIR)),
        display=RichDisplayManager(enabled=settings.ENABLE_RICH_PROGRESS),
    )
    try:
        state = asyncio.run(_run(orchestrator))
    except KeyboardInterrupt:
        logger.info("Narrative run interrupted by user.")
        return EXIT_INTERRUPTED
    except (NarrativeError, httpx.HTTPStatusError) as run_err:
        logger.critical(
            "An error occurred during the writing process: %s", run_err, exc_info=True
        )
        return EXIT_FAILURE

    if not state.book_complete:
        return EXIT_FAILURE
    console = Console()
    console.rule("Final Book Content")
    console.print(state.book_text, markup=False, highlight=False)
    return EXIT_OK
