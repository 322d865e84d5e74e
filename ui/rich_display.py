from __future__ import annotations

import asyncio
import time
from typing import Optional

from rich.console import Group
from rich.live import Live
from rich.panel import Panel
from rich.text import Text


class RichDisplayManager:
    """Handles Rich-based display updates."""

    def __init__(self, enabled: bool = True) -> None:
        self.live: Optional[Live] = None
        self.group: Optional[Group] = None
        self.status_text_seed: Text = Text("Keywords: N/A")
        self.status_text_current_step: Text = Text("Current Step: Initializing...")
        self.status_text_position: Text = Text("Chapter: N/A")
        self.status_text_paragraphs: Text = Text("Paragraphs Written: 0")
        self.status_text_tokens_generated: Text = Text("Tokens Used (this run): 0")
        self.status_text_requests_per_minute: Text = Text("Requests/Min: 0.0")
        self.status_text_elapsed_time: Text = Text("Elapsed Time: 0s")
        self.run_start_time: float = 0.0
        self.request_count: int = 0
        self._stop_event: asyncio.Event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

        if enabled:
            self.group = Group(
                self.status_text_seed,
                self.status_text_current_step,
                self.status_text_position,
                self.status_text_paragraphs,
                self.status_text_tokens_generated,
                self.status_text_requests_per_minute,
                self.status_text_elapsed_time,
            )
            self.live = Live(
                Panel(
                    self.group,
                    title="Narrative Progress",
                    border_style="blue",
                    expand=True,
                ),
                refresh_per_second=4,
                transient=False,
                redirect_stdout=False,
                redirect_stderr=False,
            )

    def start(self) -> None:
        self.run_start_time = time.time()
        if self.live:
            self.live.start()
            self._stop_event.clear()
            self._task = asyncio.create_task(self._auto_refresh())

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task:
            await self._task
            self._task = None
        if self.live and self.live.is_started:
            self.live.stop()

    async def _auto_refresh(self) -> None:
        while not self._stop_event.is_set():
            self.update()
            await asyncio.sleep(1)

    def update(
        self,
        keywords: Optional[str] = None,
        step: Optional[str] = None,
        chapter: Optional[int] = None,
        chapter_count: Optional[int] = None,
        paragraph_in_chapter: Optional[int] = None,
        paragraphs_written: Optional[int] = None,
        total_tokens: Optional[int] = None,
        request_count: Optional[int] = None,
    ) -> None:
        if not (self.live and self.group):
            return
        if keywords is not None:
            self.status_text_seed.plain = f"Keywords: {keywords}"
        if step is not None:
            self.status_text_current_step.plain = f"Current Step: {step}"
        if chapter is not None:
            total = f"/{chapter_count}" if chapter_count else ""
            paragraph = (
                f", Paragraph {paragraph_in_chapter + 1}"
                if paragraph_in_chapter is not None
                else ""
            )
            self.status_text_position.plain = f"Chapter: {chapter}{total}{paragraph}"
        if paragraphs_written is not None:
            self.status_text_paragraphs.plain = (
                f"Paragraphs Written: {paragraphs_written}"
            )
        if total_tokens is not None:
            self.status_text_tokens_generated.plain = (
                f"Tokens Used (this run): {total_tokens:,}"
            )
        if request_count is not None:
            self.request_count = request_count
        elapsed_seconds = time.time() - self.run_start_time
        requests_per_minute = (
            self.request_count / (elapsed_seconds / 60) if elapsed_seconds > 0 else 0.0
        )
        self.status_text_requests_per_minute.plain = (
            f"Requests/Min: {requests_per_minute:.2f}"
        )
        self.status_text_elapsed_time.plain = (
            f"Elapsed Time: {time.strftime('%H:%M:%S', time.gmtime(elapsed_seconds))}"
        )
