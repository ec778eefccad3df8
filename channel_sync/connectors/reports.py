"""
Time-windowed, report-style extraction.

Some upstream APIs only serve bounded ranges through asynchronous report
jobs. The requested window is cut into fixed slices; each slice is an
independent submit -> poll -> download cycle.
"""
import logging
import time
from abc import abstractmethod
from datetime import datetime
from typing import Any, Callable, Iterator

from channel_sync import settings
from channel_sync.connectors.base import ChannelConnector, ExtractionWindow
from channel_sync.exceptions import (
    PermanentChannelError,
    ReportGenerationError,
    ReportTimeoutError,
)
from channel_sync.utils import split_windows

logger = logging.getLogger(__name__)

DONE = "DONE"
TERMINAL_FAILURES = ("FATAL", "CANCELLED")


class ReportConnector(ChannelConnector):
    def __init__(
        self,
        config,
        *,
        poll_interval: float = settings.REPORT_POLL_INTERVAL_SECONDS,
        max_wait: float = settings.REPORT_MAX_WAIT_SECONDS,
        window_days: int = settings.REPORT_WINDOW_DAYS,
        inter_window_delay: float = settings.INTER_WINDOW_DELAY_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        **kwargs,
    ):
        super().__init__(config, **kwargs)
        if poll_interval < settings.MIN_REPORT_POLL_INTERVAL_SECONDS:
            raise ValueError(
                f"Report polling must be spaced at least "
                f"{settings.MIN_REPORT_POLL_INTERVAL_SECONDS}s apart"
            )
        self.poll_interval = poll_interval
        self.max_wait = max_wait
        self.window_days = window_days
        self.inter_window_delay = inter_window_delay
        self.clock = clock

    # --- Upstream operations, one set per report API ---

    def prepare_window(self) -> None:
        """Hook run before each slice (token refresh and the like)."""

    @abstractmethod
    def create_report(self, start: datetime, end: datetime) -> str:
        """Submits a report job and returns its id."""

    @abstractmethod
    def get_report_status(self, report_id: str) -> dict[str, Any]:
        """Returns the job status payload (processingStatus, reportDocumentId)."""

    @abstractmethod
    def download_document(self, document_id: str) -> str:
        """Downloads and decodes a finished report document."""

    @abstractmethod
    def parse_document(self, text: str) -> list[dict[str, Any]]:
        """Splits a document into raw records."""

    # --- Orchestration ---

    def iter_records(self, window: ExtractionWindow) -> Iterator[dict[str, Any]]:
        slices = split_windows(window.start, window.end, self.window_days)
        logger.info(f"🗓️ {self.channel}: {len(slices)} report window(s) of up to {self.window_days} days")

        for index, (start, end) in enumerate(slices):
            if index:
                logger.info(f"⏳ Waiting {self.inter_window_delay}s before the next window...")
                self.sleep(self.inter_window_delay)

            logger.info(f"-- Window {index + 1}/{len(slices)}: {start.isoformat()} - {end.isoformat()}")
            try:
                records = self.fetch_window(start, end)
            except ReportTimeoutError as e:
                # Fatal for this slice only; earlier slices are already yielded.
                logger.error(f"❌ {e.message}. Skipping window.")
                self.stats.failed_windows.append(
                    {"start": start.isoformat(), "end": end.isoformat(), "error": e.message}
                )
                continue

            self.stats.windows_processed += 1
            logger.info(f"  > {len(records)} records in this window")
            yield from records

    def fetch_window(self, start: datetime, end: datetime) -> list[dict[str, Any]]:
        self.prepare_window()
        report_id = self.create_report(start, end)
        logger.info(f"  > Report requested: {report_id}")
        document_id = self.wait_for_report(report_id)
        logger.info(f"  > Report ready, document {document_id}")
        text = self.download_document(document_id)
        self.stats.pages_fetched += 1
        return self.parse_document(text)

    def wait_for_report(self, report_id: str) -> str:
        """
        Polls a report job every poll_interval seconds until DONE.
        FATAL/CANCELLED raise ReportGenerationError; running past max_wait
        raises ReportTimeoutError.
        """
        started = self.clock()
        while True:
            payload = self.get_report_status(report_id)
            state = payload.get("processingStatus")
            logger.info(f"  > Report {report_id} status: {state}")

            if state == DONE:
                document_id = payload.get("reportDocumentId")
                if not document_id:
                    raise PermanentChannelError(
                        self.channel, f"Report {report_id} is DONE without a document id"
                    )
                return document_id

            if state in TERMINAL_FAILURES:
                raise ReportGenerationError(
                    self.channel, f"Report {report_id} ended in state {state}"
                )

            if self.clock() - started >= self.max_wait:
                raise ReportTimeoutError(
                    self.channel,
                    f"Report {report_id} not ready after {self.max_wait:.0f}s (last state {state})",
                )
            self.sleep(self.poll_interval)
