"""
Channel connector framework.

A connector turns one upstream API into a finite sequence of raw,
channel-native records for an extraction window. It owns the HTTP session,
the retry policy and the pacing between requests; it never deduplicates.
Idempotence is the merge's job.
"""
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Iterator, Optional

import requests

from channel_sync import settings
from channel_sync.accounts import ChannelConfig
from channel_sync.exceptions import PermanentChannelError, TransientChannelError
from channel_sync.utils import utc_now

logger = logging.getLogger(__name__)

# fetch_page(cursor) -> (records, next_cursor); a falsy next_cursor ends pagination.
PageFetcher = Callable[[Optional[str]], tuple[list[dict], Optional[str]]]


@dataclass(frozen=True)
class ExtractionWindow:
    start: datetime
    end: datetime

    @classmethod
    def from_lookback(
        cls, days: int, now: Optional[datetime] = None, lag: timedelta = timedelta(minutes=2)
    ) -> "ExtractionWindow":
        """
        The trailing `days` days up to `now - lag`. Report APIs reject an end
        time too close to the present, hence the lag.
        """
        if days < 1:
            raise ValueError(f"Lookback must be at least one day, got {days}")
        now = now or utc_now()
        return cls(start=now - timedelta(days=days), end=now - lag)

    def as_dict(self) -> dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


@dataclass
class ExtractionStats:
    pages_fetched: int = 0
    windows_processed: int = 0
    requests_made: int = 0
    records_fetched: int = 0
    failed_windows: list[dict[str, str]] = field(default_factory=list)


class ChannelConnector(ABC):
    """Base class for a single-channel API adapter."""

    entity: str = ""  # "orders" or "inventory"

    def __init__(
        self,
        config: ChannelConfig,
        *,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        timeout: float = settings.HTTP_TIMEOUT_SECONDS,
        inter_page_delay: float = settings.INTER_PAGE_DELAY_SECONDS,
        rate_limit_cooldown: float = settings.RATE_LIMIT_COOLDOWN_SECONDS,
        transient_backoff: float = settings.TRANSIENT_BACKOFF_SECONDS,
        max_retries: int = settings.MAX_RATE_LIMIT_RETRIES,
    ):
        if rate_limit_cooldown < inter_page_delay:
            raise ValueError("The rate-limit cooldown must be longer than the inter-page delay")
        self.config = config
        self.session = session or requests.Session()
        self.sleep = sleep
        self.timeout = timeout
        self.inter_page_delay = inter_page_delay
        self.rate_limit_cooldown = rate_limit_cooldown
        self.transient_backoff = transient_backoff
        self.max_retries = max_retries
        self.stats = ExtractionStats()

    @property
    def channel(self) -> str:
        return self.config.channel

    @abstractmethod
    def iter_records(self, window: ExtractionWindow) -> Iterator[dict[str, Any]]:
        """Yields raw records for the window, in upstream order."""

    def fetch_records(self, window: ExtractionWindow) -> list[dict[str, Any]]:
        """
        Runs a fresh extraction for the window and returns every record.
        Calling it again restarts from the first page.
        """
        self.stats = ExtractionStats()
        records = list(self.iter_records(window))
        self.stats.records_fetched = len(records)
        logger.info(
            f"🎉 {self.channel}: {len(records)} raw records "
            f"({self.stats.pages_fetched} pages, {self.stats.windows_processed} windows)"
        )
        return records

    def paginate_cursor(self, fetch_page: PageFetcher, max_pages: int) -> Iterator[dict[str, Any]]:
        """
        Cursor/token pagination. Stops when a page carries no continuation
        token or when the page budget is spent.
        """
        cursor: Optional[str] = None
        for page_number in range(1, max_pages + 1):
            if page_number > 1:
                self.sleep(self.inter_page_delay)

            logger.info(f"📄 {self.channel}: fetching page {page_number}...")
            records, cursor = fetch_page(cursor)
            self.stats.pages_fetched += 1
            logger.info(f"✅ Page {page_number}: {len(records)} records")
            yield from records

            if not cursor:
                logger.info(f"📋 {self.channel}: no more pages.")
                return

        logger.warning(
            f"⚠️ {self.channel}: page budget of {max_pages} reached with more pages available."
        )

    def _request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json: Optional[Any] = None,
        data: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> requests.Response:
        """
        Sends one request with the retry policy:
        - 429: fixed cooldown, then the same request again.
        - 5xx, connection errors, timeouts: fixed backoff, then again.
        - other non-2xx: PermanentChannelError straight away.
        Retries are bounded by max_retries; exhausting them raises TransientChannelError.
        """
        for attempt in range(self.max_retries + 1):
            self.stats.requests_made += 1
            try:
                resp = self.session.request(
                    method=method,
                    url=url,
                    params=params,
                    json=json,
                    data=data,
                    headers=headers,
                    timeout=self.timeout,
                )
            except (requests.ConnectionError, requests.Timeout) as e:
                if attempt >= self.max_retries:
                    raise TransientChannelError(
                        self.channel, f"{method} {url} failed after {attempt} retries: {e}"
                    ) from e
                logger.warning(
                    f"⚠️ {self.channel}: {type(e).__name__} on {method} {url}. "
                    f"Retrying in {self.transient_backoff}s ({attempt + 1}/{self.max_retries})"
                )
                self.sleep(self.transient_backoff)
                continue

            if 200 <= resp.status_code < 300:
                return resp

            if resp.status_code == 429 or 500 <= resp.status_code < 600:
                if attempt >= self.max_retries:
                    raise TransientChannelError(
                        self.channel,
                        f"{method} {url} still failing after {attempt} retries",
                        resp.status_code,
                        resp.text,
                    )
                wait = (
                    self.rate_limit_cooldown
                    if resp.status_code == 429
                    else self.transient_backoff
                )
                logger.warning(
                    f"⏳ {self.channel}: HTTP {resp.status_code}. Waiting {wait}s before retry "
                    f"({attempt + 1}/{self.max_retries})"
                )
                self.sleep(wait)
                continue

            raise PermanentChannelError(
                self.channel, f"{method} {url} failed", resp.status_code, resp.text
            )

        # range() always runs at least once and every branch returns, raises or continues
        raise AssertionError("unreachable")

    def _json(self, resp: requests.Response) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise PermanentChannelError(
                self.channel, "Response is not valid JSON", resp.status_code, resp.text[:500]
            ) from e
