"""
Stage -> wait -> merge -> cleanup.

Every run writes its canonical rows into staging tables of its own, waits
out the sink's write-visibility delay, merges each staging table into its
durable table by natural key, and drops the staging tables whatever
happened. Re-running with the same source data converges to the same
durable state.
"""
import logging
import secrets
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError

from . import settings
from .exceptions import CleanupError, VisibilityWindowError
from .utils import chunked, utc_now
from .warehouse import MergeStats, Warehouse

logger = logging.getLogger(__name__)


def staging_table_name(entity: str, now: Optional[datetime] = None) -> str:
    """`<entity>_stg_<UTC timestamp>_<random hex>`; unique per call."""
    stamp = (now or utc_now()).strftime("%Y%m%d%H%M%S")
    return f"{entity}_stg_{stamp}_{secrets.token_hex(4)}"


@dataclass
class StagingReport:
    run_id: str
    staged: dict[str, int] = field(default_factory=dict)
    merges: dict[str, MergeStats] = field(default_factory=dict)
    cleanup_failures: list[dict[str, str]] = field(default_factory=list)
    waited_seconds: float = 0.0

    @property
    def inserted(self) -> int:
        return sum(m.inserted for m in self.merges.values())

    @property
    def updated(self) -> int:
        return sum(m.updated for m in self.merges.values())


class StagingMergePipeline:
    def __init__(
        self,
        warehouse: Warehouse,
        *,
        batch_size: int = settings.STAGING_BATCH_SIZE,
        visibility_wait: float = settings.VISIBILITY_WAIT_SECONDS,
        lock_key: Optional[str] = None,
        lock_enabled: bool = settings.RUN_LOCK_ENABLED,
        lock_ttl: float = settings.RUN_LOCK_TTL_SECONDS,
        run_id: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if batch_size < 1:
            raise ValueError("Batch size must be at least 1")
        self.warehouse = warehouse
        self.batch_size = batch_size
        self.visibility_wait = visibility_wait
        self.lock_key = lock_key
        self.lock_enabled = lock_enabled and lock_key is not None
        self.lock_ttl = lock_ttl
        self.run_id = run_id or uuid.uuid4().hex
        self.sleep = sleep
        self.clock = clock

        self.report = StagingReport(run_id=self.run_id)
        self._staging_tables: dict[str, sa.Table] = {}
        self._last_write_at: Optional[float] = None

    def run(
        self,
        rows_by_entity: Mapping[str, Sequence[dict[str, Any]]],
        sum_columns: Optional[Mapping[str, Iterable[str]]] = None,
    ) -> StagingReport:
        """
        Runs the four phases for every entity of one sync run. Cleanup runs
        even when a phase fails; a merge that fails halfway is not rolled
        back beyond the statement's own transaction.
        """
        entities = {name: rows for name, rows in rows_by_entity.items() if rows}
        if not entities:
            logger.info("ℹ️ Nothing to stage.")
            return self.report

        sum_columns = sum_columns or {}
        if self.lock_enabled:
            self.warehouse.acquire_run_lock(self.lock_key, self.run_id, self.lock_ttl)
        try:
            try:
                # --- 1. STAGE ---
                for entity, rows in entities.items():
                    self.stage(entity, rows)

                # --- 2. VISIBILITY WAIT ---
                self.wait_for_visibility()

                # --- 3. MERGE ---
                for entity in entities:
                    self.merge_entity(entity, sum_columns.get(entity))
            finally:
                # --- 4. CLEANUP ---
                self.cleanup()
        finally:
            if self.lock_enabled:
                self._release_lock()

        return self.report

    def stage(self, entity: str, rows: Sequence[dict[str, Any]]) -> sa.Table:
        name = staging_table_name(entity)
        table = self.warehouse.create_staging_table(entity, name)
        self._staging_tables[entity] = table

        batches = 0
        for batch in chunked(rows, self.batch_size):
            self.warehouse.insert_rows(table, batch)
            self._last_write_at = self.clock()
            batches += 1
            logger.info(f"  > {entity}: batch {batches} ({len(batch)} rows) staged")

        self.report.staged[entity] = len(rows)
        logger.info(f"✅ {entity}: {len(rows)} rows staged in {batches} batch(es)")
        return table

    def _visible_in(self) -> float:
        if self._last_write_at is None:
            return 0.0
        return self.visibility_wait - (self.clock() - self._last_write_at)

    def wait_for_visibility(self) -> None:
        remaining = self._visible_in()
        if remaining > 0:
            logger.info(f"⏳ Waiting {remaining:.0f}s for staged rows to become mergeable...")
            self.sleep(remaining)
            self.report.waited_seconds += remaining

    def merge_entity(self, entity: str, sum_columns: Optional[Iterable[str]] = None) -> MergeStats:
        remaining = self._visible_in()
        if remaining > 0:
            raise VisibilityWindowError(
                f"Merge of {entity} attempted {remaining:.1f}s before staged rows are visible",
                {"entity": entity, "remaining_seconds": round(remaining, 1)},
            )
        stats = self.warehouse.merge(entity, self._staging_tables[entity], sum_columns)
        self.report.merges[entity] = stats
        return stats

    def cleanup(self) -> None:
        """Drops every staging table of this run. Failures are logged, never raised."""
        for entity, table in list(self._staging_tables.items()):
            try:
                self.warehouse.drop_staging_table(table)
            except SQLAlchemyError as e:
                error = CleanupError(
                    f"Could not drop staging table {table.name}: {e}", {"table": table.name}
                )
                logger.error(f"❌ {error.message}")
                self.report.cleanup_failures.append(
                    {"table": table.name, "error": error.message}
                )
            del self._staging_tables[entity]

    def _release_lock(self) -> None:
        try:
            self.warehouse.release_run_lock(self.lock_key, self.run_id)
        except SQLAlchemyError as e:
            # The lease expires on its own after the TTL
            logger.error(f"❌ Could not release run lock {self.lock_key}: {e}")
