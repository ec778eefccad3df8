import logging
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any, Iterable, Optional

from . import settings
from .accounts import ChannelConfig
from .connectors.base import ChannelConnector, ExtractionWindow
from .parsers import CanonicalizeResult, canonicalize_records
from .sku_resolver import SkuResolver
from .staging import StagingMergePipeline
from .warehouse import Warehouse

logger = logging.getLogger(__name__)


class DataPipeline(ABC):
    """
    Abstract base class for data pipelines (channel syncs, stockout checks).
    Follows an Extract -> Transform -> Load (ETL) pattern.
    """

    def __init__(self, report_type: str):
        self.report_type = report_type

    def run(self):
        """
        Orchestrates the pipeline execution. Returns whatever load() returns,
        with the elapsed time recorded on it.
        """
        logger.info(f"🚀 STEP: {self.report_type.upper()}")
        logger.info("-" * 30)
        started = time.monotonic()

        # --- 1. EXTRACT ---
        raw_data = self.extract()

        # --- 2. TRANSFORM ---
        transformed = self.transform(raw_data)

        # --- 3. LOAD ---
        result = self.load(transformed)

        result.execution_time = round(time.monotonic() - started, 2)
        logger.info(f"✅ {self.report_type} Pipeline Finished in {result.execution_time}s.\n")
        logger.info("=" * 60)
        return result

    @abstractmethod
    def extract(self) -> Any:
        pass

    @abstractmethod
    def transform(self, raw_data: Any) -> Any:
        pass

    @abstractmethod
    def load(self, transformed: Any) -> Any:
        pass


@dataclass
class SyncResult:
    run_id: str
    channel: str
    account_name: str
    window: dict[str, str]
    records_fetched: int = 0
    canonical_rows: int = 0
    skipped: int = 0
    staged: dict[str, int] = field(default_factory=dict)
    inserted: dict[str, int] = field(default_factory=dict)
    updated: dict[str, int] = field(default_factory=dict)
    pages_fetched: int = 0
    windows_processed: int = 0
    requests_made: int = 0
    failed_windows: list[dict[str, str]] = field(default_factory=list)
    unmapped_skus: list[dict[str, str]] = field(default_factory=list)
    cleanup_failures: list[dict[str, str]] = field(default_factory=list)
    execution_time: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class SyncPipeline(DataPipeline):
    """
    One channel sync run: connector -> canonicalizer -> staging merge.

    Subclasses pick the entity and the merge policy; everything else is
    shared.
    """

    entity: str = ""

    def __init__(
        self,
        config: ChannelConfig,
        connector: ChannelConnector,
        warehouse: Warehouse,
        window: ExtractionWindow,
        resolver: Optional[SkuResolver] = None,
        staging: Optional[StagingMergePipeline] = None,
    ):
        super().__init__(f"{config.kind} {self.entity} sync")
        self.config = config
        self.connector = connector
        self.warehouse = warehouse
        self.window = window
        self.resolver = resolver if resolver is not None else SkuResolver()
        self.staging = staging or StagingMergePipeline(
            warehouse,
            lock_key=config.lock_key,
            lock_enabled=settings.RUN_LOCK_ENABLED,
        )

    def sum_columns(self) -> dict[str, Iterable[str]]:
        """Per-entity columns summed when staged rows share a key."""
        return {}

    def extract(self) -> list[dict[str, Any]]:
        logger.info(
            f"📥 Extracting {self.entity} from {self.config.channel} "
            f"({self.window.start.isoformat()} - {self.window.end.isoformat()})"
        )
        return self.connector.fetch_records(self.window)

    def transform(self, raw_data: list[dict[str, Any]]) -> CanonicalizeResult:
        return canonicalize_records(raw_data, self.config, self.resolver)

    def load(self, transformed: CanonicalizeResult) -> SyncResult:
        report = self.staging.run(transformed.batch.rows_by_entity(), self.sum_columns())
        stats = self.connector.stats

        result = SyncResult(
            run_id=self.staging.run_id,
            channel=self.config.channel,
            account_name=self.config.account_name,
            window=self.window.as_dict(),
            records_fetched=stats.records_fetched,
            canonical_rows=len(transformed.batch),
            skipped=transformed.skipped,
            staged=dict(report.staged),
            inserted={name: m.inserted for name, m in report.merges.items()},
            updated={name: m.updated for name, m in report.merges.items()},
            pages_fetched=stats.pages_fetched,
            windows_processed=stats.windows_processed,
            requests_made=stats.requests_made,
            failed_windows=list(stats.failed_windows),
            unmapped_skus=self.resolver.unmapped_skus(),
            cleanup_failures=list(report.cleanup_failures),
        )

        logger.info("\n--- Final Status Summary ---")
        logger.info(f"Fetched: {result.records_fetched} | Rows: {result.canonical_rows} | Skipped: {result.skipped}")
        for name in result.staged:
            logger.info(
                f"{name}: {result.inserted.get(name, 0)} inserted, {result.updated.get(name, 0)} updated"
            )
        if result.unmapped_skus:
            logger.warning(f"⚠️ {len(result.unmapped_skus)} unmapped SKU(s) this run")
        return result
