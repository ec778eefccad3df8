"""
Trigger surface.

Each entry point takes run parameters, runs one pipeline and turns the
outcome into an HTTP-style response: 200 with the run statistics, or the
error's own status (500 when unhandled) with its message and trace.
"""
import logging
import time
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Literal, Mapping, Optional, Union

import pandas as pd
import requests
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from . import settings
from .accounts import ChannelConfig, load_channel_config
from .connectors.base import ChannelConnector, ExtractionWindow
from .connectors.reports import ReportConnector
from .connectors.shopify import ShopifyOrdersConnector
from .exceptions import ConfigurationError, SyncError
from .pipelines import inventory as inventory_pipelines
from .pipelines import orders as order_pipelines
from .pipelines.stockout import StockoutPipeline
from .schemas import SkuMapping
from .sku_resolver import SkuResolver
from .staging import StagingMergePipeline
from .warehouse import Warehouse

logger = logging.getLogger(__name__)

ChannelKind = Literal["shopify", "amazon", "amazon-fba", "logisp"]


class SyncRequest(BaseModel):
    channel: ChannelKind
    account: int = Field(default=1, ge=1)
    marketplace: str = "JP"
    days_back: Optional[int] = Field(default=None, ge=1)
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    full_sync: bool = False

    @field_validator("start", "end", mode="after")
    @classmethod
    def _window_in_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Naive bounds are taken as UTC so they compare with aware ones
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @model_validator(mode="after")
    def _explicit_window(self):
        if (self.start is None) != (self.end is None):
            raise ValueError("start and end must be given together")
        if self.start is not None and self.start >= self.end:
            raise ValueError("start must be before end")
        return self

    @property
    def lookback_days(self) -> int:
        if self.days_back is not None:
            return self.days_back
        return settings.FULL_SYNC_LOOKBACK_DAYS if self.full_sync else settings.DEFAULT_LOOKBACK_DAYS

    @property
    def max_pages(self) -> int:
        return settings.FULL_SYNC_MAX_PAGES if self.full_sync else settings.DEFAULT_MAX_PAGES

    def window(self, now: Optional[datetime] = None) -> ExtractionWindow:
        if self.start is not None:
            return ExtractionWindow(start=self.start, end=self.end)
        return ExtractionWindow.from_lookback(self.lookback_days, now)


class SyncResponse(BaseModel):
    status_code: int
    body: dict[str, Any]


def _error_response(e: Exception, started: float) -> SyncResponse:
    if isinstance(e, SyncError):
        status, message, details = e.status_code, e.message, e.details
    elif isinstance(e, ValidationError):
        status, message, details = 400, str(e), {"errors": e.errors(include_url=False)}
    else:
        status, message, details = 500, str(e), {}

    logger.error(f"❌ {type(e).__name__}: {message}")
    return SyncResponse(
        status_code=status,
        body={
            "success": False,
            "error": message,
            "error_type": type(e).__name__,
            "details": details,
            "trace": traceback.format_exc(),
            "execution_time": round(time.monotonic() - started, 2),
        },
    )


def build_connector(
    config: ChannelConfig,
    request: SyncRequest,
    session: Optional[requests.Session] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> ChannelConnector:
    registry = {**order_pipelines.CONNECTOR_REGISTRY, **inventory_pipelines.CONNECTOR_REGISTRY}
    connector_cls = registry[config.kind]

    options: dict[str, Any] = {"session": session, "sleep": sleep}
    if issubclass(connector_cls, ShopifyOrdersConnector):
        options["max_pages"] = request.max_pages
    if issubclass(connector_cls, ReportConnector):
        options["clock"] = clock
    return connector_cls(config, **options)


def run_sync(
    request: Union[SyncRequest, Mapping[str, Any]],
    *,
    env: Optional[Mapping[str, str]] = None,
    warehouse: Optional[Warehouse] = None,
    resolver: Optional[SkuResolver] = None,
    session: Optional[requests.Session] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> SyncResponse:
    """Runs one channel sync end to end."""
    started = time.monotonic()
    try:
        if not isinstance(request, SyncRequest):
            request = SyncRequest.model_validate(dict(request))

        config = load_channel_config(request.channel, request.account, request.marketplace, env)
        logger.info(f"🚀 Sync requested: {config.channel} / {config.account_name}")

        warehouse = warehouse or Warehouse()
        warehouse.create_all()
        resolver = resolver if resolver is not None else SkuResolver.from_warehouse(warehouse)

        if config.kind in order_pipelines.CONNECTOR_REGISTRY:
            pipeline_cls = order_pipelines.OrdersSyncPipeline
        else:
            pipeline_cls = inventory_pipelines.InventorySyncPipeline

        pipeline = pipeline_cls(
            config,
            build_connector(config, request, session, sleep, clock),
            warehouse,
            request.window(),
            resolver=resolver,
            staging=StagingMergePipeline(
                warehouse, lock_key=config.lock_key, sleep=sleep, clock=clock
            ),
        )
        result = pipeline.run()
    except Exception as e:  # every failure becomes an error response
        return _error_response(e, started)

    body = {"success": True, "full_sync": request.full_sync, **result.to_dict()}
    body["execution_time"] = round(time.monotonic() - started, 2)
    return SyncResponse(status_code=200, body=body)


def run_stockout_check(
    *,
    warehouse: Optional[Warehouse] = None,
    resolver: Optional[SkuResolver] = None,
    webhook_url: Optional[str] = None,
    session: Optional[requests.Session] = None,
) -> SyncResponse:
    started = time.monotonic()
    try:
        warehouse = warehouse or Warehouse()
        warehouse.create_all()
        result = StockoutPipeline(
            warehouse, resolver=resolver, webhook_url=webhook_url, session=session
        ).run()
    except Exception as e:  # every failure becomes an error response
        return _error_response(e, started)

    body = {"success": True, **result.to_dict()}
    body["execution_time"] = round(time.monotonic() - started, 2)
    return SyncResponse(status_code=200, body=body)


def _as_bool(value: Any) -> bool:
    return str(value).strip().lower() in {"1", "true", "yes", "y"}


def seed_sku_mappings(csv_path: Union[str, Path], warehouse: Optional[Warehouse] = None) -> int:
    """
    Loads a mapping CSV (channel, channel_sku, master_sku, is_case_product,
    units_per_case) into the store. Bad rows are logged and skipped.
    """
    path = Path(csv_path)
    if not path.exists():
        raise ConfigurationError(f"SKU mapping file not found: {path}")

    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    df.columns = [c.strip() for c in df.columns]
    missing = {"channel", "channel_sku", "master_sku"} - set(df.columns)
    if missing:
        raise ConfigurationError(
            f"SKU mapping file is missing columns: {', '.join(sorted(missing))}", sorted(missing)
        )

    mappings = []
    for index, row in enumerate(df.to_dict("records")):
        try:
            mappings.append(
                SkuMapping(
                    channel=row["channel"].strip(),
                    channel_sku=row["channel_sku"].strip(),
                    master_sku=row["master_sku"].strip(),
                    is_case_product=_as_bool(row.get("is_case_product", "")),
                    units_per_case=int(row.get("units_per_case") or 1),
                )
            )
        except (ValidationError, ValueError) as e:
            logger.warning(f"⚠️ Skipping mapping row {index + 2}: {e}")

    warehouse = warehouse or Warehouse()
    warehouse.create_all()
    return warehouse.upsert_sku_mappings(mappings)
