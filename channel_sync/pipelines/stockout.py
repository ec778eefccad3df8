import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import Any, Optional

import pandas as pd
import requests
import sqlalchemy as sa

from channel_sync import data_handler, settings
from channel_sync.forecast import CRITICAL, WARNING, build_forecast, to_alerts
from channel_sync.pipeline import DataPipeline
from channel_sync.schemas import StockoutAlert
from channel_sync.sku_resolver import SkuResolver
from channel_sync.utils import utc_now
from channel_sync.warehouse import Warehouse, inventory, order_items, orders

logger = logging.getLogger(__name__)


@dataclass
class StockoutResult:
    run_id: str
    skus_checked: int = 0
    critical: int = 0
    warning: int = 0
    alerts_saved: int = 0
    notified: bool = False
    execution_time: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def sales_query(since) -> sa.Select:
    """Units sold per (channel, channel SKU) on orders placed since `since`."""
    joined = order_items.join(
        orders,
        sa.and_(
            order_items.c.order_id == orders.c.order_id,
            order_items.c.channel == orders.c.channel,
        ),
    )
    return (
        sa.select(
            order_items.c.channel,
            order_items.c.sku,
            sa.func.max(order_items.c.product_name).label("product_name"),
            sa.func.sum(order_items.c.quantity).label("units"),
        )
        .select_from(joined)
        .where(orders.c.order_date >= since)
        .group_by(order_items.c.channel, order_items.c.sku)
    )


def stock_query() -> sa.Select:
    """Available and inbound units per master SKU, across every location."""
    return sa.select(
        inventory.c.sku,
        sa.func.sum(inventory.c.available_quantity).label("available"),
        sa.func.sum(inventory.c.inbound_quantity).label("inbound"),
    ).group_by(inventory.c.sku)


class StockoutPipeline(DataPipeline):
    def __init__(
        self,
        warehouse: Warehouse,
        resolver: Optional[SkuResolver] = None,
        webhook_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
        save_output: bool = settings.SAVE_ALERT_OUTPUT,
    ):
        super().__init__("stockout check")
        self.warehouse = warehouse
        self.resolver = resolver if resolver is not None else SkuResolver.from_warehouse(warehouse)
        self.webhook_url = webhook_url
        self.session = session
        self.save_output = save_output
        self.run_id = uuid.uuid4().hex
        self.now = utc_now()
        self.skus_checked = 0

    def extract(self) -> tuple[pd.DataFrame, pd.DataFrame]:
        since = self.now - timedelta(days=settings.SALES_WINDOW_DAYS)
        logger.info(f"📊 Reading sales since {since.date().isoformat()}...")
        sales = self.warehouse.read_frame(sales_query(since))
        logger.info(f"  > {len(sales)} (channel, SKU) sales rows")

        logger.info("📦 Reading current stock...")
        stock = self.warehouse.read_frame(stock_query())
        logger.info(f"  > {len(stock)} SKUs in stock")
        return sales, stock

    def _sales_by_master_sku(self, sales: pd.DataFrame) -> pd.DataFrame:
        if sales.empty:
            return pd.DataFrame(columns=["sku", "product_name", "total_sold"])

        sales = sales.copy()
        sales["sku"] = [
            self.resolver.resolve(channel, sku).master_sku
            for channel, sku in zip(sales["channel"], sales["sku"])
        ]
        sales["units"] = pd.to_numeric(sales["units"], errors="coerce").fillna(0).astype(int)
        sales["product_name"] = sales["product_name"].fillna("")
        grouped = (
            sales.groupby("sku")
            .agg(product_name=("product_name", "max"), total_sold=("units", "sum"))
            .reset_index()
        )
        return grouped[grouped["total_sold"] > 0]

    def transform(self, raw_data: tuple[pd.DataFrame, pd.DataFrame]) -> list[StockoutAlert]:
        sales, stock = raw_data
        sales = self._sales_by_master_sku(sales)
        if not stock.empty:
            stock = stock.copy()
            for column in ("available", "inbound"):
                stock[column] = pd.to_numeric(stock[column], errors="coerce").fillna(0).astype(int)

        estimates = build_forecast(sales, stock)
        self.skus_checked = len(estimates)
        logger.info(f"🔎 {len(estimates)} SKUs with sales in the last {settings.SALES_WINDOW_DAYS} days")
        return to_alerts(estimates, self.run_id, self.now.date(), self.now)

    def load(self, alerts: list[StockoutAlert]) -> StockoutResult:
        result = StockoutResult(
            run_id=self.run_id,
            skus_checked=self.skus_checked,
            critical=sum(1 for a in alerts if a.alert_level == CRITICAL),
            warning=sum(1 for a in alerts if a.alert_level == WARNING),
        )
        logger.info(f"🔴 Critical: {result.critical} | ⚠️ Warning: {result.warning}")

        result.alerts_saved = self.warehouse.insert_alerts(alerts)
        if self.save_output and alerts:
            data_handler.save_alert_outputs(alerts)
        result.notified = data_handler.notify_stockout(alerts, self.webhook_url, self.session)
        return result
