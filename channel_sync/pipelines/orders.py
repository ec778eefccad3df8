import logging
from typing import Any, Iterable

from channel_sync.connectors.amazon import AmazonOrdersReportConnector
from channel_sync.connectors.shopify import ShopifyOrdersConnector
from channel_sync.parsers import TOTAL_CONVENTION, CanonicalizeResult
from channel_sync.pipeline import SyncPipeline
from channel_sync.warehouse import ORDER_AMOUNT_COLUMNS

logger = logging.getLogger(__name__)

# --- Connector Registry ---
# Channel kind -> connector producing raw order records.
CONNECTOR_REGISTRY = {
    "shopify": ShopifyOrdersConnector,
    "amazon": AmazonOrdersReportConnector,
}


class OrdersSyncPipeline(SyncPipeline):
    """Orders plus their line items, merged in the same run."""

    entity = "orders"

    def sum_columns(self) -> dict[str, Iterable[str]]:
        # Report rows are per order item: their amounts add up to the order.
        # Whole-order sources take one row's amounts, so a record seen twice
        # across shifting pages is not counted twice.
        if TOTAL_CONVENTION.get(self.config.kind) == "reconstructed":
            return {"orders": ORDER_AMOUNT_COLUMNS}
        return {"orders": ()}

    def transform(self, raw_data: list[dict[str, Any]]) -> CanonicalizeResult:
        result = super().transform(raw_data)
        batch = result.batch
        distinct_orders = len({o.order_id for o in batch.orders})
        logger.info(
            f"  > {distinct_orders} orders ({len(batch.orders)} order rows), "
            f"{len(batch.line_items)} line items"
        )
        return result
