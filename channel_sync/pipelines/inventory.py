import logging
from typing import Any

from channel_sync.connectors.amazon import AmazonFbaInventoryConnector
from channel_sync.connectors.logisp import LogispInventoryConnector
from channel_sync.parsers import CanonicalizeResult
from channel_sync.pipeline import SyncPipeline

logger = logging.getLogger(__name__)

# --- Connector Registry ---
CONNECTOR_REGISTRY = {
    "amazon-fba": AmazonFbaInventoryConnector,
    "logisp": LogispInventoryConnector,
}


class InventorySyncPipeline(SyncPipeline):
    """
    Stock snapshot per (master SKU, location). Two channel SKUs resolving to
    the same master SKU at one location are added together at merge time.
    """

    entity = "inventory"

    def transform(self, raw_data: list[dict[str, Any]]) -> CanonicalizeResult:
        result = super().transform(raw_data)
        records = result.batch.inventory
        converted = sum(1 for r in records if r.is_case_converted)
        logger.info(
            f"  > {len(records)} inventory rows "
            f"({converted} case-converted, "
            f"{sum(r.available_quantity for r in records)} units available)"
        )
        return result
