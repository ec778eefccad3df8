import logging
from typing import Iterable, Optional

from .logger import UNMAPPED_SKU_LOGGER
from .schemas import ResolvedSku, SkuMapping

logger = logging.getLogger(__name__)
unmapped_logger = logging.getLogger(UNMAPPED_SKU_LOGGER)


class SkuResolver:
    """
    Maps (channel, channel_sku) to a master SKU and its packaging.

    A SKU that is itself a known master SKU resolves to itself. Anything else
    without a mapping passes through unchanged (units_per_case=1) and is
    recorded in `unmapped` so it can be fixed in the mapping table.
    """

    def __init__(self, mappings: Optional[Iterable[SkuMapping]] = None):
        self._mappings: dict[tuple[str, str], SkuMapping] = {}
        self._masters: set[str] = set()
        self.unmapped: set[tuple[str, str]] = set()
        for mapping in mappings or []:
            self.add(mapping)

    def __len__(self) -> int:
        return len(self._mappings)

    def add(self, mapping: SkuMapping) -> None:
        self._mappings[(mapping.channel, mapping.channel_sku)] = mapping
        self._masters.add(mapping.master_sku)

    def resolve(self, channel: str, channel_sku: str) -> ResolvedSku:
        mapping = self._mappings.get((channel, channel_sku))
        if mapping is not None:
            return ResolvedSku(
                master_sku=mapping.master_sku,
                is_case_product=mapping.is_case_product,
                units_per_case=mapping.units_per_case if mapping.is_case_product else 1,
            )

        if channel_sku in self._masters:
            return ResolvedSku(master_sku=channel_sku)

        if (channel, channel_sku) not in self.unmapped:
            self.unmapped.add((channel, channel_sku))
            unmapped_logger.warning(
                f"⚠️ Unmapped SKU '{channel_sku}' on {channel}. Kept under its channel SKU."
            )
        return ResolvedSku(master_sku=channel_sku, mapped=False)

    def convert_quantity(self, resolved: ResolvedSku, quantity: int) -> int:
        """Case packs to single units."""
        if resolved.is_case_product:
            return quantity * resolved.units_per_case
        return quantity

    def unmapped_skus(self) -> list[dict[str, str]]:
        return [
            {"channel": channel, "channel_sku": sku}
            for channel, sku in sorted(self.unmapped)
        ]

    @classmethod
    def from_warehouse(cls, warehouse) -> "SkuResolver":
        mappings = warehouse.load_sku_mappings()
        logger.info(f"🗂️ Loaded {len(mappings)} SKU mappings")
        return cls(mappings)
