"""
Durable store boundary.

Tables are addressed as (schema, table) and declared once with SQLAlchemy
Core; natural entity keys are the primary keys, so the merge key and the
uniqueness guarantee are the same thing. The merge itself is one
INSERT ... SELECT ... ON CONFLICT DO UPDATE statement (PostgreSQL and SQLite).
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional, Sequence

import pandas as pd
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from . import settings
from .exceptions import RunLockError, StagingError, WarehouseError
from .schemas import SkuMapping, StockoutAlert
from .utils import utc_now

logger = logging.getLogger(__name__)

metadata = sa.MetaData(schema=settings.WAREHOUSE_SCHEMA)

Money = sa.Numeric(18, 4)
Timestamp = sa.DateTime(timezone=True)

orders = sa.Table(
    settings.ORDERS_TABLE,
    metadata,
    sa.Column("order_id", sa.String(255), primary_key=True),
    sa.Column("channel", sa.String(64), primary_key=True),
    sa.Column("account_name", sa.String(255)),
    sa.Column("order_number", sa.String(255)),
    sa.Column("order_date", Timestamp),
    sa.Column("fulfillment_date", Timestamp, nullable=True),
    sa.Column("customer_name", sa.String(255)),
    sa.Column("ship_state", sa.String(255)),
    sa.Column("ship_city", sa.String(255)),
    sa.Column("ship_postal_code", sa.String(64)),
    sa.Column("subtotal_amount", Money),
    sa.Column("tax_amount", Money),
    sa.Column("shipping_amount", Money),
    sa.Column("total_amount", Money),
    sa.Column("currency", sa.String(8)),
    sa.Column("payment_status", sa.String(64)),
    sa.Column("fulfillment_status", sa.String(64)),
    sa.Column("created_at", Timestamp),
    sa.Column("updated_at", Timestamp),
)

order_items = sa.Table(
    settings.ORDER_ITEMS_TABLE,
    metadata,
    sa.Column("order_id", sa.String(255), primary_key=True),
    sa.Column("channel", sa.String(64), primary_key=True),
    sa.Column("line_item_id", sa.String(255), primary_key=True),
    sa.Column("sku", sa.String(255)),
    sa.Column("product_name", sa.Text),
    sa.Column("quantity", sa.Integer),
    sa.Column("unit_price", Money),
    sa.Column("line_total", Money),
    sa.Column("currency", sa.String(8)),
    sa.Column("quantity_fulfilled", sa.Integer),
    sa.Column("quantity_unfulfilled", sa.Integer),
    sa.Column("created_at", Timestamp),
    sa.Column("updated_at", Timestamp),
)

inventory = sa.Table(
    settings.INVENTORY_TABLE,
    metadata,
    sa.Column("sku", sa.String(255), primary_key=True),
    sa.Column("location", sa.String(128), primary_key=True),
    sa.Column("location_type", sa.String(64)),
    sa.Column("available_quantity", sa.Integer),
    sa.Column("reserved_quantity", sa.Integer),
    sa.Column("inbound_quantity", sa.Integer),
    sa.Column("total_quantity", sa.Integer),
    sa.Column("last_updated", Timestamp),
    sa.Column("sync_status", sa.String(32)),
    sa.Column("original_sku", sa.String(255)),
    sa.Column("original_quantity", sa.Integer),
    sa.Column("is_case_converted", sa.Boolean),
)

sku_mapping = sa.Table(
    settings.SKU_MAPPING_TABLE,
    metadata,
    sa.Column("channel", sa.String(64), primary_key=True),
    sa.Column("channel_sku", sa.String(255), primary_key=True),
    sa.Column("master_sku", sa.String(255), nullable=False),
    sa.Column("is_case_product", sa.Boolean, nullable=False, default=False),
    sa.Column("units_per_case", sa.Integer, nullable=False, default=1),
)

stockout_alert = sa.Table(
    settings.STOCKOUT_ALERT_TABLE,
    metadata,
    sa.Column("run_id", sa.String(64), primary_key=True),
    sa.Column("sku", sa.String(255), primary_key=True),
    sa.Column("product_name", sa.Text),
    sa.Column("location", sa.String(64)),
    sa.Column("current_stock", sa.Integer),
    sa.Column("inbound_stock", sa.Integer),
    sa.Column("daily_sales_rate", sa.Float),
    sa.Column("days_until_stockout", sa.Integer),
    sa.Column("alert_level", sa.String(16)),
    sa.Column("suggested_order_qty", sa.Integer),
    sa.Column("predicted_stockout_date", sa.Date),
    sa.Column("calculated_at", Timestamp),
)

sync_lock = sa.Table(
    settings.SYNC_LOCK_TABLE,
    metadata,
    sa.Column("channel", sa.String(255), primary_key=True),
    sa.Column("holder", sa.String(64), nullable=False),
    sa.Column("acquired_at", Timestamp, nullable=False),
    sa.Column("expires_at", Timestamp, nullable=False),
)

# --- Merge policy per entity ---
ENTITY_TABLES = {
    "orders": orders,
    "order_items": order_items,
    "inventory": inventory,
}
ENTITY_KEYS = {
    "orders": ("order_id", "channel"),
    "order_items": ("order_id", "channel", "line_item_id"),
    "inventory": ("sku", "location"),
}
ORDER_AMOUNT_COLUMNS = ("subtotal_amount", "tax_amount", "shipping_amount", "total_amount")
# Columns summed when several staged rows share a key; every other column
# takes an arbitrary contributing row's value.
DEFAULT_SUM_COLUMNS = {
    "orders": (),
    "order_items": (),
    "inventory": (
        "available_quantity",
        "reserved_quantity",
        "inbound_quantity",
        "total_quantity",
        "original_quantity",
    ),
}
INSERT_ONLY_COLUMNS = ("created_at",)

SUPPORTED_DIALECTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


@dataclass(frozen=True)
class MergeStats:
    entity: str
    staged_rows: int
    merged_keys: int
    inserted: int
    updated: int


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Warehouse:
    def __init__(self, url: Optional[str] = None, engine: Optional[Engine] = None):
        self.engine = engine or sa.create_engine(url or settings.DATABASE_URL)
        self.dialect = self.engine.dialect.name

    def create_all(self) -> None:
        metadata.create_all(self.engine)

    def _insert(self, table: sa.Table):
        if self.dialect not in SUPPORTED_DIALECTS:
            raise WarehouseError(
                f"Merge is not supported on the '{self.dialect}' dialect",
                details={"supported": sorted(SUPPORTED_DIALECTS)},
            )
        return SUPPORTED_DIALECTS[self.dialect](table)

    # --- Staging tables ---

    def _staging_table(self, entity: str, name: str) -> sa.Table:
        # Column-for-column copy of the target, without keys or constraints
        target = ENTITY_TABLES[entity]
        return sa.Table(
            name,
            sa.MetaData(schema=settings.WAREHOUSE_SCHEMA),
            *[sa.Column(c.name, c.type, nullable=True) for c in target.columns],
        )

    def create_staging_table(self, entity: str, name: str) -> sa.Table:
        if entity not in ENTITY_TABLES:
            raise StagingError(f"Unknown entity '{entity}'", {"entity": entity})
        table = self._staging_table(entity, name)
        try:
            # No checkfirst: a name collision must fail loudly
            table.create(self.engine, checkfirst=False)
        except SQLAlchemyError as e:
            raise StagingError(
                f"Could not create staging table {name}: {e}", {"table": name}
            ) from e
        logger.info(f"🧱 Staging table created: {name}")
        return table

    def drop_staging_table(self, table: sa.Table) -> None:
        """Drops a staging table. A table that is already gone is not an error."""
        table.drop(self.engine, checkfirst=True)
        logger.info(f"🗑️ Staging table dropped: {table.name}")

    def insert_rows(self, table: sa.Table, rows: Sequence[dict[str, Any]]) -> int:
        if not rows:
            return 0
        try:
            with self.engine.begin() as conn:
                conn.execute(table.insert(), list(rows))
        except SQLAlchemyError as e:
            raise StagingError(
                f"Insert into {table.name} failed: {e}",
                {"table": table.name, "rows": len(rows)},
            ) from e
        return len(rows)

    # --- Merge ---

    def _collapsed(self, entity: str, staging: sa.Table, sum_columns: Iterable[str]) -> sa.Select:
        keys = ENTITY_KEYS[entity]
        summed = set(sum_columns)
        columns = []
        for column in staging.columns:
            if column.name in keys:
                columns.append(column)
            elif column.name in summed:
                columns.append(sa.func.sum(column).label(column.name))
            elif isinstance(column.type, sa.Boolean) and self.dialect == "postgresql":
                columns.append(sa.func.bool_or(column).label(column.name))
            else:
                columns.append(sa.func.max(column).label(column.name))
        # WHERE true keeps SQLite from reading ON CONFLICT as a join clause
        return (
            sa.select(*columns)
            .where(sa.true())
            .group_by(*[staging.c[k] for k in keys])
        )

    def merge(
        self,
        entity: str,
        staging: sa.Table,
        sum_columns: Optional[Iterable[str]] = None,
    ) -> MergeStats:
        """
        Upserts the staging table into the entity's durable table.

        Staged rows are first collapsed to one row per natural key. Matched
        keys get every mutable column updated; unmatched keys are inserted.
        created_at is only ever written on insert.
        """
        target = ENTITY_TABLES[entity]
        keys = ENTITY_KEYS[entity]
        sum_columns = DEFAULT_SUM_COLUMNS[entity] if sum_columns is None else sum_columns
        column_names = [c.name for c in target.columns]

        collapsed = self._collapsed(entity, staging, sum_columns)
        stmt = self._insert(target).from_select(column_names, collapsed)
        stmt = stmt.on_conflict_do_update(
            index_elements=list(keys),
            set_={
                name: stmt.excluded[name]
                for name in column_names
                if name not in keys and name not in INSERT_ONLY_COLUMNS
            },
        )

        staged_keys = (
            sa.select(*[staging.c[k] for k in keys])
            .group_by(*[staging.c[k] for k in keys])
            .subquery()
        )
        existing = sa.select(sa.func.count()).select_from(
            staged_keys.join(
                target, sa.and_(*[staged_keys.c[k] == target.c[k] for k in keys])
            )
        )

        try:
            with self.engine.begin() as conn:
                staged_rows = conn.execute(
                    sa.select(sa.func.count()).select_from(staging)
                ).scalar_one()
                merged_keys = conn.execute(
                    sa.select(sa.func.count()).select_from(staged_keys)
                ).scalar_one()
                updated = conn.execute(existing).scalar_one()
                if merged_keys:
                    conn.execute(stmt)
        except SQLAlchemyError as e:
            raise WarehouseError(
                f"Merge of {staging.name} into {target.name} failed: {e}",
                "MERGE_FAILED",
                {"entity": entity, "staging_table": staging.name},
            ) from e

        stats = MergeStats(
            entity=entity,
            staged_rows=staged_rows,
            merged_keys=merged_keys,
            inserted=merged_keys - updated,
            updated=updated,
        )
        logger.info(
            f"🔀 Merged {entity}: {stats.staged_rows} staged rows -> "
            f"{stats.inserted} inserted, {stats.updated} updated"
        )
        return stats

    # --- Reads ---

    def read_frame(self, statement, params: Optional[dict[str, Any]] = None) -> pd.DataFrame:
        with self.engine.connect() as conn:
            return pd.read_sql(statement, conn, params=params)

    def count(self, entity_or_table) -> int:
        table = ENTITY_TABLES.get(entity_or_table, entity_or_table)
        with self.engine.connect() as conn:
            return conn.execute(sa.select(sa.func.count()).select_from(table)).scalar_one()

    # --- SKU mappings ---

    def load_sku_mappings(self) -> list[SkuMapping]:
        with self.engine.connect() as conn:
            rows = conn.execute(sa.select(sku_mapping)).mappings().all()
        return [SkuMapping(**row) for row in rows]

    def upsert_sku_mappings(self, mappings: Sequence[SkuMapping]) -> int:
        if not mappings:
            return 0
        stmt = self._insert(sku_mapping)
        stmt = stmt.on_conflict_do_update(
            index_elements=["channel", "channel_sku"],
            set_={
                "master_sku": stmt.excluded.master_sku,
                "is_case_product": stmt.excluded.is_case_product,
                "units_per_case": stmt.excluded.units_per_case,
            },
        )
        with self.engine.begin() as conn:
            conn.execute(stmt, [m.model_dump() for m in mappings])
        logger.info(f"✅ Upserted {len(mappings)} SKU mappings")
        return len(mappings)

    # --- Stockout alerts ---

    def insert_alerts(self, alerts: Sequence[StockoutAlert]) -> int:
        if not alerts:
            return 0
        try:
            with self.engine.begin() as conn:
                conn.execute(stockout_alert.insert(), [a.to_row() for a in alerts])
        except SQLAlchemyError as e:
            raise WarehouseError(
                f"Insert into {stockout_alert.name} failed: {e}", "ALERT_INSERT_FAILED"
            ) from e
        return len(alerts)

    # --- Run lock ---

    def acquire_run_lock(
        self,
        key: str,
        holder: str,
        ttl_seconds: float = settings.RUN_LOCK_TTL_SECONDS,
        now: Optional[datetime] = None,
    ) -> None:
        """
        Takes a TTL lease on `key`. An expired lease, or one already held by
        `holder`, is replaced; a live lease held by anyone else raises RunLockError.
        """
        now = now or utc_now()
        try:
            with self.engine.begin() as conn:
                row = conn.execute(
                    sa.select(sync_lock).where(sync_lock.c.channel == key)
                ).first()
                if row is not None:
                    if row.holder != holder and _as_utc(row.expires_at) > _as_utc(now):
                        raise RunLockError(key, row.holder)
                    conn.execute(sa.delete(sync_lock).where(sync_lock.c.channel == key))
                conn.execute(
                    sync_lock.insert().values(
                        channel=key,
                        holder=holder,
                        acquired_at=now,
                        expires_at=now + timedelta(seconds=ttl_seconds),
                    )
                )
        except IntegrityError as e:
            # Another run inserted its lease between our read and our insert
            raise RunLockError(key, "another run") from e
        logger.info(f"🔒 Run lock acquired: {key} ({holder})")

    def release_run_lock(self, key: str, holder: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                sa.delete(sync_lock).where(
                    sync_lock.c.channel == key, sync_lock.c.holder == holder
                )
            )
        logger.info(f"🔓 Run lock released: {key}")
