"""SQLite-backed store for verified clothing purchases.

Each row is one purchased item together with its order context. Uniqueness
on (account, order number, item) and (account, email, item) keeps repeated
scans from importing the same purchase twice.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path

import structlog

from purchase_scanner.exceptions import PersistenceError
from purchase_scanner.models import OrderMetadata, ParsedItem
from purchase_scanner.rules import RuleTables, load_rule_tables
from purchase_scanner.rules.canonical import canonicalize
from purchase_scanner.wardrobe.normalize import (
    estimate_vibe,
    normalize_clothing_type,
    placeholder_image_url,
)

logger = structlog.get_logger()


_SCHEMA_VERSION = 1


@dataclass(frozen=True)
class StoredPurchase:
    """One persisted purchase row."""

    id: int
    account: str
    email_id: str
    order_number: str | None
    store: str
    item_name: str
    brand: str | None
    item_type: str | None
    color: str | None
    price: float | None
    image_url: str
    product_image_url: str | None
    estimated_vibe: str
    purchase_date: date


@dataclass(frozen=True)
class PurchaseStats:
    """Summary stats for one account."""

    total_items: int
    total_orders: int
    unique_stores: int
    total_spent: float
    min_date: date | None
    max_date: date | None


class PurchaseRepository:
    """Repository for storing and querying purchased clothing items."""

    def __init__(self, db_path: Path, tables: RuleTables | None = None) -> None:
        """Create a repository.

        Args:
            db_path: Path to the SQLite database file.
            tables: Rule tables used for type and vibe normalization.
        """

        self._db_path = db_path
        self._tables = tables or load_rule_tables()

    def initialize(self) -> None:
        """Create the schema if needed and check its version."""

        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS _schema_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )

            current_version = self._get_schema_version(conn)
            if current_version is None:
                self._create_schema_v1(conn)
                self._set_schema_version(conn, _SCHEMA_VERSION)
                conn.commit()
                logger.info("purchase_schema_created", version=_SCHEMA_VERSION)
                return

            if current_version != _SCHEMA_VERSION:
                raise PersistenceError(
                    f"Unsupported schema version {current_version}; expected {_SCHEMA_VERSION}"
                )

    def has_order(self, account: str, order_number: str) -> bool:
        """Whether any item of ``order_number`` is already stored for ``account``."""

        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM purchases WHERE account = ? AND order_number = ? LIMIT 1;",
                (account, order_number),
            ).fetchone()
        return row is not None

    def record_purchase(self, account: str, item: ParsedItem, order: OrderMetadata) -> int | None:
        """Insert one purchased item.

        Returns:
            The new row id, or None when the item was already stored.

        Raises:
            PersistenceError: On any database failure.
        """
        return self.record_order(account, [item], order)[0]

    def record_order(
        self, account: str, items: list[ParsedItem], order: OrderMetadata
    ) -> list[int | None]:
        """Insert every item of one order in a single transaction.

        Either all of the order's new rows are committed or none are, so a
        failed import never leaves a partial order behind for ``has_order``
        to report as already stored.

        Returns:
            One entry per item: the new row id, or None when that item was
            already stored.

        Raises:
            PersistenceError: On any database failure. Nothing is written.
        """

        rows = [self._row_params(account, item, order) for item in items]
        ids: list[int | None] = []

        with self._connect() as conn:
            try:
                for params in rows:
                    cursor = conn.execute(
                        """
                        INSERT OR IGNORE INTO purchases (
                            account,
                            email_id,
                            email_subject,
                            order_number,
                            store,
                            item_name,
                            item_key,
                            brand,
                            item_type,
                            color,
                            quantity,
                            price,
                            image_url,
                            product_image_url,
                            estimated_vibe,
                            tags_json,
                            purchase_date,
                            created_at_iso
                        )
                        VALUES (
                            :account,
                            :email_id,
                            :email_subject,
                            :order_number,
                            :store,
                            :item_name,
                            :item_key,
                            :brand,
                            :item_type,
                            :color,
                            :quantity,
                            :price,
                            :image_url,
                            :product_image_url,
                            :estimated_vibe,
                            :tags_json,
                            :purchase_date,
                            :created_at_iso
                        );
                        """,
                        params,
                    )
                    ids.append(int(cursor.lastrowid) if cursor.rowcount else None)
                conn.commit()
            except Exception:
                conn.rollback()
                logger.warning(
                    "purchase_order_rolled_back",
                    account=account,
                    email_id=order.email_id,
                    order_number=order.order_number,
                    items=len(rows),
                )
                raise

        for params, row_id in zip(rows, ids):
            if row_id is None:
                logger.debug(
                    "purchase_already_stored",
                    account=account,
                    item_name=params["item_name"],
                    email_id=order.email_id,
                )
                continue
            logger.info(
                "purchase_recorded",
                account=account,
                item_name=params["item_name"],
                store=params["store"],
                order_number=order.order_number,
            )
        return ids

    def _row_params(self, account: str, item: ParsedItem, order: OrderMetadata) -> dict[str, object]:
        item_type = normalize_clothing_type(item.type, self._tables)
        store = order.store or "Unknown"
        purchased_on = order.purchase_date or datetime.now(timezone.utc).date()
        tags = [store] + [v for v in (item.brand, item.color) if v]

        return {
            "account": account,
            "email_id": order.email_id,
            "email_subject": order.email_subject,
            "order_number": order.order_number,
            "store": store,
            "item_name": item.name,
            "item_key": canonicalize(item.name) or item.name.lower(),
            "brand": item.brand,
            "item_type": item_type,
            "color": item.color,
            "quantity": item.quantity,
            "price": item.price if item.price is not None else order.total,
            "image_url": item.image_url or placeholder_image_url(item_type or "clothing"),
            "product_image_url": item.image_url,
            "estimated_vibe": estimate_vibe(item.name, self._tables),
            "tags_json": json.dumps(tags),
            "purchase_date": purchased_on.isoformat(),
            "created_at_iso": datetime.now(timezone.utc).isoformat(),
        }

    def list_purchases(self, account: str, limit: int = 50) -> list[StoredPurchase]:
        """Most recent purchases first."""

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM purchases
                WHERE account = ?
                ORDER BY purchase_date DESC, id DESC
                LIMIT ?;
                """,
                (account, limit),
            ).fetchall()

        return [self._row_to_purchase(row) for row in rows]

    def stats(self, account: str) -> PurchaseStats:
        """Compute summary stats for ``account``."""

        with self._connect() as conn:
            total, orders, stores, spent, min_iso, max_iso = conn.execute(
                """
                SELECT
                    COUNT(*),
                    COUNT(DISTINCT COALESCE(order_number, email_id)),
                    COUNT(DISTINCT store),
                    SUM(COALESCE(price, 0) * COALESCE(quantity, 1)),
                    MIN(purchase_date),
                    MAX(purchase_date)
                FROM purchases
                WHERE account = ?;
                """,
                (account,),
            ).fetchone()

        return PurchaseStats(
            total_items=int(total or 0),
            total_orders=int(orders or 0),
            unique_stores=int(stores or 0),
            total_spent=round(float(spent or 0.0), 2),
            min_date=date.fromisoformat(min_iso) if min_iso else None,
            max_date=date.fromisoformat(max_iso) if max_iso else None,
        )

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self._db_path)
        except sqlite3.Error as exc:
            raise PersistenceError(f"cannot open {self._db_path}: {exc}") from exc
        try:
            conn.row_factory = sqlite3.Row
            yield conn
        except sqlite3.Error as exc:
            raise PersistenceError(str(exc)) from exc
        finally:
            conn.close()

    def _get_schema_version(self, conn: sqlite3.Connection) -> int | None:
        row = conn.execute(
            "SELECT value FROM _schema_meta WHERE key = 'schema_version'"
        ).fetchone()
        if row is None:
            return None
        return int(row[0])

    def _set_schema_version(self, conn: sqlite3.Connection, version: int) -> None:
        conn.execute(
            "INSERT OR REPLACE INTO _schema_meta(key, value) VALUES('schema_version', ?) ",
            (str(version),),
        )

    def _create_schema_v1(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS purchases (
                id INTEGER PRIMARY KEY,
                account TEXT NOT NULL,
                email_id TEXT NOT NULL,
                email_subject TEXT,
                order_number TEXT,
                store TEXT NOT NULL,
                item_name TEXT NOT NULL,
                item_key TEXT NOT NULL,
                brand TEXT,
                item_type TEXT,
                color TEXT,
                quantity INTEGER,
                price REAL,
                image_url TEXT NOT NULL,
                product_image_url TEXT,
                estimated_vibe TEXT NOT NULL,
                tags_json TEXT NOT NULL,
                purchase_date TEXT NOT NULL,
                created_at_iso TEXT NOT NULL,
                UNIQUE(account, order_number, item_key),
                UNIQUE(account, email_id, item_key)
            );

            CREATE INDEX IF NOT EXISTS idx_purchases_account_order
                ON purchases(account, order_number);

            CREATE INDEX IF NOT EXISTS idx_purchases_account_date
                ON purchases(account, purchase_date);
            """
        )

    def _row_to_purchase(self, row: sqlite3.Row) -> StoredPurchase:
        return StoredPurchase(
            id=int(row["id"]),
            account=row["account"],
            email_id=row["email_id"],
            order_number=row["order_number"],
            store=row["store"],
            item_name=row["item_name"],
            brand=row["brand"],
            item_type=row["item_type"],
            color=row["color"],
            price=row["price"],
            image_url=row["image_url"],
            product_image_url=row["product_image_url"],
            estimated_vibe=row["estimated_vibe"],
            purchase_date=date.fromisoformat(row["purchase_date"]),
        )
