"""
Repository pattern for data access.

Handles catalog, tax configuration and quote record persistence. Decimal
values are stored as text so they round-trip exactly.
"""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from quote_engine.core.catalog import CatalogItem, CostComponents
from quote_engine.core.errors import (
    InsufficientStockError,
    InvalidTransitionError,
    QuoteNotFoundError,
    UnknownSkuError,
)
from quote_engine.core.lifecycle import QuoteStatus, ensure_transition, format_invoice_number
from quote_engine.core.pricing import PricingSettings
from quote_engine.core.quote_builder import ComputedQuote, QuoteDraft, quote_to_dict
from quote_engine.core.taxes import TaxConfiguration, TaxRule, rules_from_dicts, rules_to_dicts

from .db import DEFAULT_DB_PATH, get_connection
from .models import QuoteRecord

logger = logging.getLogger(__name__)

_QUOTE_COLUMNS = """
    id, status, draft, created_by, created_at, updated_at, computed,
    tax_configuration_version, frozen_tax_rules, frozen_settings,
    invoice_number, approved_by, approved_at, rejection_reason
"""


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the catalog, tax configuration and quote tables if missing.

    ``tax_configuration`` is append-only: a change to tax settings inserts
    a new version and never updates an old one.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS catalog_item (
                sku TEXT PRIMARY KEY,
                description TEXT NOT NULL,
                unit_cost TEXT NOT NULL,
                weight_kg TEXT,
                cost_components TEXT NOT NULL,
                markup_override_percent TEXT,
                pricing_tier TEXT NOT NULL DEFAULT 'standard',
                stock INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS tax_configuration (
                version INTEGER PRIMARY KEY,
                rules TEXT NOT NULL,
                created_at TEXT NOT NULL,
                created_by TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS quote_record (
                id TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                draft TEXT NOT NULL,
                created_by TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                computed TEXT,
                tax_configuration_version INTEGER REFERENCES tax_configuration(version),
                frozen_tax_rules TEXT,
                frozen_settings TEXT,
                invoice_number TEXT UNIQUE,
                approved_by TEXT,
                approved_at TEXT,
                rejection_reason TEXT
            );

            CREATE TABLE IF NOT EXISTS invoice_counter (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                current INTEGER NOT NULL
            );
        """)
        conn.commit()
    finally:
        conn.close()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _decimal_or_none(value: Optional[str]) -> Optional[Decimal]:
    return None if value is None else Decimal(value)


def _row_to_catalog_item(row: tuple) -> CatalogItem:
    return CatalogItem(
        sku=row[0],
        description=row[1],
        unit_cost=Decimal(row[2]),
        weight_kg=_decimal_or_none(row[3]),
        cost_components=CostComponents.from_dict(json.loads(row[4])),
        markup_override_percent=_decimal_or_none(row[5]),
        pricing_tier=row[6],
        stock=row[7],
    )


def _row_to_quote_record(row: tuple) -> QuoteRecord:
    return QuoteRecord(
        id=row[0],
        status=QuoteStatus(row[1]),
        draft=QuoteDraft.from_dict(json.loads(row[2])),
        created_by=row[3],
        created_at=datetime.fromisoformat(row[4]),
        updated_at=datetime.fromisoformat(row[5]),
        computed=json.loads(row[6]) if row[6] else None,
        tax_configuration_version=row[7],
        frozen_tax_rules=rules_from_dicts(json.loads(row[8])) if row[8] else None,
        frozen_settings=PricingSettings.from_dict(json.loads(row[9])) if row[9] else None,
        invoice_number=row[10],
        approved_by=row[11],
        approved_at=datetime.fromisoformat(row[12]) if row[12] else None,
        rejection_reason=row[13],
    )


class QuoteRepository:
    """Repository for catalog data, tax configurations and quote records.

    Every method opens its own connection. Multi-step writes run inside a
    single ``BEGIN IMMEDIATE`` transaction and roll back on any error.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    # Catalog

    def upsert_catalog_items(self, items: Iterable[CatalogItem]) -> int:
        """Insert or replace catalog items atomically.

        Returns:
            Number of items written
        """
        items = list(items)
        if not items:
            return 0

        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            for item in items:
                conn.execute("""
                    INSERT OR REPLACE INTO catalog_item
                    (sku, description, unit_cost, weight_kg, cost_components,
                     markup_override_percent, pricing_tier, stock)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    item.sku,
                    item.description,
                    str(item.unit_cost),
                    None if item.weight_kg is None else str(item.weight_kg),
                    json.dumps(item.cost_components.to_dict()),
                    None if item.markup_override_percent is None else str(item.markup_override_percent),
                    item.pricing_tier,
                    item.stock,
                ))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        return len(items)

    def fetch_catalog_items(self, skus: Optional[Sequence[str]] = None) -> Dict[str, CatalogItem]:
        """Fetch catalog items in one query, so a quote sees one snapshot.

        Args:
            skus: SKUs to fetch; None fetches the whole catalog

        Returns:
            Items keyed by SKU. Missing SKUs are simply absent.
        """
        conn = get_connection(self.db_path)
        try:
            query = """
                SELECT sku, description, unit_cost, weight_kg, cost_components,
                       markup_override_percent, pricing_tier, stock
                FROM catalog_item
            """
            params: List[str] = []
            if skus is not None:
                unique = sorted(set(skus))
                if not unique:
                    return {}
                query += " WHERE sku IN (" + ", ".join("?" for _ in unique) + ")"
                params.extend(unique)
            query += " ORDER BY sku"

            cursor = conn.execute(query, params)
            return {row[0]: _row_to_catalog_item(row) for row in cursor.fetchall()}
        finally:
            conn.close()

    # Tax configuration

    def save_tax_configuration(
        self,
        rules: Sequence[TaxRule],
        created_by: str,
        created_at: Optional[datetime] = None,
    ) -> TaxConfiguration:
        """Append a new tax configuration version.

        Older versions are kept so records can refer to what they were
        priced with.

        Returns:
            The stored TaxConfiguration with its assigned version
        """
        if not created_by or not created_by.strip():
            raise ValueError("created_by is required")
        created_at = created_at or _now()

        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute("SELECT COALESCE(MAX(version), 0) FROM tax_configuration").fetchone()
            config = TaxConfiguration(
                version=row[0] + 1,
                rules=tuple(rules),
                created_at=created_at,
                created_by=created_by,
            )
            conn.execute("""
                INSERT INTO tax_configuration (version, rules, created_at, created_by)
                VALUES (?, ?, ?, ?)
            """, (
                config.version,
                json.dumps(rules_to_dicts(config.rules)),
                config.created_at.isoformat(),
                config.created_by,
            ))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

        logger.info("Saved tax configuration version %d by %s", config.version, created_by)
        return config

    def current_tax_configuration(self) -> Optional[TaxConfiguration]:
        """Latest tax configuration, or None if none has been saved."""
        return self._fetch_tax_configuration(
            "SELECT version, rules, created_at, created_by FROM tax_configuration "
            "ORDER BY version DESC LIMIT 1",
            [],
        )

    def get_tax_configuration(self, version: int) -> Optional[TaxConfiguration]:
        return self._fetch_tax_configuration(
            "SELECT version, rules, created_at, created_by FROM tax_configuration WHERE version = ?",
            [version],
        )

    def _fetch_tax_configuration(self, query: str, params: List) -> Optional[TaxConfiguration]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(query, params).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        return TaxConfiguration(
            version=row[0],
            rules=rules_from_dicts(json.loads(row[1])),
            created_at=datetime.fromisoformat(row[2]),
            created_by=row[3],
        )

    # Quote records

    def save_draft(
        self,
        quote_id: str,
        draft: QuoteDraft,
        actor: str,
        computed: Optional[ComputedQuote] = None,
    ) -> QuoteRecord:
        """Create or overwrite a draft. Last write wins.

        Raises:
            InvalidTransitionError: If the record exists and is no longer a draft
        """
        if not quote_id or not quote_id.strip():
            raise ValueError("quote_id is required")
        now = _now().isoformat()
        computed_json = json.dumps(quote_to_dict(computed)) if computed is not None else None

        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute("SELECT status FROM quote_record WHERE id = ?", (quote_id,)).fetchone()
            if row is None:
                conn.execute("""
                    INSERT INTO quote_record
                    (id, status, draft, created_by, created_at, updated_at, computed)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """, (
                    quote_id,
                    QuoteStatus.DRAFT.value,
                    json.dumps(draft.to_dict()),
                    actor,
                    now,
                    now,
                    computed_json,
                ))
            else:
                current = QuoteStatus(row[0])
                if current != QuoteStatus.DRAFT:
                    # Pending quotes go back through redraft() first
                    raise InvalidTransitionError(current.value, QuoteStatus.DRAFT.value)
                conn.execute("""
                    UPDATE quote_record SET draft = ?, computed = ?, updated_at = ?
                    WHERE id = ?
                """, (json.dumps(draft.to_dict()), computed_json, now, quote_id))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        return self.get_quote(quote_id)

    def get_quote(self, quote_id: str) -> QuoteRecord:
        """Fetch a quote record.

        Raises:
            QuoteNotFoundError: If no record has this id
        """
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                f"SELECT {_QUOTE_COLUMNS} FROM quote_record WHERE id = ?", (quote_id,)
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            raise QuoteNotFoundError(f"Quote not found: {quote_id}")
        return _row_to_quote_record(row)

    def list_quotes(self, status: Optional[QuoteStatus] = None, limit: int = 100) -> List[QuoteRecord]:
        """List quote records, most recently updated first."""
        conn = get_connection(self.db_path)
        try:
            query = f"SELECT {_QUOTE_COLUMNS} FROM quote_record"
            params: List = []
            if status is not None:
                query += " WHERE status = ?"
                params.append(status.value)
            query += " ORDER BY updated_at DESC, id LIMIT ?"
            params.append(limit)
            return [_row_to_quote_record(row) for row in conn.execute(query, params).fetchall()]
        finally:
            conn.close()

    def _transition(self, quote_id: str, target: QuoteStatus, extra_sql: str = "", extra_params=()) -> QuoteRecord:
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute("SELECT status FROM quote_record WHERE id = ?", (quote_id,)).fetchone()
            if row is None:
                raise QuoteNotFoundError(f"Quote not found: {quote_id}")
            ensure_transition(QuoteStatus(row[0]), target)
            conn.execute(
                f"UPDATE quote_record SET status = ?, updated_at = ?{extra_sql} WHERE id = ?",
                (target.value, _now().isoformat(), *extra_params, quote_id),
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        logger.info("Quote %s moved to %s", quote_id, target.value)
        return self.get_quote(quote_id)

    def submit_for_approval(self, quote_id: str) -> QuoteRecord:
        """Move a draft to pending approval."""
        return self._transition(quote_id, QuoteStatus.PENDING_APPROVAL)

    def redraft(self, quote_id: str) -> QuoteRecord:
        """Send a pending quote back to draft for editing."""
        return self._transition(quote_id, QuoteStatus.DRAFT)

    def reject(self, quote_id: str, reason: Optional[str] = None) -> QuoteRecord:
        """Reject a pending quote. Rejection is terminal."""
        return self._transition(quote_id, QuoteStatus.REJECTED, ", rejection_reason = ?", (reason,))

    def approve(
        self,
        quote_id: str,
        computed: ComputedQuote,
        settings: PricingSettings,
        tax_configuration: Optional[TaxConfiguration],
        approved_by: str,
        approved_at: Optional[datetime] = None,
    ) -> QuoteRecord:
        """Approve a pending quote in one transaction.

        Within the transaction: the tax rules and pricing settings are
        frozen onto the record (an empty rule set when no tax configuration
        exists yet), stock is decremented for every line, the invoice
        number is drawn from the counter and the computation audit data is
        stored. Any failure rolls all of it back.

        Raises:
            QuoteNotFoundError: If the record does not exist
            InvalidTransitionError: If the record is not pending approval
            UnknownSkuError: If a line's SKU left the catalog
            InsufficientStockError: If stock would go negative
        """
        approved_at = approved_at or _now()

        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute("SELECT status FROM quote_record WHERE id = ?", (quote_id,)).fetchone()
            if row is None:
                raise QuoteNotFoundError(f"Quote not found: {quote_id}")
            ensure_transition(QuoteStatus(row[0]), QuoteStatus.APPROVED)

            for index, line in enumerate(computed.line_items):
                stock_row = conn.execute(
                    "SELECT stock FROM catalog_item WHERE sku = ?", (line.sku,)
                ).fetchone()
                if stock_row is None:
                    raise UnknownSkuError(f"SKU not found in catalog: {line.sku} (line {index})", line.sku, index)
                if stock_row[0] < line.quantity:
                    raise InsufficientStockError(line.sku, stock_row[0], line.quantity)
                conn.execute(
                    "UPDATE catalog_item SET stock = stock - ? WHERE sku = ?",
                    (line.quantity, line.sku),
                )

            conn.execute("INSERT OR IGNORE INTO invoice_counter (id, current) VALUES (1, 0)")
            conn.execute("UPDATE invoice_counter SET current = current + 1 WHERE id = 1")
            sequence = conn.execute("SELECT current FROM invoice_counter WHERE id = 1").fetchone()[0]
            invoice_number = format_invoice_number(sequence, approved_at)

            conn.execute("""
                UPDATE quote_record
                SET status = ?, computed = ?, tax_configuration_version = ?,
                    frozen_tax_rules = ?, frozen_settings = ?, invoice_number = ?,
                    approved_by = ?, approved_at = ?, updated_at = ?
                WHERE id = ?
            """, (
                QuoteStatus.APPROVED.value,
                json.dumps(quote_to_dict(computed)),
                tax_configuration.version if tax_configuration else None,
                json.dumps(rules_to_dicts(tax_configuration.rules if tax_configuration else ())),
                json.dumps(settings.to_dict()),
                invoice_number,
                approved_by,
                approved_at.isoformat(),
                approved_at.isoformat(),
                quote_id,
            ))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

        logger.info("Quote %s approved by %s as %s", quote_id, approved_by, invoice_number)
        return self.get_quote(quote_id)


# Global repository instance
_default_repository: Optional[QuoteRepository] = None


def get_repository(db_path: str = DEFAULT_DB_PATH) -> QuoteRepository:
    """Get a repository instance.

    Returns the shared instance, replacing it if a different path is asked for.

    Args:
        db_path: Path to SQLite database file

    Returns:
        An instance of QuoteRepository
    """
    global _default_repository
    if _default_repository is None or _default_repository.db_path != db_path:
        _default_repository = QuoteRepository(db_path)
    return _default_repository
