"""
SQLite confidence store.
Durable ledger of merchants, categorization events, per-category
confidence scores and correction events.
"""
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Optional, Union

from core.confidence import (
    CORRECTION_BOOTSTRAP_SCORE,
    DEFAULT_CONFIDENCE_SCORE,
    blend_confidence,
    clamp_score,
    decay_confidence,
    normalize_name,
    weighted_score,
)
from core.exceptions import DataNotFoundError, PersistenceError, ValidationError
from core.logger import setup_logger
from core.schema import (
    CategoryHistory,
    Merchant,
    MerchantHistory,
    MerchantRule,
    MostLikelyCategory,
)

logger = setup_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS merchants (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    normalized_name TEXT NOT NULL UNIQUE,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS categorizations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    merchant_id INTEGER NOT NULL REFERENCES merchants(id),
    category_name TEXT NOT NULL,
    category_id TEXT,
    confidence REAL NOT NULL DEFAULT 0,
    auto_approved INTEGER NOT NULL DEFAULT 0,
    transaction_id TEXT,
    amount REAL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_categorizations_merchant
    ON categorizations (merchant_id, category_name);

CREATE TABLE IF NOT EXISTS merchant_confidence (
    merchant_id INTEGER NOT NULL REFERENCES merchants(id),
    category_name TEXT NOT NULL,
    confidence_score REAL NOT NULL DEFAULT 0
        CHECK (confidence_score >= 0 AND confidence_score <= 100),
    success_count INTEGER NOT NULL DEFAULT 0,
    correction_count INTEGER NOT NULL DEFAULT 0,
    last_used DATE,
    UNIQUE (merchant_id, category_name)
);

CREATE TABLE IF NOT EXISTS learning_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    merchant_id INTEGER NOT NULL REFERENCES merchants(id),
    event_type TEXT NOT NULL,
    old_category TEXT,
    new_category TEXT,
    confidence_before REAL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""

RECENT_HISTORY_LIMIT = 5


class ConfidenceStore:
    """
    Merchant confidence store backed by a single SQLite file.

    Opens one connection per operation. Designed for exactly one writer;
    concurrent runs against the same file are not coordinated.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.init_db()

    def get_connection(self) -> sqlite3.Connection:
        """Create a database connection."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection that commits on success and rolls back on failure."""
        try:
            conn = self.get_connection()
        except sqlite3.Error as e:
            raise PersistenceError(
                f"Failed to open merchant database: {e}",
                details={"db_path": self.db_path}
            ) from e

        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Merchant database operation failed: {e}")
            raise PersistenceError(
                f"Merchant database error: {e}",
                details={"db_path": self.db_path}
            ) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_db(self) -> None:
        """Initialize database tables."""
        with self.connection() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(SCHEMA)
        logger.debug(f"Merchant database ready at {self.db_path}")

    # Merchants

    def _find_merchant(self, conn: sqlite3.Connection, merchant_name: Optional[str]) -> Optional[Merchant]:
        normalized = normalize_name(merchant_name or "")
        if not normalized:
            return None
        row = conn.execute(
            "SELECT id, name, normalized_name FROM merchants WHERE normalized_name = ?",
            (normalized,)
        ).fetchone()
        return Merchant(**dict(row)) if row else None

    def _find_or_create_merchant(self, conn: sqlite3.Connection, merchant_name: Optional[str]) -> Merchant:
        normalized = normalize_name(merchant_name or "")
        if not normalized:
            raise ValidationError(
                "Merchant name is required",
                details={"merchant_name": merchant_name}
            )

        merchant = self._find_merchant(conn, merchant_name)
        if merchant:
            return merchant

        cursor = conn.execute(
            "INSERT INTO merchants (name, normalized_name) VALUES (?, ?)",
            (merchant_name.strip(), normalized)
        )
        logger.info(f"New merchant: {merchant_name.strip()} ({normalized})")
        return Merchant(id=cursor.lastrowid, name=merchant_name.strip(), normalized_name=normalized)

    def find_or_create_merchant(self, merchant_name: str) -> Merchant:
        """
        Look up a merchant by normalized name, creating it on first sighting.

        Raises:
            ValidationError: If the name is empty after normalization
        """
        with self.connection() as conn:
            return self._find_or_create_merchant(conn, merchant_name)

    def find_merchant(self, merchant_name: str) -> Optional[Merchant]:
        with self.connection() as conn:
            return self._find_merchant(conn, merchant_name)

    # Confidence

    def _update_confidence(
        self,
        conn: sqlite3.Connection,
        merchant_id: int,
        category_name: str,
        observed: float
    ) -> float:
        row = conn.execute(
            "SELECT confidence_score FROM merchant_confidence WHERE merchant_id = ? AND category_name = ?",
            (merchant_id, category_name)
        ).fetchone()

        if row is None:
            score = clamp_score(observed)
            conn.execute(
                """
                INSERT INTO merchant_confidence
                    (merchant_id, category_name, confidence_score, success_count, correction_count, last_used)
                VALUES (?, ?, ?, 1, 0, CURRENT_DATE)
                """,
                (merchant_id, category_name, score)
            )
        else:
            score = blend_confidence(row["confidence_score"], observed)
            conn.execute(
                """
                UPDATE merchant_confidence
                SET confidence_score = ?,
                    success_count = success_count + 1,
                    last_used = CURRENT_DATE
                WHERE merchant_id = ? AND category_name = ?
                """,
                (score, merchant_id, category_name)
            )
        return score

    def update_confidence(self, merchant_id: int, category_name: str, observed: float) -> float:
        """
        Fold an observed score (0-100) into the merchant/category confidence.

        Returns:
            The new confidence score
        """
        with self.connection() as conn:
            return self._update_confidence(conn, merchant_id, category_name, observed)

    def get_merchant_confidence(self, merchant_name: str, category_name: str) -> Dict[str, Any]:
        """Get the stored confidence for one merchant/category pair."""
        with self.connection() as conn:
            merchant = self._find_merchant(conn, merchant_name)
            row = None
            if merchant:
                row = conn.execute(
                    "SELECT * FROM merchant_confidence WHERE merchant_id = ? AND category_name = ?",
                    (merchant.id, category_name)
                ).fetchone()

        return {
            "confidence": row["confidence_score"] if row else 0.0,
            "success_count": row["success_count"] if row else 0,
            "correction_count": row["correction_count"] if row else 0,
            "is_new": row is None,
        }

    # Categorizations and corrections

    def record_categorization(
        self,
        merchant_name: str,
        category_name: str,
        category_id: Optional[str],
        confidence: float,
        auto_approved: bool,
        transaction_id: Optional[str] = None,
        amount: Optional[float] = None
    ) -> Dict[str, Any]:
        """
        Append a categorization event and learn from it.

        Confidence is on the 0-1 scale. Only auto-approved decisions feed
        the merchant confidence score.

        Returns:
            Dict with merchant_id and the updated confidence score (or None)
        """
        with self.connection() as conn:
            merchant = self._find_or_create_merchant(conn, merchant_name)
            conn.execute(
                """
                INSERT INTO categorizations
                    (merchant_id, category_name, category_id, confidence, auto_approved, transaction_id, amount)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    merchant.id,
                    category_name,
                    category_id,
                    float(confidence or 0.0),
                    1 if auto_approved else 0,
                    transaction_id,
                    amount if amount is not None else 0.0,
                )
            )

            score = None
            if auto_approved:
                score = self._update_confidence(conn, merchant.id, category_name, float(confidence) * 100)

        return {"merchant_id": merchant.id, "confidence_score": score}

    def record_correction(self, merchant_name: str, old_category: str, new_category: str) -> Dict[str, Any]:
        """
        Record a human correction of a prior categorization.

        Logs a learning event, decays the old category and bootstraps the
        new one.

        Raises:
            DataNotFoundError: If the merchant has never been seen
        """
        with self.connection() as conn:
            merchant = self._find_merchant(conn, merchant_name)
            if merchant is None:
                raise DataNotFoundError(
                    f"Merchant not found: {merchant_name}",
                    details={"merchant_name": merchant_name}
                )

            row = conn.execute(
                "SELECT confidence_score FROM merchant_confidence WHERE merchant_id = ? AND category_name = ?",
                (merchant.id, old_category)
            ).fetchone()
            confidence_before = row["confidence_score"] if row else 0.0

            conn.execute(
                """
                INSERT INTO learning_events
                    (merchant_id, event_type, old_category, new_category, confidence_before)
                VALUES (?, 'correction', ?, ?, ?)
                """,
                (merchant.id, old_category, new_category, confidence_before)
            )

            old_confidence = None
            if row:
                old_confidence = decay_confidence(confidence_before)
                conn.execute(
                    """
                    UPDATE merchant_confidence
                    SET correction_count = correction_count + 1,
                        confidence_score = ?
                    WHERE merchant_id = ? AND category_name = ?
                    """,
                    (old_confidence, merchant.id, old_category)
                )

            new_confidence = self._update_confidence(conn, merchant.id, new_category, CORRECTION_BOOTSTRAP_SCORE)

        logger.info(
            f"Correction for {merchant.name}: {old_category} -> {new_category} "
            f"(was {confidence_before:.0f})"
        )
        return {
            "merchant_id": merchant.id,
            "confidence_before": confidence_before,
            "old_confidence": old_confidence,
            "new_confidence": new_confidence,
        }

    def get_merchant_history(self, merchant_name: str) -> MerchantHistory:
        """
        Aggregate a merchant's categorization events by category.

        Returns:
            MerchantHistory; is_new is True when the merchant is unseen
        """
        with self.connection() as conn:
            merchant = self._find_merchant(conn, merchant_name)
            if merchant is None:
                return MerchantHistory.new(merchant_name or "")

            rows = conn.execute(
                """
                SELECT
                    c.category_name,
                    COUNT(*) AS usage_count,
                    ROUND(AVG(c.confidence), 4) AS avg_confidence,
                    (
                        SELECT c2.category_id FROM categorizations c2
                        WHERE c2.merchant_id = c.merchant_id AND c2.category_name = c.category_name
                        ORDER BY c2.id DESC LIMIT 1
                    ) AS category_id,
                    mc.confidence_score
                FROM categorizations c
                LEFT JOIN merchant_confidence mc
                    ON mc.merchant_id = c.merchant_id AND mc.category_name = c.category_name
                WHERE c.merchant_id = ?
                GROUP BY c.category_name
                ORDER BY usage_count DESC, avg_confidence DESC
                """,
                (merchant.id,)
            ).fetchall()

            recent = conn.execute(
                "SELECT category_name FROM categorizations WHERE merchant_id = ? ORDER BY id DESC LIMIT ?",
                (merchant.id, RECENT_HISTORY_LIMIT)
            ).fetchall()

        history = [
            CategoryHistory(
                category_name=row["category_name"],
                category_id=row["category_id"],
                avg_confidence=row["avg_confidence"] or 0.0,
                usage_count=row["usage_count"],
                confidence_score=(
                    row["confidence_score"] if row["confidence_score"] is not None
                    else DEFAULT_CONFIDENCE_SCORE
                ),
            )
            for row in rows
        ]
        total = sum(entry.usage_count for entry in history)

        most_likely = None
        highest = 0.0
        for entry in history:
            score = weighted_score(entry.confidence_score, entry.usage_count, total)
            if score > highest:
                highest = score
                most_likely = MostLikelyCategory(
                    category=entry.category_name,
                    confidence=entry.confidence_score,
                    usage_count=entry.usage_count,
                )

        return MerchantHistory(
            merchant_name=merchant.name,
            is_new=False,
            merchant_id=merchant.id,
            total_transactions=total,
            history=history,
            most_likely=most_likely,
            recent_categories=[row["category_name"] for row in recent],
        )

    # Reporting

    def get_merchant_suggestions(self, min_confidence: float = 80) -> List[Dict[str, Any]]:
        """Merchants whose category confidence is at or above min_confidence."""
        with self.connection() as conn:
            rows = conn.execute(
                """
                SELECT m.name, mc.category_name, mc.confidence_score, mc.success_count, mc.correction_count
                FROM merchant_confidence mc
                JOIN merchants m ON mc.merchant_id = m.id
                WHERE mc.confidence_score >= ?
                ORDER BY mc.confidence_score DESC, m.name
                """,
                (min_confidence,)
            ).fetchall()
        return [dict(row) for row in rows]

    def get_recent_activity(self, limit: int = 20) -> List[Dict[str, Any]]:
        with self.connection() as conn:
            rows = conn.execute(
                """
                SELECT m.name AS merchant_name, c.category_name, c.confidence,
                       c.auto_approved, c.transaction_id, c.amount, c.created_at
                FROM categorizations c
                JOIN merchants m ON c.merchant_id = m.id
                ORDER BY c.id DESC
                LIMIT ?
                """,
                (limit,)
            ).fetchall()
        return [{**dict(row), "auto_approved": bool(row["auto_approved"])} for row in rows]

    def get_stats(self) -> Dict[str, Any]:
        with self.connection() as conn:
            row = conn.execute(
                """
                SELECT
                    (SELECT COUNT(*) FROM merchants) AS total_merchants,
                    (SELECT COUNT(*) FROM categorizations) AS total_categorizations,
                    (SELECT COUNT(*) FROM categorizations WHERE auto_approved = 1) AS auto_approved_count,
                    (SELECT COUNT(*) FROM learning_events WHERE event_type = 'correction') AS correction_count,
                    (SELECT AVG(confidence_score) FROM merchant_confidence) AS avg_confidence
                """
            ).fetchone()
        stats = dict(row)
        stats["avg_confidence"] = round(stats["avg_confidence"] or 0)
        return stats

    # Rules import/export

    def export_merchant_rules(self, min_confidence: float = 70) -> List[MerchantRule]:
        with self.connection() as conn:
            rows = conn.execute(
                """
                SELECT m.name AS merchant_name, mc.category_name, mc.confidence_score,
                       mc.success_count, mc.correction_count
                FROM merchant_confidence mc
                JOIN merchants m ON mc.merchant_id = m.id
                WHERE mc.confidence_score >= ?
                ORDER BY m.name, mc.confidence_score DESC
                """,
                (min_confidence,)
            ).fetchall()
        return [MerchantRule(**dict(row)) for row in rows]

    def import_merchant_rules(self, rules: Iterable[Union[MerchantRule, Dict[str, Any]]]) -> Dict[str, Any]:
        """
        Upsert merchant confidence rows. A bad rule is reported, not fatal.

        Returns:
            Dict with imported/errors counts and per-rule details
        """
        imported: List[str] = []
        errors: List[Dict[str, str]] = []

        with self.connection() as conn:
            for raw in rules:
                name = raw.merchant_name if isinstance(raw, MerchantRule) else raw.get("merchant_name")
                try:
                    rule = raw if isinstance(raw, MerchantRule) else MerchantRule(**raw)
                    merchant = self._find_or_create_merchant(conn, rule.merchant_name)
                    score = clamp_score(rule.confidence_score if rule.confidence_score is not None else 75)
                    conn.execute(
                        """
                        INSERT INTO merchant_confidence
                            (merchant_id, category_name, confidence_score, success_count, correction_count, last_used)
                        VALUES (?, ?, ?, ?, ?, CURRENT_DATE)
                        ON CONFLICT (merchant_id, category_name) DO UPDATE SET
                            confidence_score = excluded.confidence_score,
                            success_count = excluded.success_count,
                            correction_count = excluded.correction_count,
                            last_used = CURRENT_DATE
                        """,
                        (merchant.id, rule.category_name, score, rule.success_count, rule.correction_count)
                    )
                    imported.append(rule.merchant_name)
                except Exception as e:
                    logger.warning(f"Skipping merchant rule {name!r}: {e}")
                    errors.append({"merchant": str(name), "error": str(e)})

        return {
            "imported": len(imported),
            "errors": len(errors),
            "details": {"imported": imported, "errors": errors},
        }

    # Maintenance

    def backup_database(self, backup_path: str) -> Dict[str, Any]:
        """Copy the live database to backup_path using the SQLite online backup API."""
        with self.connection() as conn:
            target = sqlite3.connect(backup_path)
            try:
                conn.backup(target)
            finally:
                target.close()
        logger.info(f"Merchant database backed up to {backup_path}")
        return {"success": True, "path": backup_path}

    def check_health(self) -> Dict[str, Any]:
        timestamp = datetime.now(timezone.utc).isoformat()
        try:
            stats = self.get_stats()
            with self.connection() as conn:
                tables = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
        except PersistenceError as e:
            logger.error(f"Merchant database health check failed: {e.message}")
            return {"status": "unhealthy", "error": e.message, "timestamp": timestamp}

        return {
            "status": "healthy",
            "database": "connected",
            "tables": len(tables),
            "merchants": stats["total_merchants"],
            "categorizations": stats["total_categorizations"],
            "average_confidence": stats["avg_confidence"],
            "timestamp": timestamp,
        }
