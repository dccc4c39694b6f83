import logging
import secrets
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from ...domain.errors import InternalError, NotFoundError
from ...domain.models import (
    Membership,
    MembershipStatus,
    Subscription,
    SubscriptionKind,
    SubscriptionStatus,
    User,
)
from ...domain.ports.persistence import PersistenceGateway

logger = logging.getLogger(__name__)

_SUBSCRIPTION_COLUMNS = frozenset(
    {
        "catalog_item_id",
        "customer_email",
        "customer_name",
        "status",
        "membership_id",
        "remaining_payments",
        "next_payment_date",
        "scheduled_cancellation_date",
        "last_payment_attempt_date",
        "last_payment_failure_reason",
        "payment_failure_count",
        "stripe_customer_id",
        "stripe_payment_method_id",
        "stripe_subscription_id",
        "installment_amount_cents",
        "currency",
    }
)

_MEMBERSHIP_COLUMNS = frozenset(
    {
        "customer_email",
        "customer_name",
        "product_name",
        "start_date",
        "end_date",
        "delayed_start_date",
        "status",
        "parent_order_id",
    }
)


class SQLitePersistence(PersistenceGateway):
    """SQLite-backed implementation of the persistence gateway.

    A single connection in autocommit mode; ``transaction()`` opens an explicit
    ``BEGIN IMMEDIATE`` block and nests, so repository writes issued inside it
    join the outer transaction instead of committing on their own.
    """

    def __init__(self, path: Union[Path, str]) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._lock = threading.RLock()
        self._depth = 0
        self._initialize()

    def _initialize(self) -> None:
        with self._lock:
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS memberships (
                    id TEXT PRIMARY KEY,
                    customer_email TEXT NOT NULL,
                    customer_name TEXT,
                    product_name TEXT NOT NULL,
                    start_date TEXT NOT NULL,
                    end_date TEXT NOT NULL,
                    delayed_start_date TEXT,
                    status TEXT NOT NULL,
                    parent_order_id TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS subscriptions (
                    id TEXT PRIMARY KEY,
                    kind TEXT NOT NULL,
                    catalog_item_id TEXT NOT NULL,
                    customer_email TEXT NOT NULL,
                    customer_name TEXT,
                    status TEXT NOT NULL,
                    membership_id TEXT,
                    remaining_payments INTEGER NOT NULL DEFAULT 0,
                    next_payment_date TEXT,
                    scheduled_cancellation_date TEXT,
                    last_payment_attempt_date TEXT,
                    last_payment_failure_reason TEXT,
                    payment_failure_count INTEGER NOT NULL DEFAULT 0,
                    stripe_customer_id TEXT,
                    stripe_payment_method_id TEXT,
                    stripe_subscription_id TEXT UNIQUE,
                    installment_amount_cents INTEGER,
                    currency TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY(membership_id) REFERENCES memberships(id)
                );

                CREATE INDEX IF NOT EXISTS idx_subscriptions_membership_id
                    ON subscriptions(membership_id);

                CREATE INDEX IF NOT EXISTS idx_subscriptions_scheduled_cancellation
                    ON subscriptions(scheduled_cancellation_date);

                CREATE TABLE IF NOT EXISTS processed_payment_events (
                    event_id TEXT PRIMARY KEY,
                    subscription_id TEXT NOT NULL,
                    event_type TEXT NOT NULL,
                    processed_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_processed_payment_events_processed_at
                    ON processed_payment_events(processed_at);

                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                """
            )
            cur = self._conn.execute("PRAGMA table_info(subscriptions)")
            columns = {row[1] for row in cur.fetchall()}
            if "installment_amount_cents" not in columns:
                self._conn.execute("ALTER TABLE subscriptions ADD COLUMN installment_amount_cents INTEGER")
            if "currency" not in columns:
                self._conn.execute("ALTER TABLE subscriptions ADD COLUMN currency TEXT")

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            outermost = self._depth == 0
            self._depth += 1
            try:
                if outermost:
                    self._conn.execute("BEGIN IMMEDIATE")
                yield
            except sqlite3.Error as exc:
                if outermost:
                    self._rollback()
                logger.exception("Storage transaction failed")
                raise InternalError("Storage failure; the operation can be retried.") from exc
            except BaseException:
                if outermost:
                    self._rollback()
                raise
            else:
                if outermost:
                    self._commit()
            finally:
                self._depth -= 1

    def _commit(self) -> None:
        try:
            self._conn.execute("COMMIT")
        except sqlite3.Error as exc:
            self._rollback()
            logger.exception("Storage commit failed")
            raise InternalError("Storage failure; the operation can be retried.") from exc

    def _rollback(self) -> None:
        if self._conn.in_transaction:
            self._conn.execute("ROLLBACK")

    # SubscriptionRepository API ---------------------------------------------
    def create_subscription(
        self,
        kind: SubscriptionKind,
        catalog_item_id: str,
        customer_email: str,
        customer_name: Optional[str],
        *,
        membership_id: Optional[str] = None,
        remaining_payments: int = 0,
        next_payment_date: Optional[datetime] = None,
        stripe_customer_id: Optional[str] = None,
        stripe_payment_method_id: Optional[str] = None,
        stripe_subscription_id: Optional[str] = None,
        installment_amount_cents: Optional[int] = None,
        currency: Optional[str] = None,
    ) -> Subscription:
        subscription_id = self._new_id("sub")
        now = self._now()
        with self.transaction():
            self._conn.execute(
                """
                INSERT INTO subscriptions (
                    id, kind, catalog_item_id, customer_email, customer_name, status,
                    membership_id, remaining_payments, next_payment_date,
                    payment_failure_count, stripe_customer_id, stripe_payment_method_id,
                    stripe_subscription_id, installment_amount_cents, currency,
                    created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    subscription_id,
                    SubscriptionKind(kind).value,
                    catalog_item_id,
                    customer_email.lower(),
                    customer_name,
                    SubscriptionStatus.ACTIVE.value,
                    membership_id,
                    remaining_payments,
                    self._to_db(next_payment_date),
                    stripe_customer_id,
                    stripe_payment_method_id,
                    stripe_subscription_id,
                    installment_amount_cents,
                    currency.lower() if currency else None,
                    now,
                    now,
                ),
            )
            row = self._fetch_one("SELECT * FROM subscriptions WHERE id = ?", (subscription_id,))
        if not row:
            raise InternalError("Failed to persist subscription.")
        return self._row_to_subscription(row)

    def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        row = self._fetch_one("SELECT * FROM subscriptions WHERE id = ?", (subscription_id,))
        return self._row_to_subscription(row) if row else None

    def get_subscription_by_stripe_id(self, stripe_subscription_id: str) -> Optional[Subscription]:
        row = self._fetch_one(
            "SELECT * FROM subscriptions WHERE stripe_subscription_id = ?",
            (stripe_subscription_id,),
        )
        return self._row_to_subscription(row) if row else None

    def update_subscription(self, subscription_id: str, **patch: Any) -> Subscription:
        with self.transaction():
            self._apply_patch("subscriptions", _SUBSCRIPTION_COLUMNS, subscription_id, patch)
            row = self._fetch_one("SELECT * FROM subscriptions WHERE id = ?", (subscription_id,))
        if not row:
            raise NotFoundError(f"Subscription {subscription_id} not found")
        return self._row_to_subscription(row)

    def list_subscriptions(
        self,
        kind: Optional[SubscriptionKind] = None,
        status: Optional[SubscriptionStatus] = None,
    ) -> List[Subscription]:
        query = "SELECT * FROM subscriptions"
        clauses: List[str] = []
        params: List[Any] = []
        if kind is not None:
            clauses.append("kind = ?")
            params.append(SubscriptionKind(kind).value)
        if status is not None:
            clauses.append("status = ?")
            params.append(SubscriptionStatus(status).value)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at ASC, id ASC"
        return [self._row_to_subscription(row) for row in self._fetch_all(query, params)]

    def list_subscriptions_for_membership(self, membership_id: str) -> List[Subscription]:
        rows = self._fetch_all(
            "SELECT * FROM subscriptions WHERE membership_id = ? ORDER BY created_at ASC, id ASC",
            (membership_id,),
        )
        return [self._row_to_subscription(row) for row in rows]

    def list_unlinked_subscriptions(self) -> List[Subscription]:
        rows = self._fetch_all(
            "SELECT * FROM subscriptions WHERE membership_id IS NULL ORDER BY created_at ASC, id ASC"
        )
        return [self._row_to_subscription(row) for row in rows]

    def list_subscriptions_due_for_cancellation(self, now: datetime) -> List[Subscription]:
        rows = self._fetch_all(
            """
            SELECT * FROM subscriptions
            WHERE scheduled_cancellation_date IS NOT NULL
              AND scheduled_cancellation_date <= ?
              AND status IN (?, ?)
            ORDER BY scheduled_cancellation_date ASC
            """,
            (
                self._to_db(now),
                SubscriptionStatus.ACTIVE.value,
                SubscriptionStatus.ON_HOLD.value,
            ),
        )
        return [self._row_to_subscription(row) for row in rows]

    def reassign_customer_email(self, membership_id: str, customer_email: str) -> int:
        with self.transaction():
            cur = self._conn.execute(
                "UPDATE subscriptions SET customer_email = ?, updated_at = ? WHERE membership_id = ?",
                (customer_email.lower(), self._now(), membership_id),
            )
            return cur.rowcount

    # MembershipRepository API -----------------------------------------------
    def create_membership(
        self,
        customer_email: str,
        customer_name: Optional[str],
        product_name: str,
        start_date: datetime,
        end_date: datetime,
        status: MembershipStatus,
        *,
        delayed_start_date: Optional[datetime] = None,
        parent_order_id: Optional[str] = None,
    ) -> Membership:
        membership_id = self._new_id("mem")
        now = self._now()
        with self.transaction():
            self._conn.execute(
                """
                INSERT INTO memberships (
                    id, customer_email, customer_name, product_name, start_date, end_date,
                    delayed_start_date, status, parent_order_id, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    membership_id,
                    customer_email.lower(),
                    customer_name,
                    product_name,
                    self._to_db(start_date),
                    self._to_db(end_date),
                    self._to_db(delayed_start_date),
                    MembershipStatus(status).value,
                    parent_order_id,
                    now,
                    now,
                ),
            )
            row = self._fetch_one("SELECT * FROM memberships WHERE id = ?", (membership_id,))
        if not row:
            raise InternalError("Failed to persist membership.")
        return self._row_to_membership(row)

    def get_membership(self, membership_id: str) -> Optional[Membership]:
        row = self._fetch_one("SELECT * FROM memberships WHERE id = ?", (membership_id,))
        return self._row_to_membership(row) if row else None

    def update_membership(self, membership_id: str, **patch: Any) -> Membership:
        with self.transaction():
            self._apply_patch("memberships", _MEMBERSHIP_COLUMNS, membership_id, patch)
            row = self._fetch_one("SELECT * FROM memberships WHERE id = ?", (membership_id,))
        if not row:
            raise NotFoundError(f"Membership {membership_id} not found")
        return self._row_to_membership(row)

    def list_memberships(self) -> List[Membership]:
        rows = self._fetch_all("SELECT * FROM memberships ORDER BY created_at ASC, id ASC")
        return [self._row_to_membership(row) for row in rows]

    # PaymentEventRepository API ---------------------------------------------
    def has_processed_event(self, event_id: str, newer_than: datetime) -> bool:
        row = self._fetch_one(
            "SELECT 1 FROM processed_payment_events WHERE event_id = ? AND processed_at >= ?",
            (event_id, self._to_db(newer_than)),
        )
        return row is not None

    def record_processed_event(
        self,
        event_id: str,
        subscription_id: str,
        event_type: str,
        processed_at: datetime,
    ) -> None:
        with self.transaction():
            self._conn.execute(
                """
                INSERT INTO processed_payment_events (event_id, subscription_id, event_type, processed_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(event_id) DO UPDATE SET
                    subscription_id = excluded.subscription_id,
                    event_type = excluded.event_type,
                    processed_at = excluded.processed_at
                """,
                (event_id, subscription_id, event_type, self._to_db(processed_at)),
            )

    def purge_processed_events_older_than(self, cutoff: datetime) -> int:
        with self.transaction():
            cur = self._conn.execute(
                "DELETE FROM processed_payment_events WHERE processed_at < ?",
                (self._to_db(cutoff),),
            )
            return cur.rowcount

    # UserRepository API ----------------------------------------------------
    def get_user_by_email(self, email: str) -> Optional[User]:
        row = self._fetch_one("SELECT * FROM users WHERE email = ?", (email.lower(),))
        return self._row_to_user(row) if row else None

    def get_user_by_id(self, user_id: int) -> Optional[User]:
        row = self._fetch_one("SELECT * FROM users WHERE id = ?", (user_id,))
        return self._row_to_user(row) if row else None

    def create_user(self, email: str, password_hash: str) -> User:
        now = self._now()
        with self.transaction():
            cur = self._conn.execute(
                """
                INSERT INTO users (email, password_hash, is_active, created_at, updated_at)
                VALUES (?, ?, 1, ?, ?)
                """,
                (email.lower(), password_hash, now, now),
            )
            row = self._fetch_one("SELECT * FROM users WHERE id = ?", (cur.lastrowid,))
        if not row:
            raise InternalError("Failed to persist user.")
        return self._row_to_user(row)

    # Helpers ----------------------------------------------------------------
    def _fetch_one(self, query: str, params: Any = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(query, params).fetchone()
            except sqlite3.Error as exc:
                logger.exception("Storage read failed")
                raise InternalError("Storage failure; the operation can be retried.") from exc

    def _fetch_all(self, query: str, params: Any = ()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(query, params).fetchall()
            except sqlite3.Error as exc:
                logger.exception("Storage read failed")
                raise InternalError("Storage failure; the operation can be retried.") from exc

    def _apply_patch(
        self,
        table: str,
        allowed: frozenset,
        row_id: str,
        patch: Dict[str, Any],
    ) -> None:
        unknown = set(patch) - allowed
        if unknown:
            raise ValueError(f"Cannot update {table} columns: {', '.join(sorted(unknown))}")
        if not patch:
            return
        updates = [f"{column} = ?" for column in patch]
        params: List[Any] = [self._to_db(value) for value in patch.values()]
        updates.append("updated_at = ?")
        params.append(self._now())
        params.append(row_id)
        self._conn.execute(f"UPDATE {table} SET {', '.join(updates)} WHERE id = ?", params)

    @staticmethod
    def _new_id(prefix: str) -> str:
        return f"{prefix}_{secrets.token_hex(12)}"

    @classmethod
    def _now(cls) -> str:
        return cls._to_db(datetime.now(timezone.utc))

    @staticmethod
    def _to_db(value: Any) -> Any:
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, datetime):
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            return value.astimezone(timezone.utc).isoformat(timespec="microseconds")
        if isinstance(value, bool):
            return int(value)
        return value

    @staticmethod
    def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
        if not value:
            return None
        result = datetime.fromisoformat(value)
        if result.tzinfo is None:
            return result.replace(tzinfo=timezone.utc)
        return result.astimezone(timezone.utc)

    def _row_to_subscription(self, row: sqlite3.Row) -> Subscription:
        return Subscription(
            id=row["id"],
            kind=SubscriptionKind(row["kind"]),
            catalog_item_id=row["catalog_item_id"],
            customer_email=row["customer_email"],
            customer_name=row["customer_name"],
            status=SubscriptionStatus(row["status"]),
            membership_id=row["membership_id"],
            remaining_payments=row["remaining_payments"],
            next_payment_date=self._parse_datetime(row["next_payment_date"]),
            scheduled_cancellation_date=self._parse_datetime(row["scheduled_cancellation_date"]),
            last_payment_attempt_date=self._parse_datetime(row["last_payment_attempt_date"]),
            last_payment_failure_reason=row["last_payment_failure_reason"],
            payment_failure_count=row["payment_failure_count"],
            stripe_customer_id=row["stripe_customer_id"],
            stripe_payment_method_id=row["stripe_payment_method_id"],
            stripe_subscription_id=row["stripe_subscription_id"],
            installment_amount_cents=row["installment_amount_cents"],
            currency=row["currency"],
            created_at=self._parse_datetime(row["created_at"]),
            updated_at=self._parse_datetime(row["updated_at"]),
        )

    def _row_to_membership(self, row: sqlite3.Row) -> Membership:
        return Membership(
            id=row["id"],
            customer_email=row["customer_email"],
            customer_name=row["customer_name"],
            product_name=row["product_name"],
            start_date=self._parse_datetime(row["start_date"]),
            end_date=self._parse_datetime(row["end_date"]),
            delayed_start_date=self._parse_datetime(row["delayed_start_date"]),
            status=MembershipStatus(row["status"]),
            parent_order_id=row["parent_order_id"],
            created_at=self._parse_datetime(row["created_at"]),
            updated_at=self._parse_datetime(row["updated_at"]),
        )

    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            email=row["email"],
            password_hash=row["password_hash"],
            is_active=bool(row["is_active"]),
            created_at=self._parse_datetime(row["created_at"]),
            updated_at=self._parse_datetime(row["updated_at"]),
        )
