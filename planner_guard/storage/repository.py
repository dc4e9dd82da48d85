"""
Repository pattern for data access.

Handles rate limit and usage persistence. Every read-modify-write runs as
a single conditional statement inside an immediate transaction so
concurrent requests for the same key serialize on the database lock.
"""

from datetime import datetime, timezone
from typing import Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import RateLimitRecord, SubscriptionStatus, UsageRecord

_RATE_LIMIT_COLUMNS = (
    "user_id, ip_address, request_count, window_start, "
    "blocked_until, suspicious_activity_count"
)

# All CASE expressions see the row as it was before the statement, so the
# rollover test and the block test agree on the same snapshot.
_APPLY_UPDATE_SQL = """
    UPDATE rate_limit SET
        request_count = CASE
            WHEN :reset OR :now - window_start >= :window THEN :increment
            ELSE request_count + :increment
        END,
        blocked_until = CASE
            WHEN :suspicious AND suspicious_activity_count + 1 >= :threshold THEN :now + :block
            WHEN (:reset OR :now - window_start >= :window)
                 AND (blocked_until IS NULL OR blocked_until <= :now) THEN NULL
            ELSE blocked_until
        END,
        window_start = CASE
            WHEN :reset OR :now - window_start >= :window THEN :now
            ELSE window_start
        END,
        suspicious_activity_count = suspicious_activity_count + :suspicious,
        updated_at = :now
    WHERE user_id = :user_id AND ip_address = :ip_address
"""


def _ip_key(ip_address: Optional[str]) -> str:
    return ip_address or ""


def _to_epoch(value: datetime) -> float:
    return value.timestamp()


def _from_epoch(value: Optional[float]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _row_to_rate_limit(row) -> RateLimitRecord:
    return RateLimitRecord(
        user_id=row[0],
        ip_address=row[1] or None,
        request_count=row[2],
        window_start=_from_epoch(row[3]),
        blocked_until=_from_epoch(row[4]),
        suspicious_activity_count=row[5],
    )


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the rate_limit and usage tables if they don't exist.

    A missing IP address is stored as an empty string so the composite
    key stays unique.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS rate_limit (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                ip_address TEXT NOT NULL DEFAULT '',
                request_count INTEGER NOT NULL DEFAULT 0 CHECK (request_count >= 0),
                window_start REAL NOT NULL,
                blocked_until REAL,
                suspicious_activity_count INTEGER NOT NULL DEFAULT 0
                    CHECK (suspicious_activity_count >= 0),
                updated_at REAL NOT NULL,
                UNIQUE (user_id, ip_address)
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS usage (
                user_id TEXT PRIMARY KEY,
                free_conversations_used INTEGER NOT NULL DEFAULT 0,
                paid_conversations_used INTEGER NOT NULL DEFAULT 0,
                total_tokens_used INTEGER NOT NULL DEFAULT 0,
                subscription_status TEXT NOT NULL DEFAULT 'free'
            )
        """)
        conn.commit()
    finally:
        conn.close()


class RateLimitRepository:
    """Persistence for RateLimitRecord keyed by (user_id, ip_address)."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def get(self, user_id: str, ip_address: Optional[str]) -> Optional[RateLimitRecord]:
        """Fetch a record without creating it.

        Returns:
            The record, or None when the key has never been seen
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                f"SELECT {_RATE_LIMIT_COLUMNS} FROM rate_limit "
                "WHERE user_id = ? AND ip_address = ?",
                (user_id, _ip_key(ip_address)),
            )
            row = cursor.fetchone()
            return _row_to_rate_limit(row) if row else None
        finally:
            conn.close()

    def get_or_create(self, user_id: str, ip_address: Optional[str], now: datetime) -> RateLimitRecord:
        """Fetch a record, creating an empty one starting at now if absent."""
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            self._insert_if_missing(conn, user_id, ip_address, now)
            row = self._select(conn, user_id, ip_address)
            conn.commit()
            return _row_to_rate_limit(row)
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def apply_update(
        self,
        user_id: str,
        ip_address: Optional[str],
        now: datetime,
        window_seconds: float,
        suspicion_threshold: int,
        block_seconds: float,
        increment_request: bool = True,
        increment_suspicious: bool = False,
        reset_window: bool = False,
    ) -> RateLimitRecord:
        """Atomically roll over, count and escalate one record.

        Creates the record if needed, then applies a single conditional
        UPDATE: an expired (or forcibly reset) window restarts at now, the
        request counter is incremented, and the suspicion counter is
        incremented with a block applied once it reaches the threshold.

        Args:
            user_id: User identifier
            ip_address: Client IP address (optional)
            now: Current time
            window_seconds: Window duration
            suspicion_threshold: Suspicion count that triggers a block
            block_seconds: Block duration
            increment_request: Count this call against the window quota
            increment_suspicious: Flag this call as suspicious
            reset_window: Force a window rollover

        Returns:
            The record as stored after the update
        """
        params = {
            "user_id": user_id,
            "ip_address": _ip_key(ip_address),
            "now": _to_epoch(now),
            "window": window_seconds,
            "threshold": suspicion_threshold,
            "block": block_seconds,
            "increment": 1 if increment_request else 0,
            "suspicious": 1 if increment_suspicious else 0,
            "reset": 1 if reset_window else 0,
        }
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            self._insert_if_missing(conn, user_id, ip_address, now)
            conn.execute(_APPLY_UPDATE_SQL, params)
            row = self._select(conn, user_id, ip_address)
            conn.commit()
            return _row_to_rate_limit(row)
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def reset(self, user_id: str, ip_address: Optional[str], now: datetime) -> RateLimitRecord:
        """Zero all counters and clear any block for a key."""
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            self._insert_if_missing(conn, user_id, ip_address, now)
            conn.execute(
                """
                UPDATE rate_limit
                SET request_count = 0, window_start = ?, blocked_until = NULL,
                    suspicious_activity_count = 0, updated_at = ?
                WHERE user_id = ? AND ip_address = ?
                """,
                (_to_epoch(now), _to_epoch(now), user_id, _ip_key(ip_address)),
            )
            row = self._select(conn, user_id, ip_address)
            conn.commit()
            return _row_to_rate_limit(row)
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _insert_if_missing(self, conn, user_id: str, ip_address: Optional[str], now: datetime) -> None:
        conn.execute(
            """
            INSERT OR IGNORE INTO rate_limit
            (user_id, ip_address, request_count, window_start, blocked_until,
             suspicious_activity_count, updated_at)
            VALUES (?, ?, 0, ?, NULL, 0, ?)
            """,
            (user_id, _ip_key(ip_address), _to_epoch(now), _to_epoch(now)),
        )

    def _select(self, conn, user_id: str, ip_address: Optional[str]):
        cursor = conn.execute(
            f"SELECT {_RATE_LIMIT_COLUMNS} FROM rate_limit WHERE user_id = ? AND ip_address = ?",
            (user_id, _ip_key(ip_address)),
        )
        return cursor.fetchone()


class UsageRepository:
    """Persistence for per-user conversation usage."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def get_or_create(self, user_id: str) -> UsageRecord:
        """Fetch the usage record for a user, creating an empty one if absent."""
        conn = get_connection(self.db_path)
        try:
            conn.execute("INSERT OR IGNORE INTO usage (user_id) VALUES (?)", (user_id,))
            row = self._select(conn, user_id)
            conn.commit()
            return self._row_to_usage(row)
        finally:
            conn.close()

    def record_conversation(self, user_id: str, tokens: int, paid_limit: int) -> UsageRecord:
        """Charge one conversation and its tokens to a user.

        Users on a paid plan consume their paid allowance first; once it
        is exhausted, or without a plan, the free allowance is charged.

        Args:
            user_id: User identifier
            tokens: Tokens consumed by the conversation
            paid_limit: Paid conversation allowance

        Returns:
            The usage record after charging

        Raises:
            ValueError: If tokens is negative
        """
        if tokens < 0:
            raise ValueError("tokens must be >= 0")

        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute("INSERT OR IGNORE INTO usage (user_id) VALUES (?)", (user_id,))
            conn.execute(
                """
                UPDATE usage SET
                    paid_conversations_used = paid_conversations_used + CASE
                        WHEN subscription_status = :paid AND paid_conversations_used < :paid_limit
                        THEN 1 ELSE 0 END,
                    free_conversations_used = free_conversations_used + CASE
                        WHEN subscription_status = :paid AND paid_conversations_used < :paid_limit
                        THEN 0 ELSE 1 END,
                    total_tokens_used = total_tokens_used + :tokens
                WHERE user_id = :user_id
                """,
                {
                    "paid": SubscriptionStatus.PAID.value,
                    "paid_limit": paid_limit,
                    "tokens": tokens,
                    "user_id": user_id,
                },
            )
            row = self._select(conn, user_id)
            conn.commit()
            return self._row_to_usage(row)
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def set_subscription_status(self, user_id: str, status: SubscriptionStatus) -> UsageRecord:
        """Change a user's plan."""
        conn = get_connection(self.db_path)
        try:
            conn.execute("INSERT OR IGNORE INTO usage (user_id) VALUES (?)", (user_id,))
            conn.execute(
                "UPDATE usage SET subscription_status = ? WHERE user_id = ?",
                (status.value, user_id),
            )
            row = self._select(conn, user_id)
            conn.commit()
            return self._row_to_usage(row)
        finally:
            conn.close()

    def _select(self, conn, user_id: str):
        cursor = conn.execute(
            """
            SELECT user_id, free_conversations_used, paid_conversations_used,
                   total_tokens_used, subscription_status
            FROM usage WHERE user_id = ?
            """,
            (user_id,),
        )
        return cursor.fetchone()

    def _row_to_usage(self, row) -> UsageRecord:
        return UsageRecord(
            user_id=row[0],
            free_conversations_used=row[1],
            paid_conversations_used=row[2],
            total_tokens_used=row[3],
            subscription_status=SubscriptionStatus(row[4]),
        )
