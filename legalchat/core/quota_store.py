"""
Quota counting stores: per-user, per-day counters for the two limit types.

count_and_increment must be one indivisible operation at the store, so two
concurrent requests can never both read the pre-increment value.

SQLiteQuotaStore: local DB (data/quota.db by default). Table: quota_counters
(user_id, limit_type, day, count). Each UTC day gets a fresh row, which is how
counters reset.
SupabaseQuotaStore: PostgREST RPCs count_and_increment_limit / get_daily_limit_count;
the database functions own atomicity and the daily reset.
"""

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal, Protocol

import httpx

from legalchat.core.config import QUOTA_API_TIMEOUT, QUOTA_BACKEND, QUOTA_DB_PATH, SUPABASE_SERVICE_KEY, SUPABASE_URL
from legalchat.core.errors import QuotaStoreError

logger = logging.getLogger(__name__)

LimitType = Literal["chat_submission", "paid_model_usage"]

TOTAL: LimitType = "chat_submission"
PAID_MODEL: LimitType = "paid_model_usage"

_TABLE = "quota_counters"


class QuotaCounterStore(Protocol):
    def count_and_increment(self, user_id: str, limit_type: LimitType) -> int: ...

    def get_count(self, user_id: str, limit_type: LimitType) -> int: ...


def _today() -> str:
    return datetime.now(timezone.utc).date().isoformat()


class SQLiteQuotaStore:
    """Counters in SQLite. Increment-and-read runs inside one BEGIN IMMEDIATE transaction."""

    def __init__(self, db_path: str | Path = QUOTA_DB_PATH) -> None:
        self._db_path = Path(db_path)
        self.init_db()

    def _get_conn(self) -> sqlite3.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        # Autocommit mode so transactions are controlled explicitly
        return sqlite3.connect(str(self._db_path), timeout=30.0, isolation_level=None)

    def init_db(self) -> None:
        """Create the counters table if it does not exist."""
        conn = self._get_conn()
        try:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {_TABLE} (
                    user_id TEXT NOT NULL,
                    limit_type TEXT NOT NULL,
                    day TEXT NOT NULL,
                    count INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (user_id, limit_type, day)
                )
                """
            )
        finally:
            conn.close()

    def count_and_increment(self, user_id: str, limit_type: LimitType) -> int:
        day = _today()
        conn = self._get_conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                conn.execute(
                    f"INSERT INTO {_TABLE} (user_id, limit_type, day, count) VALUES (?, ?, ?, 1) "
                    "ON CONFLICT(user_id, limit_type, day) DO UPDATE SET count = count + 1",
                    (user_id, limit_type, day),
                )
                row = conn.execute(
                    f"SELECT count FROM {_TABLE} WHERE user_id = ? AND limit_type = ? AND day = ?",
                    (user_id, limit_type, day),
                ).fetchone()
                conn.execute("COMMIT")
            except sqlite3.Error:
                conn.execute("ROLLBACK")
                raise
        except sqlite3.Error as e:
            logger.exception("[quota_store:count_and_increment] failed user_id=%s limit_type=%s", user_id, limit_type)
            raise QuotaStoreError(f"Quota store unavailable: {e}") from e
        finally:
            conn.close()
        count = int(row[0])
        logger.info("[quota_store:count_and_increment] user_id=%s limit_type=%s day=%s count=%d", user_id, limit_type, day, count)
        return count

    def get_count(self, user_id: str, limit_type: LimitType) -> int:
        conn = self._get_conn()
        try:
            row = conn.execute(
                f"SELECT count FROM {_TABLE} WHERE user_id = ? AND limit_type = ? AND day = ?",
                (user_id, limit_type, _today()),
            ).fetchone()
        except sqlite3.Error as e:
            logger.exception("[quota_store:get_count] failed user_id=%s limit_type=%s", user_id, limit_type)
            raise QuotaStoreError(f"Quota store unavailable: {e}") from e
        finally:
            conn.close()
        return int(row[0]) if row else 0


class SupabaseQuotaStore:
    """Counters behind Supabase database functions, called over PostgREST."""

    def __init__(
        self,
        base_url: str = SUPABASE_URL,
        service_key: str = SUPABASE_SERVICE_KEY,
        client: httpx.Client | None = None,
    ) -> None:
        if not base_url or not service_key:
            raise QuotaStoreError("SUPABASE_URL and SUPABASE_SERVICE_KEY are required for the supabase quota store")
        self._client = client or httpx.Client(timeout=QUOTA_API_TIMEOUT)
        self._rpc_url = f"{base_url.rstrip('/')}/rest/v1/rpc"
        self._headers = {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Content-Type": "application/json",
        }

    def _rpc(self, function: str, user_id: str, limit_type: LimitType) -> int:
        try:
            response = self._client.post(
                f"{self._rpc_url}/{function}",
                json={"p_user_id": user_id, "p_limit_type": limit_type},
                headers=self._headers,
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("[quota_store:supabase] rpc=%s failed: %s", function, e)
            raise QuotaStoreError(f"Quota store unavailable: {e}") from e
        count = int(data or 0)
        logger.info("[quota_store:supabase] rpc=%s user_id=%s limit_type=%s count=%d", function, user_id, limit_type, count)
        return count

    def count_and_increment(self, user_id: str, limit_type: LimitType) -> int:
        return self._rpc("count_and_increment_limit", user_id, limit_type)

    def get_count(self, user_id: str, limit_type: LimitType) -> int:
        return self._rpc("get_daily_limit_count", user_id, limit_type)


_store: QuotaCounterStore | None = None


def get_quota_store() -> QuotaCounterStore:
    """Process-wide store, created on first use from QUOTA_BACKEND."""
    global _store
    if _store is None:
        _store = SupabaseQuotaStore() if QUOTA_BACKEND == "supabase" else SQLiteQuotaStore()
        logger.info("[quota_store] initialized backend=%s", QUOTA_BACKEND)
    return _store
