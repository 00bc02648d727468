"""
Key/value settings in the control store.

Holds the operator identity, the retention policy scalars and the
timestamps of the last maintenance runs, plus the audit log appender.
"""

from __future__ import annotations

import json
import time
from typing import TYPE_CHECKING, Any

from ...core.logging import get_logger
from .errors import storage_operation
from .models import IntegrityCheckResult, RetentionPolicy

if TYPE_CHECKING:
    from .connection import StoreManager

logger = get_logger(__name__)

KEY_OPERATOR_PUBKEY = "operator_pubkey"
KEY_RETENTION_DAYS = "retention_days"
KEY_RETENTION_EXCEPTIONS = "retention_exceptions"
KEY_HONOR_NIP09 = "honor_nip09"
KEY_LAST_RETENTION_RUN = "last_retention_run"
KEY_LAST_VACUUM_RUN = "last_vacuum_run"
KEY_LAST_INTEGRITY_CHECK = "last_integrity_check"


class SettingsStore:
    """Typed accessors over the app_state table."""

    def __init__(self, manager: StoreManager):
        self.manager = manager

    # -------------------------------------------------------------------------
    # Raw access
    # -------------------------------------------------------------------------

    async def get(self, key: str) -> str | None:
        with storage_operation(f"get setting {key}"):
            cursor = await self.manager.app_db.execute(
                "SELECT value FROM app_state WHERE key = ?",
                (key,),
            )
            row = await cursor.fetchone()
        return row["value"] if row else None

    async def set(self, key: str, value: str) -> None:
        with storage_operation(f"set setting {key}"):
            await self.manager.app_db.execute(
                """
                INSERT INTO app_state (key, value, updated_at)
                VALUES (?, ?, strftime('%s', 'now'))
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value),
            )
            await self.manager.app_db.commit()

    async def get_all(self) -> dict[str, str]:
        with storage_operation("get all settings"):
            cursor = await self.manager.app_db.execute("SELECT key, value FROM app_state")
            rows = await cursor.fetchall()
        return {row["key"]: row["value"] for row in rows}

    async def _get_int(self, key: str) -> int | None:
        value = await self.get(key)
        if not value:
            return None
        try:
            return int(value)
        except ValueError:
            logger.debug("Setting %s is not an integer: %r", key, value)
            return None

    async def _set_timestamp(self, key: str, timestamp: int | None) -> None:
        if timestamp is None:
            timestamp = int(time.time())
        await self.set(key, str(timestamp))

    # -------------------------------------------------------------------------
    # Operator
    # -------------------------------------------------------------------------

    async def get_operator_pubkey(self) -> str | None:
        """Hex pubkey of the relay operator, or None when unset."""
        value = await self.get(KEY_OPERATOR_PUBKEY)
        return value or None

    async def set_operator_pubkey(self, pubkey: str) -> None:
        await self.set(KEY_OPERATOR_PUBKEY, pubkey.lower())

    # -------------------------------------------------------------------------
    # Retention policy
    # -------------------------------------------------------------------------

    async def get_retention_policy(self) -> RetentionPolicy:
        """
        Load the retention policy.

        Missing or unparseable values fall back to: retention disabled, no
        exceptions, deletion requests honored.
        """
        policy = RetentionPolicy()

        days = await self._get_int(KEY_RETENTION_DAYS)
        if days is not None:
            policy.retention_days = days

        raw_exceptions = await self.get(KEY_RETENTION_EXCEPTIONS)
        if raw_exceptions:
            try:
                parsed = json.loads(raw_exceptions)
            except ValueError:
                logger.debug("Ignoring unparseable retention exceptions: %r", raw_exceptions)
            else:
                if isinstance(parsed, list):
                    policy.exceptions = [str(item) for item in parsed]

        honor = await self.get(KEY_HONOR_NIP09)
        if honor is not None:
            policy.honor_nip09 = honor.strip().lower() != "false"

        policy.last_run = await self._get_int(KEY_LAST_RETENTION_RUN)
        return policy

    async def set_retention_policy(
        self,
        retention_days: int | None = None,
        exceptions: list[str] | None = None,
        honor_nip09: bool | None = None,
    ) -> None:
        """Update whichever policy fields are given."""
        if retention_days is not None:
            await self.set(KEY_RETENTION_DAYS, str(retention_days))
        if exceptions is not None:
            await self.set(KEY_RETENTION_EXCEPTIONS, json.dumps(exceptions))
        if honor_nip09 is not None:
            await self.set(KEY_HONOR_NIP09, "true" if honor_nip09 else "false")

    async def set_last_retention_run(self, timestamp: int | None = None) -> None:
        await self._set_timestamp(KEY_LAST_RETENTION_RUN, timestamp)

    # -------------------------------------------------------------------------
    # Maintenance bookkeeping
    # -------------------------------------------------------------------------

    async def get_last_vacuum_run(self) -> int | None:
        return await self._get_int(KEY_LAST_VACUUM_RUN)

    async def set_last_vacuum_run(self, timestamp: int | None = None) -> None:
        await self._set_timestamp(KEY_LAST_VACUUM_RUN, timestamp)

    async def get_last_integrity_check(self) -> int | None:
        return await self._get_int(KEY_LAST_INTEGRITY_CHECK)

    async def set_last_integrity_check(self, timestamp: int | None = None) -> None:
        await self._set_timestamp(KEY_LAST_INTEGRITY_CHECK, timestamp)

    async def run_app_vacuum(self) -> None:
        """VACUUM the control store."""
        with storage_operation("app vacuum"):
            await self.manager.app_db.execute("VACUUM")

    async def run_app_integrity_check(self) -> IntegrityCheckResult:
        with storage_operation("app integrity_check"):
            cursor = await self.manager.app_db.execute("PRAGMA integrity_check")
            rows = await cursor.fetchall()
        messages = [str(row[0]) for row in rows]
        return IntegrityCheckResult(ok=messages == ["ok"], message="\n".join(messages))

    # -------------------------------------------------------------------------
    # Audit log
    # -------------------------------------------------------------------------

    async def add_audit_log(
        self,
        action: str,
        details: dict[str, Any] | None = None,
        performed_by: str | None = None,
    ) -> int:
        """Append an audit entry. Returns its row id."""
        with storage_operation("add_audit_log"):
            cursor = await self.manager.app_db.execute(
                "INSERT INTO audit_log (action, details, performed_by) VALUES (?, ?, ?)",
                (action, json.dumps(details) if details is not None else None, performed_by),
            )
            await self.manager.app_db.commit()
        return cursor.lastrowid

    async def list_audit_log(self, action: str | None = None, limit: int = 50) -> list[dict[str, Any]]:
        """Most recent audit entries first."""
        sql = "SELECT id, action, details, performed_by, created_at FROM audit_log"
        params: list[Any] = []
        if action:
            sql += " WHERE action = ?"
            params.append(action)
        sql += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        with storage_operation("list_audit_log"):
            cursor = await self.manager.app_db.execute(sql, params)
            rows = await cursor.fetchall()

        entries = []
        for row in rows:
            details = json.loads(row["details"]) if row["details"] else None
            entries.append(
                {
                    "id": row["id"],
                    "action": row["action"],
                    "details": details,
                    "performed_by": row["performed_by"],
                    "created_at": row["created_at"],
                }
            )
        return entries
