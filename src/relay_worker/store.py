# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Message store: reads message details and records status transitions.

The worker only reads credentials and associations; they are owned by the
control plane. The helpers that write them (``add_credential``,
``add_association``, ``insert_message``) exist for operators and tests.

Every operation used by the message processor returns a
:class:`relay_worker.result.Result`. Driver errors become ``Err(StoreError)``;
any other exception propagates to the caller.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from .errors import StoreError
from .logger import get_logger
from .models import MessageDetails, MessageStatus, ProjectProviderAssociation, ProviderCredential
from .result import Err, Ok, Result
from .sql import DbAdapter, Transaction, create_adapter

SCHEMA = """
CREATE TABLE IF NOT EXISTS provider_credentials (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL,
    name TEXT,
    channel TEXT NOT NULL,
    provider_type TEXT NOT NULL,
    credentials TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS project_provider_associations (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL,
    provider_credential_id TEXT,
    priority INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1,
    config TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL,
    api_key_id TEXT,
    project_provider_association_id TEXT,
    channel TEXT NOT NULL,
    provider_type TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'queued',
    status_reason TEXT,
    payload TEXT,
    recipient TEXT,
    source TEXT NOT NULL DEFAULT 'api',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    last_status_at TEXT
);

CREATE TABLE IF NOT EXISTS message_events (
    id {pk},
    message_id TEXT NOT NULL,
    status TEXT NOT NULL,
    details TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_message_events_message ON message_events (message_id, id);
CREATE INDEX IF NOT EXISTS idx_associations_project ON project_provider_associations (project_id, priority);
"""

_ASSOCIATION_COLUMNS = """
    a.id AS association_id, a.priority AS association_priority, a.config AS association_config,
    c.id AS credential_id, c.channel AS credential_channel,
    c.provider_type AS credential_provider_type, c.credentials AS credential_data
"""


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _dumps(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, default=str)


def _loads(value: Any) -> Any:
    if value is None or isinstance(value, (dict, list)):
        return value
    return json.loads(value)


def _load_payload(value: Any) -> dict[str, Any] | None:
    """Decode a stored payload; anything but a JSON object counts as missing."""
    try:
        payload = _loads(value)
    except (TypeError, ValueError):
        return None
    return payload if isinstance(payload, dict) else None


class MessageStore:
    """Persistence operations for messages and their event trail."""

    def __init__(self, db: DbAdapter | str, logger=None):
        self.db = create_adapter(db) if isinstance(db, str) else db
        self.logger = logger or get_logger("relay_worker.store")

    async def init_db(self) -> None:
        """Open the adapter and create the tables if they do not exist."""
        await self.db.connect()
        await self.db.execute_script(SCHEMA.format(pk=self.db.autoincrement_pk))

    async def close(self) -> None:
        await self.db.close()

    def transaction(self):
        """Open a database transaction; see :meth:`DbAdapter.transaction`."""
        return self.db.transaction()

    # ------------------------------------------------------------------ reads
    async def fetch_message_details(self, message_id: str) -> Result[MessageDetails, StoreError]:
        """Load a message and the provider association it should be delivered with.

        A message pinned to an association uses that one even if its
        credential is gone (which the processor reports as malformed).
        Otherwise the active association of the project with the lowest
        priority whose credential matches the message channel and provider
        type wins; ties go to the oldest, then the smallest id.
        """
        try:
            row = await self.db.fetch_one("SELECT * FROM messages WHERE id = :id", {"id": message_id})
            if row is None:
                return Err(StoreError(f"Message {message_id} not found"))
            association = await self._resolve_association(row)
            details = MessageDetails(
                id=row["id"],
                project_id=row["project_id"],
                channel=row["channel"],
                provider_type=row["provider_type"],
                status=row["status"],
                status_reason=row.get("status_reason"),
                payload=_load_payload(row.get("payload")),
                recipient=row.get("recipient"),
                source=row.get("source"),
                association=association,
            )
        except self.db.errors as exc:
            return Err(StoreError(f"Database error fetching message {message_id}", exc))
        except (ValidationError, ValueError) as exc:
            return Err(StoreError(f"Unreadable message {message_id}", exc))
        return Ok(details)

    async def _resolve_association(self, message: dict[str, Any]) -> ProjectProviderAssociation | None:
        pinned = message.get("project_provider_association_id")
        if pinned:
            row = await self.db.fetch_one(
                f"""
                SELECT {_ASSOCIATION_COLUMNS}
                FROM project_provider_associations a
                LEFT JOIN provider_credentials c
                    ON c.id = a.provider_credential_id AND c.is_active = 1
                WHERE a.id = :id AND a.is_active = 1
                """,
                {"id": pinned},
            )
        else:
            row = await self.db.fetch_one(
                f"""
                SELECT {_ASSOCIATION_COLUMNS}
                FROM project_provider_associations a
                JOIN provider_credentials c ON c.id = a.provider_credential_id
                WHERE a.project_id = :project_id
                  AND a.is_active = 1
                  AND c.is_active = 1
                  AND c.channel = :channel
                  AND c.provider_type = :provider_type
                ORDER BY a.priority ASC, a.created_at ASC, a.id ASC
                LIMIT 1
                """,
                {
                    "project_id": message["project_id"],
                    "channel": message["channel"],
                    "provider_type": message["provider_type"],
                },
            )
        if row is None:
            return None
        credential = None
        if row.get("credential_id"):
            credential = ProviderCredential(
                id=row["credential_id"],
                channel=row["credential_channel"],
                provider_type=row["credential_provider_type"],
                credentials=_loads(row["credential_data"]) or {},
            )
        return ProjectProviderAssociation(
            id=row["association_id"],
            priority=row["association_priority"],
            config=_loads(row.get("association_config")),
            provider_credential=credential,
        )

    async def get_message(self, message_id: str) -> dict[str, Any] | None:
        row = await self.db.fetch_one("SELECT * FROM messages WHERE id = :id", {"id": message_id})
        if row is not None:
            row["payload"] = _loads(row.get("payload"))
        return row

    async def list_events(self, message_id: str) -> list[dict[str, Any]]:
        """Return the event trail of a message in creation order."""
        rows = await self.db.fetch_all(
            "SELECT id, message_id, status, details, created_at FROM message_events "
            "WHERE message_id = :message_id ORDER BY id ASC",
            {"message_id": message_id},
        )
        for row in rows:
            row["details"] = _loads(row.get("details"))
        return rows

    # ----------------------------------------------------------- transitions
    async def get_message_status(
        self, tx: Transaction, message_id: str, lock: bool = True
    ) -> Result[MessageStatus, StoreError]:
        """Re-read the current status inside ``tx``, row-locked when the backend supports it."""
        suffix = self.db.lock_clause if lock else ""
        try:
            row = await tx.fetch_one(f"SELECT status FROM messages WHERE id = :id{suffix}", {"id": message_id})
        except self.db.errors as exc:
            return Err(StoreError(f"Database error reading status of message {message_id}", exc))
        if row is None:
            return Err(StoreError(f"Message {message_id} not found"))
        try:
            return Ok(MessageStatus(row["status"]))
        except ValueError as exc:
            return Err(StoreError(f"Unknown status for message {message_id}", exc))

    async def update_message_status(
        self,
        tx: Transaction,
        message_id: str,
        status: MessageStatus,
        reason: str | None = None,
    ) -> Result[None, StoreError]:
        now = _utc_now_iso()
        try:
            updated = await tx.execute(
                """
                UPDATE messages
                SET status = :status, status_reason = :reason, updated_at = :now, last_status_at = :now
                WHERE id = :id
                """,
                {"status": MessageStatus(status).value, "reason": reason, "now": now, "id": message_id},
            )
        except self.db.errors as exc:
            return Err(StoreError(f"Database error updating status of message {message_id}", exc))
        if not updated:
            return Err(StoreError(f"Message {message_id} not found"))
        return Ok(None)

    async def log_message_event(
        self,
        tx: Transaction,
        message_id: str,
        status: MessageStatus,
        details: dict[str, Any] | None = None,
    ) -> Result[int | None, StoreError]:
        """Append one event row; returns the new event id."""
        try:
            event_id = await tx.insert_returning_id(
                """
                INSERT INTO message_events (message_id, status, details, created_at)
                VALUES (:message_id, :status, :details, :created_at)
                """,
                {
                    "message_id": message_id,
                    "status": MessageStatus(status).value,
                    "details": _dumps(details),
                    "created_at": _utc_now_iso(),
                },
            )
        except self.db.errors as exc:
            return Err(StoreError(f"Database error logging event for message {message_id}", exc))
        return Ok(event_id)

    # --------------------------------------------------------- control plane
    async def add_credential(
        self,
        *,
        project_id: str,
        channel: str,
        provider_type: str,
        credentials: dict[str, Any],
        credential_id: str | None = None,
        name: str | None = None,
        is_active: bool = True,
    ) -> str:
        """Store a credential document. String leaves must already be encrypted."""
        credential_id = credential_id or str(uuid.uuid4())
        now = _utc_now_iso()
        await self.db.upsert(
            "provider_credentials",
            {
                "id": credential_id,
                "project_id": project_id,
                "name": name,
                "channel": channel,
                "provider_type": provider_type,
                "credentials": _dumps(credentials),
                "is_active": 1 if is_active else 0,
                "created_at": now,
                "updated_at": now,
            },
            ["id"],
        )
        return credential_id

    async def add_association(
        self,
        *,
        project_id: str,
        provider_credential_id: str | None,
        config: dict[str, Any] | None,
        priority: int = 0,
        association_id: str | None = None,
        is_active: bool = True,
        created_at: str | None = None,
    ) -> str:
        association_id = association_id or str(uuid.uuid4())
        await self.db.upsert(
            "project_provider_associations",
            {
                "id": association_id,
                "project_id": project_id,
                "provider_credential_id": provider_credential_id,
                "priority": priority,
                "is_active": 1 if is_active else 0,
                "config": _dumps(config),
                "created_at": created_at or _utc_now_iso(),
            },
            ["id"],
        )
        return association_id

    async def insert_message(
        self,
        *,
        project_id: str,
        channel: str,
        provider_type: str,
        payload: dict[str, Any] | None,
        recipient: str | None,
        message_id: str | None = None,
        status: MessageStatus = MessageStatus.QUEUED,
        association_id: str | None = None,
        source: str = "api",
    ) -> str:
        """Create a message row together with its ``queued`` event."""
        message_id = message_id or str(uuid.uuid4())
        now = _utc_now_iso()
        async with self.transaction() as tx:
            await tx.execute(
                """
                INSERT INTO messages (
                    id, project_id, project_provider_association_id, channel, provider_type,
                    status, payload, recipient, source, created_at, updated_at, last_status_at
                ) VALUES (
                    :id, :project_id, :association_id, :channel, :provider_type,
                    :status, :payload, :recipient, :source, :now, :now, :now
                )
                """,
                {
                    "id": message_id,
                    "project_id": project_id,
                    "association_id": association_id,
                    "channel": channel,
                    "provider_type": provider_type,
                    "status": MessageStatus(status).value,
                    "payload": _dumps(payload),
                    "recipient": recipient,
                    "source": source,
                    "now": now,
                },
            )
            await tx.insert_returning_id(
                """
                INSERT INTO message_events (message_id, status, details, created_at)
                VALUES (:message_id, :status, :details, :created_at)
                """,
                {
                    "message_id": message_id,
                    "status": MessageStatus(status).value,
                    "details": None,
                    "created_at": now,
                },
            )
        return message_id


@asynccontextmanager
async def open_store(db_url: str) -> AsyncIterator[MessageStore]:
    """Create, initialise and finally close a store for one-off CLI commands."""
    store = MessageStore(db_url)
    await store.init_db()
    try:
        yield store
    finally:
        await store.close()
