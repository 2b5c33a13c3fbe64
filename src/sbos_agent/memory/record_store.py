"""
Domain record store used by the tool catalogs.

Tasks, projects, docs, trades, ... live in the application's relational store; the orchestration core
only needs list / create / update by record kind and scope.  :class:`InMemoryRecordStore` backs local
runs and tests.
"""

import asyncio
import uuid
from datetime import (
    datetime,
    timezone,
)
from typing import (
    Any,
    Dict,
    List,
    Protocol,
)


class RecordStore(Protocol):
    """Collaborator interface for domain records, grouped by *kind* and owning *scope*."""

    async def list_records(self, kind: str, scope_id: str) -> List[Dict[str, Any]]:
        """Return the records of *kind* owned by *scope_id*, newest first."""

    async def get_record(self, kind: str, record_id: str) -> Dict[str, Any] | None: ...

    async def create_record(self, kind: str, scope_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Persist a new record and return it with its ``id`` and ``created_at``."""

    async def update_record(
        self, kind: str, record_id: str, changes: Dict[str, Any]
    ) -> Dict[str, Any] | None:
        """Apply *changes*; return the updated record or ``None`` if it does not exist."""


class InMemoryRecordStore:
    """Dict-backed :class:`RecordStore`."""

    def __init__(self) -> None:
        self._records: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    async def list_records(self, kind: str, scope_id: str) -> List[Dict[str, Any]]:
        rows = [
            dict(r) for r in self._records.get(kind, {}).values() if r["scope_id"] == scope_id
        ]
        return list(reversed(rows))

    async def get_record(self, kind: str, record_id: str) -> Dict[str, Any] | None:
        record = self._records.get(kind, {}).get(record_id)
        return dict(record) if record else None

    async def create_record(self, kind: str, scope_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        record = {
            **fields,
            "id": uuid.uuid4().hex[:12],
            "scope_id": scope_id,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        async with self._lock:
            self._records.setdefault(kind, {})[record["id"]] = record
        return dict(record)

    async def update_record(
        self, kind: str, record_id: str, changes: Dict[str, Any]
    ) -> Dict[str, Any] | None:
        async with self._lock:
            record = self._records.get(kind, {}).get(record_id)
            if record is None:
                return None
            record.update(changes)
            return dict(record)
