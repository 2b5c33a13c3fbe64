"""
Calendar collaborator used by the personal assistant tools.

The production client talks to the user's hosted calendar; the orchestration core only needs the
read queries below plus event creation.  :class:`InMemoryCalendarClient` backs local runs and tests.
"""

import asyncio
import uuid
from datetime import (
    datetime,
    timedelta,
    timezone,
)
from typing import (
    Any,
    Dict,
    List,
    Protocol,
)

SLOT_STEP = timedelta(minutes=30)


def parse_time(value: str | datetime) -> datetime:
    """ISO text or datetime -> aware datetime; naive values are taken as UTC."""
    moment = value if isinstance(value, datetime) else datetime.fromisoformat(value)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


class CalendarClient(Protocol):
    """Collaborator interface for one user's calendar."""

    async def list_events(
        self, start: datetime, end: datetime, limit: int = 50
    ) -> List[Dict[str, Any]]:
        """Events overlapping ``[start, end)``, earliest first."""

    async def check_availability(self, start: datetime, end: datetime) -> bool: ...

    async def find_free_slots(
        self, start: datetime, end: datetime, duration_minutes: int = 60
    ) -> List[Dict[str, str]]:
        """Free ``{start, end}`` windows of *duration_minutes*, stepped every 30 minutes."""

    async def search_events(
        self, query: str, start: datetime | None = None, end: datetime | None = None
    ) -> List[Dict[str, Any]]: ...

    async def create_event(
        self, summary: str, start: datetime, end: datetime, description: str | None = None
    ) -> Dict[str, Any]: ...


class InMemoryCalendarClient:
    """List-backed :class:`CalendarClient`."""

    def __init__(self) -> None:
        self._events: List[Dict[str, Any]] = []
        self._lock = asyncio.Lock()

    def _overlapping(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        return [
            e for e in self._events if parse_time(e["start"]) < end and parse_time(e["end"]) > start
        ]

    async def list_events(
        self, start: datetime, end: datetime, limit: int = 50
    ) -> List[Dict[str, Any]]:
        events = sorted(self._overlapping(start, end), key=lambda e: parse_time(e["start"]))
        return [dict(e) for e in events[:limit]]

    async def check_availability(self, start: datetime, end: datetime) -> bool:
        return not self._overlapping(start, end)

    async def find_free_slots(
        self, start: datetime, end: datetime, duration_minutes: int = 60
    ) -> List[Dict[str, str]]:
        duration = timedelta(minutes=duration_minutes)
        busy = [
            (parse_time(e["start"]), parse_time(e["end"])) for e in self._overlapping(start, end)
        ]
        slots: List[Dict[str, str]] = []
        current = start
        while current + duration <= end:
            slot_end = current + duration
            if not any(current < b_end and slot_end > b_start for b_start, b_end in busy):
                slots.append({"start": current.isoformat(), "end": slot_end.isoformat()})
            current += SLOT_STEP
        return slots

    async def search_events(
        self, query: str, start: datetime | None = None, end: datetime | None = None
    ) -> List[Dict[str, Any]]:
        needle = query.lower()
        hits = []
        for event in sorted(self._events, key=lambda e: parse_time(e["start"])):
            if start and parse_time(event["end"]) <= start:
                continue
            if end and parse_time(event["start"]) >= end:
                continue
            text = f"{event['summary']} {event.get('description') or ''}".lower()
            if needle in text:
                hits.append(dict(event))
        return hits

    async def create_event(
        self, summary: str, start: datetime, end: datetime, description: str | None = None
    ) -> Dict[str, Any]:
        event = {
            "id": uuid.uuid4().hex,
            "summary": summary,
            "start": parse_time(start).isoformat(),
            "end": parse_time(end).isoformat(),
            "description": description,
        }
        async with self._lock:
            self._events.append(event)
        return dict(event)
