"""
Personal assistant tool catalog: schedule queries over a calendar client, plus booking, cancel and
reschedule requests.

Requests never touch the calendar.  Each one stores a pending confirmation for the user and returns
the question to relay; the messaging channel executes it once the user says yes.
"""

import json
import re
from datetime import timedelta
from typing import (
    Any,
    Dict,
    List,
)

from sbos_agent.core.schema import (
    AgentAction,
    AgentContext,
    ToolOutput,
)
from sbos_agent.memory.calendar_client import (
    CalendarClient,
    parse_time,
)
from sbos_agent.memory.record_store import RecordStore
from sbos_agent.tools import ToolRegistry

CONFIRMATION_TTL = timedelta(minutes=5)
MIN_EVENT_ID_LENGTH = 10

REMINDERS_SCHEMA = {
    "type": "object",
    "description": "Custom reminder settings",
    "properties": {
        "use_default": {"type": "boolean"},
        "overrides": {
            "type": "array",
            "description": "Custom reminder overrides (max 5)",
            "items": {
                "type": "object",
                "properties": {
                    "method": {"type": "string", "enum": ["email", "popup"]},
                    "minutes": {"type": "number", "description": "Minutes before the event"},
                },
                "required": ["method", "minutes"],
            },
        },
    },
}


def _when(value: str) -> str:
    return parse_time(value).strftime("%b %d, %Y, %H:%M")


def _check_event_id(event_id: str) -> None:
    if not event_id or "placeholder" in event_id or len(event_id) < MIN_EVENT_ID_LENGTH:
        raise ValueError(
            "Invalid or missing event ID. Use search_events first to get the actual event ID."
        )


def _reminder_text(reminders: Dict[str, Any] | None) -> str:
    parts = []
    for reminder in (reminders or {}).get("overrides") or []:
        minutes = reminder["minutes"]
        span = f"{round(minutes / 1440)} day(s)" if minutes >= 1440 else f"{minutes} min"
        parts.append(f"{reminder['method']} {span} before")
    return ", ".join(parts)


def _event_view(event: Dict[str, Any], with_description: bool = False) -> Dict[str, Any]:
    view = {k: event[k] for k in ("start", "end", "id")}
    view["title"] = event["summary"]
    if with_description:
        view["description"] = event.get("description")
    return view


def build_calendar_registry(calendar: CalendarClient, store: RecordStore) -> ToolRegistry:
    """Register the assistant tools; pending confirmations go to *store*, scoped to the user."""
    registry = ToolRegistry("assistant")

    async def _request(
        ctx: AgentContext, action: str, data: Dict[str, Any], message: str
    ) -> ToolOutput:
        pending = await store.create_record(
            "pending_confirmation",
            ctx.user_id,
            {
                "action": action,
                "data": data,
                "message_text": message,
                "expires_at": (ctx.now + CONFIRMATION_TTL).isoformat(),
            },
        )
        return ToolOutput(
            text=message,
            action=AgentAction(
                action=f"request_{action}_appointment",
                entity_type="pending_confirmation",
                entity_id=pending["id"],
                parameters=data,
            ),
        )

    # ------------------------------------------------------------------ #
    # Schedule queries
    # ------------------------------------------------------------------ #
    @registry.tool(
        "get_schedule",
        "Get all scheduled appointments for a day or date range. Use this when the user asks "
        "'what's my schedule', 'what do I have today/tomorrow', etc.",
        {
            "type": "object",
            "properties": {
                "start_date": {"type": "string", "description": "ISO start, e.g. 2025-10-20T00:00"},
                "end_date": {"type": "string", "description": "ISO end, e.g. 2025-10-20T23:59"},
            },
            "required": ["start_date", "end_date"],
        },
    )
    async def get_schedule(ctx: AgentContext, start_date: str, end_date: str) -> str:
        events = await calendar.list_events(parse_time(start_date), parse_time(end_date), 50)
        if not events:
            return "Calendar is clear - no scheduled appointments."
        return json.dumps([_event_view(e) for e in events])

    @registry.tool(
        "check_availability",
        "Check if a specific time slot is free on the calendar",
        {
            "type": "object",
            "properties": {
                "start_time": {"type": "string", "description": "ISO start time"},
                "end_time": {"type": "string", "description": "ISO end time"},
            },
            "required": ["start_time", "end_time"],
        },
    )
    async def check_availability(ctx: AgentContext, start_time: str, end_time: str) -> str:
        if await calendar.check_availability(parse_time(start_time), parse_time(end_time)):
            return "Time slot is available"
        return "Time slot is NOT available - conflict exists"

    @registry.tool(
        "find_free_slots",
        "Find available time slots within a date range",
        {
            "type": "object",
            "properties": {
                "start_date": {"type": "string", "description": "ISO start"},
                "end_date": {"type": "string", "description": "ISO end"},
                "duration_minutes": {
                    "type": "integer",
                    "description": "Meeting length in minutes (default 60)",
                },
            },
            "required": ["start_date", "end_date"],
        },
    )
    async def find_free_slots(
        ctx: AgentContext, start_date: str, end_date: str, duration_minutes: int = 60
    ) -> str:
        slots = await calendar.find_free_slots(
            parse_time(start_date), parse_time(end_date), duration_minutes
        )
        return json.dumps(slots[:5]) if slots else "No free slots found"

    @registry.tool(
        "search_events",
        "Search calendar events by title or description, e.g. 'gym' or 'meeting with Warren'. "
        "Use it to get the event id before cancelling or rescheduling.",
        {
            "type": "object",
            "properties": {
                "query": {"type": "string"},
                "start_date": {"type": "string", "description": "Only events after this (ISO)"},
                "end_date": {"type": "string", "description": "Only events before this (ISO)"},
            },
            "required": ["query"],
        },
    )
    async def search_events(
        ctx: AgentContext, query: str, start_date: str | None = None, end_date: str | None = None
    ) -> str:
        events = await calendar.search_events(
            query,
            parse_time(start_date) if start_date else None,
            parse_time(end_date) if end_date else None,
        )
        if not events:
            return f'No events found matching "{query}"'
        return json.dumps([_event_view(e, with_description=True) for e in events])

    # ------------------------------------------------------------------ #
    # Requests awaiting the user's confirmation
    # ------------------------------------------------------------------ #
    @registry.tool(
        "request_book_appointment",
        "Request to book a new appointment (requires user confirmation). Can invite attendees, "
        "recur (RFC 5545 RRULE) and carry custom reminders.",
        {
            "type": "object",
            "properties": {
                "title": {"type": "string"},
                "start_time": {"type": "string", "description": "ISO start time"},
                "end_time": {"type": "string", "description": "ISO end time"},
                "description": {"type": "string"},
                "attendee_emails": {"type": "array", "items": {"type": "string"}},
                "recurrence_rule": {"type": "string", "description": "e.g. FREQ=WEEKLY;BYDAY=MO"},
                "reminders": REMINDERS_SCHEMA,
            },
            "required": ["title", "start_time", "end_time"],
        },
    )
    async def request_book_appointment(
        ctx: AgentContext,
        title: str,
        start_time: str,
        end_time: str,
        description: str | None = None,
        attendee_emails: List[str] | None = None,
        recurrence_rule: str | None = None,
        reminders: Dict[str, Any] | None = None,
    ) -> ToolOutput:
        if parse_time(end_time) <= parse_time(start_time):
            raise ValueError("end_time must be after start_time")
        message = f'I\'ll book "{title}" for {_when(start_time)}'
        if recurrence_rule:
            match = re.search(r"FREQ=([A-Z]+)", recurrence_rule)
            message += f" ({(match.group(1) if match else 'recurring').lower()} recurring)"
        if attendee_emails:
            message += f" and send invites to {', '.join(attendee_emails)}"
        if _reminder_text(reminders):
            message += f" with reminders: {_reminder_text(reminders)}"
        message += ". Confirm?"
        data = {
            k: v
            for k, v in {
                "title": title,
                "start_time": start_time,
                "end_time": end_time,
                "description": description,
                "attendee_emails": attendee_emails,
                "recurrence_rule": recurrence_rule,
                "reminders": reminders,
            }.items()
            if v is not None
        }
        return await _request(ctx, "book", data, message)

    @registry.tool(
        "request_cancel_appointment",
        "Request to cancel an existing appointment (requires user confirmation). "
        "Provide the event id from search_events.",
        {
            "type": "object",
            "properties": {
                "event_id": {"type": "string"},
                "event_title": {"type": "string"},
                "event_time": {"type": "string", "description": "Start time of the event"},
            },
            "required": ["event_id", "event_title", "event_time"],
        },
    )
    async def request_cancel_appointment(
        ctx: AgentContext, event_id: str, event_title: str, event_time: str
    ) -> ToolOutput:
        _check_event_id(event_id)
        message = f'I\'ll cancel "{event_title}" scheduled for {_when(event_time)}. Confirm?'
        data = {"event_id": event_id, "event_title": event_title, "event_time": event_time}
        return await _request(ctx, "cancel", data, message)

    @registry.tool(
        "request_reschedule_appointment",
        "Request to move an existing appointment to a new time (requires user confirmation).",
        {
            "type": "object",
            "properties": {
                "event_id": {"type": "string"},
                "event_title": {"type": "string"},
                "new_start_time": {"type": "string"},
                "new_end_time": {"type": "string"},
                "attendee_emails": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["event_id", "event_title", "new_start_time", "new_end_time"],
        },
    )
    async def request_reschedule_appointment(
        ctx: AgentContext,
        event_id: str,
        event_title: str,
        new_start_time: str,
        new_end_time: str,
        attendee_emails: List[str] | None = None,
    ) -> ToolOutput:
        _check_event_id(event_id)
        message = f'I\'ll reschedule "{event_title}" to {_when(new_start_time)}'
        if attendee_emails:
            message += f" and send invites to {', '.join(attendee_emails)}"
        message += ". Confirm?"
        data = {
            "event_id": event_id,
            "event_title": event_title,
            "new_start_time": new_start_time,
            "new_end_time": new_end_time,
        }
        if attendee_emails:
            data["attendee_emails"] = attendee_emails
        return await _request(ctx, "reschedule", data, message)

    return registry
