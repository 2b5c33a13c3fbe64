"""
Per-domain agent profiles.

A profile is everything that differs between agents: tool registry, system prompt and the canned
reply used when the model produces no text.  The turn loop itself is shared.
"""

from dataclasses import dataclass
from typing import (
    Callable,
    Dict,
)

from sbos_agent.core.schema import (
    AgentContext,
    Complexity,
)
from sbos_agent.memory.calendar_client import CalendarClient
from sbos_agent.memory.record_store import RecordStore
from sbos_agent.tools import ToolRegistry
from sbos_agent.tools.calendar import build_calendar_registry
from sbos_agent.tools.trading import build_trading_registry
from sbos_agent.tools.venture import build_venture_registry

SystemPromptBuilder = Callable[[AgentContext], str]

DEFAULT_FALLBACK = "I'm here to help! How can I assist you today?"


@dataclass(frozen=True)
class AgentProfile:
    name: str
    registry: ToolRegistry
    prompt_builder: SystemPromptBuilder
    fallback_message: str = DEFAULT_FALLBACK
    complexity: Complexity = Complexity.COMPLEX
    requires_scope: bool = False


# ---------------------------------------------------------------------------
# Prompt builders
# ---------------------------------------------------------------------------
def venture_system_prompt(ctx: AgentContext) -> str:
    """System prompt for an assistant dedicated to one venture."""
    name = ctx.scope_name or ctx.scope_id or "this venture"
    lines = [f'You are an AI assistant specialized for the venture "{name}".']
    if ctx.attributes.get("one_liner"):
        lines.append(f"Venture Description: {ctx.attributes['one_liner']}")
    if ctx.attributes.get("status"):
        lines.append(f"Status: {ctx.attributes['status']}")
    lines += [
        "",
        "Your role is to help manage this venture by:",
        "- Answering questions about projects, tasks, and documents",
        "- Providing insights based on the venture's knowledge base",
        "- Helping create and manage tasks, projects, and documentation",
        "- Offering strategic recommendations based on the venture's context",
    ]
    if ctx.context_blob:
        lines += ["", "VENTURE CONTEXT:", ctx.context_blob]
    lines += [
        "",
        f"Current date/time: {ctx.now.isoformat()}",
        "",
        "IMPORTANT INSTRUCTIONS:",
        "1. Always be specific to this venture - don't give generic advice",
        "2. Reference actual projects, tasks, and documents when relevant",
        "3. When creating tasks or documents, ensure they're properly linked to this venture",
        "4. If you're unsure about something, say so rather than guessing",
        "5. Be concise but thorough in your responses",
    ]
    return "\n".join(lines)


def trading_system_prompt(ctx: AgentContext) -> str:
    """System prompt for the trading journal assistant."""
    sections = [
        "You are a professional trading assistant integrated into SB-OS, "
        "a personal operating system for a trader.",
        f"Current date/time: {ctx.now.isoformat()}",
    ]
    if ctx.context_blob:
        sections.append(f"CURRENT CONTEXT:\n{ctx.context_blob}")
    sections.append(
        "IMPORTANT GUIDELINES:\n"
        "- Always be objective and data-driven in analysis\n"
        "- Emphasize risk management and position sizing\n"
        "- Encourage journaling and reflection\n"
        "- Never provide specific trade recommendations or financial advice\n"
        "- Focus on process over outcomes"
    )
    if ctx.attributes.get("custom_instructions"):
        sections.append(str(ctx.attributes["custom_instructions"]))
    return "\n\n".join(sections)


def assistant_system_prompt(ctx: AgentContext) -> str:
    """System prompt for the calendar assistant reached over a messaging channel."""
    attrs = ctx.attributes
    name = attrs.get("assistant_name") or "Aura"
    user = attrs.get("user_name") or "the user"
    platform = attrs.get("platform") or "WhatsApp"
    prompt = (
        f"You are {name}, a helpful and friendly personal assistant managing {user}'s calendar "
        f"via {platform}.\n\n"
        "Your capabilities:\n"
        "- View full schedule/calendar for any day\n"
        "- Check calendar availability\n"
        "- Find free time slots\n"
        "- Book, reschedule and cancel appointments\n\n"
        "Important rules:\n"
        "1. ALWAYS ask for confirmation before booking, canceling, or rescheduling appointments\n"
        "2. Be conversational and friendly, but professional\n"
        "3. When suggesting time slots, provide 2-3 options\n"
        "4. Consider the user's working hours when suggesting times\n"
        "5. Be concise - messages should be short and clear\n"
        '6. "Cancel X and book Y" is two actions; "reschedule X" is one\n'
        "7. Before request_cancel_appointment or request_reschedule_appointment, call "
        "search_events and use the real event id it returns"
    )
    settings_lines = [
        f"User timezone: {attrs['timezone']}" if attrs.get("timezone") else None,
        f"Working hours: {attrs['working_hours']}" if attrs.get("working_hours") else None,
        (
            f"Default meeting duration: {attrs['default_meeting_duration']} minutes"
            if attrs.get("default_meeting_duration")
            else None
        ),
        f"Additional preferences: {attrs['preferences']}" if attrs.get("preferences") else None,
    ]
    settings_block = "\n".join(line for line in settings_lines if line)
    if settings_block:
        prompt += f"\n\n{settings_block}"
    if ctx.context_blob:
        prompt += f"\n\n{ctx.context_blob}"
    return prompt + f"\n\nCurrent date/time: {ctx.now.isoformat()}"


def build_profiles(store: RecordStore, calendar: CalendarClient) -> Dict[str, AgentProfile]:
    """Instantiate every agent profile against one domain record store and calendar."""
    return {
        "venture": AgentProfile(
            name="venture",
            registry=build_venture_registry(store),
            prompt_builder=venture_system_prompt,
            fallback_message="I'm here to help with this venture. How can I assist?",
            requires_scope=True,
        ),
        "trading": AgentProfile(
            name="trading",
            registry=build_trading_registry(store),
            prompt_builder=trading_system_prompt,
            fallback_message="I'm here to help with your trading. How can I assist?",
        ),
        "assistant": AgentProfile(
            name="assistant",
            registry=build_calendar_registry(calendar, store),
            prompt_builder=assistant_system_prompt,
        ),
    }
