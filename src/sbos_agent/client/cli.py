"""CLI client for the SB-OS Agent API."""

from __future__ import annotations

import logging
import time
from typing import (
    Any,
    Dict,
    Tuple,
    cast,
)

import httpx

from sbos_agent.common import (
    AnsiColors,
    colored_print,
)
from sbos_agent.config import settings

logger = logging.getLogger(__name__)

EXIT_WORDS = {"exit", "quit"}


# ---------------------------------------------------------------------------
# CLI Client
# ---------------------------------------------------------------------------
def get_user_message() -> Tuple[str, bool]:
    """
    Get a message from the user via standard input.

    Returns:
        Tuple of (user_input, success_flag)
        The success_flag is False if input couldn't be read (e.g., Ctrl+C)
    """
    try:
        return input().strip(), True
    except (EOFError, KeyboardInterrupt):
        return "", False


def _error_detail(response: httpx.Response | None, exc: httpx.HTTPError) -> str:
    if response is not None:
        try:
            data = response.json()
        except ValueError:
            data = {}
        if isinstance(data, dict) and "detail" in data:
            return f"API error: {data['detail']}"
    return f"Error connecting to API: {exc}"


def call_api(
    endpoint: str,
    data: Dict[str, Any],
    max_retries: int = 5,
    base_url: str | None = None,
    timeout: float | None = None,
) -> Dict[str, Any]:
    """POST *data* to the API; connection failures are retried with exponential backoff."""
    api_url = f"{base_url or f'http://localhost:{settings.API_PORT}'}{endpoint}"
    timeout = timeout if timeout is not None else (settings.TURN_TIMEOUT or 180.0) + 5.0

    for attempt in range(max_retries):
        response: httpx.Response | None = None
        try:
            with httpx.Client(timeout=timeout) as client:
                response = client.post(api_url, json=data)
                response.raise_for_status()
                return cast(Dict[str, Any], response.json())
        except httpx.ConnectError as exc:
            if attempt == max_retries - 1:
                break
            retry_delay = 0.5 * (2**attempt)  # 0.5s, 1s, 2s, 4s...
            logger.info(
                "API not ready yet, retrying in %.1f seconds (attempt %d/%d): %s",
                retry_delay,
                attempt + 1,
                max_retries,
                exc,
            )
            time.sleep(retry_delay)
        except httpx.HTTPError as exc:
            logger.error("API request error: %s", exc)
            return {"error": _error_detail(response, exc)}

    return {"error": f"Failed to connect to API after {max_retries} attempts"}


def run_cli(agent: str = "trading", scope_id: str | None = None) -> None:
    """Run the REPL client that talks to one agent through the API."""
    session_id = call_api("/sessions", {}).get("session_id")
    if not session_id:
        colored_print("Failed to create a session", AnsiColors.RED)
        return

    colored_print(
        f"\nSB-OS {agent} agent - type 'exit' or 'quit' (or Ctrl+C) to exit", AnsiColors.GREEN
    )
    while True:
        colored_print("\nYou: ", AnsiColors.BLUE, end="")
        user_msg, ok = get_user_message()
        if not ok or user_msg.lower() in EXIT_WORDS:
            break
        if not user_msg:
            continue

        payload: Dict[str, Any] = {"message": user_msg, "session_id": session_id}
        if scope_id:
            payload["scope_id"] = scope_id
        response = call_api(f"/agents/{agent}/chat", payload)

        if "error" in response:
            colored_print(response["error"], AnsiColors.RED)
            continue
        for action in response.get("actions") or []:
            color = AnsiColors.GREEN if action.get("outcome") == "success" else AnsiColors.RED
            colored_print(f"[{action['action']}] {action.get('entity_id') or ''}", color)
        for warning in response.get("warnings") or []:
            colored_print(f"warning: {warning}", AnsiColors.GREY)
        colored_print(response.get("reply", "No response from API"), AnsiColors.YELLOW)


if __name__ == "__main__":
    run_cli()
