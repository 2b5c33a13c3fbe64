"""Trading agent tool catalog: strategies, checklists, trade log, journal, docs and performance."""

import json
from datetime import (
    date,
    timedelta,
)
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
from sbos_agent.memory.record_store import RecordStore
from sbos_agent.tools import ToolRegistry

SESSIONS = ["asian", "london", "new_york", "overlap", "other"]
SETUP_REMINDER = (
    "Remember to check: 1) Does this align with your strategy criteria? "
    "2) Is risk/reward favorable? 3) What's your emotional state? "
    "4) Is this a high-probability setup?"
)


def _date_range(
    ctx: AgentContext, start_date: str | None, end_date: str | None, default_days: int
) -> tuple[str, str]:
    end = end_date or ctx.now.date().isoformat()
    start = start_date or (date.fromisoformat(end) - timedelta(days=default_days)).isoformat()
    return start, end


def _in_range(records: List[Dict[str, Any]], start: str, end: str) -> List[Dict[str, Any]]:
    return [r for r in records if start <= r.get("date", "") <= end]


def _trades_on(trades: List[Dict[str, Any]], day: str) -> List[Dict[str, Any]]:
    return [t for t in trades if t.get("date") == day]


def _pnl(trades: List[Dict[str, Any]]) -> float:
    return round(sum(float(t.get("pnl") or 0) for t in trades), 2)


def performance_stats(trades: List[Dict[str, Any]]) -> Dict[str, Any]:
    """P&L, win rate and extremes over a list of trade records."""
    pnls = [float(t.get("pnl") or 0) for t in trades]
    wins = sum(p > 0 for p in pnls)
    losses = sum(p < 0 for p in pnls)
    pnl_by_day: Dict[str, float] = {}
    for trade, pnl in zip(trades, pnls):
        day = trade.get("date", "")
        pnl_by_day[day] = round(pnl_by_day.get(day, 0.0) + pnl, 2)
    return {
        "totalTrades": len(trades),
        "wins": wins,
        "losses": losses,
        "winRate": round(wins / len(trades) * 100) if trades else 0,
        "totalPnl": round(sum(pnls), 2),
        "largestWin": max([p for p in pnls if p > 0], default=0),
        "largestLoss": min([p for p in pnls if p < 0], default=0),
        "pnlByDay": pnl_by_day,
    }


def build_trading_registry(store: RecordStore) -> ToolRegistry:
    """Register the trading tools against *store*; records are scoped to the user."""
    registry = ToolRegistry("trading")

    @registry.tool(
        "get_trading_summary",
        "Get a summary of trading activity including strategies, recent checklists and journal",
        {"type": "object", "properties": {}, "required": []},
    )
    async def get_trading_summary(ctx: AgentContext) -> str:
        today = ctx.now.date().isoformat()
        week_ago = (ctx.now.date() - timedelta(days=7)).isoformat()
        strategies = await store.list_records("strategy", ctx.user_id)
        checklists = await store.list_records("checklist", ctx.user_id)
        trades = await store.list_records("trade", ctx.user_id)
        sessions = await store.list_records("journal_session", ctx.user_id)

        week_trades = _in_range(trades, week_ago, today)
        week_stats = performance_stats(week_trades)
        today_checklist = next((c for c in checklists if c.get("date") == today), None)
        return json.dumps(
            {
                "activeStrategies": [
                    {"id": s["id"], "name": s.get("name")}
                    for s in strategies
                    if s.get("is_active", True)
                ],
                "weeklyStats": {
                    "tradingDays": len(_in_range(checklists, week_ago, today)),
                    "totalTrades": week_stats["totalTrades"],
                    "totalPnl": week_stats["totalPnl"],
                    "winRate": week_stats["winRate"],
                },
                "todayStatus": {
                    "hasChecklist": today_checklist is not None,
                    "checklistStrategy": (today_checklist or {}).get("strategy_name"),
                    "tradesLogged": len(_trades_on(trades, today)),
                    "journalSessions": sum(s.get("date") == today for s in sessions),
                },
            }
        )

    @registry.tool(
        "get_trading_strategies",
        "Get all trading strategies with their configuration",
        {
            "type": "object",
            "properties": {
                "active_only": {
                    "type": "boolean",
                    "description": "Only return active strategies (default true)",
                }
            },
        },
    )
    async def get_trading_strategies(ctx: AgentContext, active_only: bool = True) -> str:
        strategies = await store.list_records("strategy", ctx.user_id)
        if active_only:
            strategies = [s for s in strategies if s.get("is_active", True)]
        keys = ("id", "name", "description", "is_active", "is_default")
        return json.dumps(
            [
                {**{k: s.get(k) for k in keys}, "sectionCount": len(s.get("sections") or [])}
                for s in strategies
            ]
        )

    @registry.tool(
        "get_strategy_details",
        "Get a trading strategy with all of its checklist sections",
        {
            "type": "object",
            "properties": {
                "strategy_id": {"type": "string", "description": "The strategy ID"},
                "strategy_name": {"type": "string", "description": "Or search by strategy name"},
            },
        },
    )
    async def get_strategy_details(
        ctx: AgentContext, strategy_id: str | None = None, strategy_name: str | None = None
    ) -> str:
        strategy = None
        if strategy_id:
            strategy = await store.get_record("strategy", strategy_id)
            if strategy is not None and strategy.get("scope_id") != ctx.user_id:
                strategy = None
        elif strategy_name:
            strategy = next(
                (
                    s
                    for s in await store.list_records("strategy", ctx.user_id)
                    if s.get("is_active", True)
                    and strategy_name.lower() in s.get("name", "").lower()
                ),
                None,
            )
        if strategy is None:
            return "Strategy not found"
        sections = [
            {
                "name": section.get("name"),
                "description": section.get("description"),
                "itemCount": len(section.get("items") or []),
                "items": [
                    {k: item.get(k) for k in ("id", "label", "type", "required")}
                    for item in section.get("items") or []
                ],
            }
            for section in strategy.get("sections") or []
        ]
        keys = ("id", "name", "description", "is_active", "is_default")
        return json.dumps({**{k: strategy.get(k) for k in keys}, "sections": sections})

    @registry.tool(
        "get_today_checklist",
        "Get today's trading checklist progress and completed items",
        {"type": "object", "properties": {}, "required": []},
    )
    async def get_today_checklist(ctx: AgentContext) -> str:
        today = ctx.now.date().isoformat()
        checklists = await store.list_records("checklist", ctx.user_id)
        checklist = next((c for c in checklists if c.get("date") == today), None)
        if checklist is None:
            return json.dumps({"hasChecklist": False, "message": "No checklist started for today"})
        trades = _trades_on(await store.list_records("trade", ctx.user_id), today)
        return json.dumps(
            {
                "hasChecklist": True,
                "id": checklist["id"],
                "date": checklist["date"],
                "strategy": checklist.get("strategy_name"),
                "instrument": checklist.get("instrument"),
                "completedItems": len(checklist.get("values") or {}),
                "trades": trades,
                "endOfSessionReview": checklist.get("end_of_session_review"),
            }
        )

    @registry.tool(
        "get_recent_checklists",
        "Get recent daily trading checklists with their completion status and trades",
        {
            "type": "object",
            "properties": {
                "limit": {"type": "integer", "description": "How many checklists (default 7)"},
            },
        },
    )
    async def get_recent_checklists(ctx: AgentContext, limit: int = 7) -> str:
        checklists = await store.list_records("checklist", ctx.user_id)
        checklists.sort(key=lambda c: c.get("date", ""), reverse=True)
        trades = await store.list_records("trade", ctx.user_id)
        recent = []
        for checklist in checklists[:limit]:
            day_trades = _trades_on(trades, checklist.get("date", ""))
            recent.append(
                {
                    "id": checklist["id"],
                    "date": checklist.get("date"),
                    "strategy": checklist.get("strategy_name"),
                    "instrument": checklist.get("instrument"),
                    "tradesCount": len(day_trades),
                    "totalPnl": _pnl(day_trades),
                    "hasReview": bool(checklist.get("end_of_session_review")),
                }
            )
        return json.dumps(recent)

    @registry.tool(
        "get_trading_journal",
        "Get trading journal sessions for a date range",
        {
            "type": "object",
            "properties": {
                "start_date": {"type": "string", "description": "YYYY-MM-DD, defaults to 7 days ago"},
                "end_date": {"type": "string", "description": "YYYY-MM-DD, defaults to today"},
            },
        },
    )
    async def get_trading_journal(
        ctx: AgentContext, start_date: str | None = None, end_date: str | None = None
    ) -> str:
        start, end = _date_range(ctx, start_date, end_date, default_days=7)
        sessions = _in_range(await store.list_records("journal_session", ctx.user_id), start, end)
        if not sessions:
            return f"No journal sessions between {start} and {end}"
        return json.dumps(sessions)

    @registry.tool(
        "analyze_trading_performance",
        "Analyze trading performance metrics including P&L, win rate and largest win/loss",
    )
    async def analyze_trading_performance(
        ctx: AgentContext, start_date: str | None = None, end_date: str | None = None
    ) -> str:
        start, end = _date_range(ctx, start_date, end_date, default_days=30)
        trades = _in_range(await store.list_records("trade", ctx.user_id), start, end)
        return json.dumps({"period": {"start": start, "end": end}, **performance_stats(trades)})

    @registry.tool(
        "get_trading_docs",
        "Search trading documents, SOPs and strategy playbooks",
        {
            "type": "object",
            "properties": {"query": {"type": "string", "description": "Search query"}},
        },
    )
    async def get_trading_docs(ctx: AgentContext, query: str | None = None) -> str:
        docs = await store.list_records("doc", ctx.user_id)
        if query:
            needle = query.lower()
            docs = [
                d
                for d in docs
                if needle in " ".join(
                    [d.get("title", ""), d.get("body") or "", " ".join(d.get("tags") or [])]
                ).lower()
            ]
        return json.dumps(
            [
                {
                    "id": d["id"],
                    "title": d.get("title"),
                    "type": d.get("type"),
                    "excerpt": (d.get("body") or "")[:200],
                }
                for d in docs[:10]
            ]
        )

    @registry.tool(
        "evaluate_setup",
        "Evaluate a potential trade setup against strategy criteria",
        {
            "type": "object",
            "properties": {
                "instrument": {"type": "string"},
                "direction": {"type": "string", "enum": ["long", "short"]},
                "setup": {"type": "string", "description": "Setup type"},
                "timeframe": {"type": "string", "description": "Chart timeframe"},
                "notes": {"type": "string"},
            },
            "required": ["instrument", "direction", "setup"],
        },
    )
    async def evaluate_setup(
        ctx: AgentContext,
        instrument: str,
        direction: str,
        setup: str,
        timeframe: str | None = None,
        notes: str | None = None,
    ) -> str:
        strategies = await store.list_records("strategy", ctx.user_id)
        default = next((s for s in strategies if s.get("is_default")), None)
        return json.dumps(
            {
                "setup": {
                    "instrument": instrument,
                    "direction": direction,
                    "type": setup,
                    "timeframe": timeframe,
                    "notes": notes,
                },
                "strategy": (
                    {
                        "name": default.get("name"),
                        "sections": [s.get("name") for s in default.get("sections") or []],
                    }
                    if default
                    else None
                ),
                "reminder": SETUP_REMINDER,
            }
        )

    @registry.tool(
        "log_trade",
        "Log a trade to today's journal",
        {
            "type": "object",
            "properties": {
                "instrument": {"type": "string", "description": "e.g. EURUSD, BTCUSD"},
                "direction": {"type": "string", "enum": ["long", "short"]},
                "entry_price": {"type": "number"},
                "exit_price": {"type": "number"},
                "stop_loss": {"type": "number"},
                "take_profit": {"type": "number"},
                "pnl": {"type": "number", "description": "Profit/loss amount"},
                "notes": {"type": "string"},
            },
            "required": ["instrument", "direction", "entry_price"],
        },
    )
    async def log_trade(
        ctx: AgentContext,
        instrument: str,
        direction: str,
        entry_price: float,
        exit_price: float | None = None,
        stop_loss: float | None = None,
        take_profit: float | None = None,
        pnl: float | None = None,
        notes: str | None = None,
    ) -> ToolOutput:
        if direction not in ("long", "short"):
            raise ValueError(f"direction must be 'long' or 'short', got {direction!r}")
        params = {
            k: v
            for k, v in {
                "instrument": instrument,
                "direction": direction,
                "entry_price": entry_price,
                "exit_price": exit_price,
                "stop_loss": stop_loss,
                "take_profit": take_profit,
                "pnl": pnl,
                "notes": notes,
            }.items()
            if v is not None
        }
        trade = await store.create_record(
            "trade", ctx.user_id, {**params, "date": ctx.now.date().isoformat()}
        )
        return ToolOutput(
            text=f"Logged {direction} {instrument} @ {entry_price} (ID: {trade['id']})",
            action=AgentAction(
                action="log_trade", entity_type="trade", entity_id=trade["id"], parameters=params
            ),
        )

    @registry.tool(
        "add_journal_session",
        "Add a trading session entry to today's journal",
        {
            "type": "object",
            "properties": {
                "session": {"type": "string", "enum": SESSIONS},
                "mood": {"type": "string"},
                "notes": {"type": "string"},
                "lessons": {"type": "string"},
            },
            "required": ["session"],
        },
    )
    async def add_journal_session(
        ctx: AgentContext,
        session: str,
        mood: str | None = None,
        notes: str | None = None,
        lessons: str | None = None,
    ) -> ToolOutput:
        params = {"session": session, "mood": mood, "notes": notes, "lessons": lessons}
        params = {k: v for k, v in params.items() if v is not None}
        entry = await store.create_record(
            "journal_session", ctx.user_id, {**params, "date": ctx.now.date().isoformat()}
        )
        return ToolOutput(
            text=f"Added {session} session to today's journal",
            action=AgentAction(
                action="add_journal_session",
                entity_type="journal_session",
                entity_id=entry["id"],
                parameters=params,
            ),
        )

    return registry
