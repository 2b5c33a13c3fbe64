"""Venture agent tool catalog: projects, tasks, docs and inbox captures of one venture."""

import json
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

PROJECT_STATUSES = ["not_started", "planning", "in_progress", "blocked", "done", "archived"]
TASK_STATUSES = ["idea", "next", "in_progress", "waiting", "done", "cancelled"]
PRIORITIES = ["P0", "P1", "P2", "P3"]
DOC_TYPES = [
    "page", "sop", "prompt", "spec", "template", "playbook",
    "strategy", "tech_doc", "process", "reference", "meeting_notes", "research",
]  # fmt: skip
PENDING_TASK_STATUSES = {"next", "in_progress", "waiting"}


def _scope(ctx: AgentContext) -> str:
    if not ctx.scope_id:
        raise ValueError("venture tools need a venture id in the request context")
    return ctx.scope_id


def _action(name: str, entity_type: str, entity_id: str, parameters: Dict[str, Any]) -> AgentAction:
    return AgentAction(
        action=name, entity_type=entity_type, entity_id=entity_id, parameters=parameters
    )


def _compact(**fields: Any) -> Dict[str, Any]:
    return {k: v for k, v in fields.items() if v is not None}


async def _owned(
    store: RecordStore, kind: str, record_id: str, venture_id: str
) -> Dict[str, Any]:
    """Fetch a record of this venture; records of other ventures read as missing."""
    record = await store.get_record(kind, record_id)
    if record is None or record.get("scope_id") != venture_id:
        raise LookupError(f"{kind.capitalize()} not found: {record_id}")
    return record


async def _find(
    store: RecordStore,
    kind: str,
    venture_id: str,
    record_id: str | None,
    title: str | None,
    title_key: str,
) -> Dict[str, Any] | None:
    """Look a record up by id, or by a case-insensitive fragment of its title."""
    if record_id:
        try:
            return await _owned(store, kind, record_id, venture_id)
        except LookupError:
            return None
    if title:
        for record in await store.list_records(kind, venture_id):
            if title.lower() in str(record.get(title_key, "")).lower():
                return record
    return None


def build_venture_registry(store: RecordStore) -> ToolRegistry:
    """Register the venture tools against *store* and return the registry."""
    registry = ToolRegistry("venture")

    # ------------------------------------------------------------------ #
    # Read tools
    # ------------------------------------------------------------------ #
    @registry.tool(
        "get_venture_summary",
        "Get a comprehensive summary of the venture including status, projects, and key metrics",
        {"type": "object", "properties": {}, "required": []},
    )
    async def get_venture_summary(ctx: AgentContext) -> str:
        venture_id = _scope(ctx)
        projects = await store.list_records("project", venture_id)
        tasks = await store.list_records("task", venture_id)
        docs = await store.list_records("doc", venture_id)
        return json.dumps(
            {
                "venture": {
                    "name": ctx.scope_name,
                    "status": ctx.attributes.get("status"),
                    "oneLiner": ctx.attributes.get("one_liner"),
                },
                "metrics": {
                    "totalProjects": len(projects),
                    "activeProjects": sum(p.get("status") == "in_progress" for p in projects),
                    "totalTasks": len(tasks),
                    "pendingTasks": sum(t.get("status") in PENDING_TASK_STATUSES for t in tasks),
                    "completedTasks": sum(t.get("status") == "done" for t in tasks),
                    "documents": len(docs),
                },
                "latestTasks": [{"title": t["title"], "status": t.get("status")} for t in tasks[:5]],
            }
        )

    @registry.tool(
        "list_projects",
        "List all projects in this venture with their status and progress",
        {
            "type": "object",
            "properties": {
                "status": {
                    "type": "string",
                    "enum": PROJECT_STATUSES,
                    "description": "Filter projects by status",
                }
            },
        },
    )
    async def list_projects(ctx: AgentContext, status: str | None = None) -> str:
        projects = await store.list_records("project", _scope(ctx))
        if status:
            projects = [p for p in projects if p.get("status") == status]
        keys = ("id", "name", "status", "priority", "category", "outcome", "target_end_date")
        return json.dumps([{k: p.get(k) for k in keys} for p in projects])

    @registry.tool(
        "get_project_details",
        "Get detailed information about a specific project including milestones and tasks",
        {
            "type": "object",
            "properties": {
                "project_id": {"type": "string", "description": "The project ID"},
                "project_name": {"type": "string", "description": "Or search by project name"},
            },
        },
    )
    async def get_project_details(
        ctx: AgentContext, project_id: str | None = None, project_name: str | None = None
    ) -> str:
        venture_id = _scope(ctx)
        project = await _find(store, "project", venture_id, project_id, project_name, "name")
        if project is None:
            return "Project not found"
        milestones = [
            m
            for m in await store.list_records("milestone", venture_id)
            if m.get("project_id") == project["id"]
        ]
        tasks = [
            {k: t.get(k) for k in ("id", "title", "status", "priority")}
            for t in await store.list_records("task", venture_id)
            if t.get("project_id") == project["id"]
        ]
        return json.dumps({**project, "milestones": milestones, "tasks": tasks})

    @registry.tool(
        "list_tasks",
        "List tasks in this venture with optional filters",
        {
            "type": "object",
            "properties": {
                "status": {"type": "string", "enum": TASK_STATUSES},
                "priority": {"type": "string", "enum": PRIORITIES},
                "project_id": {"type": "string", "description": "Filter by project"},
                "limit": {
                    "type": "integer",
                    "description": "Maximum number of tasks to return (default 20)",
                },
            },
        },
    )
    async def list_tasks(
        ctx: AgentContext,
        status: str | None = None,
        priority: str | None = None,
        project_id: str | None = None,
        limit: int = 20,
    ) -> str:
        tasks = await store.list_records("task", _scope(ctx))
        if status:
            tasks = [t for t in tasks if t.get("status") == status]
        if priority:
            tasks = [t for t in tasks if t.get("priority") == priority]
        if project_id:
            tasks = [t for t in tasks if t.get("project_id") == project_id]
        keys = ("id", "title", "status", "priority", "project_id", "due_date")
        return json.dumps([{k: t.get(k) for k in keys} for t in tasks[:limit]])

    @registry.tool(
        "search_knowledge_base",
        "Search the venture's knowledge base (docs, SOPs, specs) for relevant information",
        {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Search query"},
                "doc_type": {"type": "string", "enum": DOC_TYPES},
            },
            "required": ["query"],
        },
    )
    async def search_knowledge_base(
        ctx: AgentContext, query: str, doc_type: str | None = None
    ) -> str:
        terms = [t for t in query.lower().split() if t]
        hits: List[Dict[str, Any]] = []
        for doc in await store.list_records("doc", _scope(ctx)):
            if doc_type and doc.get("type") != doc_type:
                continue
            haystack = f"{doc.get('title', '')} {doc.get('body', '')}".lower()
            score = sum(haystack.count(term) for term in terms)
            if score:
                hits.append({**doc, "_score": score})
        if not hits:
            return f'No documents found matching "{query}"'
        hits.sort(key=lambda d: d["_score"], reverse=True)
        return json.dumps(
            [
                {
                    "id": d["id"],
                    "title": d.get("title"),
                    "type": d.get("type"),
                    "excerpt": (d.get("body") or "")[:500],
                }
                for d in hits[:5]
            ]
        )

    @registry.tool(
        "get_document",
        "Get the full content of a specific document",
        {
            "type": "object",
            "properties": {
                "doc_id": {"type": "string", "description": "Document ID"},
                "doc_title": {"type": "string", "description": "Or search by document title"},
            },
        },
    )
    async def get_document(
        ctx: AgentContext, doc_id: str | None = None, doc_title: str | None = None
    ) -> str:
        doc = await _find(store, "doc", _scope(ctx), doc_id, doc_title, "title")
        if doc is None:
            return "Document not found"
        keys = ("id", "title", "type", "status", "body", "tags", "created_at")
        return json.dumps({k: doc.get(k) for k in keys})

    @registry.tool("list_captures", "List unclarified items in the venture's inbox")
    async def list_captures(ctx: AgentContext, limit: int = 10) -> str:
        captures = await store.list_records("capture", _scope(ctx))
        open_items = [c for c in captures if not c.get("clarified")][:limit]
        keys = ("id", "title", "type", "notes", "created_at")
        return json.dumps([{k: c.get(k) for k in keys} for c in open_items])

    # ------------------------------------------------------------------ #
    # Side-effecting tools
    # ------------------------------------------------------------------ #
    @registry.tool(
        "create_task",
        "Create a new task in this venture",
        {
            "type": "object",
            "properties": {
                "title": {"type": "string"},
                "notes": {"type": "string"},
                "priority": {"type": "string", "enum": PRIORITIES},
                "status": {"type": "string", "enum": TASK_STATUSES},
                "project_id": {"type": "string"},
                "due_date": {"type": "string", "description": "YYYY-MM-DD"},
            },
            "required": ["title"],
        },
    )
    async def create_task(
        ctx: AgentContext,
        title: str,
        notes: str | None = None,
        priority: str | None = None,
        status: str = "next",
        project_id: str | None = None,
        due_date: str | None = None,
    ) -> ToolOutput:
        venture_id = _scope(ctx)
        if project_id:
            await _owned(store, "project", project_id, venture_id)
        params = _compact(
            title=title,
            notes=notes,
            priority=priority,
            status=status,
            project_id=project_id,
            due_date=due_date,
        )
        task = await store.create_record("task", venture_id, params)
        return ToolOutput(
            text=f'Created task: "{task["title"]}" (ID: {task["id"]})',
            action=_action("create_task", "task", task["id"], params),
        )

    @registry.tool(
        "update_task_status",
        "Update the status of an existing task",
        {
            "type": "object",
            "properties": {
                "task_id": {"type": "string"},
                "status": {"type": "string", "enum": TASK_STATUSES},
            },
            "required": ["task_id", "status"],
        },
    )
    async def update_task_status(ctx: AgentContext, task_id: str, status: str) -> ToolOutput:
        if status not in TASK_STATUSES:
            raise ValueError(f"Unknown task status: {status}")
        await _owned(store, "task", task_id, _scope(ctx))
        if await store.update_record("task", task_id, {"status": status}) is None:
            raise LookupError(f"Task not found: {task_id}")
        return ToolOutput(
            text=f'Updated task status to "{status}"',
            action=_action(
                "update_task_status", "task", task_id, {"task_id": task_id, "status": status}
            ),
        )

    @registry.tool(
        "create_document",
        "Create a document in the venture's knowledge base",
        {
            "type": "object",
            "properties": {
                "title": {"type": "string"},
                "body": {"type": "string", "description": "Markdown body"},
                "type": {"type": "string", "enum": DOC_TYPES},
                "project_id": {"type": "string"},
                "tags": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["title"],
        },
    )
    async def create_document(
        ctx: AgentContext,
        title: str,
        body: str = "",
        type: str = "page",  # pylint: disable=redefined-builtin
        project_id: str | None = None,
        tags: List[str] | None = None,
    ) -> ToolOutput:
        venture_id = _scope(ctx)
        if project_id:
            await _owned(store, "project", project_id, venture_id)
        fields = _compact(title=title, body=body, type=type, project_id=project_id)
        doc = await store.create_record(
            "doc", venture_id, {**fields, "tags": tags or [], "status": "active"}
        )
        return ToolOutput(
            text=f'Created document: "{doc["title"]}" (ID: {doc["id"]})',
            action=_action("create_doc", "doc", doc["id"], {"title": title, "type": type}),
        )

    @registry.tool(
        "create_project",
        "Create a new project in this venture",
        {
            "type": "object",
            "properties": {
                "name": {"type": "string"},
                "outcome": {"type": "string", "description": "Desired outcome"},
                "priority": {"type": "string", "enum": PRIORITIES},
                "category": {"type": "string"},
                "target_end_date": {"type": "string", "description": "YYYY-MM-DD"},
            },
            "required": ["name"],
        },
    )
    async def create_project(
        ctx: AgentContext,
        name: str,
        outcome: str | None = None,
        priority: str | None = None,
        category: str | None = None,
        target_end_date: str | None = None,
    ) -> ToolOutput:
        params = _compact(
            name=name,
            outcome=outcome,
            priority=priority,
            category=category,
            target_end_date=target_end_date,
        )
        project = await store.create_record(
            "project", _scope(ctx), {**params, "status": "not_started"}
        )
        return ToolOutput(
            text=f'Created project: "{project["name"]}" (ID: {project["id"]})',
            action=_action("create_project", "project", project["id"], params),
        )

    @registry.tool("create_milestone", "Add a milestone to a project")
    async def create_milestone(
        ctx: AgentContext,
        project_id: str,
        name: str,
        target_date: str | None = None,
        notes: str | None = None,
    ) -> ToolOutput:
        venture_id = _scope(ctx)
        await _owned(store, "project", project_id, venture_id)
        params = _compact(project_id=project_id, name=name, target_date=target_date, notes=notes)
        milestone = await store.create_record(
            "milestone", venture_id, {**params, "status": "not_started"}
        )
        return ToolOutput(
            text=f'Created milestone: "{milestone["name"]}" (ID: {milestone["id"]})',
            action=_action("create_milestone", "milestone", milestone["id"], params),
        )

    @registry.tool("create_capture", "Add an item to the venture's inbox for later triage")
    async def create_capture(
        ctx: AgentContext,
        title: str,
        type: str = "note",  # pylint: disable=redefined-builtin
        notes: str | None = None,
    ) -> ToolOutput:
        params = _compact(title=title, type=type, notes=notes)
        capture = await store.create_record("capture", _scope(ctx), {**params, "clarified": False})
        return ToolOutput(
            text=f'Added to inbox: "{capture["title"]}" (ID: {capture["id"]})',
            action=_action("create_capture", "capture", capture["id"], params),
        )

    return registry
