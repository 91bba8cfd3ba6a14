"""
tools/domain_actions.py — Domain Action Handlers

One async handler per ActionKind, bound to a DomainStore. Each handler takes
an ActionRequest and returns an ActionResult; store errors are left to
propagate so the ToolBus turns them into failed results.

Successful mutations attach an UndoDescriptor:
  - CREATE_*  → DELETE_CREATED {id}
  - UPDATE_*  → RESTORE with the row as it was before the update
  - DELETE_*  → RESTORE (deleted=True) with the full deleted row

OPEN_* actions attach a navigation hint instead.

Registered kinds:
  CREATE/UPDATE/DELETE_TASK, CREATE/UPDATE/DELETE_PROJECT,
  QUERY_DATABASE, SEND_PORTAL_MESSAGE, OPEN_PROJECT, OPEN_TASK
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from exceptions import ActionExecutionError
from observability.logger import get_logger
from store.domain_store import DomainStore
from tools.tool_registry import ToolRegistry
from tools.types import (
    ActionKind,
    ActionRequest,
    ActionResult,
    EntityKind,
    Priority,
    ProjectStatus,
    TaskStatus,
    UndoDescriptor,
    UndoKind,
)

log = get_logger(__name__)

DEFAULT_QUERY_LIMIT = 50

_TABLES = {
    "projects": EntityKind.PROJECT,
    "project": EntityKind.PROJECT,
    "tasks": EntityKind.TASK,
    "task": EntityKind.TASK,
    "contractors": EntityKind.CONTRACTOR,
    "contractor": EntityKind.CONTRACTOR,
}


class DomainActions:
    """Action handlers over one DomainStore."""

    def __init__(self, store: DomainStore):
        self.store = store

    # ── Tasks ─────────────────────────────────────────────────────────────────

    async def create_task(self, request: ActionRequest) -> ActionResult:
        fields = {
            "status": TaskStatus.TODO.value,
            "priority": Priority.MEDIUM.value,
            **request.payload,
        }
        task = await self.store.create(EntityKind.TASK, fields)
        return ActionResult.ok(
            request.kind,
            f"Task created: {task['title']}",
            data=task,
            undo=UndoDescriptor(
                kind=UndoKind.DELETE_CREATED,
                entity=EntityKind.TASK,
                data={"id": task["id"]},
                description=f"Delete created task '{task['title']}'",
            ),
        )

    async def update_task(self, request: ActionRequest) -> ActionResult:
        return await self._update(request, EntityKind.TASK, "title", "Task")

    async def delete_task(self, request: ActionRequest) -> ActionResult:
        return await self._delete(request, EntityKind.TASK, "title", "Task")

    # ── Projects ──────────────────────────────────────────────────────────────

    async def create_project(self, request: ActionRequest) -> ActionResult:
        fields = {
            "status": ProjectStatus.ONBOARDING.value,
            "monthlyRevenue": 0,
            "billingDay": 1,
            **request.payload,
        }
        project = await self.store.create(EntityKind.PROJECT, fields)
        return ActionResult.ok(
            request.kind,
            f"Project created: {project['name']}",
            data=project,
            undo=UndoDescriptor(
                kind=UndoKind.DELETE_CREATED,
                entity=EntityKind.PROJECT,
                data={"id": project["id"]},
                description=f"Delete created project '{project['name']}'",
            ),
        )

    async def update_project(self, request: ActionRequest) -> ActionResult:
        return await self._update(request, EntityKind.PROJECT, "name", "Project")

    async def delete_project(self, request: ActionRequest) -> ActionResult:
        return await self._delete(request, EntityKind.PROJECT, "name", "Project")

    # ── Queries / messaging / navigation ──────────────────────────────────────

    async def query_database(self, request: ActionRequest) -> ActionResult:
        table = str(request.payload.get("table", "")).lower()
        entity = _TABLES.get(table)
        if entity is None:
            raise ActionExecutionError(f"Unknown table: {table}")

        rows = await self.store.list(entity)
        flt = request.payload.get("filter") or {}
        if flt.get("status"):
            rows = [r for r in rows if r.get("status") == flt["status"]]
        if flt.get("overdue"):
            now = datetime.now(timezone.utc)
            rows = [r for r in rows if _is_overdue(r.get("dueDate"), now)]
        limit = request.payload.get("limit") or DEFAULT_QUERY_LIMIT
        rows = rows[:limit]

        log.debug("domain_actions.query", table=table, rows=len(rows))
        return ActionResult.ok(request.kind, f"Found {len(rows)} {table}", data=rows)

    async def send_portal_message(self, request: ActionRequest) -> ActionResult:
        project = await self.store.get(EntityKind.PROJECT, request.payload["projectId"])
        message = await self.store.create(
            EntityKind.PORTAL_MESSAGE,
            {
                "projectId": project["id"],
                "content": request.payload["content"],
                "sender": "agency",
            },
        )
        return ActionResult.ok(
            request.kind,
            f"Message sent to {project.get('name', project['id'])}",
            data=message,
        )

    async def open_project(self, request: ActionRequest) -> ActionResult:
        project = await self.store.get(EntityKind.PROJECT, request.ref_id)
        return ActionResult.ok(
            request.kind,
            f"Opening {project.get('name', project['id'])}",
            data={"id": project["id"]},
            navigate=f"/projects/{project['id']}",
        )

    async def open_task(self, request: ActionRequest) -> ActionResult:
        task = await self.store.get(EntityKind.TASK, request.ref_id)
        return ActionResult.ok(
            request.kind,
            f"Opening {task.get('title', task['id'])}",
            data={"id": task["id"]},
            navigate=f"/tasks?highlight={task['id']}",
        )

    # ── Shared update/delete ──────────────────────────────────────────────────

    async def _update(
        self, request: ActionRequest, entity: EntityKind, name_field: str, noun: str
    ) -> ActionResult:
        before = await self.store.get(entity, request.ref_id)
        after = await self.store.update(entity, request.ref_id, request.payload)
        name = after.get(name_field, request.ref_id)
        return ActionResult.ok(
            request.kind,
            f"{noun} updated: {name}",
            data=after,
            undo=UndoDescriptor(
                kind=UndoKind.RESTORE,
                entity=entity,
                data=before,
                description=f"Restore {noun.lower()} '{before.get(name_field, request.ref_id)}'",
            ),
        )

    async def _delete(
        self, request: ActionRequest, entity: EntityKind, name_field: str, noun: str
    ) -> ActionResult:
        before = await self.store.get(entity, request.ref_id)
        await self.store.delete(entity, request.ref_id)
        name = before.get(name_field, request.ref_id)
        return ActionResult.ok(
            request.kind,
            f"{noun} deleted: {name}",
            data={"id": request.ref_id},
            undo=UndoDescriptor(
                kind=UndoKind.RESTORE,
                entity=entity,
                data=before,
                deleted=True,
                description=f"Restore deleted {noun.lower()} '{name}'",
            ),
        )


def register_domain_actions(registry: ToolRegistry, store: DomainStore) -> DomainActions:
    """Bind every action kind in the contract to a handler over `store`."""
    actions = DomainActions(store)
    for kind in ActionKind:
        registry.register_tool(kind, getattr(actions, kind.value.lower()))
    return actions


def _is_overdue(value: Any, now: datetime) -> bool:
    due = _parse_iso(value)
    return due is not None and due < now


def _parse_iso(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
