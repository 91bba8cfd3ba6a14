"""
store/domain_store.py — Domain Store contract + in-memory implementation

The orchestrator only ever talks to a DomainStore through six async calls:

    create(kind, fields) -> entity
    update(kind, id, fields) -> entity
    replace(kind, id, row) -> entity      (whole-row overwrite, used by undo)
    delete(kind, id) -> None
    list(kind, filter=None) -> [entity]
    get(kind, id) -> entity

Entities are plain dicts with at least an "id". create() honours a
supplied "id" so a deleted row can be restored under its original id.
Missing rows raise EntityNotFoundError.
"""

from __future__ import annotations

import asyncio
import copy
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import yaml

from exceptions import EntityNotFoundError
from observability.logger import get_logger
from tools.types import EntityKind

log = get_logger(__name__)


class DomainStore(ABC):
    """Abstract CRUD contract over the business-operations entities."""

    @abstractmethod
    async def create(self, kind: EntityKind, fields: dict[str, Any]) -> dict[str, Any]:
        ...

    @abstractmethod
    async def update(self, kind: EntityKind, entity_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        ...

    @abstractmethod
    async def replace(self, kind: EntityKind, entity_id: str, row: dict[str, Any]) -> dict[str, Any]:
        """Overwrite the whole row: fields missing from `row` are removed."""
        ...

    @abstractmethod
    async def delete(self, kind: EntityKind, entity_id: str) -> None:
        ...

    @abstractmethod
    async def list(
        self, kind: EntityKind, filter: Optional[dict[str, Any]] = None
    ) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    async def get(self, kind: EntityKind, entity_id: str) -> dict[str, Any]:
        ...


class InMemoryDomainStore(DomainStore):
    """
    Dict-backed DomainStore for the CLI and for tests.

    Every call returns copies so callers can't mutate stored rows. A single
    asyncio.Lock makes each call atomic with respect to the others.
    """

    def __init__(self, seed: Optional[dict[EntityKind, list[dict[str, Any]]]] = None):
        self._rows: dict[EntityKind, dict[str, dict[str, Any]]] = {k: {} for k in EntityKind}
        self._lock = asyncio.Lock()
        for kind, rows in (seed or {}).items():
            for row in rows:
                row = dict(row)
                row.setdefault("id", str(uuid.uuid4()))
                row.setdefault("created_at", _now_iso())
                self._rows[EntityKind(kind)][row["id"]] = row

    async def create(self, kind: EntityKind, fields: dict[str, Any]) -> dict[str, Any]:
        async with self._lock:
            table = self._rows[EntityKind(kind)]
            row = dict(fields)
            row["id"] = row.get("id") or str(uuid.uuid4())
            row.setdefault("created_at", _now_iso())
            table[row["id"]] = row
            log.debug("store.created", kind=EntityKind(kind).value, id=row["id"])
            return copy.deepcopy(row)

    async def update(self, kind: EntityKind, entity_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        async with self._lock:
            row = self._require(kind, entity_id)
            row.update({k: v for k, v in fields.items() if k != "id"})
            return copy.deepcopy(row)

    async def replace(self, kind: EntityKind, entity_id: str, row: dict[str, Any]) -> dict[str, Any]:
        async with self._lock:
            self._require(kind, entity_id)
            new_row = {**row, "id": entity_id}
            self._rows[EntityKind(kind)][entity_id] = new_row
            return copy.deepcopy(new_row)

    async def delete(self, kind: EntityKind, entity_id: str) -> None:
        async with self._lock:
            self._require(kind, entity_id)
            del self._rows[EntityKind(kind)][entity_id]
            log.debug("store.deleted", kind=EntityKind(kind).value, id=entity_id)

    async def list(
        self, kind: EntityKind, filter: Optional[dict[str, Any]] = None
    ) -> list[dict[str, Any]]:
        async with self._lock:
            rows = list(self._rows[EntityKind(kind)].values())
        if filter:
            rows = [r for r in rows if all(r.get(k) == v for k, v in filter.items())]
        return copy.deepcopy(rows)

    async def get(self, kind: EntityKind, entity_id: str) -> dict[str, Any]:
        async with self._lock:
            return copy.deepcopy(self._require(kind, entity_id))

    def _require(self, kind: EntityKind, entity_id: str) -> dict[str, Any]:
        row = self._rows[EntityKind(kind)].get(entity_id)
        if row is None:
            raise EntityNotFoundError(EntityKind(kind).value, entity_id)
        return row


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


_SEED_KEYS = {
    "tasks": EntityKind.TASK,
    "projects": EntityKind.PROJECT,
    "contractors": EntityKind.CONTRACTOR,
    "team": EntityKind.CONTRACTOR,
    "sops": EntityKind.SOP,
    "knowledge": EntityKind.SOP,
}


def load_seed(path: str | Path) -> dict[EntityKind, list[dict[str, Any]]]:
    """
    Read seed rows for InMemoryDomainStore from a YAML file:

        projects:
          - {id: p1, name: Acme, status: ACTIVE}
        contractors:
          - {id: c1, name: Ana, role: Designer}
    """
    with Path(path).open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    seed: dict[EntityKind, list[dict[str, Any]]] = {}
    for key, rows in raw.items():
        kind = _SEED_KEYS.get(str(key).lower())
        if kind is None:
            log.warning("store.seed_unknown_section", section=key)
            continue
        seed.setdefault(kind, []).extend(dict(r) for r in rows or [])
    return seed
