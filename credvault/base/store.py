"""
Local metadata persistence interfaces.

The real persistence engine lives outside this package; it only needs
to provide atomic unique-key enforcement on ``(scope_id, name)`` and
simple CRUD. The in-memory implementations here are thread-safe and back
the test suite; the JSON-file variants back the CLI.
"""

from __future__ import annotations

import json
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from credvault.base.exceptions import (
    DuplicateRecordError,
    RecordNotFoundError,
    ScopeNotFoundError,
    StoreError,
)
from credvault.base.models import BackendScopeConfig, Secret


class SecretRecordStore(ABC):
    """Persistence for :class:`Secret` metadata."""

    @abstractmethod
    def insert(self, secret: Secret) -> Secret:
        """Insert a record.

        Raises:
            DuplicateRecordError: If ``(scope_id, name)`` is already taken.
        """

    @abstractmethod
    def get(self, secret_id: str) -> Secret | None:
        """Return the record or ``None``."""

    @abstractmethod
    def find_by_name(self, scope_id: str, name: str) -> Secret | None:
        """Return the record named *name* in *scope_id* or ``None``."""

    @abstractmethod
    def list(self, scope_id: str) -> list[Secret]:
        """Return all records of a scope, newest first."""

    @abstractmethod
    def update(self, secret_id: str, **changes: Any) -> Secret:
        """Apply field changes and return the updated record.

        Raises:
            RecordNotFoundError: If the record does not exist.
        """

    @abstractmethod
    def delete(self, secret_id: str) -> Secret:
        """Delete and return the record.

        Raises:
            RecordNotFoundError: If the record does not exist.
        """


class ScopeConfigStore(ABC):
    """Persistence for :class:`BackendScopeConfig`."""

    @abstractmethod
    def get(self, scope_id: str) -> BackendScopeConfig:
        """Return the scope.

        Raises:
            ScopeNotFoundError: If the scope does not exist.
        """

    @abstractmethod
    def update(self, scope_id: str, **changes: Any) -> BackendScopeConfig:
        """Apply field changes and return the updated scope."""


class InMemorySecretRecordStore(SecretRecordStore):
    """Dict-backed store with an atomic uniqueness check on insert."""

    def __init__(self) -> None:
        self._records: dict[str, Secret] = {}
        self._lock = threading.Lock()

    def insert(self, secret: Secret) -> Secret:
        with self._lock:
            for existing in self._records.values():
                if existing.scope_id == secret.scope_id and existing.name == secret.name:
                    raise DuplicateRecordError(
                        f"Secret name '{secret.name}' already exists in scope '{secret.scope_id}'"
                    )
            self._records[secret.id] = secret.model_copy()
            return secret.model_copy()

    def get(self, secret_id: str) -> Secret | None:
        with self._lock:
            record = self._records.get(secret_id)
            return record.model_copy() if record else None

    def find_by_name(self, scope_id: str, name: str) -> Secret | None:
        with self._lock:
            for record in self._records.values():
                if record.scope_id == scope_id and record.name == name:
                    return record.model_copy()
        return None

    def list(self, scope_id: str) -> list[Secret]:
        with self._lock:
            records = [r.model_copy() for r in self._records.values() if r.scope_id == scope_id]
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    def update(self, secret_id: str, **changes: Any) -> Secret:
        with self._lock:
            record = self._records.get(secret_id)
            if record is None:
                raise RecordNotFoundError(f"Secret record '{secret_id}' not found")
            updated = record.model_copy(update=changes)
            self._records[secret_id] = updated
            return updated.model_copy()

    def delete(self, secret_id: str) -> Secret:
        with self._lock:
            record = self._records.pop(secret_id, None)
        if record is None:
            raise RecordNotFoundError(f"Secret record '{secret_id}' not found")
        return record


class InMemoryScopeConfigStore(ScopeConfigStore):
    """Dict-backed scope store."""

    def __init__(self, scopes: list[BackendScopeConfig] | None = None) -> None:
        self._scopes: dict[str, BackendScopeConfig] = {s.scope_id: s for s in scopes or []}
        self._lock = threading.Lock()

    def add(self, scope: BackendScopeConfig) -> BackendScopeConfig:
        with self._lock:
            self._scopes[scope.scope_id] = scope.model_copy()
        return scope

    def get(self, scope_id: str) -> BackendScopeConfig:
        with self._lock:
            scope = self._scopes.get(scope_id)
            if scope is None:
                raise ScopeNotFoundError(f"Scope not found: {scope_id}")
            return scope.model_copy()

    def update(self, scope_id: str, **changes: Any) -> BackendScopeConfig:
        with self._lock:
            scope = self._scopes.get(scope_id)
            if scope is None:
                raise ScopeNotFoundError(f"Scope not found: {scope_id}")
            updated = scope.model_copy(update=changes)
            self._scopes[scope_id] = updated
            return updated.model_copy()


class JsonFileSecretRecordStore(InMemorySecretRecordStore):
    """In-memory store persisted to a JSON file after every write.

    Used by the CLI so records survive between invocations. Not meant for
    several processes writing the same file.
    """

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self.path = Path(path)
        for item in _load_json(self.path):
            record = Secret.model_validate(item)
            self._records[record.id] = record

    def _save(self) -> None:
        with self._lock:
            items = [r.model_dump(mode="json") for r in self._records.values()]
        _dump_json(self.path, items)

    def insert(self, secret: Secret) -> Secret:
        record = super().insert(secret)
        self._save()
        return record

    def update(self, secret_id: str, **changes: Any) -> Secret:
        record = super().update(secret_id, **changes)
        self._save()
        return record

    def delete(self, secret_id: str) -> Secret:
        record = super().delete(secret_id)
        self._save()
        return record


class JsonFileScopeConfigStore(InMemoryScopeConfigStore):
    """Scope store persisted to a JSON file. Holds vault credentials in clear text."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        super().__init__([BackendScopeConfig.model_validate(i) for i in _load_json(self.path)])

    def _save(self) -> None:
        with self._lock:
            items = [s.model_dump(mode="json") for s in self._scopes.values()]
        _dump_json(self.path, items)

    def add(self, scope: BackendScopeConfig) -> BackendScopeConfig:
        added = super().add(scope)
        self._save()
        return added

    def update(self, scope_id: str, **changes: Any) -> BackendScopeConfig:
        updated = super().update(scope_id, **changes)
        self._save()
        return updated


def _load_json(path: Path) -> list[dict[str, Any]]:
    if not path.exists():
        return []
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise StoreError(f"State file {path} is not valid JSON: {e}") from e
    if not isinstance(data, list):
        raise StoreError(f"State file {path} must hold a JSON list")
    return data


def _dump_json(path: Path, items: list[dict[str, Any]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(items, indent=2))
    tmp.replace(path)
