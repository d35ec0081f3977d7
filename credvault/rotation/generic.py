"""Rotation for generic secrets: vault bookkeeping only."""

from __future__ import annotations

from typing import Any

from credvault.rotation.base import RotationStrategy


class GenericStrategy(RotationStrategy):
    """Replaces ``value`` with a fresh random string; no external target."""

    def create_secret(self, secret_id: str, token: str, current: dict[str, Any]) -> None:
        pending = {**current, "value": self._random_password(exclude_punctuation=False)}
        self._store_pending(secret_id, token, pending)

    def set_secret(
        self,
        secret_id: str,
        token: str,
        pending: dict[str, Any],
        current: dict[str, Any],
    ) -> None:
        return None

    def test_secret(self, secret_id: str, token: str, pending: dict[str, Any]) -> None:
        return None
