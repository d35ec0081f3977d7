"""Credvault CLI: manage secrets and rotation functions from the shell.

State (scopes and secret metadata) lives in JSON files under
``--state-dir``; secret values live in the vault.

Usage examples::

    credvault scope add p1 --access-key-id AKIA... --secret-access-key ... --region us-east-1
    credvault deploy p1
    credvault create p1 db-1 --type RDS_CREDENTIALS --value '{"host": "db", "username": "app", "password": "pw"}' --rotation
    credvault get <secret-id> --with-value
    credvault rotate <secret-id>
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any, Callable

from pydantic import BaseModel, ValidationError

from credvault.base.cipher import FernetCipher
from credvault.base.exceptions import CredvaultError
from credvault.base.models import BackendScopeConfig, RotationRule, SecretType, StorageMode
from credvault.base.store import JsonFileScopeConfigStore, JsonFileSecretRecordStore
from credvault.coordinator import ConsistencyCoordinator
from credvault.deployment import DeploymentStateMachine
from credvault.factory import scope_vault_client


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="credvault",
        description="Secret lifecycle and rotation CLI",
    )
    parser.add_argument(
        "--state-dir",
        default=os.environ.get("CREDVAULT_STATE_DIR", ".credvault"),
        help="Directory holding scopes.json and secrets.json",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    scope = sub.add_parser("scope", help="Manage backend scopes")
    scope_sub = scope.add_subparsers(dest="scope_command", required=True)
    add = scope_sub.add_parser("add", help="Register or replace a scope")
    add.add_argument("scope_id")
    add.add_argument("--name", default="")
    add.add_argument("--access-key-id")
    add.add_argument("--secret-access-key")
    add.add_argument("--region")
    show = scope_sub.add_parser("show", help="Show a scope and its deployment status")
    show.add_argument("scope_id")

    create = sub.add_parser("create", help="Create a secret")
    create.add_argument("scope_id")
    create.add_argument("name")
    create.add_argument("--type", required=True, choices=[t.value for t in SecretType])
    create.add_argument("--value", required=True, help="JSON object")
    create.add_argument("--description")
    create.add_argument("--region")
    create.add_argument("--local", action="store_true", help="Store encrypted in local metadata")
    create.add_argument("--rotation", action="store_true", help="Enable automatic rotation")
    create.add_argument("--rotation-days", type=int)
    create.add_argument("--schedule", help="Rotation schedule expression, e.g. 'rate(10 days)'")

    lst = sub.add_parser("list", help="List secrets of a scope")
    lst.add_argument("scope_id")

    get = sub.add_parser("get", help="Show a secret")
    get.add_argument("secret_id")
    get.add_argument("--with-value", action="store_true", help="Include the live value")

    update = sub.add_parser("update", help="Update value and/or description")
    update.add_argument("secret_id")
    update.add_argument("--value", help="JSON object")
    update.add_argument("--description")

    delete = sub.add_parser("delete", help="Delete a secret")
    delete.add_argument("secret_id")
    delete.add_argument("--force", action="store_true", help="Skip the recovery window")

    rotate = sub.add_parser("rotate", help="Rotate a secret now")
    rotate.add_argument("secret_id")

    for name, text in (("deploy", "Deploy the rotation function"), ("remove", "Remove the rotation function")):
        p = sub.add_parser(name, help=text)
        p.add_argument("scope_id")

    return parser


def _json_arg(raw: str, option: str) -> dict[str, Any]:
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise CredvaultError(f"Invalid {option} JSON: {e}") from e
    if not isinstance(value, dict):
        raise CredvaultError(f"{option} must be a JSON object")
    return value


def _emit(result: Any) -> None:
    if isinstance(result, BaseModel):
        print(result.model_dump_json(indent=2))
    elif isinstance(result, list):
        print(json.dumps([r.model_dump(mode="json") for r in result], indent=2))
    elif isinstance(result, dict):
        print(json.dumps(result, indent=2, default=str))
    else:
        print(result)


class _Context:
    """Stores and engines built from the state directory."""

    def __init__(self, state_dir: str) -> None:
        root = Path(state_dir)
        self.scopes = JsonFileScopeConfigStore(root / "scopes.json")
        self.records = JsonFileSecretRecordStore(root / "secrets.json")

    def coordinator(self) -> ConsistencyCoordinator:
        cipher = FernetCipher() if os.environ.get("CREDVAULT_ENCRYPTION_KEY") else None
        return ConsistencyCoordinator(
            self.records, self.scopes, client_factory=scope_vault_client, cipher=cipher
        )

    def deployments(self) -> DeploymentStateMachine:
        return DeploymentStateMachine(self.scopes)


def _scope(ctx: _Context, ns: argparse.Namespace) -> Any:
    if ns.scope_command == "show":
        return ctx.scopes.get(ns.scope_id)
    return ctx.scopes.add(
        BackendScopeConfig(
            scope_id=ns.scope_id,
            name=ns.name,
            access_key_id=ns.access_key_id,
            secret_access_key=ns.secret_access_key,
            region=ns.region,
        )
    )


def _create(ctx: _Context, ns: argparse.Namespace) -> Any:
    rule = None
    if ns.rotation and (ns.rotation_days or ns.schedule):
        rule = RotationRule(
            automatically_after_days=ns.rotation_days or 30,
            schedule_expression=ns.schedule,
        )
    return ctx.coordinator().create_secret(
        ns.scope_id,
        ns.name,
        SecretType(ns.type),
        _json_arg(ns.value, "--value"),
        description=ns.description,
        rotation_enabled=ns.rotation,
        rotation_rule=rule,
        region=ns.region,
        storage_mode=StorageMode.LOCAL if ns.local else StorageMode.REMOTE,
    )


def _get(ctx: _Context, ns: argparse.Namespace) -> Any:
    coordinator = ctx.coordinator()
    if ns.with_value:
        secret = coordinator.get_secret_with_value(ns.secret_id)
        return {**secret.model_dump(mode="json"), "secret_value": secret.secret_value}
    return coordinator.get_secret(ns.secret_id)


def _update(ctx: _Context, ns: argparse.Namespace) -> Any:
    value = _json_arg(ns.value, "--value") if ns.value is not None else None
    return ctx.coordinator().update_secret(ns.secret_id, value=value, description=ns.description)


def _transition(ctx: _Context, ns: argparse.Namespace) -> Any:
    machine = ctx.deployments()
    try:
        start = machine.deploy if ns.command == "deploy" else machine.remove
        accepted = start(ns.scope_id)
        print(accepted.message, file=sys.stderr)
        # The process owns the guard, so wait for the background run to finish.
        machine.join(ns.scope_id)
    finally:
        machine.shutdown(wait=True)
    return ctx.scopes.get(ns.scope_id)


_COMMANDS: dict[str, Callable[[_Context, argparse.Namespace], Any]] = {
    "scope": _scope,
    "create": _create,
    "list": lambda ctx, ns: ctx.coordinator().list_secrets(ns.scope_id),
    "get": _get,
    "update": _update,
    "delete": lambda ctx, ns: ctx.coordinator().delete_secret(ns.secret_id, force=ns.force),
    "rotate": lambda ctx, ns: ctx.coordinator().rotate_secret(ns.secret_id),
    "deploy": _transition,
    "remove": _transition,
}


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.

    Args:
        argv: Optional argument list (defaults to ``sys.argv``).
    """
    ns = _build_parser().parse_args(argv)

    try:
        result = _COMMANDS[ns.command](_Context(ns.state_dir), ns)
    except (CredvaultError, ValidationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    _emit(result)


if __name__ == "__main__":
    main()
