"""Password rotation for database credentials.

The secret payload follows the usual RDS/DocumentDB layout::

    {"engine": "postgres", "host": "...", "port": 5432,
     "username": "app", "password": "...", "dbname": "app"}

``set_secret`` logs in with the CURRENT password and changes it to the
PENDING one; ``test_secret`` logs in with the PENDING password.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Any

import psycopg2
import pymysql
from psycopg2 import sql
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from credvault.base.exceptions import InvalidConfigurationError, TargetSystemError
from credvault.base.logger import cv_logger
from credvault.rotation.base import RotationStrategy

POSTGRES_ENGINES = frozenset({"postgres", "postgresql", "aurora-postgresql"})
MYSQL_ENGINES = frozenset({"mysql", "mariadb", "aurora", "aurora-mysql"})


def _require(payload: dict[str, Any], *keys: str) -> None:
    missing = [k for k in keys if not payload.get(k)]
    if missing:
        raise InvalidConfigurationError(f"Secret payload is missing: {', '.join(missing)}")


class PasswordRotationStrategy(RotationStrategy):
    """Shared flow for credentials rotated by changing a user's password."""

    def create_secret(self, secret_id: str, token: str, current: dict[str, Any]) -> None:
        _require(current, "username", "host")
        pending = {**current, "password": self._random_password()}
        self._store_pending(secret_id, token, pending)

    def set_secret(
        self,
        secret_id: str,
        token: str,
        pending: dict[str, Any],
        current: dict[str, Any],
    ) -> None:
        _require(pending, "password")
        self._change_password(current, pending["password"])
        cv_logger.info("Password changed on target", secret_id=secret_id, step="setSecret")

    def test_secret(self, secret_id: str, token: str, pending: dict[str, Any]) -> None:
        self._check_login(pending)
        cv_logger.info("Pending credential verified", secret_id=secret_id, step="testSecret")

    @abstractmethod
    def _change_password(self, current: dict[str, Any], new_password: str) -> None:
        """Change the user's password, authenticating with *current*."""

    @abstractmethod
    def _check_login(self, credentials: dict[str, Any]) -> None:
        """Open a connection with *credentials* and run a trivial check."""


class RdsCredentialsStrategy(PasswordRotationStrategy):
    """Relational databases: PostgreSQL via psycopg2, MySQL/MariaDB via PyMySQL.

    The engine comes from the payload's ``engine`` field (default postgres).
    """

    def _engine(self, payload: dict[str, Any]) -> str:
        engine = str(payload.get("engine") or "postgres").lower()
        if engine in POSTGRES_ENGINES:
            return "postgres"
        if engine in MYSQL_ENGINES:
            return "mysql"
        raise InvalidConfigurationError(f"Unsupported database engine: {engine}")

    def _change_password(self, current: dict[str, Any], new_password: str) -> None:
        if self._engine(current) == "postgres":
            self._postgres_change(current, new_password)
        else:
            self._mysql_change(current, new_password)

    def _check_login(self, credentials: dict[str, Any]) -> None:
        if self._engine(credentials) == "postgres":
            self._postgres_check(credentials)
        else:
            self._mysql_check(credentials)

    # --- PostgreSQL ---

    def _postgres_connect(self, creds: dict[str, Any]) -> Any:
        return psycopg2.connect(
            host=creds["host"],
            port=int(creds.get("port") or 5432),
            user=creds["username"],
            password=creds["password"],
            dbname=creds.get("dbname") or "postgres",
            sslmode=creds.get("sslmode", "require"),
            connect_timeout=self.settings.connect_timeout,
        )

    def _postgres_change(self, current: dict[str, Any], new_password: str) -> None:
        try:
            conn = self._postgres_connect(current)
            try:
                conn.autocommit = True
                with conn.cursor() as cur:
                    cur.execute(
                        sql.SQL("ALTER USER {} WITH PASSWORD %s").format(
                            sql.Identifier(current["username"])
                        ),
                        (new_password,),
                    )
            finally:
                conn.close()
        except psycopg2.Error as e:
            raise TargetSystemError(f"PostgreSQL password change failed: {e}") from e

    def _postgres_check(self, creds: dict[str, Any]) -> None:
        try:
            conn = self._postgres_connect(creds)
            try:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
                    cur.fetchone()
            finally:
                conn.close()
        except psycopg2.Error as e:
            raise TargetSystemError(f"PostgreSQL login with pending credential failed: {e}") from e

    # --- MySQL ---

    def _mysql_connect(self, creds: dict[str, Any]) -> Any:
        return pymysql.connect(
            host=creds["host"],
            port=int(creds.get("port") or 3306),
            user=creds["username"],
            password=creds["password"],
            database=creds.get("dbname"),
            connect_timeout=self.settings.connect_timeout,
        )

    def _mysql_change(self, current: dict[str, Any], new_password: str) -> None:
        try:
            conn = self._mysql_connect(current)
            try:
                with conn.cursor() as cur:
                    cur.execute(
                        "ALTER USER %s IDENTIFIED BY %s",
                        (current["username"], new_password),
                    )
                conn.commit()
            finally:
                conn.close()
        except pymysql.MySQLError as e:
            raise TargetSystemError(f"MySQL password change failed: {e}") from e

    def _mysql_check(self, creds: dict[str, Any]) -> None:
        try:
            conn = self._mysql_connect(creds)
            try:
                conn.ping(reconnect=False)
            finally:
                conn.close()
        except pymysql.MySQLError as e:
            raise TargetSystemError(f"MySQL login with pending credential failed: {e}") from e


class DocumentDbStrategy(PasswordRotationStrategy):
    """Document store (DocumentDB / MongoDB) via pymongo over TLS."""

    def _client(self, creds: dict[str, Any]) -> MongoClient:
        ca_file = self.settings.documentdb_ca_file
        options: dict[str, Any] = {
            "host": creds["host"],
            "port": int(creds.get("port") or 27017),
            "username": creds["username"],
            "password": creds["password"],
            "tls": True,
            "replicaSet": creds.get("replica_set", "rs0"),
            "readPreference": "secondaryPreferred",
            "retryWrites": False,
            "serverSelectionTimeoutMS": self.settings.connect_timeout * 1000,
        }
        if ca_file:
            options["tlsCAFile"] = ca_file
        else:
            options["tlsAllowInvalidCertificates"] = True
        return MongoClient(**options)

    def _change_password(self, current: dict[str, Any], new_password: str) -> None:
        try:
            client = self._client(current)
            try:
                db = client[current.get("dbname") or "admin"]
                db.command("updateUser", current["username"], pwd=new_password)
            finally:
                client.close()
        except PyMongoError as e:
            raise TargetSystemError(f"DocumentDB password change failed: {e}") from e

    def _check_login(self, credentials: dict[str, Any]) -> None:
        try:
            client = self._client(credentials)
            try:
                client.admin.command("ping")
            finally:
                client.close()
        except PyMongoError as e:
            raise TargetSystemError(f"DocumentDB login with pending credential failed: {e}") from e
