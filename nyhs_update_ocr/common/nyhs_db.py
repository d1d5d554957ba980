#!/usr/bin/env python3
"""
NYHS Database Module

Purpose:
- Configuration loading (config.yaml + environment)
- Database connection management for the Drupal/Islandora MySQL database
- Query helpers with list-parameter expansion ("IN (:ids[])")

Configuration:
Reads from environment variables or config.yaml:
  - NYHS_DB_HOST (default: from config or localhost)
  - NYHS_DB_USER (default: from config or drupal)
  - NYHS_DB_PASSWORD (required)
  - NYHS_DB_NAME (default: from config or drupal)
  - NYHS_DB_PORT (default: 3306)

Usage:
  from nyhs_update_ocr.common.nyhs_db import Database, get_connection

  db = Database.from_config()
  nids = db.fetch_col("SELECT nid FROM node WHERE nid IN (:nids[])", {"nids": [1, 2]})

Dependencies:
  pip install mysql-connector-python PyYAML
"""

from __future__ import annotations

import logging
import os
import re
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import mysql.connector
from mysql.connector import Error as MySQLError
import yaml

log = logging.getLogger(__name__)


class QueryExecutionError(RuntimeError):
    """A query could not be prepared or executed."""


# ============================================================================
# Configuration Loading
# ============================================================================

def find_repo_root() -> Path:
    # nyhs_update_ocr/common/ -> repo root is 2 levels up
    return Path(__file__).resolve().parents[2]


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load config.yaml (or config.example.yaml fallback).
    An explicit config_path wins over both.
    Returns the config dict.
    """
    if config_path:
        cfg_path = Path(config_path)
        if not cfg_path.is_file():
            raise FileNotFoundError(f"--config not found: {cfg_path}")
    else:
        repo_root = find_repo_root()
        cfg_path = repo_root / "config" / "config.yaml"
        if not cfg_path.is_file():
            cfg_path = repo_root / "config" / "config.example.yaml"

    if not cfg_path.is_file():
        raise FileNotFoundError("Neither config/config.yaml nor config/config.example.yaml found")

    with cfg_path.open("r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}

    if not isinstance(cfg, dict):
        raise ValueError(f"Config must be a dict: {cfg_path}")

    return cfg


def get_db_config(cfg: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Get database configuration from environment or config file.

    Priority: Environment variables > config.database.X > config.X > default

    Returns dict with keys: host, user, password, database, port
    """
    if cfg is None:
        cfg = load_config()
    db_cfg = cfg.get("database", {})
    if not isinstance(db_cfg, dict):
        db_cfg = {}

    def pick(env_key: str, cfg_key: str, default: str = "") -> str:
        val = os.environ.get(env_key)
        if val:
            return val.strip()

        val = db_cfg.get(cfg_key)
        if val is not None and str(val).strip():
            return str(val).strip()

        val = cfg.get(cfg_key)
        if isinstance(val, str) and val.strip():
            return val.strip()

        return default

    host = pick("NYHS_DB_HOST", "host", "localhost")
    user = pick("NYHS_DB_USER", "user", "drupal")
    password = pick("NYHS_DB_PASSWORD", "password", "")
    database = pick("NYHS_DB_NAME", "database", "drupal")
    port = pick("NYHS_DB_PORT", "port", "3306")

    if not password:
        raise ValueError(
            "Database password required. Set NYHS_DB_PASSWORD environment variable "
            "or database.password in config.yaml"
        )

    return {
        "host": host,
        "user": user,
        "password": password,
        "database": database,
        "port": int(port),
    }


@dataclass(frozen=True)
class OcrSettings:
    action: str = "extract_text_from_service_file"
    max_iterations: int = 64
    batch_time_limit: float = 1.0
    flags_root: Path = Path("flags")
    derivative_scheme: str = "private"
    derivative_path: str = "{year}-{month}/{nid}-Extracted Text.txt"
    derivative_args: str = ""
    derivative_queue: str = "islandora-connector-ocr"


def get_ocr_settings(cfg: Dict[str, Any]) -> OcrSettings:
    """
    Build OcrSettings from the `ocr:`, `derivatives:` and `paths:` blocks.

    The queue root is paths.flags_root, else paths.state_root/flags, else ./flags.
    """
    ocr = cfg.get("ocr") or {}
    deriv = cfg.get("derivatives") or {}
    paths = cfg.get("paths") or {}
    if not (isinstance(ocr, dict) and isinstance(deriv, dict) and isinstance(paths, dict)):
        raise ValueError("Config blocks ocr, derivatives and paths must be mappings")

    defaults = OcrSettings()

    flags_root = paths.get("flags_root")
    if not (isinstance(flags_root, str) and flags_root.strip()):
        state_root = paths.get("state_root")
        if isinstance(state_root, str) and state_root.strip():
            flags_root = str(Path(state_root.strip()) / "flags")
        else:
            flags_root = str(defaults.flags_root)

    max_iterations = int(ocr.get("max_iterations", defaults.max_iterations))
    if max_iterations < 1:
        raise ValueError("ocr.max_iterations must be an int >= 1")

    return OcrSettings(
        action=str(ocr.get("action", defaults.action)).strip(),
        max_iterations=max_iterations,
        batch_time_limit=float(ocr.get("batch_time_limit_seconds", defaults.batch_time_limit)),
        flags_root=Path(flags_root.strip()),
        derivative_scheme=str(deriv.get("scheme", defaults.derivative_scheme)),
        derivative_path=str(deriv.get("path", defaults.derivative_path)),
        derivative_args=str(deriv.get("args", defaults.derivative_args) or ""),
        derivative_queue=str(deriv.get("queue", defaults.derivative_queue)),
    )


# ============================================================================
# Connection Management
# ============================================================================

@contextmanager
def get_connection(autocommit: bool = False, db_cfg: Optional[Dict[str, Any]] = None):
    """
    Context manager for database connections.

    Usage:
        with get_connection() as conn:
            cursor = conn.cursor(dictionary=True)
            cursor.execute("SELECT nid, title FROM node_field_data")
            rows = cursor.fetchall()
    """
    if db_cfg is None:
        db_cfg = get_db_config()
    conn = None
    try:
        conn = mysql.connector.connect(
            host=db_cfg["host"],
            port=db_cfg["port"],
            user=db_cfg["user"],
            password=db_cfg["password"],
            database=db_cfg["database"],
            charset="utf8mb4",
            collation="utf8mb4_unicode_ci",
            autocommit=autocommit,
        )
        yield conn
    except MySQLError as e:
        log.error(f"Database connection error: {e}")
        raise
    finally:
        if conn and conn.is_connected():
            conn.close()


# ============================================================================
# Query Execution
# ============================================================================

# :name or :name[] -- the [] suffix marks a list parameter
_PLACEHOLDER = re.compile(r"(?<![:\w]):([A-Za-z_][A-Za-z0-9_]*)(\[\])?")


def expand_params(
    sql: str, params: Optional[Mapping[str, Any]] = None, paramstyle: str = "pyformat"
) -> Tuple[str, Dict[str, Any]]:
    """
    Rewrite :name / :name[] placeholders for the driver.

    A list parameter becomes one placeholder per element, so
    "IN (:ids[])" with ids=[4, 5] turns into "IN (%(ids_0)s, %(ids_1)s)".

    Args:
        sql: SQL template using :name and :name[] placeholders
        params: Parameter values keyed by name (without the colon)
        paramstyle: "pyformat" (mysql-connector) or "named" (sqlite3)

    Returns:
        (sql, params) ready for cursor.execute()
    """
    if paramstyle not in ("pyformat", "named"):
        raise QueryExecutionError(f"Unsupported paramstyle: {paramstyle}")

    params = dict(params or {})
    bound: Dict[str, Any] = {}

    def mark(name: str) -> str:
        return f"%({name})s" if paramstyle == "pyformat" else f":{name}"

    def replace(m: re.Match) -> str:
        name, is_list = m.group(1), m.group(2)
        if name not in params:
            raise QueryExecutionError(f"Missing query parameter: {name}")
        value = params[name]

        if not is_list:
            bound[name] = value
            return mark(name)

        if isinstance(value, (str, bytes)) or not hasattr(value, "__iter__"):
            raise QueryExecutionError(f"Parameter {name}[] must be a list")
        values = list(value)
        if not values:
            raise QueryExecutionError(f"Parameter {name}[] must not be empty")

        names = []
        for i, v in enumerate(values):
            key = f"{name}_{i}"
            bound[key] = v
            names.append(mark(key))
        return ", ".join(names)

    return _PLACEHOLDER.sub(replace, sql), bound


class Database:
    """
    Query executor over a DB-API connection factory.

    `connect` is a zero-argument callable returning a context manager that
    yields a connection (get_connection for MySQL). Tests pass a factory for
    an in-memory sqlite3 connection with paramstyle="named".
    """

    def __init__(self, connect: Callable[[], Any], paramstyle: str = "pyformat"):
        self.connect = connect
        self.paramstyle = paramstyle

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, Any]] = None) -> "Database":
        db_cfg = get_db_config(cfg)
        return cls(lambda: get_connection(db_cfg=db_cfg))

    def _execute(self, sql: str, params: Optional[Mapping[str, Any]]) -> Tuple[List[str], List[tuple]]:
        query, bound = expand_params(sql, params, self.paramstyle)
        log.debug(f"SQL: {' '.join(query.split())} {bound}")
        try:
            with self.connect() as conn:
                cursor = conn.cursor()
                try:
                    cursor.execute(query, bound)
                    columns = [d[0] for d in (cursor.description or [])]
                    rows = cursor.fetchall()
                finally:
                    cursor.close()
        except QueryExecutionError:
            raise
        except Exception as e:
            raise QueryExecutionError(f"Query failed: {e}") from e
        return columns, [tuple(r) for r in rows]

    def fetch_all(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        """Run a SELECT and return full rows as dicts."""
        columns, rows = self._execute(sql, params)
        return [dict(zip(columns, row)) for row in rows]

    def fetch_col(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> List[Any]:
        """Run a SELECT and return the first column as a flat list."""
        _, rows = self._execute(sql, params)
        return [row[0] for row in rows]


# ============================================================================
# Utility Functions
# ============================================================================

def test_connection(db_cfg: Optional[Dict[str, Any]] = None) -> bool:
    """Test database connection. Returns True if successful."""
    try:
        with get_connection(db_cfg=db_cfg) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT 1")
            cursor.fetchone()
            cursor.close()
            return True
    except (MySQLError, ValueError, FileNotFoundError) as e:
        log.error(f"Connection test failed: {e}")
        return False


if __name__ == "__main__":
    import sys

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    print("Testing database connection...")
    if test_connection():
        print("✓ Database connection successful")
    else:
        print("✗ Database connection failed")
        sys.exit(1)
