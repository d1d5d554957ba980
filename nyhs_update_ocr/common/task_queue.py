#!/usr/bin/env python3
"""
Flag-directory task queue.

Workers claim JSON manifests from flags/pending by atomic rename into
flags/processing, and file them under flags/completed or flags/failed when
done. This module is the producer side: it writes manifests into
flags/pending.

Manifest layout (schema nyhs.task.v1):
  {
    "schema": "nyhs.task.v1",
    "task_id": "ocr_extract_text_123",
    "task_type": "islandora.extract_text",
    "created_at": "2026-01-01T00:00:00+00:00",
    "created_by": "make_ocr",
    "payload": {...}
  }
"""

from __future__ import annotations

import json
import logging
import os
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

log = logging.getLogger(__name__)

TASK_SCHEMA_V1 = "nyhs.task.v1"

QUEUE_DIRS = ["pending", "processing", "completed", "failed"]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def write_json(path: Path, payload: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    # Unique temp name; NAS writes can be transiently locked, so retry briefly.
    tmp = path.with_name(f"{path.name}.{os.getpid()}.{int(time.time()*1000)}.tmp")
    txt = json.dumps(payload, indent=2, sort_keys=True)
    for attempt in range(1, 6):
        try:
            tmp.write_text(txt, encoding="utf-8")
            tmp.replace(path)
            return
        except PermissionError:
            time.sleep(0.15 * attempt)
        finally:
            if tmp.exists():
                try:
                    tmp.unlink()
                except OSError as e:
                    log.debug(f"Could not remove temp file {tmp}: {e}")
    raise PermissionError(f"Failed to write JSON (retries exhausted): {path}")


def build_task(task_id: str, task_type: str, payload: Dict[str, Any], created_by: str = "make_ocr") -> Dict[str, Any]:
    return {
        "schema": TASK_SCHEMA_V1,
        "task_id": task_id,
        "task_type": task_type,
        "created_at": utc_now_iso(),
        "created_by": created_by,
        "payload": payload,
    }


class TaskQueue:
    """Producer for a flags/ queue root."""

    def __init__(self, flags_root: Path):
        self.flags_root = Path(flags_root)

    @property
    def pending(self) -> Path:
        return self.flags_root / "pending"

    def ensure_dirs(self) -> None:
        for sub in QUEUE_DIRS:
            (self.flags_root / sub).mkdir(parents=True, exist_ok=True)

    def enqueue(self, task: Dict[str, Any]) -> Path:
        """
        Write a manifest to flags/pending/<task_id>.json.

        The same task_id always maps to the same file, so enqueuing a task
        again replaces its pending manifest rather than adding a second one.
        """
        task_id = task.get("task_id")
        if not (isinstance(task_id, str) and task_id.strip()):
            raise KeyError("Task manifest needs a task_id (string)")

        path = self.pending / f"{task_id.strip()}.json"
        if path.exists():
            log.debug(f"Replacing pending task {path.name}")
        write_json(path, task)
        return path

    def pending_tasks(self) -> List[Path]:
        if not self.pending.is_dir():
            return []
        return sorted(p for p in self.pending.glob("*.json") if p.is_file())
