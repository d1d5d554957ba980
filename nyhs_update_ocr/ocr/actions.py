"""
Node actions.

An action is loaded by handle and executed against a list of loaded nodes.
extract_text_from_service_file asks the OCR workers to build an Extracted
Text derivative from each node's Service File: it writes one derivative
request per node into the flags/pending task queue.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from nyhs_update_ocr.common.nyhs_db import Database, OcrSettings
from nyhs_update_ocr.common.task_queue import TaskQueue, build_task
from nyhs_update_ocr.ocr.entities import Node
from nyhs_update_ocr.ocr.terms import EXTRACTED_TEXT_URI, SERVICE_FILE_URI, TermResolver

log = logging.getLogger(__name__)

EXTRACT_TEXT_TASK_TYPE = "islandora.extract_text"

SERVICE_FILE_SQL = """
    SELECT f.fid, f.uri, f.filemime
    FROM media__field_media_of mo
    JOIN media__field_media_use mu ON mu.entity_id = mo.entity_id
    JOIN (SELECT entity_id, field_media_file_target_id AS fid FROM media__field_media_file
          UNION ALL
          SELECT entity_id, field_media_image_target_id AS fid FROM media__field_media_image) mf
      ON mf.entity_id = mo.entity_id
    JOIN file_managed f ON f.fid = mf.fid
    WHERE mo.field_media_of_target_id = :nid
      AND mu.field_media_use_target_id = :service_file_term
    ORDER BY mo.entity_id
"""


class ActionNotFoundError(LookupError):
    def __init__(self, handle: str):
        super().__init__(f"Unknown action: {handle}")
        self.handle = handle


class ServiceFileNotFoundError(LookupError):
    def __init__(self, nid: int):
        super().__init__(f"Node {nid} has no Service File media")
        self.nid = nid


@dataclass
class ActionContext:
    db: Database
    terms: TermResolver
    settings: OcrSettings
    queue: TaskQueue


class ExtractTextFromServiceFile:
    """Queue an OCR derivative request for each node's Service File."""

    handle = "extract_text_from_service_file"

    def __init__(self, context: ActionContext):
        self.db = context.db
        self.settings = context.settings
        self.queue = context.queue
        self.service_file_term = context.terms.term_id(SERVICE_FILE_URI)

    def service_file(self, nid: int) -> Dict[str, Any]:
        rows = self.db.fetch_all(SERVICE_FILE_SQL, {"nid": nid, "service_file_term": self.service_file_term})
        if not rows:
            raise ServiceFileNotFoundError(nid)
        return rows[0]

    def destination_uri(self, node: Node, now: Optional[datetime] = None) -> str:
        now = now or datetime.now(timezone.utc)
        path = self.settings.derivative_path.format(
            year=now.strftime("%Y"),
            month=now.strftime("%m"),
            nid=node.nid,
        )
        return f"{self.settings.derivative_scheme}://{path}"

    def build_request(self, node: Node) -> Dict[str, Any]:
        source = self.service_file(node.nid)
        payload = {
            "nid": node.nid,
            "title": node.title,
            "source_fid": int(source["fid"]),
            "source_uri": source["uri"],
            "source_mimetype": source["filemime"],
            "source_use_uri": SERVICE_FILE_URI,
            "derivative_use_uri": EXTRACTED_TEXT_URI,
            "destination_uri": self.destination_uri(node),
            "mimetype": "text/plain",
            "args": self.settings.derivative_args,
            "queue": self.settings.derivative_queue,
        }
        return build_task(
            task_id=f"ocr_extract_text_{node.nid}",
            task_type=EXTRACT_TEXT_TASK_TYPE,
            payload=payload,
        )

    def execute(self, entities: List[Node]) -> None:
        for node in entities:
            path = self.queue.enqueue(self.build_request(node))
            log.debug(f"Queued text extraction for node {node.nid}: {path.name}")


ActionFactory = Callable[[ActionContext], Any]


class ActionRegistry:
    """Action handles -> factories. load() builds a fresh action instance."""

    def __init__(self, factories: Optional[Dict[str, ActionFactory]] = None):
        self._factories: Dict[str, ActionFactory] = dict(factories or {})

    def register(self, handle: str, factory: ActionFactory) -> None:
        self._factories[handle] = factory

    def handles(self) -> List[str]:
        return sorted(self._factories)

    def load(self, handle: str, context: ActionContext) -> Any:
        factory = self._factories.get(handle)
        if factory is None:
            raise ActionNotFoundError(handle)
        return factory(context)


def default_registry() -> ActionRegistry:
    return ActionRegistry({ExtractTextFromServiceFile.handle: ExtractTextFromServiceFile})
