"""Node loading from node_field_data."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from nyhs_update_ocr.common.nyhs_db import Database

NODE_SQL = """
    SELECT nid, type, title, status, langcode
    FROM node_field_data
    WHERE nid = :nid
    ORDER BY default_langcode DESC
"""


class NodeNotFoundError(LookupError):
    def __init__(self, nid: int):
        super().__init__(f"Node {nid} not found")
        self.nid = nid


@dataclass(frozen=True)
class Node:
    nid: int
    type: str
    title: str
    status: bool = True
    langcode: Optional[str] = None


class NodeStore:
    def __init__(self, db: Database):
        self.db = db

    def load(self, nid: int) -> Node:
        rows = self.db.fetch_all(NODE_SQL, {"nid": int(nid)})
        if not rows:
            raise NodeNotFoundError(nid)
        r = rows[0]
        return Node(
            nid=int(r["nid"]),
            type=r["type"],
            title=r["title"],
            status=bool(r["status"]),
            langcode=r.get("langcode"),
        )
