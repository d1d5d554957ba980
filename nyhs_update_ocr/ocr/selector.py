"""Selection of page nodes that still need extracted text."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List

from nyhs_update_ocr.common.nyhs_db import Database

log = logging.getLogger(__name__)

PARTS_WITHOUT_TEXT_SQL = """
    SELECT DISTINCT n.nid
    FROM node n,
         node__field_member_of me,
         node__field_model mo
    WHERE n.nid = mo.entity_id
      AND n.nid = me.entity_id
      AND me.field_member_of_target_id IN (:collection_ids[])
      AND mo.field_model_target_id = :part_term
      AND n.nid NOT IN (SELECT mmo.field_media_of_target_id
                        FROM media__field_media_use mmu,
                             media__field_media_of mmo
                        WHERE mmu.field_media_use_target_id = :extracted_text_term
                          AND mmu.entity_id = mmo.entity_id)
    ORDER BY n.nid
"""


@dataclass(frozen=True)
class PartRow:
    nid: int

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "PartRow":
        return cls(nid=int(row["nid"]))


def select_parts_without_text(
    db: Database,
    container_ids: Iterable[int],
    part_term_id: int,
    extracted_text_term_id: int,
) -> List[int]:
    """
    Page (Part) nodes directly under any of container_ids with no
    Extracted Text media, ordered by nid.

    An empty container set selects nothing and runs no query.
    """
    container_ids = sorted(set(int(c) for c in container_ids))
    if not container_ids:
        return []

    rows = db.fetch_all(
        PARTS_WITHOUT_TEXT_SQL,
        {
            "collection_ids": container_ids,
            "part_term": part_term_id,
            "extracted_text_term": extracted_text_term_id,
        },
    )
    parts = [PartRow.from_row(r) for r in rows]
    log.debug(f"Selected {len(parts)} page(s) from {len(container_ids)} container(s)")
    return [p.nid for p in parts]
