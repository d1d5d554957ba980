"""
Collection hierarchy walk.

Starting from one collection node, repeatedly fetch the container-typed
children of the current frontier until a level comes back empty.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Set, Tuple

from nyhs_update_ocr.common.nyhs_db import Database

log = logging.getLogger(__name__)

CHILD_CONTAINERS_SQL = """
    SELECT n.nid
    FROM node n,
         node__field_member_of me,
         node__field_model mo
    WHERE n.nid = mo.entity_id
      AND n.nid = me.entity_id
      AND me.field_member_of_target_id IN (:parents[])
      AND mo.field_model_target_id IN (:terms[])
"""

COLLECTIONS_SQL = """
    SELECT nfd.nid, nfd.title
    FROM node_field_data nfd,
         node__field_model mo
    WHERE nfd.nid = mo.entity_id
      AND nfd.type = 'islandora_object'
      AND mo.field_model_target_id = :collection_term
    ORDER BY nfd.title, nfd.nid
"""


class HierarchyWalker:
    """
    Finds every container below a root node.

    Args:
        db: Query executor
        container_term_ids: Model term ids that count as containers
        max_iterations: Upper bound on frontier queries per walk
    """

    def __init__(self, db: Database, container_term_ids: Iterable[int], max_iterations: int = 64):
        self.db = db
        self.container_term_ids = sorted(set(int(t) for t in container_term_ids))
        self.max_iterations = max_iterations
        self.iterations = 0

        if not self.container_term_ids:
            raise ValueError("container_term_ids must not be empty")

    def children(self, parents: Iterable[int]) -> List[int]:
        return [
            int(nid)
            for nid in self.db.fetch_col(
                CHILD_CONTAINERS_SQL,
                {"parents": sorted(parents), "terms": self.container_term_ids},
            )
        ]

    def expand(self, root_nid: int) -> Set[int]:
        """
        Return the root plus all container descendants.

        Ids already seen are never expanded again, so a member_of cycle
        ends the walk instead of looping.
        """
        root_nid = int(root_nid)
        containers = {root_nid}
        frontier = {root_nid}
        self.iterations = 0

        while frontier:
            if self.iterations >= self.max_iterations:
                log.warning(
                    f"Stopped walking below {root_nid} after {self.iterations} levels; "
                    f"{len(frontier)} container(s) not expanded"
                )
                break
            self.iterations += 1

            found = set(self.children(frontier))
            frontier = found - containers
            revisits = len(found) - len(frontier)
            if revisits:
                log.warning(f"Skipped {revisits} already visited container(s) below {root_nid}")
            containers |= frontier
            log.debug(f"Level {self.iterations}: {len(frontier)} new container(s)")

        log.info(f"Found {len(containers)} container(s) under node {root_nid} in {self.iterations} level(s)")
        return containers


def list_collections(db: Database, collection_term_id: int) -> List[Tuple[int, str]]:
    """(nid, title) of every repository object modelled as a Collection."""
    rows = db.fetch_all(COLLECTIONS_SQL, {"collection_term": collection_term_id})
    return [(int(r["nid"]), r["title"]) for r in rows]
