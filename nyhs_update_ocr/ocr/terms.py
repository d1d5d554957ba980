"""
Vocabulary term lookup.

Islandora tags nodes and media with taxonomy terms that carry a stable
external URI (field_external_uri, or field_authority_link on some
vocabularies). Queries filter on local term ids, so the URIs are resolved
once per submission and cached for that submission only.
"""

from __future__ import annotations

import logging
from typing import Dict, List

from nyhs_update_ocr.common.nyhs_db import Database

log = logging.getLogger(__name__)

# Model terms for nodes that can hold members
CONTAINER_MODEL_URIS = [
    "http://purl.org/dc/dcmitype/Collection",
    "http://vocab.getty.edu/aat/300242735",
    "https://schema.org/Newspaper",
    "https://schema.org/Book",
    "https://schema.org/PublicationIssue",
]

COLLECTION_URI = "http://purl.org/dc/dcmitype/Collection"
PART_URI = "http://id.loc.gov/ontologies/bibframe/part"

# Media use terms
EXTRACTED_TEXT_URI = "http://pcdm.org/use#ExtractedText"
SERVICE_FILE_URI = "http://pcdm.org/use#ServiceFile"

TERM_BY_URI_SQL = """
    SELECT entity_id AS tid
    FROM taxonomy_term__field_external_uri
    WHERE field_external_uri_uri = :uri
    UNION
    SELECT entity_id AS tid
    FROM taxonomy_term__field_authority_link
    WHERE field_authority_link_uri = :uri
    ORDER BY tid
"""


class TermResolutionError(LookupError):
    """A vocabulary URI has no mapped taxonomy term."""

    def __init__(self, uri: str):
        super().__init__(f"No taxonomy term found for URI: {uri}")
        self.uri = uri


class TermResolver:
    """
    URI -> term id lookups with a per-instance cache.

    Create one per submission and let it go with the submission; term ids
    belong to the Drupal site and are never persisted here.
    """

    def __init__(self, db: Database):
        self.db = db
        self._cache: Dict[str, int] = {}

    def term_id(self, uri: str) -> int:
        if uri in self._cache:
            return self._cache[uri]

        tids = self.db.fetch_col(TERM_BY_URI_SQL, {"uri": uri})
        if not tids:
            raise TermResolutionError(uri)
        if len(tids) > 1:
            log.warning(f"URI {uri} maps to {len(tids)} terms {tids}; using {tids[0]}")

        tid = int(tids[0])
        self._cache[uri] = tid
        log.debug(f"Term {uri} -> {tid}")
        return tid

    def term_ids(self, uris: List[str]) -> List[int]:
        return [self.term_id(uri) for uri in uris]


def resolve_container_terms(resolver: TermResolver) -> List[int]:
    """Resolve all container model URIs. Raises TermResolutionError on the first miss."""
    return resolver.term_ids(CONTAINER_MODEL_URIS)
