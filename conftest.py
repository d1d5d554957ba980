"""
Shared fixtures: an in-memory sqlite3 database laid out like the Drupal
tables the OCR queries read.
"""

import sqlite3
import sys
from contextlib import nullcontext
from pathlib import Path
from typing import List, Optional

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent))

from nyhs_update_ocr.common.nyhs_db import Database, OcrSettings

SCHEMA = """
CREATE TABLE node (nid INTEGER PRIMARY KEY, type TEXT);
CREATE TABLE node_field_data (
    nid INTEGER, type TEXT, title TEXT, status INTEGER,
    langcode TEXT, default_langcode INTEGER
);
CREATE TABLE node__field_member_of (entity_id INTEGER, field_member_of_target_id INTEGER);
CREATE TABLE node__field_model (entity_id INTEGER, field_model_target_id INTEGER);
CREATE TABLE media__field_media_use (entity_id INTEGER, field_media_use_target_id INTEGER);
CREATE TABLE media__field_media_of (entity_id INTEGER, field_media_of_target_id INTEGER);
CREATE TABLE media__field_media_file (entity_id INTEGER, field_media_file_target_id INTEGER);
CREATE TABLE media__field_media_image (entity_id INTEGER, field_media_image_target_id INTEGER);
CREATE TABLE file_managed (fid INTEGER PRIMARY KEY, uri TEXT, filemime TEXT);
CREATE TABLE taxonomy_term__field_external_uri (entity_id INTEGER, field_external_uri_uri TEXT);
CREATE TABLE taxonomy_term__field_authority_link (entity_id INTEGER, field_authority_link_uri TEXT);
"""

COLLECTION = 1
GETTY_SERIAL = 2
NEWSPAPER = 3
BOOK = 4
PUBLICATION_ISSUE = 5
PART = 10
EXTRACTED_TEXT = 20
SERVICE_FILE = 21

TERMS = {
    COLLECTION: "http://purl.org/dc/dcmitype/Collection",
    NEWSPAPER: "https://schema.org/Newspaper",
    BOOK: "https://schema.org/Book",
    PUBLICATION_ISSUE: "https://schema.org/PublicationIssue",
    PART: "http://id.loc.gov/ontologies/bibframe/part",
    EXTRACTED_TEXT: "http://pcdm.org/use#ExtractedText",
    SERVICE_FILE: "http://pcdm.org/use#ServiceFile",
}
# Getty AAT terms carry their URI as an authority link
AUTHORITY_TERMS = {GETTY_SERIAL: "http://vocab.getty.edu/aat/300242735"}


class RecordingDatabase(Database):
    """Database that remembers every SQL template it ran."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.queries: List[str] = []

    def _execute(self, sql, params):
        self.queries.append(sql)
        return super()._execute(sql, params)

    def ran(self, fragment: str) -> int:
        return sum(1 for q in self.queries if fragment in q)


class DrupalSite:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._next_mid = 1000
        self._next_fid = 5000

    def add_term(self, tid: int, uri: str, authority: bool = False) -> None:
        if authority:
            self.conn.execute("INSERT INTO taxonomy_term__field_authority_link VALUES (?, ?)", (tid, uri))
        else:
            self.conn.execute("INSERT INTO taxonomy_term__field_external_uri VALUES (?, ?)", (tid, uri))

    def add_node(self, nid: int, model: int, member_of: Optional[List[int]] = None, title: Optional[str] = None) -> int:
        self.conn.execute("INSERT INTO node VALUES (?, 'islandora_object')", (nid,))
        self.conn.execute(
            "INSERT INTO node_field_data VALUES (?, 'islandora_object', ?, 1, 'en', 1)",
            (nid, title or f"Node {nid}"),
        )
        self.conn.execute("INSERT INTO node__field_model VALUES (?, ?)", (nid, model))
        for parent in member_of or []:
            self.conn.execute("INSERT INTO node__field_member_of VALUES (?, ?)", (nid, parent))
        return nid

    def add_member_of(self, nid: int, parent: int) -> None:
        self.conn.execute("INSERT INTO node__field_member_of VALUES (?, ?)", (nid, parent))

    def add_media(self, of_nid: int, use: int, uri: Optional[str] = None, image: bool = False) -> int:
        mid = self._next_mid
        self._next_mid += 1
        self.conn.execute("INSERT INTO media__field_media_of VALUES (?, ?)", (mid, of_nid))
        self.conn.execute("INSERT INTO media__field_media_use VALUES (?, ?)", (mid, use))
        if uri:
            fid = self._next_fid
            self._next_fid += 1
            mime = "image/jp2" if image else "image/tiff"
            self.conn.execute("INSERT INTO file_managed VALUES (?, ?, ?)", (fid, uri, mime))
            table = "media__field_media_image" if image else "media__field_media_file"
            self.conn.execute(f"INSERT INTO {table} VALUES (?, ?)", (mid, fid))
        return mid


def make_site(skip_terms=()) -> DrupalSite:
    conn = sqlite3.connect(":memory:")
    conn.executescript(SCHEMA)
    site = DrupalSite(conn)
    for tid, uri in TERMS.items():
        if tid not in skip_terms:
            site.add_term(tid, uri)
    for tid, uri in AUTHORITY_TERMS.items():
        if tid not in skip_terms:
            site.add_term(tid, uri, authority=True)
    return site


@pytest.fixture
def site() -> DrupalSite:
    s = make_site()
    yield s
    s.conn.close()


@pytest.fixture
def db(site) -> RecordingDatabase:
    return RecordingDatabase(lambda: nullcontext(site.conn), paramstyle="named")


@pytest.fixture
def settings(tmp_path) -> OcrSettings:
    return OcrSettings(flags_root=tmp_path / "flags", batch_time_limit=0)


@pytest.fixture
def newspaper_site(site) -> DrupalSite:
    """
    Collection 100
      Collection 101
        Part 104 (has Extracted Text)
      Part 102
      Part 103
    """
    site.add_node(100, COLLECTION, title="Newspapers")
    site.add_node(101, COLLECTION, [100], title="Daily Advertiser")
    site.add_node(102, PART, [100], title="Page 1")
    site.add_node(103, PART, [100], title="Page 2")
    site.add_node(104, PART, [101], title="Page 3")
    site.add_media(104, EXTRACTED_TEXT, "private://2026-01/104-Extracted Text.txt")
    for nid in (102, 103, 104):
        site.add_media(nid, SERVICE_FILE, f"fedora://service/{nid}.tif")
    return site
