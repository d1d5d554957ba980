#!/usr/bin/env python3
"""
NYHS Update OCR - Queue text extraction for a collection

Purpose:
- Walk a collection and all of its sub-containers (collections, newspapers,
  books, publication issues)
- Find page nodes (bibframe Part) with no Extracted Text media
- Queue the extract_text_from_service_file action for each page through
  the batch runner

Usage:
  python make_ocr.py --list-collections
  python make_ocr.py --collection 12
  python make_ocr.py --collection 12 --dry-run

Workflow:
1. Load the action and resolve vocabulary URIs to term ids
2. Walk member_of from the collection down through container models
3. Select Part nodes under those containers without Extracted Text
4. Build one batch operation per page (load node, execute action)
5. Run the batch, reporting progress and a final error summary
"""

from __future__ import annotations

import argparse
import logging
import sys
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional

sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from nyhs_update_ocr.common.batch import Batch, BatchReport, BatchRunner, Messenger
from nyhs_update_ocr.common.nyhs_db import (
    Database,
    OcrSettings,
    QueryExecutionError,
    get_ocr_settings,
    load_config,
)
from nyhs_update_ocr.common.task_queue import TaskQueue
from nyhs_update_ocr.ocr.actions import ActionContext, ActionNotFoundError, ActionRegistry, default_registry
from nyhs_update_ocr.ocr.entities import NodeStore
from nyhs_update_ocr.ocr.hierarchy import HierarchyWalker, list_collections
from nyhs_update_ocr.ocr.selector import select_parts_without_text
from nyhs_update_ocr.ocr.terms import (
    COLLECTION_URI,
    EXTRACTED_TEXT_URI,
    PART_URI,
    TermResolutionError,
    TermResolver,
    resolve_container_terms,
)

log = logging.getLogger(__name__)

BATCH_TITLE = "Extracting text..."
PROGRESS_MESSAGE = "Processed @current out of @total. Estimated time: @estimate."
ERROR_MESSAGE = "The process has encountered an error."
QUEUED_MESSAGE = "Pages have been added to the queue, but may take some time to process"


class SubmissionState(str, Enum):
    IDLE = "idle"
    RESOLVING_TERMS = "resolving_terms"
    WALKING = "walking"
    SELECTING = "selecting"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ABORTED = "aborted"


class MakeOcr:
    """
    One operator submission: collection in, batch of extraction units out.

    All collaborators are passed in; nothing is looked up globally.
    """

    def __init__(
        self,
        db: Database,
        settings: OcrSettings,
        node_store: Optional[NodeStore] = None,
        registry: Optional[ActionRegistry] = None,
        queue: Optional[TaskQueue] = None,
        messenger: Optional[Messenger] = None,
    ):
        self.db = db
        self.settings = settings
        self.node_store = node_store or NodeStore(db)
        self.registry = registry or default_registry()
        self.queue = queue or TaskQueue(settings.flags_root)
        self.messenger = messenger or Messenger()
        self.state = SubmissionState.IDLE
        self.containers: set = set()

    def discover(self, collection_nid: int, terms: Optional[TermResolver] = None) -> List[int]:
        """Resolve terms, walk the collection and select pages needing text."""
        terms = terms or TermResolver(self.db)
        try:
            self.state = SubmissionState.RESOLVING_TERMS
            container_terms = resolve_container_terms(terms)
            part_term = terms.term_id(PART_URI)
            extracted_text_term = terms.term_id(EXTRACTED_TEXT_URI)

            self.state = SubmissionState.WALKING
            walker = HierarchyWalker(self.db, container_terms, self.settings.max_iterations)
            self.containers = walker.expand(collection_nid)

            self.state = SubmissionState.SELECTING
            return select_parts_without_text(self.db, self.containers, part_term, extracted_text_term)
        except (TermResolutionError, QueryExecutionError) as e:
            self.state = SubmissionState.ABORTED
            log.error(f"Submission for collection {collection_nid} aborted: {e}")
            raise

    def submit(self, collection_nid: int) -> Batch:
        """
        Build the extraction batch for a collection.

        Fatal errors (unknown action, unmapped vocabulary URI, failed query)
        abort before anything is queued.
        """
        terms = TermResolver(self.db)
        try:
            action = self.registry.load(
                self.settings.action,
                ActionContext(db=self.db, terms=terms, settings=self.settings, queue=self.queue),
            )
        except (ActionNotFoundError, TermResolutionError, QueryExecutionError) as e:
            self.state = SubmissionState.ABORTED
            log.error(f"Could not load action {self.settings.action}: {e}")
            raise

        nids = self.discover(collection_nid, terms)

        log.info(f"Processing {len(nids)}")
        self.messenger.add_status(QUEUED_MESSAGE)
        batch = self.build_batch(nids, action)
        self.state = SubmissionState.QUEUED
        return batch

    def build_batch(self, nids: List[int], action: Any) -> Batch:
        return Batch(
            title=BATCH_TITLE,
            operations=[(self.process_result, (nid, action)) for nid in nids],
            progress_message=PROGRESS_MESSAGE,
            error_message=ERROR_MESSAGE,
        )

    def process_result(self, nid: int, action: Any) -> None:
        node = self.node_store.load(nid)
        action.execute([node])

    def run(self, batch: Batch, runner: Optional[BatchRunner] = None) -> BatchReport:
        runner = runner or BatchRunner(messenger=self.messenger, time_limit=self.settings.batch_time_limit)
        self.state = SubmissionState.PROCESSING
        report = runner.run(batch)
        self.state = SubmissionState.COMPLETED
        return report


# ============================================================================
# Main Entry Point
# ============================================================================

def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description="Queue OCR text extraction for pages under a collection"
    )
    parser.add_argument("--collection", type=int, help="Collection node id (nid)")
    parser.add_argument(
        "--list-collections",
        action="store_true",
        help="List collection nodes to choose from",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show the pages that would be queued, queue nothing",
    )
    parser.add_argument("--config", default=None, help="Optional path to config YAML.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    if not args.collection and not args.list_collections:
        print("[ERROR] Must specify --collection or --list-collections", file=sys.stderr)
        parser.print_help()
        return 2

    try:
        cfg = load_config(args.config)
        settings = get_ocr_settings(cfg)
        db = Database.from_config(cfg)
    except (FileNotFoundError, ValueError) as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 2

    if args.list_collections:
        try:
            collection_term = TermResolver(db).term_id(COLLECTION_URI)
            collections = list_collections(db, collection_term)
        except (TermResolutionError, QueryExecutionError) as e:
            print(f"[ERROR] {e}", file=sys.stderr)
            return 1
        for nid, title in collections:
            print(f"{nid}\t{title}")
        print(f"\nTotal: {len(collections)} collection(s)")
        return 0

    form = MakeOcr(db, settings)

    if args.dry_run:
        try:
            nids = form.discover(args.collection)
        except (TermResolutionError, QueryExecutionError) as e:
            print(f"[ERROR] {e}", file=sys.stderr)
            return 1
        for nid in nids:
            print(nid)
        print(f"\n[DRY RUN] Would queue {len(nids)} page(s) from {len(form.containers)} container(s)")
        return 0

    try:
        batch = form.submit(args.collection)
    except (ActionNotFoundError, TermResolutionError, QueryExecutionError) as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 1

    form.messenger.flush()
    report = form.run(batch)
    form.messenger.flush()

    print("\n" + "=" * 70)
    print("SUMMARY")
    print("=" * 70)
    print(f"Containers: {len(form.containers)}")
    print(f"Total: {report.succeeded} successful, {report.failed} failed of {report.total}")

    return 0 if report.failed == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
