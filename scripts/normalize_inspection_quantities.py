#!/usr/bin/env python3
"""
Normalize legacy quantity fields on PSIR and VSIR documents for one scope.

For every in-house (PSIR) and vendor-site (VSIR) inspection document:
  - ``poQty`` becomes its absolute numeric value, or is removed when blank
    or non-numeric (document level and on each line);
  - ``okQty`` is removed (document level and on each line).

Dry-run by default: prints what would change and writes nothing.

Usage:
    python3 scripts/normalize_inspection_quantities.py --scope <USER_ID> [options]

Examples:
    # Show planned changes
    python3 scripts/normalize_inspection_quantities.py --scope u-123 \\
        --database-url sqlite:///procure.db

    # Commit them
    python3 scripts/normalize_inspection_quantities.py --scope u-123 \\
        --database-url sqlite:///procure.db --apply
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

DB_URL = os.environ.get("PROCURE_DATABASE_URL", "sqlite:///procure.db")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Normalize poQty/okQty on PSIR and VSIR documents (dry-run by default).",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--scope",
        required=True,
        help="Owning user id. The script only ever touches one scope.",
    )
    parser.add_argument(
        "--database-url",
        default=DB_URL,
        help="SQLAlchemy URL of the document store (default: $PROCURE_DATABASE_URL or sqlite:///procure.db).",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional settings YAML (for non-default collection names).",
    )
    parser.add_argument(
        "--apply",
        action="store_true",
        help="Write the changes. Without it nothing is written.",
    )
    return parser.parse_args(argv)


def normalize_collection(store, scope: str, collection: str, apply: bool) -> int:
    """Plan (and with ``apply``, write) the cleanup for one collection.

    Returns the number of documents that need a change.
    """
    from procure_ingestion.quantity_cleanup import plan_quantity_cleanup

    documents = store.list(scope, collection)
    print(f"Scanning {collection}: {len(documents)} documents")
    changed = 0
    for document in documents:
        updates = plan_quantity_cleanup(document)
        if updates is None:
            continue
        changed += 1
        print(f"  Will update {collection}/{document['id']}: {sorted(updates)}")
        if apply:
            store.update(scope, collection, document["id"], updates)
    return changed


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    # Lazy imports so we fail fast on args first
    from procure_config import load_settings
    from procure_kernel.exceptions import ConfigurationError, StoreError
    from procure_kernel.logging_config import LogContext, configure_logging
    from procure_kernel.store.sql import SqlDocumentStore, create_document_tables, create_store_engine

    configure_logging()

    try:
        settings = load_settings(args.config)
    except (ConfigurationError, FileNotFoundError) as e:
        print(f"ERROR: Failed to load settings: {e}", file=sys.stderr)
        return 1

    engine = create_store_engine(args.database_url)
    create_document_tables(engine)
    store = SqlDocumentStore(engine)

    print(f"Dry-run mode: {not args.apply}")
    try:
        with LogContext.bind(scope=args.scope, operation="normalize_inspection_quantities"):
            psir_changed = normalize_collection(
                store, args.scope, settings.collections.inspection_records, args.apply
            )
            vsir_changed = normalize_collection(
                store, args.scope, settings.collections.vendor_inspections, args.apply
            )
    except StoreError as e:
        print(f"ERROR: Migration failed: {e}", file=sys.stderr)
        return 2
    finally:
        engine.dispose()

    print(f"Summary for scope {args.scope}: PSIRs to change={psir_changed}, VSIRs to change={vsir_changed}")
    if not args.apply:
        print("No writes performed; rerun with --apply to commit changes.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
