#!/usr/bin/env python3
"""
One-time migration of workflow documents to the canonical patient_data keys.

Older pipeline runs wrote e.g. "ClinicalInformation" or "Clinical Question"
instead of "clinical_information" / "question_for_tumorboard". The record
resolver only reads the canonical keys, so run this once per batch.

Usage (from the backend directory):
    python scripts/migrate_workflow_aliases.py [--root PATH] [--store] [--dry-run]
"""

import argparse
import json
import sys
from pathlib import Path

# Add backend directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from config.config import get_settings
from database.database import get_workflow_database, store_errors
from services.record_sources import PATIENT_PREFIX, WORKFLOW_SUFFIX
from services.workflow_schema import canonicalize_workflow_document


def workflow_files(root: Path) -> list[Path]:
    """Directory and flat-file workflow documents under the results root."""
    pattern = f"{PATIENT_PREFIX}*{WORKFLOW_SUFFIX}"
    return sorted(set(root.glob(pattern)) | set(root.glob(f"{PATIENT_PREFIX}*/{pattern}")))


def migrate_files(root: Path, dry_run: bool) -> int:
    """Rewrite aliased workflow files in place; returns the number changed."""
    changed = 0
    for path in workflow_files(root):
        try:
            with open(path, "r", encoding="utf-8") as f:
                document = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            print(f"⚠️  Skipping unreadable file {path}: {e}")
            continue
        if not isinstance(document, dict):
            continue

        migrated, was_changed = canonicalize_workflow_document(document)
        if not was_changed:
            continue
        changed += 1
        print(f"{'🔍 Would migrate' if dry_run else '✏️  Migrated'}: {path}")
        if not dry_run:
            with open(path, "w", encoding="utf-8") as f:
                json.dump(migrated, f, ensure_ascii=False, indent=2)
    return changed


def migrate_store(dry_run: bool) -> int:
    """Rewrite aliased documents in the workflow store; returns the number changed."""
    settings = get_settings()
    collection = get_workflow_database(settings).collection(settings.workflow_collection)
    changed = 0
    with store_errors("workflow_store"):
        for document in collection.all():
            migrated, was_changed = canonicalize_workflow_document(document)
            if not was_changed:
                continue
            changed += 1
            print(f"{'🔍 Would migrate' if dry_run else '✏️  Migrated'}: {settings.workflow_collection}/{document['_key']}")
            if not dry_run:
                collection.replace(migrated)
    return changed


def main():
    """Migrate workflow files (and optionally the workflow store)."""
    settings = get_settings()
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--root", default=settings.batch_results_path, help="Batch results directory")
    parser.add_argument("--store", action="store_true", help="Also migrate the workflow store")
    parser.add_argument("--dry-run", action="store_true", help="Report without writing")
    args = parser.parse_args()

    root = Path(args.root)
    if not root.is_dir():
        print(f"❌ Error: Batch results directory not found: {root}")
        sys.exit(1)

    print(f"📁 Batch results: {root}")
    total = migrate_files(root, args.dry_run)

    if args.store:
        if not settings.workflow_store_configured:
            print("❌ Error: Workflow store not configured (ARANGO_HOST is empty)")
            sys.exit(1)
        total += migrate_store(args.dry_run)

    print()
    print(f"✅ {total} document(s) {'need migration' if args.dry_run else 'migrated'}")


if __name__ == "__main__":
    main()
