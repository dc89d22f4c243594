"""
Generic resumable migration loop shared by every entity kind.

Each record goes through the same steps:

1. Skip it if its source ID is already in the MigrationMap (resume).
2. Parse the raw export dict into a typed record (RecordError -> error).
3. Build the target create payload (DependencyNotReady -> deferred).
4. Create it in the target account (StripeError -> error).
5. Record old -> new in the MigrationMap, checkpointing every batch_size creations.

A failure on one record never stops the loop; the record stays unmapped so the
next run retries it.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import stripe

from stripe_migrate_errors import DependencyNotReady, MigrationSetupError, RecordError
from stripe_migrate_mapping import MigrationMap
from stripe_migrate_reports import read_json, write_json

# Per-record outcomes
STATUS_CREATED = "created"
STATUS_SKIPPED = "skipped"
STATUS_DEFERRED = "deferred"
STATUS_FAILED = "failed"
STATUS_DRY_RUN = "dry_run"

DEFAULT_BATCH_SIZE = 50


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Progress:
    """Synchronous progress event emitted once per processed record."""

    stage: str
    processed: int
    total: int


ProgressCallback = Callable[[Progress], None]


@dataclass
class MigrationError:
    """A single record that could not be migrated in this run."""

    entity_kind: str
    old_id: str
    message: str
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, str]:
        return {
            "entity_kind": self.entity_kind,
            "old_id": self.old_id,
            "message": self.message,
            "timestamp": self.timestamp,
        }


@dataclass
class StageResult:
    """Counters and errors for one entity kind in one run."""

    kind: str
    total: int = 0
    created: int = 0
    skipped: int = 0
    deferred: int = 0
    failed: int = 0
    dry_run: int = 0
    errors: List[MigrationError] = field(default_factory=list)
    # Record IDs needing operator attention (e.g. subscriptions whose billing cycle was reset)
    flagged: List[str] = field(default_factory=list)

    def record(self, status: str) -> None:
        if status == STATUS_CREATED:
            self.created += 1
        elif status == STATUS_SKIPPED:
            self.skipped += 1
        elif status == STATUS_DEFERRED:
            self.deferred += 1
        elif status == STATUS_FAILED:
            self.failed += 1
        elif status == STATUS_DRY_RUN:
            self.dry_run += 1
        else:
            raise ValueError("Unknown status '%s'" % status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "total": self.total,
            "created": self.created,
            "skipped": self.skipped,
            "deferred": self.deferred,
            "failed": self.failed,
            "dry_run": self.dry_run,
            "errors": [e.to_dict() for e in self.errors],
            "flagged": list(self.flagged),
        }


def load_dataset(export_dir: str, filename: str) -> Any:
    """
    Loads an export file, failing the stage if it is missing.

    Raises:
        MigrationSetupError: If the file does not exist or is not valid JSON
    """
    path = os.path.join(export_dir, filename)
    if not os.path.exists(path):
        logging.error("Export file %s not found. Run the export step first.", path)
        raise MigrationSetupError("Export file %s not found. Run the export step first." % path)
    try:
        return read_json(path)
    except ValueError as e:
        raise MigrationSetupError("Export file %s is not valid JSON: %s" % (path, e)) from e


def save_errors(export_dir: str, filename: str, errors: Sequence[MigrationError]) -> Optional[str]:
    """
    Writes this run's errors to a side file. Returns its path, or None if there were none.

    A file left by an earlier run is removed when this run had no errors, since
    every previously failed record has been retried.
    """
    path = os.path.join(export_dir, filename)
    if not errors:
        if os.path.exists(path):
            os.remove(path)
            logging.info("No errors this run. Removed %s from a previous run.", path)
        return None
    write_json(path, [e.to_dict() for e in errors])
    logging.warning("%d error(s) saved to %s", len(errors), path)
    return path


def migrate_records(
    kind: str,
    raw_records: Sequence[Mapping[str, Any]],
    parse: Callable[[Mapping[str, Any]], Any],
    build: Callable[[Any], Dict[str, Any]],
    create: Callable[[Dict[str, Any]], Any],
    mapping: MigrationMap,
    batch_size: int = DEFAULT_BATCH_SIZE,
    dry_run: bool = False,
    progress: Optional[ProgressCallback] = None,
    result: Optional[StageResult] = None,
) -> StageResult:
    """
    Migrates one entity kind, in export order.

    Args:
        kind: Mapping table name ("products", "prices", "customers", "subscriptions")
        raw_records: Exported records as dicts
        parse: Turns a raw dict into a typed record
        build: Turns a typed record into a create payload
        create: Sends a payload to the target account and returns the created object
        mapping: Shared MigrationMap; read for skips, written on success
        batch_size: Number of creations between checkpoints
        dry_run: If True, builds payloads but creates and records nothing
        progress: Optional callback receiving a Progress per record
        result: Optional StageResult to accumulate into

    Returns:
        The StageResult for this kind
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    result = result or StageResult(kind=kind)
    total = len(raw_records)
    result.total += total
    log_prefix = "[Dry Run] " if dry_run else ""
    logging.info("%sMigrating %d %s...", log_prefix, total, kind)

    try:
        for index, raw in enumerate(raw_records, start=1):
            status = _migrate_one(kind, raw, parse, build, create, mapping, dry_run, result)
            result.record(status)

            if status == STATUS_CREATED and result.created % batch_size == 0:
                mapping.save()
                logging.info("Progress saved: %d %s migrated", result.created, kind)

            if progress:
                progress(Progress(stage=kind, processed=index, total=total))
    finally:
        # Objects created before an interruption must stay mapped
        if not dry_run:
            mapping.save()

    logging.info(
        "%s%s migration completed - Created: %d, Skipped: %d, Deferred: %d, Failed: %d%s",
        log_prefix,
        kind.capitalize(),
        result.created,
        result.skipped,
        result.deferred,
        result.failed,
        ", Would create: %d" % result.dry_run if dry_run else "",
    )
    return result


def _migrate_one(
    kind: str,
    raw: Mapping[str, Any],
    parse: Callable[[Mapping[str, Any]], Any],
    build: Callable[[Any], Dict[str, Any]],
    create: Callable[[Dict[str, Any]], Any],
    mapping: MigrationMap,
    dry_run: bool,
    result: StageResult,
) -> str:
    old_id = str(raw.get("id") or "<unknown>")

    if mapping.has(kind, old_id):
        logging.debug("  Skipping %s %s (already migrated)", kind, old_id)
        return STATUS_SKIPPED

    try:
        record = parse(raw)
        params = build(record)
    except DependencyNotReady as e:
        logging.warning("  Skipping %s %s: %s", kind, old_id, e)
        return STATUS_DEFERRED
    except RecordError as e:
        logging.error("  Invalid %s %s: %s", kind, old_id, e)
        result.errors.append(MigrationError(kind, old_id, str(e)))
        return STATUS_FAILED

    if dry_run:
        logging.info("  [Dry Run] Would create %s for %s", kind, old_id)
        logging.debug("  [Dry Run] Payload: %s", params)
        return STATUS_DRY_RUN

    try:
        logging.debug("  Creating %s with params: %s", kind, params)
        created = create(params)
    except stripe.StripeError as e:
        logging.error("  Error migrating %s %s: %s", kind, old_id, e)
        result.errors.append(MigrationError(kind, old_id, str(e)))
        return STATUS_FAILED

    new_id = mapping.set(kind, old_id, created.id)
    logging.info("  Migrated %s: %s -> %s", kind, old_id, new_id)
    return STATUS_CREATED
