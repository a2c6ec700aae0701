# Overview: Full-ledger export and destructive restore of every collection.

from __future__ import annotations

from flask import current_app

from ..time_utils import normalize_timestamp
from . import gateway
from .concurrency import run_command
from .document_service import reset_sequences
from .errors import LedgerValidationError

SCHEMA_VERSION = 1


def export_backup() -> dict:
    """Snapshot every collection as plain JSON documents."""
    return {
        "schema_version": SCHEMA_VERSION,
        "exported_at": normalize_timestamp(None),
        "collections": {name: gateway.get_all(name) for name in gateway.COLLECTIONS},
    }


def _validate_document(document: dict) -> dict:
    if not isinstance(document, dict):
        raise LedgerValidationError("Backup must be a JSON object")
    version = document.get("schema_version")
    if version != SCHEMA_VERSION:
        raise LedgerValidationError(
            f"Unsupported backup schema version: {version}",
            {"schema_version": version, "supported": SCHEMA_VERSION},
        )
    collections = document.get("collections")
    if not isinstance(collections, dict):
        raise LedgerValidationError("Backup has no collections", {"field": "collections"})

    unknown = sorted(set(collections) - set(gateway.COLLECTIONS))
    if unknown:
        raise LedgerValidationError("Backup contains unknown collections", {"collections": unknown})

    for name, records in collections.items():
        if not isinstance(records, list):
            raise LedgerValidationError(f"Collection {name} must be a list", {"collection": name})
        seen = set()
        for index, record in enumerate(records):
            if not isinstance(record, dict) or not isinstance(record.get("id"), str) or not record["id"]:
                raise LedgerValidationError(
                    f"Record {index} of {name} has no string id",
                    {"collection": name, "index": index},
                )
            if record["id"] in seen:
                raise LedgerValidationError(
                    f"Duplicate id {record['id']} in {name}",
                    {"collection": name, "id": record["id"]},
                )
            seen.add(record["id"])
    return collections


def restore_backup(document: dict, *, confirm: bool = False) -> dict:
    """
    Replace the whole ledger with a backup document.

    CRITICAL: Destructive. Every collection (and every invoice counter) is
    cleared and the backup records are inserted verbatim, all in one
    command; a failure leaves the previous ledger in place. Requires
    confirm=True.
    """
    if not confirm:
        raise LedgerValidationError(
            "Restore replaces all ledger data; confirmation is required",
            {"confirm": False},
        )
    collections = _validate_document(document)
    current_app.logger.warning(
        "Restoring ledger backup exported at %s; all existing data will be replaced",
        document.get("exported_at"),
    )

    def _op() -> dict:
        counts = {}
        for name in gateway.COLLECTIONS:
            gateway.clear(name)
            records = collections.get(name, [])
            for record in records:
                gateway.put(name, record)
            counts[name] = len(records)
        reset_sequences()
        return counts

    counts = run_command(_op, "restore_backup")
    current_app.logger.warning("Ledger restored: %d records", sum(counts.values()))
    return {"restored": counts}
