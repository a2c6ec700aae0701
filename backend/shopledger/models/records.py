from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class LedgerRecord(db.Model):
    """
    One stored document in a named collection.

    The persistence gateway treats every entity (products, invoices, parties,
    transactions, ...) as a plain JSON document keyed by a string id inside
    its collection. No joins happen here; referential lookups are done by the
    services scanning a collection.

    CONCURRENCY: version_id is an optimistic lock. A writer that loaded an
    older version gets StaleDataError on flush and the command is retried.
    """
    __tablename__ = "ledger_records"
    __table_args__ = (
        db.UniqueConstraint("collection", "record_id", name="uq_ledger_records_collection_record"),
        db.Index("ix_ledger_records_collection", "collection"),
        {"sqlite_autoincrement": True},
    )

    # Surrogate key keeps insertion order stable for get_all()
    id = db.Column(db.Integer, primary_key=True)

    collection = db.Column(db.String(64), nullable=False)
    record_id = db.Column(db.String(128), nullable=False)
    data = db.Column(db.JSON, nullable=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<LedgerRecord {self.collection}/{self.record_id} v{self.version_id}>"

    def to_dict(self) -> dict:
        return {
            "collection": self.collection,
            "record_id": self.record_id,
            "data": self.data,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class DocumentSequence(db.Model):
    """
    Atomic per-prefix invoice number counters.

    WHY: Scanning existing ids for the max numeric suffix races under
    concurrent writers. The counter row is incremented inside the same
    transaction that writes the invoice, so a failed command never burns
    or duplicates a number.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("prefix", name="uq_doc_sequences_prefix"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    prefix = db.Column(db.String(8), nullable=False, index=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "prefix": self.prefix,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
