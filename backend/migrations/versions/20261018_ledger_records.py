"""Ledger records and document sequences

Revision ID: 20261018_ledger
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_ledger"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "ledger_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("collection", sa.String(length=64), nullable=False),
        sa.Column("record_id", sa.String(length=128), nullable=False),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("collection", "record_id", name="uq_ledger_records_collection_record"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_ledger_records_collection", "ledger_records", ["collection"], unique=False)

    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("prefix", sa.String(length=8), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("prefix", name="uq_doc_sequences_prefix"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_document_sequences_prefix", "document_sequences", ["prefix"], unique=False)


def downgrade():
    op.drop_index("ix_document_sequences_prefix", table_name="document_sequences")
    op.drop_table("document_sequences")
    op.drop_index("ix_ledger_records_collection", table_name="ledger_records")
    op.drop_table("ledger_records")
