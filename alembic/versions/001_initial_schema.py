"""Initial schema: documents, legal holds, archive records, audit log.

Revision ID: 001
Revises: None
Create Date: 2026-10-17
"""
from __future__ import annotations

from typing import Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, tuple[str, ...], None] = None
depends_on: Union[str, tuple[str, ...], None] = None


def upgrade() -> None:
    # ── Standalone tables (no FKs) ─────────────────────────────────────

    op.create_table(
        "audit_log",
        sa.Column("action", sa.String(100), nullable=False, index=True),
        sa.Column("entity_id", postgresql.UUID(as_uuid=True), index=True),
        sa.Column("correlation_id", postgresql.UUID(as_uuid=True), index=True),
        sa.Column("actor", sa.String(100), comment="Reviewer, admin, or 'system'"),
        sa.Column("source_module", sa.String(100)),
        sa.Column("details", postgresql.JSONB(astext_type=sa.Text())),
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "documents",
        sa.Column("content_hash", sa.String(128), nullable=False, index=True),
        sa.Column("status", sa.String(20), nullable=False, index=True, comment="DocumentStatus enum value"),
        sa.Column("classification_confidence", sa.Float(), nullable=False),
        sa.Column("extraction_confidence", sa.Float(), nullable=False),
        sa.Column("supplier", sa.String(100)),
        sa.Column("job_ref", sa.String(100), index=True, comment="Matched job reference"),
        sa.Column("vehicle_reg", sa.String(20), index=True, comment="Matched vehicle plate"),
        sa.Column("mime_type", sa.String(100)),
        sa.Column("storage_key", sa.String(500), comment="Blob store key"),
        sa.Column("pre_delete_status", sa.String(20), comment="Status captured at soft delete, restored by undelete"),
        sa.Column("restored_from_archive_id", postgresql.UUID(as_uuid=True)),
        sa.Column("status_changed_at", sa.DateTime(timezone=True)),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "archive_records",
        sa.Column("original_document_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("archive_location", sa.String(500), nullable=False),
        sa.Column("archive_size", sa.BigInteger(), nullable=False),
        sa.Column("checksum", sa.String(80), nullable=False, comment="sha256 over the manifest"),
        sa.Column("status", sa.String(20), nullable=False, index=True, comment="ArchiveStatus enum value"),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("archived_by", sa.String(100), nullable=False),
        sa.Column("manifest", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("restore_location", sa.String(500)),
        sa.Column("restored_at", sa.DateTime(timezone=True)),
        sa.Column("restored_by", sa.String(100)),
        sa.Column("restored_document_id", postgresql.UUID(as_uuid=True)),
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    # ── Tables with FKs ──────────────────────────────────────────────

    op.create_table(
        "legal_holds",
        sa.Column("document_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("documents.id"), nullable=False, index=True),
        sa.Column("status", sa.String(20), nullable=False, index=True, comment="HoldStatus enum value"),
        sa.Column("reason", sa.String(1000), nullable=False),
        sa.Column("created_by", sa.String(100), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True)),
        sa.Column("notes", sa.Text()),
        sa.Column("released_by", sa.String(100)),
        sa.Column("released_at", sa.DateTime(timezone=True)),
        sa.Column("release_reason", sa.String(1000)),
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    # Drop in reverse dependency order
    op.drop_table("legal_holds")
    op.drop_table("archive_records")
    op.drop_table("documents")
    op.drop_table("audit_log")
