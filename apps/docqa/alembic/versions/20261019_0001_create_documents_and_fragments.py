"""create documents and fragments tables

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00
"""

import os
from typing import Sequence, Union

from alembic import op
from pgvector.sqlalchemy import Vector
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _embedding_type(dialect_name: str) -> sa.types.TypeEngine:
    if dialect_name == "postgresql":
        # HNSW needs a fixed dimension on the column.
        return Vector(int(os.getenv("RAG_EMBEDDING_DIM", "1536")))
    return sa.LargeBinary()


def upgrade() -> None:
    dialect_name = op.get_bind().dialect.name
    if dialect_name == "postgresql":
        op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    op.create_table(
        "documents",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("source_path", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("stage", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )

    op.create_table(
        "fragments",
        sa.Column("id", sa.String(length=96), primary_key=True, nullable=False),
        sa.Column(
            "document_id",
            sa.String(length=64),
            sa.ForeignKey("documents.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("chunk_index", sa.Integer(), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("token_count", sa.Integer(), nullable=False),
        sa.Column("embedding", _embedding_type(dialect_name), nullable=False),
        sa.Column("embedding_dim", sa.Integer(), nullable=False),
        sa.Column("page_numbers", sa.JSON(), nullable=False),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.UniqueConstraint("document_id", "chunk_index", name="uq_fragments_document_chunk"),
    )
    op.create_index("ix_fragments_document_id", "fragments", ["document_id"])

    if dialect_name == "postgresql":
        op.execute(
            "CREATE INDEX ix_fragments_embedding_hnsw ON fragments "
            "USING hnsw (embedding vector_cosine_ops)"
        )


def downgrade() -> None:
    if op.get_bind().dialect.name == "postgresql":
        op.execute("DROP INDEX IF EXISTS ix_fragments_embedding_hnsw")
    op.drop_index("ix_fragments_document_id", table_name="fragments")
    op.drop_table("fragments")
    op.drop_table("documents")
