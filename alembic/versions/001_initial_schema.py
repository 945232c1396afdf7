"""Initial schema with pgvector

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from pgvector.sqlalchemy import Vector
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

EMBED_DIM = 768


def upgrade() -> None:
    # Enable pgvector extension
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    # Check if tables already exist and skip if so
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = inspector.get_table_names()

    if "agents" in existing_tables:
        return

    # Create agents table
    op.create_table(
        "agents",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("fid", sa.BigInteger, unique=True),
        sa.Column("creator_fid", sa.BigInteger, nullable=False, unique=True),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("username", sa.Text),
        sa.Column("display_name", sa.Text),
        sa.Column("avatar_url", sa.Text),
        sa.Column("bio", sa.Text),
        sa.Column("signer_uuid", sa.String(64)),
        sa.Column("custody_address", sa.String(64)),
        sa.Column("mnemonic", sa.Text),
        sa.Column("style_profile_prompt", sa.Text),
        sa.Column("topic_patterns_prompt", sa.Text),
        sa.Column("keywords", sa.Text),
        sa.Column("personality", sa.Text),
        sa.Column("tone", sa.Text),
        sa.Column("movie_character", sa.Text),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )

    # Create casts and replies tables
    op.create_table(
        "casts",
        sa.Column("hash", sa.String(66), primary_key=True),
        sa.Column("fid", sa.BigInteger, nullable=False),
        sa.Column("text", sa.Text, nullable=False),
        sa.Column("created_at", sa.DateTime),
    )
    op.create_index("idx_casts_fid", "casts", ["fid"])

    op.create_table(
        "replies",
        sa.Column("hash", sa.String(66), primary_key=True),
        sa.Column("fid", sa.BigInteger, nullable=False),
        sa.Column("text", sa.Text, nullable=False),
        sa.Column("parent_text", sa.Text),
        sa.Column("parent_author_fid", sa.String(32)),
        sa.Column("created_at", sa.DateTime),
    )
    op.create_index("idx_replies_fid", "replies", ["fid"])

    # Create vector_records table
    op.create_table(
        "vector_records",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column("owner_fid", sa.BigInteger, nullable=False),
        sa.Column("chunk_number", sa.Integer, nullable=False),
        sa.Column("text", sa.Text, nullable=False),
        sa.Column("embedding", Vector(EMBED_DIM), nullable=False),
    )
    op.create_index("idx_vector_records_owner", "vector_records", ["owner_fid"])

    # Create resource_locks table
    op.create_table(
        "resource_locks",
        sa.Column("resource", sa.String(255), primary_key=True),
        sa.Column("token", sa.String(36), nullable=False),
        sa.Column("expires_at", sa.DateTime, nullable=False),
    )

    # Create jobs table
    op.create_table(
        "jobs",
        sa.Column("job_id", sa.String(36), primary_key=True),
        sa.Column("queue", sa.String(64), nullable=False),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("payload", JSONB, nullable=False),
        sa.Column("priority", sa.Integer, nullable=False, server_default="0"),
        sa.Column("attempts_made", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="1"),
        sa.Column("backoff", JSONB),
        sa.Column("remove_on_complete", JSONB),
        sa.Column("remove_on_fail", JSONB),
        sa.Column("progress", sa.Integer, nullable=False, server_default="0"),
        sa.Column("result", JSONB),
        sa.Column("last_error", sa.Text),
        sa.Column("stalled_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("process_at", sa.DateTime),
        sa.Column("locked_until", sa.DateTime),
        sa.Column("lock_token", sa.String(36)),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("finished_at", sa.DateTime),
    )
    op.create_index("idx_jobs_queue_status", "jobs", ["queue", "status"])
    op.create_index("idx_jobs_process_at", "jobs", ["process_at"])


def downgrade() -> None:
    op.drop_table("jobs")
    op.drop_table("resource_locks")
    op.drop_table("vector_records")
    op.drop_table("replies")
    op.drop_table("casts")
    op.drop_table("agents")
    op.execute("DROP EXTENSION IF EXISTS vector")
