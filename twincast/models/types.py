"""Column types portable between PostgreSQL and SQLite."""

from pgvector.sqlalchemy import Vector
from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB

from twincast.config import settings

JSONType = JSON().with_variant(JSONB(), "postgresql")

# Vector comparator (cosine_distance) on the base type; plain JSON lists on SQLite
EmbeddingType = Vector(settings.EMBED_DIM).with_variant(JSON(), "sqlite")
