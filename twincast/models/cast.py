"""Historical casts and replies imported for a user."""

from sqlalchemy import BigInteger, Column, DateTime, Index, String, Text

from twincast.database import Base


class Cast(Base):
    """A top-level cast authored by a user."""

    __tablename__ = "casts"

    hash = Column(String(66), primary_key=True)
    fid = Column(BigInteger, nullable=False)
    text = Column(Text, nullable=False)
    created_at = Column(DateTime)

    __table_args__ = (Index("idx_casts_fid", "fid"),)


class Reply(Base):
    """A reply authored by a user, with the cast it answered."""

    __tablename__ = "replies"

    hash = Column(String(66), primary_key=True)
    fid = Column(BigInteger, nullable=False)
    text = Column(Text, nullable=False)
    parent_text = Column(Text, default="")
    parent_author_fid = Column(String(32), default="")
    created_at = Column(DateTime)

    __table_args__ = (Index("idx_replies_fid", "fid"),)
