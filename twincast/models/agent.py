"""Agent model."""

import uuid

from sqlalchemy import BigInteger, Column, DateTime, String, Text

from twincast.database import Base, utcnow


class AgentStatus:
    """Agent lifecycle states."""

    INITIALIZING = "initializing"
    REINITIALIZING = "reinitializing"
    READY = "ready"
    ERROR = "error"


class Agent(Base):
    """The digital twin of a Farcaster user.

    ``creator_fid`` is the owning user, ``fid`` the twin's own account.
    """

    __tablename__ = "agents"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    fid = Column(BigInteger, unique=True)
    creator_fid = Column(BigInteger, nullable=False, unique=True)
    status = Column(String(16), nullable=False, default=AgentStatus.INITIALIZING)

    username = Column(Text)
    display_name = Column(Text)
    avatar_url = Column(Text)
    bio = Column(Text)

    # Credentials for the twin account
    signer_uuid = Column(String(64))
    custody_address = Column(String(64))
    mnemonic = Column(Text)

    # Style profile, persisted as queryable fields
    style_profile_prompt = Column(Text)
    topic_patterns_prompt = Column(Text)
    keywords = Column(Text)  # comma-joined

    personality = Column(Text)
    tone = Column(Text)
    movie_character = Column(Text)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
