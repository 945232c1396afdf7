"""Agent lifecycle: creation, rebuilds and question answering."""

import logging
import re
from typing import Dict, List, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from twincast.agents.conversation import ConversationEngine
from twincast.agents.profiler import StyleProfiler
from twincast.config import Settings, settings as default_settings
from twincast.errors import ExternalServiceError, InvalidTransition, NotFound
from twincast.models.agent import Agent, AgentStatus
from twincast.models.cast import Cast, Reply
from twincast.schemas.agents import ConversationOutcome, ConversationState, StyleProfile
from twincast.schemas.jobs import AgentInitJobData, AgentReinitJobData
from twincast.services.lock import DistributedLock, LockHandle
from twincast.services.neynar import CustodyWallet, NeynarCast, NeynarClient
from twincast.services.retrieval import RetrievalService
from twincast.worker import JobContext

logger = logging.getLogger(__name__)

# Status machine; any state may also move to ERROR
TRANSITIONS: Dict[str, set] = {
    AgentStatus.INITIALIZING: {AgentStatus.READY},
    AgentStatus.READY: {AgentStatus.REINITIALIZING},
    AgentStatus.REINITIALIZING: {AgentStatus.READY},
    AgentStatus.ERROR: {AgentStatus.INITIALIZING, AgentStatus.REINITIALIZING},
}

FNAME_MAX_LENGTH = 16
FNAME_SUFFIX = "-twin"


def derive_fname(username: str, creator_fid: int) -> str:
    """Farcaster name for a twin: lowercase, alphanumeric or hyphen, at most 16 characters."""
    base = re.sub(r"[^a-z0-9-]", "", username.lower()).strip("-")
    if not base:
        base = f"fid{creator_fid}"
    return base[: FNAME_MAX_LENGTH - len(FNAME_SUFFIX)] + FNAME_SUFFIX


def transition(agent: Agent, status: str) -> None:
    """
    Move ``agent`` to ``status``.

    Raises:
        InvalidTransition: If the status machine does not allow the change
    """
    if status != AgentStatus.ERROR and status not in TRANSITIONS.get(agent.status, set()):
        raise InvalidTransition(agent.status, status)
    logger.info(f"Agent of fid {agent.creator_fid}: {agent.status} -> {status}")
    agent.status = status


def _progress(ctx: Optional[JobContext], value: float) -> None:
    if ctx is not None:
        ctx.update_progress(value)


class AgentService:
    """Creates, rebuilds and answers as digital twins.

    Mutations of one user's agent are serialised by ``lock:user:{creator_fid}``;
    answering questions only reads the agent and takes no lock.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        lock: DistributedLock,
        neynar: NeynarClient,
        retrieval: RetrievalService,
        profiler: StyleProfiler,
        engine: ConversationEngine,
        settings: Settings = default_settings,
        wallet: Optional[CustodyWallet] = None,
    ):
        """Initialize the service."""
        self.session_factory = session_factory
        self.lock = lock
        self.neynar = neynar
        self.retrieval = retrieval
        self.profiler = profiler
        self.engine = engine
        self.settings = settings
        self.wallet = wallet

    # Reads

    def _detach(self, db: Session, agent: Optional[Agent]) -> Optional[Agent]:
        if agent is not None:
            db.expunge(agent)
        return agent

    def get_by_fid(self, fid: int) -> Optional[Agent]:
        """Agent whose twin account is ``fid``."""
        db = self.session_factory()
        try:
            agent = db.execute(select(Agent).where(Agent.fid == fid)).scalar_one_or_none()
            return self._detach(db, agent)
        finally:
            db.close()

    def twin_fids(self) -> List[int]:
        db = self.session_factory()
        try:
            return list(db.execute(select(Agent.fid).where(Agent.fid.is_not(None))).scalars())
        finally:
            db.close()

    def content_texts(self, fid: int) -> List[str]:
        """Stored casts then replies of ``fid``, each newest first."""
        db = self.session_factory()
        try:
            casts = db.execute(
                select(Cast.text).where(Cast.fid == fid).order_by(Cast.created_at.desc())
            ).scalars()
            replies = db.execute(
                select(Reply.text).where(Reply.fid == fid).order_by(Reply.created_at.desc())
            ).scalars()
            return list(casts) + list(replies)
        finally:
            db.close()

    # Initialization

    def initialize(self, data: AgentInitJobData, ctx: Optional[JobContext] = None) -> Dict:
        """
        Create the twin of ``data.creator_fid``.

        An agent left ``initializing`` by a failed attempt is resumed: an
        already registered twin account is reused, never registered twice.

        Returns:
            Job result dict

        Raises:
            LockTimeout: If another mutation of this user holds the lock
            ExternalServiceError: If Neynar, the model or embeddings fail
        """
        creator_fid = data.creator_fid
        with self.lock.user_lock(creator_fid) as handle:
            try:
                return self._initialize(data, handle, ctx)
            except Exception:
                if ctx is None or ctx.is_final_attempt:
                    self._mark_error(creator_fid)
                raise

    def _initialize(self, data: AgentInitJobData, handle: LockHandle, ctx: Optional[JobContext]) -> Dict:
        creator_fid = data.creator_fid
        _progress(ctx, 5)

        db = self.session_factory()
        try:
            agent = db.execute(select(Agent).where(Agent.creator_fid == creator_fid)).scalar_one_or_none()
            if agent is not None and agent.status in (AgentStatus.READY, AgentStatus.REINITIALIZING):
                logger.info(f"Agent for fid {creator_fid} already exists ({agent.status}), nothing to do")
                return {
                    "status": "success",
                    "message": f"Agent for user {creator_fid} already initialized",
                    "details": {"fid": agent.fid, "creator_fid": creator_fid, "resumed": False},
                }

            resumed = agent is not None
            if agent is None:
                agent = Agent(creator_fid=creator_fid, status=AgentStatus.INITIALIZING)
                db.add(agent)
            elif agent.status == AgentStatus.ERROR:
                transition(agent, AgentStatus.INITIALIZING)
            else:
                logger.info(f"Resuming initialization of agent for fid {creator_fid}")

            for field in ("personality", "tone", "movie_character"):
                value = getattr(data, field)
                if value is not None:
                    setattr(agent, field, value)
            db.commit()

            if agent.fid is None:
                self._register(db, agent)
            _progress(ctx, 20)

            self.lock.extend(handle)
            cast_count = self._store_casts(db, creator_fid, replace=resumed)
            _progress(ctx, 35)

            self.lock.extend(handle)
            reply_count = self._store_replies(db, creator_fid, replace=resumed)
            _progress(ctx, 50)

            self.lock.extend(handle)
            texts = self.content_texts(creator_fid)
            chunk_count = self.retrieval.index_contents(creator_fid, texts)
            _progress(ctx, 70)

            self.lock.extend(handle)
            self._apply_profile(agent, self.profiler.build_profile(texts))
            _progress(ctx, 90)

            transition(agent, AgentStatus.READY)
            db.commit()
            twin_fid = agent.fid
        finally:
            db.close()

        _progress(ctx, 100)
        logger.info(f"Agent for fid {creator_fid} ready as twin fid {twin_fid}")
        return {
            "status": "success",
            "message": f"Agent initialized for user {creator_fid} with {cast_count} casts imported.",
            "details": {
                "fid": twin_fid,
                "creator_fid": creator_fid,
                "casts": cast_count,
                "replies": reply_count,
                "chunks": chunk_count,
                "resumed": resumed,
            },
        }

    def _register(self, db: Session, agent: Agent) -> None:
        """Register the twin account and subscribe the webhook to its mentions."""
        if self.wallet is None:
            raise ExternalServiceError("custody-wallet", "not configured")

        user = self.neynar.fetch_user(agent.creator_fid)
        fname = derive_fname(user.username, agent.creator_fid)
        display_name = f"{user.display_name or user.username} (twin)"
        account = self.neynar.register_account(
            fname,
            self.wallet,
            display_name=display_name,
            bio=user.bio,
            pfp_url=user.pfp_url or "",
        )

        agent.fid = account.fid
        agent.username = account.fname
        agent.display_name = display_name
        agent.avatar_url = user.pfp_url
        agent.bio = user.bio
        agent.signer_uuid = account.signer_uuid
        agent.custody_address = account.custody_address
        agent.mnemonic = account.mnemonic
        db.commit()
        logger.info(f"Registered twin fid {account.fid} ({account.fname}) for fid {agent.creator_fid}")

        if self.settings.NEYNAR_WEBHOOK_ID:
            fids = set(self.twin_fids())
            fids.add(account.fid)
            self.neynar.update_webhook_mentions(self.settings.NEYNAR_WEBHOOK_ID, sorted(fids))
        else:
            logger.warning("NEYNAR_WEBHOOK_ID not set, mentions of the new twin will not be delivered")

    # Reinitialization

    def reinitialize(self, data: AgentReinitJobData, ctx: Optional[JobContext] = None) -> Dict:
        """
        Rebuild the twin of ``data.creator_fid``.

        ``refresh_casts`` / ``refresh_replies`` re-import content before the
        rebuild; ``only_rag`` rebuilds the vectors and keeps the style profile.

        Raises:
            NotFound: If the user has no agent
            LockTimeout: If another mutation of this user holds the lock
        """
        creator_fid = data.creator_fid
        with self.lock.user_lock(creator_fid) as handle:
            try:
                return self._reinitialize(data, handle, ctx)
            except NotFound:
                raise
            except Exception:
                if ctx is None or ctx.is_final_attempt:
                    self._mark_error(creator_fid)
                raise

    def _reinitialize(self, data: AgentReinitJobData, handle: LockHandle, ctx: Optional[JobContext]) -> Dict:
        creator_fid = data.creator_fid
        _progress(ctx, 5)

        db = self.session_factory()
        try:
            agent = db.execute(select(Agent).where(Agent.creator_fid == creator_fid)).scalar_one_or_none()
            if agent is None:
                raise NotFound(f"No agent for fid {creator_fid}")
            if agent.status != AgentStatus.REINITIALIZING:
                transition(agent, AgentStatus.REINITIALIZING)

            for field in ("personality", "tone", "movie_character"):
                value = getattr(data, field)
                if value is not None:
                    setattr(agent, field, value)
            db.commit()

            cast_count = reply_count = 0
            if data.refresh_casts:
                self.lock.extend(handle)
                cast_count = self._store_casts(db, creator_fid, replace=True)
            _progress(ctx, 30)

            if data.refresh_replies:
                self.lock.extend(handle)
                reply_count = self._store_replies(db, creator_fid, replace=True)
            _progress(ctx, 50)

            self.lock.extend(handle)
            texts = self.content_texts(creator_fid)
            chunk_count = self.retrieval.index_contents(creator_fid, texts)
            _progress(ctx, 70)

            if not data.only_rag:
                self.lock.extend(handle)
                self._apply_profile(agent, self.profiler.build_profile(texts))
            _progress(ctx, 90)

            transition(agent, AgentStatus.READY)
            db.commit()
        finally:
            db.close()

        _progress(ctx, 100)
        return {
            "status": "success",
            "message": f"Agent reinitialized for user {creator_fid}",
            "details": {
                "creator_fid": creator_fid,
                "imported_casts": cast_count,
                "imported_replies": reply_count,
                "chunks": chunk_count,
                "profile_rebuilt": not data.only_rag,
            },
        }

    # Content import

    def _store_casts(self, db: Session, fid: int, replace: bool) -> int:
        casts = self.neynar.fetch_user_casts(fid, limit=self.settings.CAST_FETCH_LIMIT)
        kept = [c for c in casts if len(c.text) > self.settings.CAST_MIN_LENGTH]
        logger.info(f"Filtered to {len(kept)} of {len(casts)} casts (min length: {self.settings.CAST_MIN_LENGTH})")

        if replace:
            deleted = db.execute(delete(Cast).where(Cast.fid == fid)).rowcount
            logger.info(f"Deleted {deleted} existing casts for fid {fid}")
        unique = _unique(kept)
        for cast in unique:
            db.merge(Cast(hash=cast.hash, fid=fid, text=cast.text, created_at=cast.timestamp))
        db.commit()
        return len(unique)

    def _store_replies(self, db: Session, fid: int, replace: bool) -> int:
        replies = [r for r in self.neynar.fetch_user_replies(fid, limit=self.settings.REPLY_FETCH_LIMIT) if r.text]

        if replace:
            deleted = db.execute(delete(Reply).where(Reply.fid == fid)).rowcount
            logger.info(f"Deleted {deleted} existing replies for fid {fid}")
        unique = _unique(replies)
        for reply in unique:
            db.merge(
                Reply(
                    hash=reply.hash,
                    fid=fid,
                    text=reply.text,
                    parent_text=reply.parent_text,
                    parent_author_fid=str(reply.parent_author_fid or ""),
                    created_at=reply.timestamp,
                )
            )
        db.commit()
        return len(unique)

    def _apply_profile(self, agent: Agent, profile: StyleProfile) -> None:
        agent.style_profile_prompt = profile.to_prompt()
        agent.topic_patterns_prompt = profile.topic_patterns_json()
        agent.keywords = profile.keywords_csv()

    def _mark_error(self, creator_fid: int) -> None:
        db = self.session_factory()
        try:
            agent = db.execute(select(Agent).where(Agent.creator_fid == creator_fid)).scalar_one_or_none()
            if agent is not None:
                transition(agent, AgentStatus.ERROR)
                db.commit()
        finally:
            db.close()

    # Answering

    def ask(self, agent: Agent, question: str, history: Sequence[str] = ()) -> ConversationOutcome:
        """Answer ``question`` in the voice of ``agent``'s owner."""
        keywords = [k.strip() for k in (agent.keywords or "").split(",") if k.strip()]
        state = ConversationState(
            question=question,
            conversation_history=list(history),
            style_profile=StyleProfile.from_prompt(agent.style_profile_prompt),
            keywords=keywords,
            retrieved_context=self.retrieval.retrieve(agent.creator_fid, question),
        )
        return self.engine.run(state).outcome


def _unique(casts: Sequence[NeynarCast]) -> List[NeynarCast]:
    return list({c.hash: c for c in casts}.values())
