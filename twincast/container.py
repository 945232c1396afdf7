"""Explicit wiring of clients, queues, services and workers."""

import logging
from functools import partial
from typing import Dict, Optional

from sqlalchemy.orm import sessionmaker

from twincast.agents.conversation import ConversationEngine
from twincast.agents.profiler import StyleProfiler
from twincast.config import Settings, settings as default_settings
from twincast.database import Base, SessionLocal
from twincast.jobs import agent_ask, agent_initialization, agent_reinitialization, neynar_webhook
from twincast.schemas.jobs import (
    AgentAskJobData,
    AgentInitJobData,
    AgentReinitJobData,
    BackoffPolicy,
    JobOptions,
    NeynarWebhookJobData,
    QueueName,
)
from twincast.services.agent_service import AgentService
from twincast.services.embeddings import EmbeddingService
from twincast.services.llm_client import LLMClient
from twincast.services.lock import DistributedLock
from twincast.services.neynar import CustodyWallet, NeynarClient
from twincast.services.queue import JobQueue
from twincast.services.retrieval import RetrievalService
from twincast.services.vector_index import VectorIndex
from twincast.services.wallet import EthCustodyWallet
from twincast.services.webhook import WebhookIngress
from twincast.worker import RateLimiter, Worker, WorkerPool

logger = logging.getLogger(__name__)

QUEUE_OPTIONS = {
    QueueName.AGENT_INITIALIZATION: (
        AgentInitJobData,
        JobOptions(attempts=3, backoff=BackoffPolicy(type="exponential", delay_ms=5000)),
    ),
    QueueName.AGENT_REINITIALIZATION: (
        AgentReinitJobData,
        JobOptions(attempts=3, backoff=BackoffPolicy(type="exponential", delay_ms=5000)),
    ),
    QueueName.AGENT_ASK: (
        AgentAskJobData,
        JobOptions(attempts=2, backoff=BackoffPolicy(type="fixed", delay_ms=2000)),
    ),
    QueueName.NEYNAR_WEBHOOK: (
        NeynarWebhookJobData,
        JobOptions(attempts=3, backoff=BackoffPolicy(type="exponential", delay_ms=2000)),
    ),
}


class Container:
    """Owns every long-lived component; closed once at shutdown."""

    def __init__(
        self,
        settings: Settings = default_settings,
        session_factory: sessionmaker = SessionLocal,
        llm: Optional[LLMClient] = None,
        embeddings: Optional[EmbeddingService] = None,
        neynar: Optional[NeynarClient] = None,
        wallet: Optional[CustodyWallet] = None,
    ):
        self.settings = settings
        self.session_factory = session_factory

        self.llm = llm or LLMClient()
        self.embeddings = embeddings or EmbeddingService()
        self.neynar = neynar or NeynarClient()
        self.wallet = wallet or EthCustodyWallet()

        self.lock = DistributedLock(session_factory, settings.LOCK_RETRY_COUNT, settings.LOCK_RETRY_DELAY_MS)
        self.index = VectorIndex(session_factory, dim=settings.EMBED_DIM)
        self.retrieval = RetrievalService(self.embeddings, self.index, settings.MAX_CHUNK_CHARS)
        self.profiler = StyleProfiler(self.llm, settings.PROFILE_MAX_CHARS)
        self.engine = ConversationEngine(self.llm)

        self.queues: Dict[str, JobQueue] = {
            name: JobQueue(name, session_factory, schema, options, settings.MAX_STALLED_COUNT)
            for name, (schema, options) in QUEUE_OPTIONS.items()
        }

        self.agents = AgentService(
            session_factory,
            self.lock,
            self.neynar,
            self.retrieval,
            self.profiler,
            self.engine,
            settings=settings,
            wallet=self.wallet,
        )
        self.ingress = WebhookIngress(
            self.queues[QueueName.NEYNAR_WEBHOOK],
            settings.NEYNAR_WEBHOOK_SECRET,
            trust_unsigned=settings.trusts_unsigned_webhooks,
        )
        self._pool: Optional[WorkerPool] = None

    def queue(self, name: str) -> JobQueue:
        return self.queues[name]

    def create_tables(self) -> None:
        """Create missing tables on the bound engine."""
        Base.metadata.create_all(self.session_factory.kw["bind"])

    def handlers(self):
        return {
            QueueName.AGENT_INITIALIZATION: partial(agent_initialization.process, service=self.agents),
            QueueName.AGENT_REINITIALIZATION: partial(agent_reinitialization.process, service=self.agents),
            QueueName.AGENT_ASK: partial(agent_ask.process, service=self.agents),
            QueueName.NEYNAR_WEBHOOK: partial(neynar_webhook.process, service=self.agents, neynar=self.neynar),
        }

    def worker(self, name: str) -> Worker:
        """Worker for queue ``name``; the webhook queue is rate limited."""
        concurrency = 1
        limiter = None
        if name == QueueName.NEYNAR_WEBHOOK:
            concurrency = self.settings.WEBHOOK_WORKER_CONCURRENCY
            limiter = RateLimiter(self.settings.WEBHOOK_RATE_LIMIT_MAX, self.settings.WEBHOOK_RATE_LIMIT_WINDOW)
        return Worker(
            self.queues[name],
            self.handlers()[name],
            concurrency=concurrency,
            limiter=limiter,
            poll_interval=self.settings.WORKER_POLL_INTERVAL,
            lock_duration=self.settings.JOB_LOCK_DURATION,
            stalled_interval=self.settings.STALLED_INTERVAL,
        )

    def worker_pool(self) -> WorkerPool:
        if self._pool is None:
            self._pool = WorkerPool([self.worker(name) for name in QueueName.ALL])
        return self._pool

    def close(self) -> None:
        """Stop workers, then close the HTTP clients."""
        if self._pool is not None:
            self._pool.close()
        self.llm.close()
        self.embeddings.close()
        self.neynar.close()
        logger.info("Container closed")


def build_container(**overrides) -> Container:
    return Container(**overrides)
