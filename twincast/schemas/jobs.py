"""Job payload, option and status schemas."""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, PositiveInt


class QueueName:
    """Named queues, one worker pool each."""

    AGENT_INITIALIZATION = "agent-initialization"
    AGENT_REINITIALIZATION = "agent-reinitialization"
    AGENT_ASK = "agent-ask"
    NEYNAR_WEBHOOK = "neynar-webhook"

    ALL = (AGENT_INITIALIZATION, AGENT_REINITIALIZATION, AGENT_ASK, NEYNAR_WEBHOOK)


# Options
class BackoffPolicy(BaseModel):
    """Retry delay policy."""

    type: Literal["exponential", "fixed"] = "exponential"
    delay_ms: int = Field(default=1000, ge=0)

    def delay_for(self, attempts_made: int) -> int:
        """Delay in milliseconds before the retry following ``attempts_made`` attempts."""
        if self.type == "fixed":
            return self.delay_ms
        return self.delay_ms * 2 ** max(attempts_made - 1, 0)


class RetentionPolicy(BaseModel):
    """How many finished jobs to keep, and for how long."""

    count: Optional[int] = Field(default=None, ge=0)
    age_seconds: Optional[int] = Field(default=None, ge=0)


class JobOptions(BaseModel):
    """Options accepted by ``JobQueue.add``."""

    attempts: int = Field(default=1, ge=1)
    backoff: BackoffPolicy = Field(default_factory=BackoffPolicy)
    priority: int = 0
    remove_on_complete: Optional[RetentionPolicy] = None
    remove_on_fail: Optional[RetentionPolicy] = None


# Payloads
class AgentInitJobData(BaseModel):
    """Create a twin for the user ``creator_fid``."""

    creator_fid: PositiveInt
    personality: Optional[str] = None
    tone: Optional[str] = None
    movie_character: Optional[str] = None


class AgentReinitJobData(BaseModel):
    """Rebuild the twin owned by ``creator_fid``."""

    creator_fid: PositiveInt
    refresh_casts: bool = False
    refresh_replies: bool = False
    only_rag: bool = False
    personality: Optional[str] = None
    tone: Optional[str] = None
    movie_character: Optional[str] = None


class AgentAskJobData(BaseModel):
    """Ask the twin ``agent_fid`` a question."""

    agent_fid: PositiveInt
    question: str = Field(min_length=1)
    conversation_history: List[str] = Field(default_factory=list)


class CastAuthor(BaseModel):
    """Author metadata carried with a webhook cast."""

    fid: PositiveInt
    username: str
    display_name: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None


class WebhookCast(BaseModel):
    """Normalised ``cast.created`` event."""

    hash: str
    text: str
    created_at: datetime
    mentioned_fids: List[int]
    url: str
    parent_hash: Optional[str] = None
    author: CastAuthor


class NeynarWebhookJobData(BaseModel):
    """Payload of a ``neynar-webhook`` job."""

    cast: WebhookCast


# Results and status
class JobResult(BaseModel):
    """Value a handler returns on success."""

    status: Literal["success", "failed"] = "success"
    message: str = ""
    details: Dict[str, Any] = Field(default_factory=dict)


class JobEnqueued(BaseModel):
    """Response for accepted asynchronous work."""

    queue: str
    job_id: str
    status: str = "waiting"


class WaitingProgress(BaseModel):
    """``position`` counts the waiting jobs that run before this one."""

    status: Literal["waiting"] = "waiting"
    progress: int
    position: int
    created_at: datetime
    updated_at: datetime


class ActiveProgress(BaseModel):
    status: Literal["active"] = "active"
    progress: int
    attempts_made: int
    created_at: datetime
    updated_at: datetime


class DelayedProgress(BaseModel):
    status: Literal["delayed"] = "delayed"
    progress: int
    delay_reason: str
    process_at: datetime
    created_at: datetime
    updated_at: datetime


class CompletedProgress(BaseModel):
    status: Literal["completed"] = "completed"
    progress: int
    result: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime


class FailedProgress(BaseModel):
    status: Literal["failed"] = "failed"
    progress: int
    error: str
    attempts_made: int
    attempts_remaining: int
    created_at: datetime
    updated_at: datetime


JobProgress = Union[WaitingProgress, ActiveProgress, DelayedProgress, CompletedProgress, FailedProgress]
