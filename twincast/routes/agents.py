"""Agent and job routes."""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from twincast.container import Container
from twincast.database import get_db
from twincast.errors import ValidationError
from twincast.models.agent import Agent, AgentStatus
from twincast.schemas.agents import AgentInitRequest, AgentReinitRequest, AgentResponse, AskRequest
from twincast.schemas.jobs import (
    AgentAskJobData,
    AgentInitJobData,
    AgentReinitJobData,
    JobEnqueued,
    JobProgress,
    QueueName,
)

logger = logging.getLogger(__name__)


def get_container(request: Request) -> Container:
    return request.app.state.container


def require_api_secret(
    x_api_secret: Optional[str] = Header(default=None),
    container: Container = Depends(get_container),
):
    """Reject requests without the shared API secret."""
    expected = container.settings.API_SECRET_KEY
    if not expected or not x_api_secret or not hmac.compare_digest(expected, x_api_secret):
        raise HTTPException(status_code=401, detail="Invalid API secret")


router = APIRouter(prefix="/api", tags=["agents"], dependencies=[Depends(require_api_secret)])


def _enqueue(container: Container, queue_name: str, name: str, payload) -> JobEnqueued:
    try:
        job_id = container.queue(queue_name).add(name, payload)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return JobEnqueued(queue=queue_name, job_id=job_id)


@router.post("/agents", response_model=JobEnqueued, status_code=202)
def create_agent(
    data: AgentInitRequest,
    db: Session = Depends(get_db),
    container: Container = Depends(get_container),
):
    """Enqueue creation of the twin of user ``fid``."""
    existing = db.query(Agent).filter(Agent.creator_fid == data.fid).first()
    if existing and existing.status != AgentStatus.ERROR:
        raise HTTPException(status_code=409, detail=f"Agent already exists for fid {data.fid}")

    payload = AgentInitJobData(
        creator_fid=data.fid,
        personality=data.personality,
        tone=data.tone,
        movie_character=data.movie_character,
    )
    enqueued = _enqueue(container, QueueName.AGENT_INITIALIZATION, f"init-{data.fid}", payload)
    logger.info(f"Agent initialization for fid {data.fid} enqueued as job {enqueued.job_id}")
    return enqueued


@router.post("/agents/{creator_fid}/reinitialize", response_model=JobEnqueued, status_code=202)
def reinitialize_agent(
    creator_fid: int,
    data: AgentReinitRequest,
    db: Session = Depends(get_db),
    container: Container = Depends(get_container),
):
    """Enqueue a rebuild of the twin owned by ``creator_fid``."""
    agent = db.query(Agent).filter(Agent.creator_fid == creator_fid).first()
    if not agent:
        raise HTTPException(status_code=404, detail="Agent not found")

    payload = AgentReinitJobData(creator_fid=creator_fid, **data.model_dump())
    return _enqueue(container, QueueName.AGENT_REINITIALIZATION, f"reinit-{creator_fid}", payload)


@router.get("/agents/{fid}", response_model=AgentResponse)
def get_agent(fid: int, db: Session = Depends(get_db)):
    """Agent by twin fid, falling back to the owner's fid."""
    agent = db.query(Agent).filter(Agent.fid == fid).first()
    if not agent:
        agent = db.query(Agent).filter(Agent.creator_fid == fid).first()
    if not agent:
        raise HTTPException(status_code=404, detail="Agent not found")
    return AgentResponse.model_validate(agent)


@router.post("/agents/{fid}/ask", response_model=JobEnqueued, status_code=202)
def ask_agent(
    fid: int,
    data: AskRequest,
    db: Session = Depends(get_db),
    container: Container = Depends(get_container),
):
    """Enqueue a question for the twin ``fid``; poll the job for the answer."""
    agent = db.query(Agent).filter(Agent.fid == fid).first()
    if not agent:
        raise HTTPException(status_code=404, detail="Agent not found")

    payload = AgentAskJobData(agent_fid=fid, question=data.question, conversation_history=data.conversation_history)
    return _enqueue(container, QueueName.AGENT_ASK, f"ask-{fid}", payload)


@router.get("/jobs/{queue}/{job_id}", response_model=JobProgress)
def get_job_status(queue: str, job_id: str, container: Container = Depends(get_container)):
    """Status, progress and result of a job."""
    if queue not in container.queues:
        raise HTTPException(status_code=404, detail="Queue not found")
    progress = container.queue(queue).get_progress(job_id)
    if progress is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return progress
