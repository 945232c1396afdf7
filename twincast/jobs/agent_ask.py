"""Handler of the agent-ask queue."""

import logging
from typing import Dict

from twincast.errors import NotFound
from twincast.services.agent_service import AgentService
from twincast.worker import JobContext

logger = logging.getLogger(__name__)


def process(ctx: JobContext, service: AgentService) -> Dict:
    """
    Answer a question as the twin ``agent_fid``.

    The outcome is returned as the job result and read back via job status.

    Raises:
        NotFound: If no agent owns that twin fid
    """
    data = ctx.data
    agent = service.get_by_fid(data.agent_fid)
    if agent is None:
        raise NotFound(f"No agent with fid {data.agent_fid}")

    ctx.update_progress(10)
    outcome = service.ask(agent, data.question, data.conversation_history)
    logger.info(f"[agent-ask] job #{ctx.id} answered as fid {data.agent_fid}: {outcome.kind}")
    return {
        "status": "success",
        "message": f"Question answered by agent {data.agent_fid}",
        "details": outcome.model_dump(),
    }
