"""Handler of the agent-initialization queue."""

import logging
from typing import Dict

from twincast.services.agent_service import AgentService
from twincast.worker import JobContext

logger = logging.getLogger(__name__)


def process(ctx: JobContext, service: AgentService) -> Dict:
    """Create the twin of the requesting user."""
    logger.info(f"[agent-initialization] job #{ctx.id} for fid {ctx.data.creator_fid}")
    return service.initialize(ctx.data, ctx)
