"""Handler of the agent-reinitialization queue."""

import logging
from typing import Dict

from twincast.services.agent_service import AgentService
from twincast.worker import JobContext

logger = logging.getLogger(__name__)


def process(ctx: JobContext, service: AgentService) -> Dict:
    data = ctx.data
    logger.info(
        f"[agent-reinitialization] job #{ctx.id} for fid {data.creator_fid} "
        f"(refresh_casts={data.refresh_casts}, refresh_replies={data.refresh_replies}, only_rag={data.only_rag})"
    )
    return service.reinitialize(data, ctx)
