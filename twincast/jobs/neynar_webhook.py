"""Handler of the neynar-webhook queue: answer mentions of twins."""

import logging
from typing import Dict, List, Optional

from twincast.errors import ExternalServiceError
from twincast.schemas.jobs import WebhookCast
from twincast.services.agent_service import AgentService
from twincast.services.neynar import NeynarClient
from twincast.worker import JobContext

logger = logging.getLogger(__name__)

START_PROGRESS = 5


def conversation_history(neynar: NeynarClient, cast: WebhookCast) -> List[str]:
    """Texts of the thread above ``cast``, oldest first. Empty for top-level casts."""
    if not cast.parent_hash:
        return []
    try:
        thread = neynar.fetch_conversation(cast.hash)
    except ExternalServiceError as e:
        logger.warning(f"[neynar-webhook] could not fetch thread of {cast.hash}: {e}")
        return []
    return [c.text for c in thread if c.hash != cast.hash and c.text]


def reply_as(
    fid: int,
    cast: WebhookCast,
    history: List[str],
    service: AgentService,
    neynar: NeynarClient,
) -> Dict:
    """Answer ``cast`` as the twin ``fid``. Returns a record of what happened."""
    agent = service.get_by_fid(fid)
    if agent is None:
        logger.warning(f"[neynar-webhook] Agent not found for mentioned fid {fid}")
        return {"fid": fid, "action": "skipped", "reason": "no agent"}
    if not agent.signer_uuid:
        logger.warning(f"[neynar-webhook] Agent {fid} has no signer")
        return {"fid": fid, "action": "skipped", "reason": "no signer"}

    outcome = service.ask(agent, cast.text, history)
    if outcome.kind == "no_reply":
        logger.info(f"[neynar-webhook] Agent {fid} chose not to reply to {cast.hash}")
        return {"fid": fid, "action": "no_reply"}

    reply_hash = neynar.publish_cast(agent.signer_uuid, outcome.answer, parent=cast.hash)
    logger.info(f"[neynar-webhook] Agent {fid} replied to {cast.hash} with {reply_hash}")
    return {"fid": fid, "action": "replied", "hash": reply_hash, "outcome": outcome.kind}


def process(ctx: JobContext, service: AgentService, neynar: NeynarClient) -> Dict:
    """
    Reply to a cast on behalf of every twin it mentions.

    Progress starts at 5 and grows by an equal share per mentioned fid,
    whether that fid was answered or skipped, ending at 100.
    """
    cast: WebhookCast = ctx.data.cast
    logger.info(f"[neynar-webhook] Starting job {ctx.id} for cast {cast.hash}")
    ctx.update_progress(START_PROGRESS)

    fids = cast.mentioned_fids
    if cast.author.fid in set(service.twin_fids()):
        logger.info(f"[neynar-webhook] Cast {cast.hash} authored by twin {cast.author.fid}, ignoring")
        ctx.update_progress(100)
        return {
            "status": "success",
            "message": f"Cast {cast.hash} authored by a twin, ignored",
            "details": {"replies": []},
        }

    history: Optional[List[str]] = None
    records = []
    increment = (100 - START_PROGRESS) / len(fids) if fids else 0

    for i, fid in enumerate(fids):
        if history is None:
            history = conversation_history(neynar, cast)
        records.append(reply_as(fid, cast, history, service, neynar))
        ctx.update_progress(min(round(START_PROGRESS + increment * (i + 1), 2), 100))

    ctx.update_progress(100)
    return {
        "status": "success",
        "message": f"Neynar webhook job completed for cast {cast.hash}",
        "details": {"replies": records},
    }
