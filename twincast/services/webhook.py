"""Webhook ingress: authenticate, classify and enqueue Neynar events."""

import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from twincast.errors import AuthenticationError, ValidationError
from twincast.schemas.jobs import CastAuthor, NeynarWebhookJobData, WebhookCast
from twincast.schemas.webhook import CastCreatedEvent, webhook_event_adapter
from twincast.services.queue import JobQueue

logger = logging.getLogger(__name__)

CAST_URL = "https://farcaster.xyz/{username}/{hash}"


def verify_signature(raw_body: bytes, signature: Optional[str], secret: str) -> bool:
    """Check a hex HMAC-SHA512 of the raw request body."""
    if not signature or not secret:
        return False
    expected = hmac.new(secret.encode(), raw_body, hashlib.sha512).hexdigest()
    return hmac.compare_digest(expected, signature.strip().lower())


def _created_at(event: CastCreatedEvent) -> datetime:
    timestamp = event.data.timestamp
    if timestamp is not None:
        if timestamp.tzinfo is not None:
            timestamp = timestamp.astimezone(timezone.utc)
        return timestamp.replace(tzinfo=None)
    return datetime.fromtimestamp(event.created_at, tz=timezone.utc).replace(tzinfo=None)


def normalize_cast(event: CastCreatedEvent) -> WebhookCast:
    """Job payload for a ``cast.created`` event."""
    data = event.data
    author = data.author
    # Deduplicated, first mention wins the position
    mentioned_fids = list(dict.fromkeys(p.fid for p in data.mentioned_profiles))
    return WebhookCast(
        hash=data.hash,
        text=data.text,
        created_at=_created_at(event),
        mentioned_fids=mentioned_fids,
        url=CAST_URL.format(username=author.username, hash=data.hash),
        parent_hash=data.parent_hash,
        author=CastAuthor(
            fid=author.fid,
            username=author.username,
            display_name=author.display_name,
            bio=author.profile.bio.text or None,
            avatar_url=author.pfp_url,
        ),
    )


@dataclass
class IngressResponse:
    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)


class WebhookIngress:
    """Turns signed webhook deliveries into ``neynar-webhook`` jobs."""

    def __init__(self, queue: JobQueue, secret: str, trust_unsigned: bool = False):
        self.queue = queue
        self.secret = secret
        self.trust_unsigned = trust_unsigned

    def authenticate(self, raw_body: bytes, signature: Optional[str]) -> None:
        """
        Raises:
            AuthenticationError: If the signature is missing or wrong
        """
        if not signature and self.trust_unsigned:
            logger.warning("Accepting unsigned webhook in development")
            return
        if not signature:
            raise AuthenticationError("Missing webhook signature")
        if not verify_signature(raw_body, signature, self.secret):
            raise AuthenticationError("Invalid webhook signature")

    def parse(self, raw_body: bytes):
        """
        Raises:
            ValidationError: If the body is not a recognised event
        """
        try:
            return webhook_event_adapter.validate_json(raw_body)
        except PydanticValidationError as e:
            raise ValidationError("Unrecognised webhook event", errors=e.errors()) from e

    def handle(self, raw_body: bytes, signature: Optional[str]) -> IngressResponse:
        """
        Authenticate, parse and enqueue a delivery.

        Returns:
            401 on bad signature, 400 on an unrecognised body, 200 for events
            that need no work, 202 with the job id for ``cast.created``
        """
        try:
            self.authenticate(raw_body, signature)
        except AuthenticationError as e:
            logger.warning(f"Rejected webhook: {e}")
            return IngressResponse(401, {"error": str(e)})

        try:
            event = self.parse(raw_body)
        except ValidationError as e:
            logger.warning(f"Rejected webhook body: {e}")
            return IngressResponse(400, {"error": str(e)})

        if not isinstance(event, CastCreatedEvent):
            logger.info(f"Ignoring webhook event {event.type}")
            return IngressResponse(200, {"message": f"Event {event.type} ignored"})

        payload = NeynarWebhookJobData(cast=normalize_cast(event))
        job_id = self.queue.add("neynar-webhook", payload)
        logger.info(f"Enqueued cast {payload.cast.hash} mentioning {payload.cast.mentioned_fids} as job {job_id}")
        return IngressResponse(202, {"message": "Webhook accepted", "job_id": job_id})
