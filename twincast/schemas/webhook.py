"""Neynar webhook event schemas."""

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class WebhookBio(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: str = ""


class WebhookProfile(BaseModel):
    model_config = ConfigDict(extra="ignore")

    bio: WebhookBio = Field(default_factory=WebhookBio)


class WebhookUser(BaseModel):
    """User object embedded in webhook casts."""

    model_config = ConfigDict(extra="ignore")

    fid: int
    username: str
    display_name: Optional[str] = None
    pfp_url: Optional[str] = None
    profile: WebhookProfile = Field(default_factory=WebhookProfile)


class WebhookMentionedProfile(BaseModel):
    model_config = ConfigDict(extra="ignore")

    fid: int
    username: Optional[str] = None


class WebhookCastData(BaseModel):
    """The cast carried by ``cast.created``."""

    model_config = ConfigDict(extra="ignore")

    hash: str
    text: str = ""
    timestamp: Optional[datetime] = None
    parent_hash: Optional[str] = None
    author: WebhookUser
    mentioned_profiles: List[WebhookMentionedProfile] = Field(default_factory=list)


class CastCreatedEvent(BaseModel):
    """``cast.created`` event envelope."""

    model_config = ConfigDict(extra="ignore")

    type: Literal["cast.created"]
    created_at: int
    data: WebhookCastData


class OtherWebhookEvent(BaseModel):
    """Recognised events the service acknowledges without acting on them."""

    model_config = ConfigDict(extra="ignore")

    type: Literal[
        "cast.deleted",
        "follow.created",
        "follow.deleted",
        "reaction.created",
        "reaction.deleted",
        "user.created",
        "user.updated",
        "trade.created",
    ]
    created_at: Optional[int] = None
    data: Dict[str, Any] = Field(default_factory=dict)


WebhookEvent = Annotated[Union[CastCreatedEvent, OtherWebhookEvent], Field(discriminator="type")]

webhook_event_adapter = TypeAdapter(WebhookEvent)
