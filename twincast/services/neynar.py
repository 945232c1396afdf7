"""Neynar (Farcaster) API client."""

import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

import httpx
from pydantic import BaseModel
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from twincast.config import settings
from twincast.errors import ExternalServiceError
from twincast.services.llm_client import is_retryable

logger = logging.getLogger(__name__)

MAX_CASTS_PER_REQUEST = 150
MAX_REPLIES_PER_REQUEST = 50
CUSTODY_SIGNATURE_TTL = 3600


class NeynarUser(BaseModel):
    fid: int
    username: str
    display_name: str = ""
    pfp_url: Optional[str] = None
    bio: str = ""


class NeynarCast(BaseModel):
    """A cast as imported for profiling and chunking."""

    hash: str
    text: str
    author_fid: int
    timestamp: Optional[datetime] = None
    parent_hash: Optional[str] = None
    parent_text: str = ""
    parent_author_fid: Optional[int] = None


class CustodyAccount(BaseModel):
    """Freshly generated custody key material for a twin account."""

    address: str
    mnemonic: str


class RegisteredAccount(BaseModel):
    fid: int
    fname: str
    custody_address: str
    mnemonic: str
    signer_uuid: str


class CustodyWallet(Protocol):
    """Generates custody keys and signs the IdRegistry transfer of a fresh fid."""

    def create_account(self) -> CustodyAccount:
        ...

    def sign_fid_transfer(self, account: CustodyAccount, fid: int, deadline: int) -> str:
        ...


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00")).replace(tzinfo=None)


def _to_cast(raw: Dict[str, Any]) -> NeynarCast:
    try:
        return NeynarCast(
            hash=raw["hash"],
            text=raw.get("text") or "",
            author_fid=raw["author"]["fid"],
            timestamp=_parse_timestamp(raw.get("timestamp")),
            parent_hash=raw.get("parent_hash"),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ExternalServiceError("neynar", f"Malformed cast in response: {e!r}") from e


class NeynarClient:
    """Thin client over the Neynar v2 Farcaster API."""

    def __init__(
        self,
        api_key: str = settings.NEYNAR_API_KEY,
        base_url: str = settings.NEYNAR_BASE_URL,
        timeout: float = settings.NEYNAR_TIMEOUT,
        http_client: Optional[httpx.Client] = None,
    ):
        """Initialize the client."""
        self.http = http_client or httpx.Client(
            base_url=base_url,
            timeout=timeout,
            headers={"x-api-key": api_key, "Content-Type": "application/json"},
        )

    def close(self) -> None:
        self.http.close()

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            return self._send(method, path, **kwargs)
        except httpx.HTTPStatusError as e:
            raise ExternalServiceError(
                "neynar", f"{method} {path} failed: {e.response.text[:300]}", e.response.status_code
            ) from e
        except httpx.HTTPError as e:
            raise ExternalServiceError("neynar", f"{method} {path} failed: {e}") from e
        except ValueError as e:
            raise ExternalServiceError("neynar", f"{method} {path} returned invalid JSON: {e}") from e

    @retry(
        retry=retry_if_exception(is_retryable),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        reraise=True,
    )
    def _send(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        response = self.http.request(method, path, **kwargs)
        response.raise_for_status()
        return response.json()

    # Users and content

    def fetch_user(self, fid: int) -> NeynarUser:
        """Resolve a user profile by fid."""
        data = self._request("GET", "/user/bulk", params={"fids": fid})
        users = data.get("users") or []
        if not users:
            raise ExternalServiceError("neynar", f"User {fid} not found")
        user = users[0]
        try:
            return NeynarUser(
                fid=user["fid"],
                username=user["username"],
                display_name=user.get("display_name") or "",
                pfp_url=user.get("pfp_url"),
                bio=((user.get("profile") or {}).get("bio") or {}).get("text") or "",
            )
        except (KeyError, ValueError) as e:
            raise ExternalServiceError("neynar", f"Malformed user {fid} in response: {e!r}") from e

    def fetch_user_casts(self, fid: int, limit: int = settings.CAST_FETCH_LIMIT) -> List[NeynarCast]:
        """
        Fetch a user's top-level casts, newest first.

        Pages of at most 150 casts are requested via cursor until ``limit``
        casts were fetched or the feed is exhausted.
        """
        casts: List[NeynarCast] = []
        cursor = None

        while len(casts) < limit:
            params = {
                "fid": fid,
                "limit": min(limit - len(casts), MAX_CASTS_PER_REQUEST),
                "include_replies": "false",
            }
            if cursor:
                params["cursor"] = cursor

            data = self._request("GET", "/feed/user/casts", params=params)
            if "casts" not in data:
                raise ExternalServiceError("neynar", "No casts found in Neynar response")

            casts.extend(_to_cast(raw) for raw in data["casts"])
            cursor = (data.get("next") or {}).get("cursor")
            if not cursor or not data["casts"]:
                break

        logger.info(f"Fetched {len(casts)} casts for fid {fid}")
        return casts[:limit]

    def fetch_user_replies(self, fid: int, limit: int = settings.REPLY_FETCH_LIMIT) -> List[NeynarCast]:
        """Fetch a user's replies together with the text of the casts they answer."""
        replies: List[NeynarCast] = []
        cursor = None

        while len(replies) < limit:
            params = {
                "fid": fid,
                "filter": "replies",
                "limit": min(limit - len(replies), MAX_REPLIES_PER_REQUEST),
            }
            if cursor:
                params["cursor"] = cursor

            data = self._request("GET", "/feed/user/replies_and_recasts", params=params)
            page = [_to_cast(raw) for raw in data.get("casts") or [] if raw.get("parent_hash")]
            replies.extend(page)
            cursor = (data.get("next") or {}).get("cursor")
            if not cursor or not data.get("casts"):
                break

        replies = replies[:limit]
        parents = self.fetch_casts([r.parent_hash for r in replies if r.parent_hash])
        for reply in replies:
            parent = parents.get(reply.parent_hash)
            if parent:
                reply.parent_text = parent.text
                reply.parent_author_fid = parent.author_fid

        logger.info(f"Fetched {len(replies)} replies for fid {fid}")
        return replies

    def fetch_casts(self, hashes: List[str]) -> Dict[str, NeynarCast]:
        """Bulk lookup of casts by hash."""
        found: Dict[str, NeynarCast] = {}
        unique = list(dict.fromkeys(hashes))
        for start in range(0, len(unique), 25):
            batch = unique[start:start + 25]
            data = self._request("GET", "/casts", params={"casts": ",".join(batch)})
            for raw in (data.get("result") or {}).get("casts") or []:
                cast = _to_cast(raw)
                found[cast.hash] = cast
        return found

    def fetch_conversation(self, cast_hash: str) -> List[NeynarCast]:
        """Thread transcript ending with ``cast_hash``, oldest first."""
        data = self._request(
            "GET",
            "/cast/conversation",
            params={
                "identifier": cast_hash,
                "type": "hash",
                "reply_depth": 0,
                "include_chronological_parent_casts": "true",
            },
        )
        conversation = data.get("conversation") or {}
        thread = [_to_cast(raw) for raw in conversation.get("chronological_parent_casts") or []]
        if conversation.get("cast"):
            thread.append(_to_cast(conversation["cast"]))
        return thread

    # Accounts

    def fetch_fresh_fid(self) -> int:
        data = self._request("GET", "/user/fid")
        try:
            return int(data["fid"])
        except (KeyError, TypeError, ValueError) as e:
            raise ExternalServiceError("neynar", f"No fid in response: {e!r}") from e

    def is_fname_available(self, fname: str) -> bool:
        data = self._request("GET", "/fname/availability", params={"fname": fname})
        return bool(data.get("available"))

    def register_account(
        self,
        fname: str,
        wallet: CustodyWallet,
        display_name: str = "",
        bio: str = "",
        pfp_url: str = "",
    ) -> RegisteredAccount:
        """
        Create a new Farcaster account with a generated custody wallet.

        Raises:
            ExternalServiceError: If the fname is taken or registration fails
        """
        account = wallet.create_account()
        fid = self.fetch_fresh_fid()
        logger.info(f"Fresh fid {fid} reserved for {fname}")

        if not self.is_fname_available(fname):
            raise ExternalServiceError("neynar", f'Username "{fname}" is not available')

        deadline = int(time.time()) + CUSTODY_SIGNATURE_TTL
        signature = wallet.sign_fid_transfer(account, fid, deadline)

        data = self._request(
            "POST",
            "/user",
            json={
                "signature": signature,
                "fid": fid,
                "requested_user_custody_address": account.address,
                "deadline": deadline,
                "fname": fname,
                "metadata": {
                    "bio": bio,
                    "pfp_url": pfp_url,
                    "display_name": display_name or fname,
                },
            },
        )
        signer_uuid = (data.get("signer") or {}).get("signer_uuid")
        if not signer_uuid:
            raise ExternalServiceError("neynar", f"Registration of {fname} returned no signer")

        return RegisteredAccount(
            fid=fid,
            fname=fname,
            custody_address=account.address,
            mnemonic=account.mnemonic,
            signer_uuid=signer_uuid,
        )

    # Webhooks and publishing

    def update_webhook_mentions(self, webhook_id: str, fids: List[int]) -> None:
        """Subscribe the webhook to ``cast.created`` events mentioning ``fids``."""
        current = self._request("GET", "/webhook", params={"webhook_id": webhook_id})
        webhook = current.get("webhook") or {}
        self._request(
            "PUT",
            "/webhook",
            json={
                "webhook_id": webhook_id,
                "name": webhook.get("title") or "twincast",
                "url": webhook.get("target_url") or "",
                "subscription": {"cast.created": {"mentioned_fids": sorted(set(fids))}},
            },
        )
        logger.info(f"Webhook {webhook_id} now tracks {len(set(fids))} fids")

    def publish_cast(self, signer_uuid: str, text: str, parent: Optional[str] = None) -> str:
        """Publish a cast, optionally as a reply to ``parent``. Returns its hash."""
        body: Dict[str, Any] = {"signer_uuid": signer_uuid, "text": text}
        if parent:
            body["parent"] = parent
        data = self._request("POST", "/cast", json=body)
        return (data.get("cast") or {}).get("hash", "")
