"""Tests for the Neynar HTTP client over a mocked transport."""

import json
from typing import Tuple

import httpx
import pytest

from conftest import FakeWallet
from twincast.errors import ExternalServiceError
from twincast.jobs.neynar_webhook import conversation_history
from twincast.schemas.jobs import CastAuthor, WebhookCast
from twincast.services.neynar import MAX_CASTS_PER_REQUEST, NeynarClient

BASE_URL = "https://api.neynar.test/v2/farcaster"


def raw_cast(n: int, fid: int = 42, parent_hash=None) -> dict:
    return {
        "hash": f"0x{n:04x}",
        "text": f"cast number {n}",
        "author": {"fid": fid, "username": "alice"},
        "timestamp": "2025-01-01T00:00:00.000Z",
        "parent_hash": parent_hash,
    }


class Router:
    """Maps ``METHOD path`` to a handler and records every request."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path[len("/v2/farcaster"):]
        handler = self.routes.get(f"{request.method} {path}")
        if handler is None:
            return httpx.Response(404, json={"message": "not found"})
        return handler(request)

    def calls(self, method: str, path: str):
        return [r for r in self.requests if r.method == method and r.url.path.endswith(path)]


def make_client(routes) -> Tuple[NeynarClient, Router]:
    router = Router(routes)
    http = httpx.Client(transport=httpx.MockTransport(router), base_url=BASE_URL)
    return NeynarClient(http_client=http), router


def test_fetch_user_casts_paginates_until_limit():
    """Test that pages of at most 150 are requested via cursor until the limit."""
    served = [0]

    def feed(request):
        limit = int(request.url.params["limit"])
        page = [raw_cast(served[0] + i) for i in range(limit)]
        served[0] += limit
        return httpx.Response(200, json={"casts": page, "next": {"cursor": f"c{served[0]}"}})

    client, router = make_client({"GET /feed/user/casts": feed})

    casts = client.fetch_user_casts(42, limit=320)

    assert len(casts) == 320
    requests = router.calls("GET", "/feed/user/casts")
    assert [int(r.url.params["limit"]) for r in requests] == [MAX_CASTS_PER_REQUEST, MAX_CASTS_PER_REQUEST, 20]
    assert "cursor" not in requests[0].url.params
    assert requests[1].url.params["cursor"] == "c150"
    assert requests[0].url.params["include_replies"] == "false"
    assert casts[0].author_fid == 42


def test_fetch_user_casts_stops_when_exhausted():
    pages = {
        None: {"casts": [raw_cast(1), raw_cast(2)], "next": {"cursor": "more"}},
        "more": {"casts": [raw_cast(3)], "next": {"cursor": None}},
    }

    def feed(request):
        return httpx.Response(200, json=pages[request.url.params.get("cursor")])

    client, router = make_client({"GET /feed/user/casts": feed})

    casts = client.fetch_user_casts(42, limit=2000)

    assert [c.text for c in casts] == ["cast number 1", "cast number 2", "cast number 3"]
    assert len(router.requests) == 2


def test_fetch_user_replies_resolves_parents():
    def replies(request):
        return httpx.Response(
            200,
            json={
                "casts": [
                    raw_cast(1, parent_hash="0xp1"),
                    raw_cast(2),
                    raw_cast(3, parent_hash="0xp2"),
                ],
                "next": {"cursor": None},
            },
        )

    def bulk(request):
        assert request.url.params["casts"] == "0xp1,0xp2"
        parents = [
            {"hash": "0xp1", "text": "what are you building?", "author": {"fid": 7}},
            {"hash": "0xp2", "text": "coffee or tea?", "author": {"fid": 8}},
        ]
        return httpx.Response(200, json={"result": {"casts": parents}})

    client, _ = make_client({"GET /feed/user/replies_and_recasts": replies, "GET /casts": bulk})

    result = client.fetch_user_replies(42, limit=10)

    assert [r.hash for r in result] == ["0x0001", "0x0003"]
    assert result[0].parent_text == "what are you building?"
    assert result[0].parent_author_fid == 7
    assert result[1].parent_text == "coffee or tea?"


def test_fetch_user_reads_profile():
    def bulk(request):
        assert request.url.params["fids"] == "42"
        user = {
            "fid": 42,
            "username": "alice",
            "display_name": "Alice",
            "pfp_url": "https://example.com/a.png",
            "profile": {"bio": {"text": "builder"}},
        }
        return httpx.Response(200, json={"users": [user]})

    client, _ = make_client({"GET /user/bulk": bulk})

    user = client.fetch_user(42)

    assert (user.username, user.display_name, user.bio) == ("alice", "Alice", "builder")


def test_register_account_request():
    """Test the registration body carries the custody transfer signature."""
    wallet = FakeWallet()

    def register(request):
        return httpx.Response(200, json={"signer": {"signer_uuid": "signer-uuid-1"}})

    client, router = make_client(
        {
            "GET /user/fid": lambda r: httpx.Response(200, json={"fid": 777}),
            "GET /fname/availability": lambda r: httpx.Response(200, json={"available": True}),
            "POST /user": register,
        }
    )

    account = client.register_account("alice-twin", wallet, display_name="Alice (twin)", bio="builder")

    body = json.loads(router.calls("POST", "/user")[0].content)
    assert body["fid"] == 777
    assert body["fname"] == "alice-twin"
    assert body["signature"] == "0xsignature"
    assert body["requested_user_custody_address"] == account.custody_address
    assert body["deadline"] > 0
    assert body["metadata"] == {"bio": "builder", "pfp_url": "", "display_name": "Alice (twin)"}
    assert wallet.signed == [777]
    assert account.fid == 777
    assert account.signer_uuid == "signer-uuid-1"


def test_register_account_with_taken_fname():
    client, router = make_client(
        {
            "GET /user/fid": lambda r: httpx.Response(200, json={"fid": 777}),
            "GET /fname/availability": lambda r: httpx.Response(200, json={"available": False}),
        }
    )

    with pytest.raises(ExternalServiceError):
        client.register_account("alice-twin", FakeWallet())

    assert router.calls("POST", "/user") == []


def test_publish_cast_and_webhook_update():
    client, router = make_client(
        {
            "POST /cast": lambda r: httpx.Response(200, json={"cast": {"hash": "0xnew"}}),
            "GET /webhook": lambda r: httpx.Response(
                200, json={"webhook": {"title": "twins", "target_url": "https://twincast.test/webhooks"}}
            ),
            "PUT /webhook": lambda r: httpx.Response(200, json={}),
        }
    )

    assert client.publish_cast("signer-1", "gm", parent="0xabc") == "0xnew"
    client.update_webhook_mentions("webhook-1", [3, 1, 3])

    cast_body = json.loads(router.calls("POST", "/cast")[0].content)
    assert cast_body == {"signer_uuid": "signer-1", "text": "gm", "parent": "0xabc"}
    webhook_body = json.loads(router.calls("PUT", "/webhook")[0].content)
    assert webhook_body["url"] == "https://twincast.test/webhooks"
    assert webhook_body["subscription"] == {"cast.created": {"mentioned_fids": [1, 3]}}


def test_http_error_status_is_wrapped():
    client, _ = make_client({})

    with pytest.raises(ExternalServiceError) as exc_info:
        client.fetch_user(42)

    assert exc_info.value.status_code == 404


def test_non_json_response_is_wrapped():
    client, _ = make_client({"GET /user/fid": lambda r: httpx.Response(200, text="<html>oops</html>")})

    with pytest.raises(ExternalServiceError):
        client.fetch_fresh_fid()


def test_malformed_cast_is_wrapped():
    broken = {"casts": [{"text": "no hash or author"}], "next": {}}
    client, _ = make_client({"GET /feed/user/casts": lambda r: httpx.Response(200, json=broken)})

    with pytest.raises(ExternalServiceError):
        client.fetch_user_casts(42, limit=10)


def test_malformed_thread_degrades_to_empty_history():
    broken = {"conversation": {"cast": {"text": "missing fields"}}}
    client, _ = make_client({"GET /cast/conversation": lambda r: httpx.Response(200, json=broken)})
    cast = WebhookCast(
        hash="0xabc",
        text="hi",
        created_at="2025-01-01T00:00:00",
        mentioned_fids=[1],
        url="https://farcaster.xyz/bob/0xabc",
        parent_hash="0xroot",
        author=CastAuthor(fid=5, username="bob"),
    )

    assert conversation_history(client, cast) == []
