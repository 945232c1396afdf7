"""Pytest configuration and fixtures."""

import zlib
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import twincast.models  # noqa: F401  registers tables
from twincast.config import Settings
from twincast.database import Base
from twincast.errors import ExternalServiceError
from twincast.services.neynar import CustodyAccount, NeynarCast, NeynarUser, RegisteredAccount

# Markers identifying which prompt a fake model call answers
REPLY_GATE = "whether a Farcaster user would reply"
ANSWER = "mimicking a specific user's"
REFINE = "Rewrite the draft reply"
TRIVIALITY = "trivial social comment"
CONFIDENCE = "Judge how well the answer"
LOW_CONFIDENCE = "not confident enough"
VOCABULARY = "WHICH words they use"
TONE = "describe HOW the user communicates"

TEST_DIM = 64


class FakeLLM:
    """Chat model answering by prompt marker. A response may be an exception to raise."""

    def __init__(self, routes: Optional[Dict[str, object]] = None, default: str = "{}"):
        self.routes = {
            marker: list(value) if isinstance(value, list) else [value]
            for marker, value in (routes or {}).items()
        }
        self.default = default
        self.calls: List[List[Dict[str, str]]] = []
        self.closed = False

    def chat_completion(self, messages, temperature=None, max_tokens=2000, json_mode=False):
        self.calls.append(messages)
        prompt = messages[0]["content"]
        response = self.default
        for marker, responses in self.routes.items():
            if marker in prompt:
                response = responses.pop(0) if len(responses) > 1 else responses[0]
                break
        if isinstance(response, Exception):
            raise response
        return response

    def prompts(self) -> List[str]:
        return [messages[0]["content"] for messages in self.calls]

    def hits(self, marker: str) -> int:
        return sum(1 for prompt in self.prompts() if marker in prompt)

    def close(self):
        self.closed = True


class FakeEmbeddings:
    """Bag-of-words hashing embeddings: texts sharing words are similar."""

    def __init__(self, dim: int = TEST_DIM, fail: bool = False):
        self.dim = dim
        self.fail = fail
        self.calls = 0

    def _vector(self, text: str) -> List[float]:
        vector = [0.0] * self.dim
        for word in text.lower().split():
            vector[zlib.crc32(word.strip(".,!?").encode()) % self.dim] += 1.0
        return vector

    def embed_texts(self, texts: List[str]) -> List[List[float]]:
        self.calls += 1
        if self.fail:
            raise ExternalServiceError("embeddings", "unavailable", 503)
        return [self._vector(text) for text in texts]

    def embed_query(self, text: str) -> List[float]:
        return self.embed_texts([text])[0]

    def close(self):
        pass


class FakeWallet:
    def __init__(self):
        self.signed = []

    def create_account(self) -> CustodyAccount:
        return CustodyAccount(address="0x" + "ab" * 20, mnemonic="test test test junk")

    def sign_fid_transfer(self, account: CustodyAccount, fid: int, deadline: int) -> str:
        self.signed.append(fid)
        return "0xsignature"


class FakeNeynar:
    """In-memory Farcaster. ``failures`` maps method name to how many calls fail."""

    def __init__(self):
        self.users: Dict[int, NeynarUser] = {}
        self.casts: Dict[int, List[NeynarCast]] = {}
        self.replies: Dict[int, List[NeynarCast]] = {}
        self.threads: Dict[str, List[NeynarCast]] = {}
        self.published: List[Dict] = []
        self.registered: List[RegisteredAccount] = []
        self.webhook_updates: List[List[int]] = []
        self.failures: Dict[str, int] = {}
        self.next_fid = 900001

    def _maybe_fail(self, name: str):
        if self.failures.get(name, 0) > 0:
            self.failures[name] -= 1
            raise ExternalServiceError("neynar", f"{name} failed", 503)

    def add_user(self, fid: int, username: str, texts: List[str], replies: List[str] = ()):
        self.users[fid] = NeynarUser(fid=fid, username=username, display_name=username.title(), bio="builder")
        start = datetime(2025, 1, 1)
        self.casts[fid] = [
            NeynarCast(hash=f"0x{fid}c{i}", text=text, author_fid=fid, timestamp=start + timedelta(hours=i))
            for i, text in enumerate(texts)
        ]
        self.replies[fid] = [
            NeynarCast(
                hash=f"0x{fid}r{i}",
                text=text,
                author_fid=fid,
                timestamp=start + timedelta(hours=i),
                parent_hash=f"0xparent{i}",
                parent_text="what do you think?",
                parent_author_fid=1,
            )
            for i, text in enumerate(replies)
        ]

    def fetch_user(self, fid: int) -> NeynarUser:
        self._maybe_fail("fetch_user")
        if fid not in self.users:
            raise ExternalServiceError("neynar", f"User {fid} not found")
        return self.users[fid]

    def fetch_user_casts(self, fid: int, limit: int = 2000) -> List[NeynarCast]:
        self._maybe_fail("fetch_user_casts")
        return list(self.casts.get(fid, []))[:limit]

    def fetch_user_replies(self, fid: int, limit: int = 100) -> List[NeynarCast]:
        self._maybe_fail("fetch_user_replies")
        return list(self.replies.get(fid, []))[:limit]

    def fetch_conversation(self, cast_hash: str) -> List[NeynarCast]:
        self._maybe_fail("fetch_conversation")
        return list(self.threads.get(cast_hash, []))

    def register_account(self, fname, wallet, display_name="", bio="", pfp_url="") -> RegisteredAccount:
        self._maybe_fail("register_account")
        account = wallet.create_account()
        fid = self.next_fid
        self.next_fid += 1
        wallet.sign_fid_transfer(account, fid, 0)
        registered = RegisteredAccount(
            fid=fid,
            fname=fname,
            custody_address=account.address,
            mnemonic=account.mnemonic,
            signer_uuid=f"signer-{fid}",
        )
        self.registered.append(registered)
        return registered

    def update_webhook_mentions(self, webhook_id: str, fids: List[int]) -> None:
        self._maybe_fail("update_webhook_mentions")
        self.webhook_updates.append(sorted(fids))

    def publish_cast(self, signer_uuid: str, text: str, parent: Optional[str] = None) -> str:
        self._maybe_fail("publish_cast")
        self.published.append({"signer_uuid": signer_uuid, "text": text, "parent": parent})
        return f"0xreply{len(self.published)}"

    def close(self):
        pass


@pytest.fixture(scope="function")
def test_engine():
    """In-memory SQLite shared by every session of a test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def test_db(session_factory):
    """Create a test database session for each test."""
    db = session_factory()
    yield db
    db.close()


@pytest.fixture(scope="function")
def file_session_factory(tmp_path):
    """File-backed SQLite with a real connection pool, for multi-threaded tests."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'twincast-test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def test_settings():
    return Settings(
        DATABASE_URL="sqlite://",
        ENVIRONMENT="test",
        API_SECRET_KEY="test-secret",
        NEYNAR_WEBHOOK_ID="webhook-1",
        NEYNAR_WEBHOOK_SECRET="webhook-secret",
        EMBED_DIM=TEST_DIM,
        LOCK_RETRY_COUNT=2,
        LOCK_RETRY_DELAY_MS=10,
        ENABLE_WORKERS=False,
    )


@pytest.fixture
def fake_neynar():
    return FakeNeynar()


@pytest.fixture
def fake_embeddings():
    return FakeEmbeddings()


@pytest.fixture
def fake_wallet():
    return FakeWallet()


VOCABULARY_JSON = (
    '{"vocabulary": {"common_words_phrases": ["ship it"], "jargon": ["gm", "ngl"]}, '
    '"keywords": [{"topic": "rust", "description": "systems programming"}, '
    '{"topic": "coffee", "description": "brewing at home"}]}'
)
TONE_JSON = (
    '{"tone": "Casual and upbeat", '
    '"syntax": {"sentence_length": "short", "capitalization": "Often uses all lowercase", '
    '"punctuation": "minimal", "formatting": "single lines"}, '
    '"patterns_per_topic": {"rust": "enthusiastic, technical"}}'
)


def profile_routes() -> Dict[str, object]:
    """Model responses for a clean two-stage profile build."""
    return {VOCABULARY: VOCABULARY_JSON, TONE: TONE_JSON}


@pytest.fixture
def make_container(session_factory, test_settings, fake_neynar, fake_embeddings, fake_wallet):
    """Container wired to fakes; pass a FakeLLM to script the model."""
    from twincast.container import Container

    def _make(llm: Optional[FakeLLM] = None):
        return Container(
            settings=test_settings,
            session_factory=session_factory,
            llm=llm or FakeLLM(),
            embeddings=fake_embeddings,
            neynar=fake_neynar,
            wallet=fake_wallet,
        )

    return _make


class FakeContext:
    """Stands in for a worker JobContext when calling services directly."""

    def __init__(self, data=None, attempts_made: int = 0, max_attempts: int = 3):
        self.id = "job-test"
        self.data = data
        self.attempts_made = attempts_made
        self.max_attempts = max_attempts
        self.progress_updates: List[float] = []

    @property
    def is_final_attempt(self) -> bool:
        return self.attempts_made + 1 >= self.max_attempts

    def update_progress(self, value: float) -> None:
        self.progress_updates.append(value)
