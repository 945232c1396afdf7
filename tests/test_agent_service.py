"""Tests for the agent lifecycle manager."""

import pytest

from conftest import ANSWER, CONFIDENCE, REFINE, REPLY_GATE, TRIVIALITY, VOCABULARY, FakeContext, FakeLLM, profile_routes
from twincast.errors import ExternalServiceError, InvalidTransition, LockTimeout, NotFound
from twincast.models.agent import Agent, AgentStatus
from twincast.models.cast import Cast, Reply
from twincast.models.vector import VectorRecord
from twincast.jobs import agent_ask
from twincast.schemas.jobs import AgentAskJobData, AgentInitJobData, AgentReinitJobData, QueueName
from twincast.services.agent_service import derive_fname, transition
from twincast.services.lock import user_resource

LONG_CASTS = [
    "shipping a new rust crate today, the borrow checker was kind to me",
    "my morning coffee ritual: grind, bloom, pour, wait, enjoy slowly",
]
SHORT_CAST = "gm"


@pytest.fixture
def llm():
    return FakeLLM(routes=profile_routes())


@pytest.fixture
def container(make_container, llm, fake_neynar):
    fake_neynar.add_user(42, "alice", LONG_CASTS + [SHORT_CAST], replies=["totally agree with this take"])
    return make_container(llm)


def test_initialize_creates_ready_agent(container, fake_neynar, test_db):
    ctx = FakeContext()

    result = container.agents.initialize(AgentInitJobData(creator_fid=42, tone="playful"), ctx)

    agent = test_db.query(Agent).filter(Agent.creator_fid == 42).one()
    assert result["status"] == "success"
    assert agent.status == AgentStatus.READY
    assert agent.fid == 900001
    assert agent.username == "alice-twin"
    assert agent.signer_uuid == "signer-900001"
    assert agent.tone == "playful"
    assert agent.keywords == "rust,coffee"
    assert "Often uses all lowercase" in agent.style_profile_prompt
    assert fake_neynar.webhook_updates == [[900001]]

    # Only casts longer than the minimum length are kept
    assert sorted(c.text for c in test_db.query(Cast).all()) == sorted(LONG_CASTS)
    assert test_db.query(Reply).count() == 1
    assert test_db.query(VectorRecord).filter(VectorRecord.owner_fid == 42).count() >= 1
    assert ctx.progress_updates[0] == 5
    assert ctx.progress_updates[-1] == 100


def test_failed_attempt_is_resumed_without_registering_twice(container, fake_neynar, test_db):
    fake_neynar.failures["fetch_user_casts"] = 1
    data = AgentInitJobData(creator_fid=42)

    with pytest.raises(ExternalServiceError):
        container.agents.initialize(data, FakeContext(attempts_made=0))

    agent = test_db.query(Agent).filter(Agent.creator_fid == 42).one()
    assert agent.status == AgentStatus.INITIALIZING
    assert agent.fid == 900001

    result = container.agents.initialize(data, FakeContext(attempts_made=1))

    test_db.expire_all()
    agent = test_db.query(Agent).filter(Agent.creator_fid == 42).one()
    assert result["details"]["resumed"] is True
    assert agent.status == AgentStatus.READY
    assert agent.fid == 900001
    assert len(fake_neynar.registered) == 1


def test_final_attempt_failure_marks_error(container, fake_neynar, test_db):
    fake_neynar.failures["fetch_user_casts"] = 1

    with pytest.raises(ExternalServiceError):
        container.agents.initialize(AgentInitJobData(creator_fid=42), FakeContext(attempts_made=2))

    agent = test_db.query(Agent).filter(Agent.creator_fid == 42).one()
    assert agent.status == AgentStatus.ERROR


def test_error_agent_can_be_initialized_again(container, fake_neynar, test_db):
    fake_neynar.failures["fetch_user_casts"] = 1
    data = AgentInitJobData(creator_fid=42)
    with pytest.raises(ExternalServiceError):
        container.agents.initialize(data, FakeContext(attempts_made=2))

    container.agents.initialize(data, FakeContext())

    test_db.expire_all()
    assert test_db.query(Agent).filter(Agent.creator_fid == 42).one().status == AgentStatus.READY
    assert len(fake_neynar.registered) == 1


def test_initialize_is_serialised_by_user_lock(container, test_db):
    held = container.lock.acquire(user_resource(42), lease_ms=60000)

    with pytest.raises(LockTimeout):
        container.agents.initialize(AgentInitJobData(creator_fid=42), FakeContext())

    container.lock.release(held)
    assert test_db.query(Agent).count() == 0


def test_initialize_requires_custody_wallet(make_container, fake_neynar, llm):
    fake_neynar.add_user(42, "alice", LONG_CASTS)
    container = make_container(llm)
    container.agents.wallet = None

    with pytest.raises(ExternalServiceError) as exc_info:
        container.agents.initialize(AgentInitJobData(creator_fid=42))

    assert exc_info.value.service == "custody-wallet"


def test_initialize_existing_ready_agent_is_noop(container, fake_neynar):
    data = AgentInitJobData(creator_fid=42)
    container.agents.initialize(data)

    result = container.agents.initialize(data)

    assert result["details"]["resumed"] is False
    assert len(fake_neynar.registered) == 1


def test_reinitialize_only_rag_keeps_profile(container, fake_neynar, llm, test_db):
    container.agents.initialize(AgentInitJobData(creator_fid=42))
    profile_calls = llm.hits(VOCABULARY)
    fake_neynar.add_user(42, "alice", ["a brand new cast about sourdough bread baking at home"])

    result = container.agents.reinitialize(
        AgentReinitJobData(creator_fid=42, refresh_casts=True, only_rag=True), FakeContext()
    )

    test_db.expire_all()
    agent = test_db.query(Agent).filter(Agent.creator_fid == 42).one()
    assert result["details"]["profile_rebuilt"] is False
    assert llm.hits(VOCABULARY) == profile_calls
    assert agent.status == AgentStatus.READY
    assert [c.text for c in test_db.query(Cast).all()] == ["a brand new cast about sourdough bread baking at home"]


def test_reinitialize_rebuilds_profile(container, llm):
    container.agents.initialize(AgentInitJobData(creator_fid=42))
    profile_calls = llm.hits(VOCABULARY)

    container.agents.reinitialize(AgentReinitJobData(creator_fid=42))

    assert llm.hits(VOCABULARY) == profile_calls + 1


def test_reinitialize_keeps_replies_unless_refreshed(container, fake_neynar, test_db):
    container.agents.initialize(AgentInitJobData(creator_fid=42))
    fake_neynar.replies[42] = []

    container.agents.reinitialize(AgentReinitJobData(creator_fid=42, refresh_casts=True))
    assert test_db.query(Reply).count() == 1

    container.agents.reinitialize(AgentReinitJobData(creator_fid=42, refresh_replies=True))
    assert test_db.query(Reply).count() == 0


def test_reinitialize_unknown_agent(container):
    with pytest.raises(NotFound):
        container.agents.reinitialize(AgentReinitJobData(creator_fid=404))


def test_status_machine():
    agent = Agent(creator_fid=1, status=AgentStatus.READY)

    with pytest.raises(InvalidTransition):
        transition(agent, AgentStatus.INITIALIZING)

    transition(agent, AgentStatus.REINITIALIZING)
    transition(agent, AgentStatus.ERROR)
    transition(agent, AgentStatus.REINITIALIZING)
    transition(agent, AgentStatus.READY)
    assert agent.status == AgentStatus.READY


def test_derive_fname():
    assert derive_fname("alice", 1) == "alice-twin"
    assert derive_fname("Alice.Eth_Long_Name", 1) == "aliceethlon-twin"
    assert derive_fname("!!!", 77) == "fid77-twin"
    assert len(derive_fname("x" * 40, 1)) == 16


def test_ask_answers_with_owner_context(container, llm):
    container.agents.initialize(AgentInitJobData(creator_fid=42))
    llm.routes.update(
        {
            REPLY_GATE: ['{"to_reply": true}'],
            ANSWER: ['{"text": "rust all day"}'],
            REFINE: ['{"text": "rust all day"}'],
            TRIVIALITY: ['{"is_trivial": false}'],
            CONFIDENCE: ['{"confidence": "high", "reasoning": "grounded"}'],
        }
    )
    agent = container.agents.get_by_fid(900001)

    outcome = container.agents.ask(agent, "rust crate borrow checker?", ["gm"])

    assert outcome.kind == "scored"
    assert outcome.answer == "rust all day"
    answer_prompt = [p for p in llm.prompts() if ANSWER in p][0]
    # Retrieved from the owner's own casts
    assert "morning coffee ritual" in answer_prompt


def test_jobs_run_through_workers(container, llm):
    """Test init, ask and reinit enqueued and processed by their workers."""
    llm.routes.update(
        {
            REPLY_GATE: ['{"to_reply": true}'],
            ANSWER: ['{"text": "coffee first"}'],
            REFINE: ['{"text": "coffee first"}'],
            TRIVIALITY: ['{"is_trivial": true}'],
        }
    )
    init_queue = container.queue(QueueName.AGENT_INITIALIZATION)
    init_id = init_queue.add("init-42", AgentInitJobData(creator_fid=42))
    container.worker(QueueName.AGENT_INITIALIZATION).run_once()

    init_status = init_queue.get_progress(init_id)
    assert init_status.status == "completed"
    assert init_status.progress == 100
    assert init_status.result["details"]["fid"] == 900001

    ask_queue = container.queue(QueueName.AGENT_ASK)
    ask_id = ask_queue.add("ask-900001", AgentAskJobData(agent_fid=900001, question="coffee?"))
    container.worker(QueueName.AGENT_ASK).run_once()

    ask_status = ask_queue.get_progress(ask_id)
    assert ask_status.status == "completed"
    assert ask_status.result["details"] == {"kind": "trivial", "answer": "coffee first"}

    reinit_queue = container.queue(QueueName.AGENT_REINITIALIZATION)
    reinit_id = reinit_queue.add("reinit-42", AgentReinitJobData(creator_fid=42, only_rag=True))
    container.worker(QueueName.AGENT_REINITIALIZATION).run_once()

    assert reinit_queue.get_progress(reinit_id).status == "completed"


def test_ask_job_for_unknown_agent(container):
    with pytest.raises(NotFound):
        agent_ask.process(FakeContext(data=AgentAskJobData(agent_fid=5, question="hi")), container.agents)
