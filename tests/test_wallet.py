"""Tests for the eth-account custody wallet."""

from eth_account import Account

from conftest import FakeEmbeddings, FakeLLM, FakeNeynar, profile_routes
from twincast.container import Container
from twincast.schemas.jobs import AgentInitJobData
from twincast.services.wallet import EthCustodyWallet, transfer_message


def test_create_account_derives_address_from_mnemonic():
    wallet = EthCustodyWallet()

    account = wallet.create_account()

    assert len(account.mnemonic.split()) == 12
    assert Account.from_mnemonic(account.mnemonic).address == account.address


def test_fresh_accounts_are_distinct():
    wallet = EthCustodyWallet()

    assert wallet.create_account().address != wallet.create_account().address


def test_transfer_signature_recovers_custody_address():
    wallet = EthCustodyWallet()
    account = wallet.create_account()

    signature = wallet.sign_fid_transfer(account, fid=900001, deadline=1735693200)

    assert signature.startswith("0x")
    assert len(signature) == 2 + 65 * 2
    message = transfer_message(account.address, 900001, 1735693200)
    assert Account.recover_message(message, signature=signature) == account.address


def test_signature_is_bound_to_fid():
    wallet = EthCustodyWallet()
    account = wallet.create_account()

    signature = wallet.sign_fid_transfer(account, fid=900001, deadline=1735693200)

    other = transfer_message(account.address, 900002, 1735693200)
    assert Account.recover_message(other, signature=signature) != account.address


def test_container_wires_a_wallet_by_default(test_settings, session_factory):
    container = Container(
        settings=test_settings,
        session_factory=session_factory,
        llm=FakeLLM(),
        embeddings=FakeEmbeddings(),
        neynar=FakeNeynar(),
    )

    assert isinstance(container.agents.wallet, EthCustodyWallet)


def test_initialize_with_real_wallet(test_settings, session_factory, fake_neynar):
    """Test a twin registered through the generated custody key."""
    fake_neynar.add_user(42, "alice", ["a long enough cast about shipping rust code every day"])
    container = Container(
        settings=test_settings,
        session_factory=session_factory,
        llm=FakeLLM(routes=profile_routes()),
        embeddings=FakeEmbeddings(),
        neynar=fake_neynar,
    )

    result = container.agents.initialize(AgentInitJobData(creator_fid=42))

    registered = fake_neynar.registered[0]
    assert result["details"]["fid"] == registered.fid
    assert Account.from_mnemonic(registered.mnemonic).address == registered.custody_address
