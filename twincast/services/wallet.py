"""Custody wallet for twin accounts, backed by eth-account."""

import logging

from eth_account import Account
from eth_account.messages import SignableMessage, encode_typed_data

from twincast.config import settings
from twincast.services.neynar import CustodyAccount

logger = logging.getLogger(__name__)

Account.enable_unaudited_hdwallet_features()

TRANSFER_TYPES = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
    "Transfer": [
        {"name": "fid", "type": "uint256"},
        {"name": "to", "type": "address"},
        {"name": "nonce", "type": "uint256"},
        {"name": "deadline", "type": "uint256"},
    ],
}


def transfer_message(
    to: str,
    fid: int,
    deadline: int,
    nonce: int = 0,
    registry: str = settings.ID_REGISTRY_ADDRESS,
    chain_id: int = settings.ID_REGISTRY_CHAIN_ID,
) -> SignableMessage:
    """EIP-712 ``Transfer`` message authorising the move of ``fid`` to ``to``."""
    return encode_typed_data(
        full_message={
            "types": TRANSFER_TYPES,
            "primaryType": "Transfer",
            "domain": {
                "name": "Farcaster IdRegistry",
                "version": "1",
                "chainId": chain_id,
                "verifyingContract": registry,
            },
            "message": {"fid": fid, "to": to, "nonce": nonce, "deadline": deadline},
        }
    )


class EthCustodyWallet:
    """
    Generates a mnemonic-backed custody key per twin and signs the IdRegistry
    transfer of the fresh fid to it.
    """

    def __init__(
        self,
        registry: str = settings.ID_REGISTRY_ADDRESS,
        chain_id: int = settings.ID_REGISTRY_CHAIN_ID,
    ):
        """Initialize the wallet."""
        self.registry = registry
        self.chain_id = chain_id

    def create_account(self) -> CustodyAccount:
        account, mnemonic = Account.create_with_mnemonic()
        logger.info(f"Generated custody address {account.address}")
        return CustodyAccount(address=account.address, mnemonic=mnemonic)

    def sign_fid_transfer(self, account: CustodyAccount, fid: int, deadline: int) -> str:
        """
        Sign the transfer of ``fid`` to ``account``.

        The address was generated moments ago, so its IdRegistry nonce is 0.

        Returns:
            0x-prefixed hex signature
        """
        signer = Account.from_mnemonic(account.mnemonic)
        message = transfer_message(signer.address, fid, deadline, 0, self.registry, self.chain_id)
        signed = signer.sign_message(message)
        return "0x" + bytes(signed.signature).hex()
