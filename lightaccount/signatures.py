"""
Signature composition for LightAccount's ERC-1271 verification.

LightAccount does not recover plain ECDSA signatures over a message hash.
The owner signs a ``LightAccountMessage(bytes message)`` EIP-712 struct bound
to the account address and chain, then the variant prefixes the signer type.
"""
from typing import Any, Dict, Union

from eth_account.messages import SignableMessage, encode_defunct, encode_typed_data
from eth_utils import keccak, to_checksum_address
from hexbytes import HexBytes

from .variants import AccountVariant

LIGHT_ACCOUNT_DOMAIN_NAME = "LightAccount"
LIGHT_ACCOUNT_DOMAIN_VERSION = "1"

Message = Union[str, bytes]


def hash_signable_message(signable: SignableMessage) -> HexBytes:
    return HexBytes(keccak(b"\x19" + signable.version + signable.header + signable.body))


def hash_message(message: Message) -> HexBytes:
    """
    EIP-191 hash of a message.

    ``str`` messages are signed as UTF-8 text, ``bytes`` as raw data.
    """
    if isinstance(message, str):
        return hash_signable_message(encode_defunct(text=message))
    return hash_signable_message(encode_defunct(primitive=bytes(message)))


def hash_typed_data(typed_data: Dict[str, Any]) -> HexBytes:
    return hash_signable_message(encode_typed_data(full_message=typed_data))


def light_account_message(chain_id: int, account_address: str, hashed_message: bytes) -> Dict[str, Any]:
    """EIP-712 document wrapping ``hashed_message`` for the given account."""
    return {
        "types": {
            "EIP712Domain": [
                {"name": "name", "type": "string"},
                {"name": "version", "type": "string"},
                {"name": "chainId", "type": "uint256"},
                {"name": "verifyingContract", "type": "address"},
            ],
            "LightAccountMessage": [{"name": "message", "type": "bytes"}],
        },
        "primaryType": "LightAccountMessage",
        "domain": {
            "name": LIGHT_ACCOUNT_DOMAIN_NAME,
            "version": LIGHT_ACCOUNT_DOMAIN_VERSION,
            "chainId": int(chain_id),
            "verifyingContract": to_checksum_address(account_address),
        },
        "message": {"message": bytes(hashed_message)},
    }


async def sign_with_1271_wrapper(
    owner,
    chain_id: int,
    account_address: str,
    hashed_message: bytes
) -> HexBytes:
    return HexBytes(await owner.sign_typed_data(
        light_account_message(chain_id, account_address, hashed_message)
    ))


class SignatureComposer:
    """Turns owner signatures into signatures the account validates."""

    def __init__(self, variant: AccountVariant):
        self.variant = variant

    async def wrap_and_sign(
        self,
        owner,
        chain_id: int,
        account_address: str,
        hashed_message: bytes
    ) -> HexBytes:
        signature = await sign_with_1271_wrapper(owner, chain_id, account_address, hashed_message)
        return self.compose(signature)

    def compose(self, signature: bytes) -> HexBytes:
        return self.variant.compose_signature(signature)
