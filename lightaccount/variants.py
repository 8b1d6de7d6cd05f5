"""
LightAccount versions and the per-version capability table.

Every version shares the same call encoding and signing flow; versions differ
only in entry point, factory and the signer-type prefix on signatures.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, NamedTuple, Optional, Sequence

from eth_typing import ChecksumAddress
from eth_utils import to_checksum_address
from hexbytes import HexBytes

from .abi import encode_function_data
from .calls import CallLike, encode_calls
from .exceptions import OwnerMissing, UnknownAccountVersion, UnsupportedAccountVersion


class EntryPointVersion(str, Enum):
    V06 = "0.6"
    V07 = "0.7"


class LightAccountVersion(str, Enum):
    V1_1_0 = "1.1.0"
    V2_0_0 = "2.0.0"


class SignatureType(bytes, Enum):
    EOA = b"\x00"


ENTRY_POINT_ADDRESSES = {
    EntryPointVersion.V06: to_checksum_address("0x5FF137D4b0FDCD49DcA30c7CF57E578a026d2789"),
    EntryPointVersion.V07: to_checksum_address("0x0000000071727De22E5E9d8BAf0edAc6f37da032"),
}

CREATE_ACCOUNT_ABI = {
    "inputs": [
        {"internalType": "address", "name": "owner", "type": "address"},
        {"internalType": "uint256", "name": "salt", "type": "uint256"},
    ],
    "name": "createAccount",
    "outputs": [{"internalType": "contract LightAccount", "name": "ret", "type": "address"}],
    "stateMutability": "nonpayable",
    "type": "function",
}

# Placeholder ECDSA signature (r, s, v) used for gas estimation only
STUB_SIGNATURE = HexBytes(
    "0xfffffffffffffffffffffffffffffff0000000000000000000000000000000007"
    "aaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa1c"
)


class FactoryArgs(NamedTuple):
    factory: ChecksumAddress
    factory_data: HexBytes


@dataclass(frozen=True)
class AccountVariant:
    version: LightAccountVersion
    entry_point_version: EntryPointVersion
    factory_address: ChecksumAddress
    signature_prefix: bytes = b""

    def encode_calls(self, calls: Sequence[CallLike]) -> HexBytes:
        return encode_calls(calls)

    def get_factory_args(
        self,
        owner: Optional[str],
        index: int = 0,
        factory_address: Optional[str] = None
    ) -> FactoryArgs:
        """Factory address and ``createAccount(owner, salt)`` calldata."""
        if not owner:
            raise OwnerMissing("Owner account not found")

        return FactoryArgs(
            factory=to_checksum_address(factory_address or self.factory_address),
            factory_data=encode_function_data(
                CREATE_ACCOUNT_ABI, [to_checksum_address(owner), int(index)]
            ),
        )

    def compose_signature(self, signature: bytes) -> HexBytes:
        return HexBytes(self.signature_prefix + bytes(signature))

    def stub_signature(self) -> HexBytes:
        return self.compose_signature(STUB_SIGNATURE)


VARIANTS = {
    LightAccountVersion.V1_1_0: AccountVariant(
        version=LightAccountVersion.V1_1_0,
        entry_point_version=EntryPointVersion.V06,
        factory_address=to_checksum_address("0x00004EC70002a32400f8ae005A26081065620D20"),
    ),
    LightAccountVersion.V2_0_0: AccountVariant(
        version=LightAccountVersion.V2_0_0,
        entry_point_version=EntryPointVersion.V07,
        factory_address=to_checksum_address("0x0000000000400CdFef5E2714E63d8040b700BC24"),
        signature_prefix=SignatureType.EOA.value,
    ),
}


def get_variant(version: Any) -> AccountVariant:
    """
    Look up the capability table of a LightAccount version.

    Raises:
        UnknownAccountVersion: For any version outside the table
    """
    try:
        return VARIANTS[LightAccountVersion(version)]
    except (ValueError, KeyError):
        raise UnknownAccountVersion(f"Unknown Light Account version: {version!r}")


def get_entry_point_version(version: Any) -> EntryPointVersion:
    try:
        return EntryPointVersion(version)
    except ValueError:
        raise UnsupportedAccountVersion(f"Unsupported entry point version: {version!r}")
