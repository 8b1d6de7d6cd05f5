"""
ERC-4337 UserOperation model, hashing and RPC serialization.

Entry point 0.6:
https://github.com/eth-infinitism/account-abstraction/blob/v0.6.0/contracts/interfaces/UserOperation.sol
Entry point 0.7:
https://github.com/eth-infinitism/account-abstraction/blob/v0.7.0/contracts/interfaces/PackedUserOperation.sol
"""
import dataclasses
from typing import Any, Dict, Optional

from eth_abi import encode as abi_encode
from eth_typing import ChecksumAddress
from eth_utils import keccak, to_checksum_address, to_hex
from hexbytes import HexBytes

from .abi import to_data_bytes
from .variants import EntryPointVersion, get_entry_point_version


def _pad16(value: int) -> bytes:
    return int(value).to_bytes(16, "big")


@dataclasses.dataclass(eq=True, frozen=True)
class UserOperation:
    sender: ChecksumAddress
    nonce: int
    call_data: bytes
    call_gas_limit: int = 0
    verification_gas_limit: int = 0
    pre_verification_gas: int = 0
    max_fee_per_gas: int = 0
    max_priority_fee_per_gas: int = 0
    signature: bytes = b""
    factory: Optional[ChecksumAddress] = None
    factory_data: Optional[bytes] = None
    paymaster: Optional[ChecksumAddress] = None
    paymaster_verification_gas_limit: int = 0
    paymaster_post_op_gas_limit: int = 0
    paymaster_data: Optional[bytes] = None

    def __post_init__(self):
        object.__setattr__(self, "sender", to_checksum_address(self.sender))
        object.__setattr__(self, "call_data", to_data_bytes(self.call_data))
        object.__setattr__(self, "signature", to_data_bytes(self.signature))
        if self.factory:
            object.__setattr__(self, "factory", to_checksum_address(self.factory))
            object.__setattr__(self, "factory_data", to_data_bytes(self.factory_data))
        if self.paymaster:
            object.__setattr__(self, "paymaster", to_checksum_address(self.paymaster))
            object.__setattr__(self, "paymaster_data", to_data_bytes(self.paymaster_data))

    def replace(self, **changes) -> 'UserOperation':
        return dataclasses.replace(self, **changes)

    @property
    def init_code(self) -> bytes:
        """``factory || factory_data``, empty for deployed accounts."""
        if not self.factory:
            return b""
        return HexBytes(self.factory) + (self.factory_data or b"")

    @property
    def account_gas_limits(self) -> bytes:
        """``bytes32``: ``verification_gas_limit`` then ``call_gas_limit``, 16 bytes each."""
        return _pad16(self.verification_gas_limit) + _pad16(self.call_gas_limit)

    @property
    def gas_fees(self) -> bytes:
        """``bytes32``: ``max_priority_fee_per_gas`` then ``max_fee_per_gas``, 16 bytes each."""
        return _pad16(self.max_priority_fee_per_gas) + _pad16(self.max_fee_per_gas)

    def paymaster_and_data(self, entry_point_version: EntryPointVersion) -> bytes:
        if not self.paymaster:
            return b""
        if entry_point_version == EntryPointVersion.V06:
            return HexBytes(self.paymaster) + (self.paymaster_data or b"")
        return (
            HexBytes(self.paymaster)
            + _pad16(self.paymaster_verification_gas_limit)
            + _pad16(self.paymaster_post_op_gas_limit)
            + (self.paymaster_data or b"")
        )

    def _pack_v06(self) -> bytes:
        return abi_encode(
            [
                "address",
                "uint256",
                "bytes32",
                "bytes32",
                "uint256",
                "uint256",
                "uint256",
                "uint256",
                "uint256",
                "bytes32",
            ],
            [
                self.sender,
                self.nonce,
                keccak(self.init_code),
                keccak(self.call_data),
                self.call_gas_limit,
                self.verification_gas_limit,
                self.pre_verification_gas,
                self.max_fee_per_gas,
                self.max_priority_fee_per_gas,
                keccak(self.paymaster_and_data(EntryPointVersion.V06)),
            ],
        )

    def _pack_v07(self) -> bytes:
        return abi_encode(
            [
                "address",
                "uint256",
                "bytes32",
                "bytes32",
                "bytes32",
                "uint256",
                "bytes32",
                "bytes32",
            ],
            [
                self.sender,
                self.nonce,
                keccak(self.init_code),
                keccak(self.call_data),
                self.account_gas_limits,
                self.pre_verification_gas,
                self.gas_fees,
                keccak(self.paymaster_and_data(EntryPointVersion.V07)),
            ],
        )

    def calculate_user_operation_hash(
        self,
        entry_point: str,
        entry_point_version: Any,
        chain_id: int
    ) -> HexBytes:
        """
        Hash signed by the account owner, as computed by ``EntryPoint.getUserOpHash``.

        The signature field never takes part in the hash.
        """
        entry_point_version = get_entry_point_version(entry_point_version)
        if entry_point_version == EntryPointVersion.V06:
            packed = self._pack_v06()
        else:
            packed = self._pack_v07()

        return HexBytes(keccak(abi_encode(
            ["bytes32", "address", "uint256"],
            [keccak(packed), to_checksum_address(entry_point), int(chain_id)],
        )))

    def to_rpc(self, entry_point_version: Any) -> Dict[str, Any]:
        """Serialize to the JSON shape bundlers expect for the entry point version."""
        entry_point_version = get_entry_point_version(entry_point_version)
        op = {
            "sender": self.sender,
            "nonce": hex(self.nonce),
            "callData": to_hex(self.call_data),
            "callGasLimit": hex(self.call_gas_limit),
            "verificationGasLimit": hex(self.verification_gas_limit),
            "preVerificationGas": hex(self.pre_verification_gas),
            "maxFeePerGas": hex(self.max_fee_per_gas),
            "maxPriorityFeePerGas": hex(self.max_priority_fee_per_gas),
            "signature": to_hex(self.signature),
        }

        if entry_point_version == EntryPointVersion.V06:
            op["initCode"] = to_hex(self.init_code)
            op["paymasterAndData"] = to_hex(self.paymaster_and_data(EntryPointVersion.V06))
            return op

        if self.factory:
            op["factory"] = self.factory
            op["factoryData"] = to_hex(self.factory_data or b"")
        if self.paymaster:
            op["paymaster"] = self.paymaster
            op["paymasterVerificationGasLimit"] = hex(self.paymaster_verification_gas_limit)
            op["paymasterPostOpGasLimit"] = hex(self.paymaster_post_op_gas_limit)
            op["paymasterData"] = to_hex(self.paymaster_data or b"")
        return op
