"""
Encoding of account calls into LightAccount execute/executeBatch calldata.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Sequence, Union

from eth_utils import to_checksum_address
from hexbytes import HexBytes

from .abi import encode_function_data, to_data_bytes
from .exceptions import InvalidInput

EXECUTE_ABI = {
    "inputs": [
        {"internalType": "address", "name": "dest", "type": "address"},
        {"internalType": "uint256", "name": "value", "type": "uint256"},
        {"internalType": "bytes", "name": "func", "type": "bytes"},
    ],
    "name": "execute",
    "outputs": [],
    "stateMutability": "nonpayable",
    "type": "function",
}

EXECUTE_BATCH_ABI = {
    "inputs": [
        {"internalType": "address[]", "name": "dest", "type": "address[]"},
        {"internalType": "uint256[]", "name": "value", "type": "uint256[]"},
        {"internalType": "bytes[]", "name": "func", "type": "bytes[]"},
    ],
    "name": "executeBatch",
    "outputs": [],
    "stateMutability": "nonpayable",
    "type": "function",
}


@dataclass(frozen=True)
class Call:
    """A single call made by the account: target, wei value and calldata."""
    to: str
    value: int = 0
    data: bytes = field(default=b"")

    def __post_init__(self):
        object.__setattr__(self, "to", to_checksum_address(self.to))
        object.__setattr__(self, "value", int(self.value or 0))
        object.__setattr__(self, "data", to_data_bytes(self.data))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Call':
        return cls(to=data["to"], value=data.get("value", 0), data=data.get("data", b""))


CallLike = Union[Call, Dict[str, Any]]


def _as_call(call: CallLike) -> Call:
    return call if isinstance(call, Call) else Call.from_dict(call)


def encode_calls(calls: Sequence[CallLike]) -> HexBytes:
    """
    Encode calls into the calldata of a LightAccount.

    One call uses ``execute(dest, value, func)``; several use
    ``executeBatch(dest[], value[], func[])`` keeping the caller's order.

    Raises:
        InvalidInput: If ``calls`` is empty
    """
    calls = [_as_call(call) for call in calls or []]
    if not calls:
        raise InvalidInput("No calls to encode")

    if len(calls) > 1:
        return encode_function_data(EXECUTE_BATCH_ABI, [
            [call.to for call in calls],
            [call.value for call in calls],
            [bytes(call.data) for call in calls],
        ])

    call = calls[0]
    return encode_function_data(EXECUTE_ABI, [call.to, call.value, bytes(call.data)])
