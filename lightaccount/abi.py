"""
Minimal ABI helpers working on inline JSON ABI fragments.
"""
from typing import Any, Dict, List, Sequence

from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector, keccak, to_bytes
from hexbytes import HexBytes


def _input_types(fragment: Dict[str, Any]) -> List[str]:
    return [item["type"] for item in fragment.get("inputs", [])]


def function_signature(fragment: Dict[str, Any]) -> str:
    return f"{fragment['name']}({','.join(_input_types(fragment))})"


def function_selector(fragment: Dict[str, Any]) -> HexBytes:
    return HexBytes(function_signature_to_4byte_selector(function_signature(fragment)))


def encode_function_data(fragment: Dict[str, Any], args: Sequence[Any]) -> HexBytes:
    """
    Encode a call to the function described by ``fragment``.

    Equivalent to ``selector || abi.encode(args...)``.
    """
    return HexBytes(function_selector(fragment) + encode(_input_types(fragment), list(args)))


def decode_function_data(fragment: Dict[str, Any], data: bytes) -> tuple:
    """Decode calldata produced by :func:`encode_function_data`. Raises ValueError on selector mismatch."""
    data = HexBytes(data)
    if data[:4] != function_selector(fragment):
        raise ValueError(f"Calldata is not a {function_signature(fragment)} call")
    return decode(_input_types(fragment), data[4:])


def decode_function_result(fragment: Dict[str, Any], data: bytes) -> tuple:
    types = [item["type"] for item in fragment.get("outputs", [])]
    return decode(types, HexBytes(data))


def error_selector(signature: str) -> HexBytes:
    return HexBytes(keccak(text=signature)[:4])


def to_data_bytes(value: Any) -> HexBytes:
    """Normalize ``None``, hex strings and bytes to HexBytes."""
    if value is None:
        return HexBytes(b"")
    if isinstance(value, str):
        return HexBytes(to_bytes(hexstr=value)) if value not in ("", "0x") else HexBytes(b"")
    return HexBytes(value)
