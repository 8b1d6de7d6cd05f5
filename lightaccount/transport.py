"""
Async JSON-RPC transports for the chain node and the ERC-4337 bundler.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from eth_abi import decode
from eth_typing import ChecksumAddress
from eth_utils import to_checksum_address, to_hex
from hexbytes import HexBytes
from web3 import AsyncWeb3
from web3.types import RPCEndpoint

from .abi import decode_function_result, encode_function_data, error_selector, to_data_bytes
from .exceptions import ReceiptTimeout, TransportFailure

logger = logging.getLogger(__name__)

GET_NONCE_ABI = {
    "inputs": [
        {"name": "sender", "type": "address"},
        {"name": "key", "type": "uint192"}
    ],
    "name": "getNonce",
    "outputs": [{"name": "nonce", "type": "uint256"}],
    "stateMutability": "view",
    "type": "function"
}

GET_SENDER_ADDRESS_ABI = {
    "inputs": [{"name": "initCode", "type": "bytes"}],
    "name": "getSenderAddress",
    "outputs": [],
    "stateMutability": "nonpayable",
    "type": "function"
}

SENDER_ADDRESS_RESULT_SELECTOR = error_selector("SenderAddressResult(address)")


def _revert_data(error: TransportFailure) -> HexBytes:
    data = error.data
    # Some nodes nest the revert payload one level deeper
    while isinstance(data, dict):
        data = data.get("data")
    if not isinstance(data, str):
        return HexBytes(b"")
    return to_data_bytes(data)


class JsonRpcTransport:
    """
    Thin wrapper over an AsyncWeb3 provider that raises TransportFailure on RPC errors.
    """

    def __init__(self, url: Optional[str] = None, w3: Optional[AsyncWeb3] = None):
        if w3 is None and not url:
            raise ValueError("Either an RPC url or an AsyncWeb3 instance is required")
        self.url = url
        self._w3 = w3

    @property
    def w3(self) -> AsyncWeb3:
        """Lazy-load AsyncWeb3 instance."""
        if self._w3 is None:
            self._w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(self.url))
        return self._w3

    async def request(self, method: str, params: List[Any]) -> Any:
        logger.debug("%s %s", method, params)
        response = await self.w3.provider.make_request(RPCEndpoint(method), params)

        error = response.get("error")
        if error:
            if isinstance(error, dict):
                raise TransportFailure(
                    error.get("message", "RPC error"), error.get("code"), error.get("data")
                )
            raise TransportFailure(str(error))

        return response.get("result")


class ChainTransport(JsonRpcTransport):
    """Read-only access to the chain: chain id, code, nonces, fees and sender simulation."""

    async def get_chain_id(self) -> int:
        return int(await self.request("eth_chainId", []), 16)

    async def get_code(self, address: str) -> HexBytes:
        return to_data_bytes(await self.request("eth_getCode", [to_checksum_address(address), "latest"]))

    async def call(self, to: str, data: bytes) -> HexBytes:
        result = await self.request(
            "eth_call", [{"to": to_checksum_address(to), "data": to_hex(data)}, "latest"]
        )
        return to_data_bytes(result)

    async def get_sender_address(
        self,
        factory: str,
        factory_data: bytes,
        entry_point: str
    ) -> ChecksumAddress:
        """
        Counterfactual account address for the given factory args.

        ``EntryPoint.getSenderAddress`` always reverts with ``SenderAddressResult(address)``.
        """
        init_code = HexBytes(to_checksum_address(factory)) + to_data_bytes(factory_data)
        data = encode_function_data(GET_SENDER_ADDRESS_ABI, [bytes(init_code)])

        try:
            await self.call(entry_point, data)
        except TransportFailure as e:
            revert = _revert_data(e)
            if revert[:4] != SENDER_ADDRESS_RESULT_SELECTOR:
                raise
            (address,) = decode(["address"], revert[4:])
            return to_checksum_address(address)

        raise TransportFailure("getSenderAddress did not revert with SenderAddressResult")

    async def get_nonce(self, address: str, entry_point: str, key: int = 0) -> int:
        data = encode_function_data(GET_NONCE_ABI, [to_checksum_address(address), int(key)])
        (nonce,) = decode_function_result(GET_NONCE_ABI, await self.call(entry_point, data))
        return nonce

    async def get_gas_prices(self) -> Dict[str, int]:
        """
        Get current gas prices for EIP-1559 transactions.

        Returns:
            Dict with 'maxFeePerGas' and 'maxPriorityFeePerGas'
        """
        latest_block = await self.request("eth_getBlockByNumber", ["latest", False])
        base_fee = int((latest_block or {}).get("baseFeePerGas") or "0x0", 16)

        if base_fee > 0:
            # EIP-1559 network
            try:
                max_priority_fee = int(await self.request("eth_maxPriorityFeePerGas", []), 16)
            except TransportFailure:
                max_priority_fee = AsyncWeb3.to_wei(1.5, 'gwei')

            return {
                'maxFeePerGas': base_fee * 2 + max_priority_fee,
                'maxPriorityFeePerGas': max_priority_fee
            }

        # Legacy network
        gas_price = int(await self.request("eth_gasPrice", []), 16)
        return {
            'maxFeePerGas': gas_price,
            'maxPriorityFeePerGas': gas_price
        }


class BundlerTransport(JsonRpcTransport):
    """ERC-4337 bundler RPC methods."""

    def __init__(
        self,
        url: Optional[str] = None,
        w3: Optional[AsyncWeb3] = None,
        poll_interval: float = 1.0
    ):
        super().__init__(url=url, w3=w3)
        self.poll_interval = poll_interval

    async def send_user_operation(self, user_operation: Dict[str, Any], entry_point: str) -> str:
        user_op_hash = await self.request(
            "eth_sendUserOperation", [user_operation, to_checksum_address(entry_point)]
        )
        logger.info("Submitted UserOperation %s from %s", user_op_hash, user_operation.get("sender"))
        return user_op_hash

    async def estimate_user_operation_gas(
        self,
        user_operation: Dict[str, Any],
        entry_point: str
    ) -> Dict[str, int]:
        estimate = await self.request(
            "eth_estimateUserOperationGas", [user_operation, to_checksum_address(entry_point)]
        )
        return {
            key: int(value, 16) if isinstance(value, str) else int(value)
            for key, value in (estimate or {}).items()
            if value is not None
        }

    async def get_user_operation_receipt(self, user_op_hash: str) -> Optional[Dict[str, Any]]:
        return await self.request("eth_getUserOperationReceipt", [user_op_hash])

    async def wait_for_user_operation_receipt(
        self,
        user_op_hash: str,
        timeout: float = 120,
        poll_interval: Optional[float] = None
    ) -> Dict[str, Any]:
        """
        Poll the bundler until the operation is included.

        Args:
            user_op_hash: Hash returned by ``eth_sendUserOperation``
            timeout: Timeout in seconds
            poll_interval: Seconds between polls (defaults to the transport's)

        Raises:
            ReceiptTimeout: If no receipt shows up within ``timeout``
        """
        interval = self.poll_interval if poll_interval is None else poll_interval

        async def _poll() -> Dict[str, Any]:
            while True:
                receipt = await self.get_user_operation_receipt(user_op_hash)
                if receipt:
                    return receipt
                await asyncio.sleep(interval)

        try:
            return await asyncio.wait_for(_poll(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("No receipt for UserOperation %s after %ss", user_op_hash, timeout)
            raise ReceiptTimeout(user_op_hash, timeout)
