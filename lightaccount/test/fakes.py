"""
In-memory chain node and bundler speaking JSON-RPC.

Both override ``JsonRpcTransport.request`` so the real transports parse their
answers. They share a FakeEntryPoint holding nonces, deployments and an
ERC-7579 linked-list module registry per account.
"""
import asyncio
import json
from collections import defaultdict
from typing import Any, Dict, List, Optional

from eth_abi import decode, encode
from eth_account import Account
from eth_utils import keccak, to_checksum_address, to_hex

from lightaccount.abi import decode_function_data, function_selector, to_data_bytes
from lightaccount.calls import EXECUTE_ABI, EXECUTE_BATCH_ABI
from lightaccount.exceptions import TransportFailure
from lightaccount.modules import INSTALL_MODULE_ABI, SENTINEL_ADDRESS, UNINSTALL_MODULE_ABI
from lightaccount.transport import (
    GET_NONCE_ABI,
    GET_SENDER_ADDRESS_ABI,
    SENDER_ADDRESS_RESULT_SELECTOR,
    BundlerTransport,
    ChainTransport,
)

CHAIN_ID = 31337

# Hardhat default account #0
OWNER_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"


def recover(signable, signature) -> str:
    return Account.recover_message(signable, signature=bytes(signature))


def counterfactual_address(init_code: bytes) -> str:
    return to_checksum_address(keccak(init_code)[12:])


class FakeEntryPoint:
    def __init__(self, chain_id: int = CHAIN_ID):
        self.chain_id = chain_id
        self.nonces: Dict[tuple, int] = defaultdict(int)
        self.deployed = set()
        # {account: {module_type: [module, ...]}}, head first
        self.modules: Dict[str, Dict[int, List[str]]] = defaultdict(lambda: defaultdict(list))

    def install(self, account: str, module_type: int, module: str):
        modules = self.modules[account][module_type]
        if module in modules:
            raise TransportFailure("UserOperation reverted: ModuleAlreadyInstalled", -32521)
        modules.insert(0, module)

    def uninstall(self, account: str, module_type: int, module: str, context: bytes):
        modules = self.modules[account][module_type]
        if module not in modules:
            raise TransportFailure("UserOperation reverted: ModuleNotInstalled", -32521)
        prev, _ = decode(["address", "bytes"], context)
        position = modules.index(module)
        expected = SENTINEL_ADDRESS if position == 0 else modules[position - 1]
        if to_checksum_address(prev) != expected:
            raise TransportFailure("UserOperation reverted: LinkedList_InvalidEntry", -32521)
        modules.remove(module)


class FakeChainNode(ChainTransport):
    def __init__(self, entry_point: Optional[FakeEntryPoint] = None, base_fee: int = 10 ** 9):
        super().__init__(url="memory://chain")
        self.entry_point = entry_point or FakeEntryPoint()
        self.base_fee = base_fee
        self.requests: List[str] = []

    def count(self, method: str) -> int:
        return self.requests.count(method)

    async def request(self, method: str, params: List[Any]) -> Any:
        self.requests.append(method)

        if method == "eth_chainId":
            return hex(self.entry_point.chain_id)
        if method == "eth_getCode":
            return "0x60806040" if to_checksum_address(params[0]) in self.entry_point.deployed else "0x"
        if method == "eth_getBlockByNumber":
            return {"number": "0x1", "baseFeePerGas": hex(self.base_fee)}
        if method == "eth_maxPriorityFeePerGas":
            return hex(10 ** 8)
        if method == "eth_gasPrice":
            return hex(2 * 10 ** 9)
        if method == "eth_call":
            return self._call(to_data_bytes(params[0]["data"]))

        raise TransportFailure(f"Method {method} not supported", -32601)

    def _call(self, data: bytes) -> str:
        selector = data[:4]
        if selector == function_selector(GET_SENDER_ADDRESS_ABI):
            (init_code,) = decode_function_data(GET_SENDER_ADDRESS_ABI, data)
            revert = SENDER_ADDRESS_RESULT_SELECTOR + encode(["address"], [counterfactual_address(init_code)])
            raise TransportFailure("execution reverted", 3, to_hex(revert))
        if selector == function_selector(GET_NONCE_ABI):
            sender, key = decode_function_data(GET_NONCE_ABI, data)
            sequence = self.entry_point.nonces[(to_checksum_address(sender), key)]
            return to_hex(encode(["uint256"], [(key << 64) | sequence]))
        raise TransportFailure("execution reverted", 3, "0x")


class FakeBundlerNode(BundlerTransport):
    """
    Bundler that includes every valid operation after ``receipt_delay`` seconds.

    With ``tamper_refetch`` set, receipts fetched a second time report another
    transaction hash.
    """

    def __init__(
        self,
        entry_point: FakeEntryPoint,
        receipt_delay: float = 0.0,
        tamper_refetch: bool = False,
        revert_execution: bool = False
    ):
        super().__init__(url="memory://bundler", poll_interval=0.01)
        self.entry_point = entry_point
        self.receipt_delay = receipt_delay
        self.tamper_refetch = tamper_refetch
        self.revert_execution = revert_execution
        self.sent: List[Dict[str, Any]] = []
        self.estimated: List[Dict[str, Any]] = []
        self._receipts: Dict[str, Dict[str, Any]] = {}
        self._ready_at: Dict[str, float] = {}
        self._served = defaultdict(int)

    async def request(self, method: str, params: List[Any]) -> Any:
        if method == "eth_estimateUserOperationGas":
            self.estimated.append(params[0])
            return {
                "callGasLimit": hex(80000),
                "verificationGasLimit": hex(120000),
                "preVerificationGas": hex(50000),
            }
        if method == "eth_sendUserOperation":
            return self._send(params[0])
        if method == "eth_getUserOperationReceipt":
            return self._receipt(params[0])

        raise TransportFailure(f"Method {method} not supported", -32601)

    def _send(self, user_operation: Dict[str, Any]) -> str:
        self.sent.append(user_operation)
        sender = to_checksum_address(user_operation["sender"])
        self._execute(sender, to_data_bytes(user_operation["callData"]))

        if user_operation.get("factory") or user_operation.get("initCode", "0x") != "0x":
            self.entry_point.deployed.add(sender)

        nonce = int(user_operation["nonce"], 16)
        self.entry_point.nonces[(sender, nonce >> 64)] += 1

        user_op_hash = to_hex(keccak(text=json.dumps(user_operation, sort_keys=True)))
        self._receipts[user_op_hash] = {
            "userOpHash": user_op_hash,
            "sender": sender,
            "nonce": user_operation["nonce"],
            "success": not self.revert_execution,
            "reason": "0x" if not self.revert_execution else "execution reverted",
            "receipt": {"transactionHash": to_hex(keccak(text=user_op_hash + ":tx"))},
        }
        self._ready_at[user_op_hash] = asyncio.get_running_loop().time() + self.receipt_delay
        return user_op_hash

    def _execute(self, sender: str, call_data: bytes):
        if call_data[:4] == function_selector(EXECUTE_ABI):
            dest, _, func = decode_function_data(EXECUTE_ABI, call_data)
            calls = [(dest, func)]
        else:
            dests, _, funcs = decode_function_data(EXECUTE_BATCH_ABI, call_data)
            calls = list(zip(dests, funcs))

        for dest, func in calls:
            if to_checksum_address(dest) != sender:
                continue
            if func[:4] == function_selector(INSTALL_MODULE_ABI):
                module_type, module, _ = decode_function_data(INSTALL_MODULE_ABI, func)
                self.entry_point.install(sender, module_type, to_checksum_address(module))
            elif func[:4] == function_selector(UNINSTALL_MODULE_ABI):
                module_type, module, context = decode_function_data(UNINSTALL_MODULE_ABI, func)
                self.entry_point.uninstall(sender, module_type, to_checksum_address(module), context)

    def _receipt(self, user_op_hash: str) -> Optional[Dict[str, Any]]:
        receipt = self._receipts.get(user_op_hash)
        if receipt is None or asyncio.get_running_loop().time() < self._ready_at[user_op_hash]:
            return None

        self._served[user_op_hash] += 1
        if self.tamper_refetch and self._served[user_op_hash] > 1:
            return {**receipt, "receipt": {"transactionHash": to_hex(keccak(text="other"))}}
        return receipt
