"""
ERC-7579 module installation and removal.

Modules are installed and removed through a call from the account to itself.
The ``context`` bytes are passed through as-is: their shape depends on the
account's module registry and is only checked on-chain.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, Optional, Union

from eth_abi import encode
from eth_abi.packed import encode_packed
from eth_typing import ChecksumAddress
from eth_utils import to_checksum_address
from hexbytes import HexBytes

from .abi import encode_function_data, to_data_bytes
from .calls import Call
from .client import DEFAULT_RECEIPT_TIMEOUT, SmartAccountClient
from .exceptions import OperationReverted, ReceiptMismatch, ReceiptTimeout

logger = logging.getLogger(__name__)

SENTINEL_ADDRESS = to_checksum_address("0x0000000000000000000000000000000000000001")
ZERO_ADDRESS = to_checksum_address("0x0000000000000000000000000000000000000000")

INSTALL_MODULE_ABI = {
    "inputs": [
        {"internalType": "uint256", "name": "moduleTypeId", "type": "uint256"},
        {"internalType": "address", "name": "module", "type": "address"},
        {"internalType": "bytes", "name": "initData", "type": "bytes"},
    ],
    "name": "installModule",
    "outputs": [],
    "stateMutability": "payable",
    "type": "function",
}

UNINSTALL_MODULE_ABI = {
    "inputs": [
        {"internalType": "uint256", "name": "moduleTypeId", "type": "uint256"},
        {"internalType": "address", "name": "module", "type": "address"},
        {"internalType": "bytes", "name": "deInitData", "type": "bytes"},
    ],
    "name": "uninstallModule",
    "outputs": [],
    "stateMutability": "nonpayable",
    "type": "function",
}


class ModuleType(IntEnum):
    VALIDATOR = 1
    EXECUTOR = 2
    FALLBACK = 3
    HOOK = 4

    @classmethod
    def parse(cls, value: Union[str, int, 'ModuleType']) -> 'ModuleType':
        if isinstance(value, str):
            try:
                return cls[value.upper()]
            except KeyError:
                raise ValueError(f"Unknown module type: {value!r}")
        return cls(int(value))


class ModuleRegistry(str, Enum):
    """How an account stores its modules, which decides the context encoding."""
    # Per-type linked list: removal needs the previous module (Safe7579, Nexus)
    LINKED_LIST = "linked_list"
    # Install data is prefixed by a hook address (Kernel)
    HOOKED = "hooked"


def encode_install_context(
    registry: ModuleRegistry,
    init_data: bytes = b"",
    hook: str = ZERO_ADDRESS,
    hook_data: bytes = b""
) -> HexBytes:
    if registry == ModuleRegistry.HOOKED:
        nested = encode(["bytes", "bytes"], [bytes(to_data_bytes(init_data)), bytes(to_data_bytes(hook_data))])
        return HexBytes(encode_packed(["address", "bytes"], [to_checksum_address(hook), nested]))
    return to_data_bytes(init_data)


def encode_uninstall_context(
    registry: ModuleRegistry,
    init_data: bytes = b"",
    prev: Optional[str] = None
) -> HexBytes:
    """
    Removal context for a module.

    Linked-list registries need ``prev``, the module preceding this one in its
    type's list (``SENTINEL_ADDRESS`` for the head). It is not looked up here.
    """
    if registry == ModuleRegistry.LINKED_LIST:
        if prev is None:
            raise ValueError("Linked-list registries need the previous module address")
        return HexBytes(encode(
            ["address", "bytes"], [to_checksum_address(prev), bytes(to_data_bytes(init_data))]
        ))
    return to_data_bytes(init_data)


@dataclass(frozen=True)
class Module:
    type: ModuleType
    address: ChecksumAddress
    context: bytes = b""

    def __post_init__(self):
        object.__setattr__(self, "type", ModuleType.parse(self.type))
        object.__setattr__(self, "address", to_checksum_address(self.address))
        object.__setattr__(self, "context", to_data_bytes(self.context))


class ModuleActionStatus(str, Enum):
    REQUESTED = "requested"
    ENCODED = "encoded"
    SUBMITTED = "submitted"
    AWAITING_RECEIPT = "awaiting_receipt"
    CONFIRMED = "confirmed"
    TIMED_OUT = "timed_out"
    REVERTED = "reverted"


@dataclass
class ModuleAction:
    """One install or uninstall request and how far it got."""
    kind: str
    module: Module
    status: ModuleActionStatus = ModuleActionStatus.REQUESTED
    call: Optional[Call] = None
    user_op_hash: Optional[str] = None
    receipt: Optional[Dict[str, Any]] = field(default=None, repr=False)

    @property
    def transaction_hash(self) -> Optional[str]:
        if not self.receipt:
            return None
        return (self.receipt.get("receipt") or {}).get("transactionHash")

    @classmethod
    def install(cls, module: Module) -> 'ModuleAction':
        return cls(kind="install", module=module)

    @classmethod
    def uninstall(cls, module: Module) -> 'ModuleAction':
        return cls(kind="uninstall", module=module)


def _same_hash(a: Optional[str], b: Optional[str]) -> bool:
    return a is not None and b is not None and HexBytes(a) == HexBytes(b)


class ModuleManager:
    """
    Installs and removes ERC-7579 modules on the client's account.

    Failures from the bundler or the chain (e.g. removing a module that is not
    installed) are raised as they come, never retried.
    """

    def __init__(self, client: SmartAccountClient, registry: ModuleRegistry = ModuleRegistry.LINKED_LIST):
        self.client = client
        self.registry = ModuleRegistry(registry)

    # ============================================
    # Module construction
    # ============================================

    def module_for_install(self, module_type, address: str, init_data: bytes = b"") -> Module:
        return Module(module_type, address, encode_install_context(self.registry, init_data))

    def module_for_uninstall(
        self,
        module_type,
        address: str,
        prev: Optional[str] = None,
        init_data: bytes = b""
    ) -> Module:
        return Module(module_type, address, encode_uninstall_context(self.registry, init_data, prev))

    # ============================================
    # Call encoding
    # ============================================

    async def encode_action(self, action: ModuleAction) -> Call:
        fragment = INSTALL_MODULE_ABI if action.kind == "install" else UNINSTALL_MODULE_ABI
        module = action.module
        data = encode_function_data(fragment, [int(module.type), module.address, bytes(module.context)])
        return Call(to=await self.client.get_address(), value=0, data=data)

    # ============================================
    # Submission
    # ============================================

    async def submit(self, action: ModuleAction, **kwargs) -> str:
        action.call = await self.encode_action(action)
        action.status = ModuleActionStatus.ENCODED

        action.user_op_hash = await self.client.send_calls([action.call], **kwargs)
        action.status = ModuleActionStatus.SUBMITTED
        logger.info(
            "Submitted %s of %s module %s: %s",
            action.kind, action.module.type.name.lower(), action.module.address, action.user_op_hash
        )
        return action.user_op_hash

    async def install_module(self, module_type, address: str, context: Optional[bytes] = None, **kwargs) -> str:
        """Submit the installation of a module, returns the UserOperation hash."""
        return await self.submit(ModuleAction.install(Module(module_type, address, context or b"")), **kwargs)

    async def uninstall_module(self, module_type, address: str, context: bytes, **kwargs) -> str:
        """
        Submit the removal of a module, returns the UserOperation hash.

        ``context`` must already be encoded for the account's registry, see
        :func:`encode_uninstall_context`.
        """
        return await self.submit(ModuleAction.uninstall(Module(module_type, address, context)), **kwargs)

    # ============================================
    # Confirmation
    # ============================================

    async def confirm(
        self,
        user_op_hash: str,
        timeout: float = DEFAULT_RECEIPT_TIMEOUT,
        poll_interval: Optional[float] = None
    ) -> Dict[str, Any]:
        """
        Wait for the receipt, then fetch it again and check both agree.

        Raises:
            ReceiptTimeout: If the receipt did not show up in time
            ReceiptMismatch: If the awaited and fetched receipts disagree
        """
        receipt = await self.client.wait_for_user_operation_receipt(
            user_op_hash, timeout=timeout, poll_interval=poll_interval
        )

        if not _same_hash(receipt.get("userOpHash"), user_op_hash):
            raise ReceiptMismatch(user_op_hash, user_op_hash, receipt.get("userOpHash"))
        awaited_tx = (receipt.get("receipt") or {}).get("transactionHash")

        fetched = await self.client.get_user_operation_receipt(user_op_hash)
        fetched_tx = ((fetched or {}).get("receipt") or {}).get("transactionHash")
        if not _same_hash(awaited_tx, fetched_tx):
            logger.warning(
                "Receipt mismatch for %s: awaited %s, fetched %s", user_op_hash, awaited_tx, fetched_tx
            )
            raise ReceiptMismatch(user_op_hash, awaited_tx, fetched_tx)

        return receipt

    async def run(
        self,
        action: ModuleAction,
        timeout: float = DEFAULT_RECEIPT_TIMEOUT,
        poll_interval: Optional[float] = None,
        **kwargs
    ) -> ModuleAction:
        """
        Drive an action from submission to a confirmed receipt.

        ``action.status`` records the last state reached, also when an error is raised.

        Raises:
            ReceiptTimeout: Status is left TIMED_OUT
            OperationReverted: Status is left REVERTED
        """
        await self.submit(action, **kwargs)
        action.status = ModuleActionStatus.AWAITING_RECEIPT

        try:
            action.receipt = await self.confirm(action.user_op_hash, timeout, poll_interval)
        except ReceiptTimeout:
            action.status = ModuleActionStatus.TIMED_OUT
            raise

        if not action.receipt.get("success", True):
            action.status = ModuleActionStatus.REVERTED
            raise OperationReverted(action.user_op_hash, action.receipt.get("reason"))

        action.status = ModuleActionStatus.CONFIRMED
        logger.info("Confirmed %s of module %s in tx %s", action.kind, action.module.address, action.transaction_hash)
        return action

    async def install(self, module: Module, timeout: float = DEFAULT_RECEIPT_TIMEOUT, **kwargs) -> ModuleAction:
        return await self.run(ModuleAction.install(module), timeout, **kwargs)

    async def uninstall(self, module: Module, timeout: float = DEFAULT_RECEIPT_TIMEOUT, **kwargs) -> ModuleAction:
        return await self.run(ModuleAction.uninstall(module), timeout, **kwargs)
