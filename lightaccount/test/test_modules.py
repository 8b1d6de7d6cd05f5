import pytest
from eth_abi import decode
from eth_abi.packed import encode_packed
from eth_utils import to_checksum_address
from hexbytes import HexBytes

from lightaccount import (
    Module,
    ModuleAction,
    ModuleActionStatus,
    ModuleManager,
    ModuleRegistry,
    ModuleType,
    OperationReverted,
    ReceiptMismatch,
    ReceiptTimeout,
    SENTINEL_ADDRESS,
    SmartAccountClient,
    TransportFailure,
    encode_install_context,
    encode_uninstall_context,
)
from lightaccount.abi import decode_function_data
from lightaccount.calls import EXECUTE_ABI
from lightaccount.modules import INSTALL_MODULE_ABI
from lightaccount.test.fakes import FakeBundlerNode

EXECUTOR = "0x4Fd8d57b94966982B62e9588C27B4171B55E8354"
OTHER_EXECUTOR = "0x1234567890123456789012345678901234567890"


@pytest.fixture
def manager(client):
    return ModuleManager(client)


def manager_with(make_account, entry_point, **bundler_kwargs):
    bundler = FakeBundlerNode(entry_point, **bundler_kwargs)
    return ModuleManager(SmartAccountClient(make_account("2.0.0"), bundler))


def test_module_type_parsing():
    assert ModuleType.parse("executor") == ModuleType.EXECUTOR == 2
    assert ModuleType.parse(1) == ModuleType.VALIDATOR
    with pytest.raises(ValueError):
        ModuleType.parse("plugin")


def test_linked_list_contexts():
    context = encode_uninstall_context(ModuleRegistry.LINKED_LIST, b"", prev=SENTINEL_ADDRESS)

    prev, init_data = decode(["address", "bytes"], context)
    assert to_checksum_address(prev) == SENTINEL_ADDRESS
    assert init_data == b""
    assert encode_install_context(ModuleRegistry.LINKED_LIST, b"\xaa") == b"\xaa"
    with pytest.raises(ValueError):
        encode_uninstall_context(ModuleRegistry.LINKED_LIST, b"")


def test_hooked_contexts():
    context = encode_install_context(ModuleRegistry.HOOKED, b"\xaa")

    assert context[:20] == b"\x00" * 20
    assert decode(["bytes", "bytes"], context[20:]) == (b"\xaa", b"")
    assert encode_uninstall_context(ModuleRegistry.HOOKED, b"") == b""


@pytest.mark.asyncio
async def test_install_is_a_self_call(manager, bundler):
    await manager.install_module("executor", EXECUTOR, b"\x01")

    call_data = HexBytes(bundler.sent[0]["callData"])
    dest, value, func = decode_function_data(EXECUTE_ABI, call_data)
    module_type, module, init_data = decode_function_data(INSTALL_MODULE_ABI, func)
    assert dest.lower() == (await manager.client.get_address()).lower()
    assert value == 0
    assert (module_type, module.lower(), init_data) == (2, EXECUTOR.lower(), b"\x01")


@pytest.mark.asyncio
async def test_install_then_uninstall(manager, entry_point):
    account_address = await manager.client.get_address()
    module_data = encode_packed(["address"], [account_address])

    install_hash = await manager.install_module("executor", EXECUTOR, module_data)
    await manager.client.wait_for_user_operation_receipt(install_hash, timeout=1)
    assert entry_point.modules[account_address][2] == [to_checksum_address(EXECUTOR)]

    uninstall_hash = await manager.uninstall_module(
        "executor",
        EXECUTOR,
        encode_uninstall_context(ModuleRegistry.LINKED_LIST, b"", prev=SENTINEL_ADDRESS),
    )

    assert len(HexBytes(uninstall_hash)) == 32
    receipt = await manager.client.wait_for_user_operation_receipt(uninstall_hash, timeout=1)
    assert receipt["userOpHash"] == uninstall_hash
    assert receipt["receipt"]["transactionHash"]
    fetched = await manager.client.get_user_operation_receipt(uninstall_hash)
    assert fetched["receipt"]["transactionHash"] == receipt["receipt"]["transactionHash"]
    assert entry_point.modules[account_address][2] == []


@pytest.mark.asyncio
async def test_run_records_states(manager):
    module = manager.module_for_install("executor", EXECUTOR, b"")
    action = ModuleAction.install(module)
    assert action.status == ModuleActionStatus.REQUESTED

    await manager.run(action, timeout=1)

    assert action.status == ModuleActionStatus.CONFIRMED
    assert action.call is not None
    assert action.transaction_hash == action.receipt["receipt"]["transactionHash"]

    removal = await manager.uninstall(manager.module_for_uninstall("executor", EXECUTOR, prev=SENTINEL_ADDRESS))
    assert removal.status == ModuleActionStatus.CONFIRMED


@pytest.mark.asyncio
async def test_uninstall_needs_correct_prev(manager, entry_point):
    await manager.install(manager.module_for_install("executor", EXECUTOR), timeout=1)
    await manager.install(manager.module_for_install("executor", OTHER_EXECUTOR), timeout=1)

    # OTHER_EXECUTOR is now the head, EXECUTOR follows it
    wrong = manager.module_for_uninstall("executor", EXECUTOR, prev=SENTINEL_ADDRESS)
    with pytest.raises(TransportFailure, match="LinkedList_InvalidEntry"):
        await manager.uninstall(wrong, timeout=1)

    right = manager.module_for_uninstall("executor", EXECUTOR, prev=OTHER_EXECUTOR)
    await manager.uninstall(right, timeout=1)
    account_address = await manager.client.get_address()
    assert entry_point.modules[account_address][2] == [OTHER_EXECUTOR]


@pytest.mark.asyncio
async def test_uninstall_absent_module_not_retried(manager, bundler):
    module = manager.module_for_uninstall("executor", EXECUTOR, prev=SENTINEL_ADDRESS)
    action = ModuleAction.uninstall(module)

    with pytest.raises(TransportFailure, match="ModuleNotInstalled"):
        await manager.run(action, timeout=1)

    assert len(bundler.sent) == 1
    assert action.status == ModuleActionStatus.ENCODED


@pytest.mark.asyncio
async def test_receipt_timeout(make_account, entry_point):
    manager = manager_with(make_account, entry_point, receipt_delay=5)
    action = ModuleAction.install(Module("executor", EXECUTOR))

    with pytest.raises(ReceiptTimeout):
        await manager.run(action, timeout=0.05, poll_interval=0.01)

    assert action.status == ModuleActionStatus.TIMED_OUT
    assert action.user_op_hash is not None


@pytest.mark.asyncio
async def test_receipt_mismatch(make_account, entry_point):
    manager = manager_with(make_account, entry_point, tamper_refetch=True)

    user_op_hash = await manager.install_module("executor", EXECUTOR)
    with pytest.raises(ReceiptMismatch):
        await manager.confirm(user_op_hash, timeout=1)


@pytest.mark.asyncio
async def test_reverted_operation(make_account, entry_point):
    manager = manager_with(make_account, entry_point, revert_execution=True)
    action = ModuleAction.install(Module("executor", EXECUTOR))

    with pytest.raises(OperationReverted):
        await manager.run(action, timeout=1)

    assert action.status == ModuleActionStatus.REVERTED
