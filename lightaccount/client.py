"""
Smart account client: builds, signs and submits UserOperations through a bundler.
"""
import logging
from typing import Any, Dict, Optional, Sequence

from hexbytes import HexBytes

from .account import LightAccount, split_nonce
from .calls import CallLike
from .user_operation import UserOperation

logger = logging.getLogger(__name__)

DEFAULT_RECEIPT_TIMEOUT = 120


class SmartAccountClient:
    """
    Sends calls from a LightAccount as ERC-4337 UserOperations.

    Usage:
        client = SmartAccountClient(account, BundlerTransport(bundler_url))
        user_op_hash = await client.send_calls([{"to": "0x...", "value": 1}])
        receipt = await client.wait_for_user_operation_receipt(user_op_hash)
    """

    def __init__(self, account: LightAccount, bundler, chain=None):
        self.account = account
        self.bundler = bundler
        self.chain = chain or account.chain

    @property
    def entry_point_address(self) -> str:
        return self.account.entry_point_address

    # ============================================
    # UserOperation construction
    # ============================================

    async def prepare_user_operation(
        self,
        calls: Sequence[CallLike],
        nonce: Optional[int] = None,
        nonce_key: Optional[int] = None,
        max_fee_per_gas: Optional[int] = None,
        max_priority_fee_per_gas: Optional[int] = None,
        call_gas_limit: Optional[int] = None,
        verification_gas_limit: Optional[int] = None,
        pre_verification_gas: Optional[int] = None
    ) -> UserOperation:
        """
        Build an unsigned UserOperation carrying the stub signature.

        Args:
            calls: Calls executed by the account, in order
            nonce: Full nonce (read from the EntryPoint if not provided)
            nonce_key: Nonce key used when reading the nonce
            max_fee_per_gas: Max gas price (fetched if not provided)
            max_priority_fee_per_gas: Priority fee (fetched if not provided)
            call_gas_limit: Gas limit for the call (estimated if not provided)
            verification_gas_limit: Gas limit for validation (estimated if not provided)
            pre_verification_gas: Gas overhead (estimated if not provided)

        Raises:
            InvalidInput: If ``calls`` is empty, before any network call
        """
        call_data = self.account.encode_calls(calls)
        sender = await self.account.get_address()

        if nonce is None:
            nonce = await self.account.get_nonce(nonce_key)

        factory = factory_data = None
        if not await self.account.is_deployed():
            factory, factory_data = await self.account.get_factory_args()

        if max_fee_per_gas is None or max_priority_fee_per_gas is None:
            gas_prices = await self.chain.get_gas_prices()
            max_fee_per_gas = max_fee_per_gas or gas_prices['maxFeePerGas']
            max_priority_fee_per_gas = max_priority_fee_per_gas or gas_prices['maxPriorityFeePerGas']

        user_operation = UserOperation(
            sender=sender,
            nonce=nonce,
            call_data=call_data,
            call_gas_limit=call_gas_limit or 0,
            verification_gas_limit=verification_gas_limit or 0,
            pre_verification_gas=pre_verification_gas or 0,
            max_fee_per_gas=max_fee_per_gas,
            max_priority_fee_per_gas=max_priority_fee_per_gas,
            signature=self.account.get_stub_signature(),
            factory=factory,
            factory_data=factory_data,
        )

        if None in (call_gas_limit, verification_gas_limit, pre_verification_gas):
            estimate = await self.bundler.estimate_user_operation_gas(
                user_operation.to_rpc(self.account.entry_point_version), self.entry_point_address
            )
            user_operation = user_operation.replace(
                call_gas_limit=call_gas_limit or estimate.get('callGasLimit', 0),
                verification_gas_limit=verification_gas_limit or estimate.get('verificationGasLimit', 0),
                pre_verification_gas=pre_verification_gas or estimate.get('preVerificationGas', 0),
            )

        key, sequence = split_nonce(nonce)
        logger.debug(
            "Prepared UserOperation for %s (nonce key %d, sequence %d, deployed=%s)",
            sender, key, sequence, factory is None
        )
        return user_operation

    async def sign_user_operation(self, user_operation: UserOperation) -> UserOperation:
        signature = await self.account.sign_user_operation(user_operation)
        return user_operation.replace(signature=signature)

    # ============================================
    # Submission
    # ============================================

    async def send_user_operation(self, user_operation: UserOperation) -> str:
        """Submit a signed UserOperation, returns its hash."""
        return await self.bundler.send_user_operation(
            user_operation.to_rpc(self.account.entry_point_version), self.entry_point_address
        )

    async def send_calls(self, calls: Sequence[CallLike], **kwargs) -> str:
        """
        Prepare, sign and submit a UserOperation executing ``calls``.

        Returns:
            UserOperation hash
        """
        user_operation = await self.prepare_user_operation(calls, **kwargs)
        signed = await self.sign_user_operation(user_operation)
        return await self.send_user_operation(signed)

    async def wait_for_user_operation_receipt(
        self,
        user_op_hash: str,
        timeout: float = DEFAULT_RECEIPT_TIMEOUT,
        poll_interval: Optional[float] = None
    ) -> Dict[str, Any]:
        return await self.bundler.wait_for_user_operation_receipt(
            user_op_hash, timeout=timeout, poll_interval=poll_interval
        )

    async def get_user_operation_receipt(self, user_op_hash: str) -> Optional[Dict[str, Any]]:
        return await self.bundler.get_user_operation_receipt(user_op_hash)

    # ============================================
    # Signing passthrough
    # ============================================

    async def get_address(self) -> str:
        return await self.account.get_address()

    async def sign_message(self, message) -> HexBytes:
        return await self.account.sign_message(message)

    async def sign_typed_data(self, typed_data: Dict[str, Any]) -> HexBytes:
        return await self.account.sign_typed_data(typed_data)

    def __repr__(self):
        return f"<SmartAccountClient account={self.account!r}>"
