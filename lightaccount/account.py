"""
LightAccount smart account.
Handles address derivation, call encoding, nonces and signing.
"""
import logging
from typing import Any, Dict, Optional, Sequence

from eth_typing import ChecksumAddress
from eth_utils import to_checksum_address, to_hex
from hexbytes import HexBytes

from .calls import CallLike
from .exceptions import OwnerMissing, UnsupportedAccountVersion
from .signatures import Message, SignatureComposer, hash_message, hash_typed_data
from .user_operation import UserOperation
from .variants import (
    ENTRY_POINT_ADDRESSES,
    EntryPointVersion,
    FactoryArgs,
    get_entry_point_version,
    get_variant,
)

logger = logging.getLogger(__name__)

NONCE_SEQUENCE_BITS = 64


def split_nonce(nonce: int) -> tuple:
    """Split a full EntryPoint nonce into ``(key, sequence)``."""
    return nonce >> NONCE_SEQUENCE_BITS, nonce & ((1 << NONCE_SEQUENCE_BITS) - 1)


class LightAccount:
    """
    A LightAccount owned by a single key.

    The account address is resolved lazily and cached for the life of the
    instance, as is the chain id.

    Usage:
        account = LightAccount(chain, owner=LocalOwner(key), version="2.0.0")
        address = await account.get_address()
        signature = await account.sign_message("hello")
    """

    def __init__(
        self,
        chain,
        owner,
        version: Any,
        entry_point_address: Optional[str] = None,
        entry_point_version: Any = None,
        factory_address: Optional[str] = None,
        index: int = 0,
        address: Optional[str] = None,
        nonce_key: Optional[int] = None,
        chain_id: Optional[int] = None
    ):
        """
        Initialize a LightAccount.

        Args:
            chain: Chain transport (``get_chain_id``, ``get_sender_address``, ``get_nonce``)
            owner: Owner signer exposing ``address``, ``sign_message`` and ``sign_typed_data``
            version: LightAccount version, "1.1.0" (entry point 0.6) or "2.0.0" (entry point 0.7)
            entry_point_address: EntryPoint address, defaults to the canonical one
            entry_point_version: EntryPoint version, defaults to the version's own
            factory_address: Account factory, defaults to the version's canonical factory
            index: Deployment salt
            address: Known account address, skips derivation
            nonce_key: Default nonce key
            chain_id: Known chain id, skips the eth_chainId call

        Raises:
            UnknownAccountVersion: For an unknown LightAccount version
            UnsupportedAccountVersion: If the entry point version does not match the account version
        """
        self.variant = get_variant(version)
        self.version = self.variant.version

        ep_version = (
            get_entry_point_version(entry_point_version)
            if entry_point_version is not None
            else self.variant.entry_point_version
        )
        if ep_version != self.variant.entry_point_version:
            raise UnsupportedAccountVersion(
                f"Light Account {self.version.value} requires entry point "
                f"{self.variant.entry_point_version.value}, got {ep_version.value}"
            )

        self.entry_point_version: EntryPointVersion = ep_version
        self.entry_point_address: ChecksumAddress = to_checksum_address(
            entry_point_address or ENTRY_POINT_ADDRESSES[ep_version]
        )
        self.factory_address: ChecksumAddress = to_checksum_address(
            factory_address or self.variant.factory_address
        )

        self.chain = chain
        self.owner = owner
        self.index = int(index)
        self.nonce_key = nonce_key
        self.composer = SignatureComposer(self.variant)

        self._address: Optional[ChecksumAddress] = to_checksum_address(address) if address else None
        self._chain_id: Optional[int] = chain_id

    # ============================================
    # Identity
    # ============================================

    @property
    def owner_address(self) -> Optional[str]:
        return getattr(self.owner, "address", None) if self.owner is not None else None

    async def get_factory_args(self) -> FactoryArgs:
        """
        Factory and ``createAccount(owner, index)`` calldata deploying this account.

        Raises:
            OwnerMissing: If no owner is configured
        """
        return self.variant.get_factory_args(self.owner_address, self.index, self.factory_address)

    async def get_address(self) -> ChecksumAddress:
        """
        Counterfactual address of the account, resolved once and cached.

        Raises:
            OwnerMissing: If the address is unknown and no owner is configured
        """
        if self._address:
            return self._address

        factory, factory_data = await self.get_factory_args()
        address = await self.chain.get_sender_address(factory, factory_data, self.entry_point_address)

        # Another coroutine may have resolved it meanwhile; first write wins
        if self._address is None:
            self._address = to_checksum_address(address)
            logger.debug("Resolved Light Account %s for owner %s", self._address, self.owner_address)

        return self._address

    async def get_chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = await self.chain.get_chain_id()
        return self._chain_id

    async def is_deployed(self) -> bool:
        """Check if the account contract is deployed."""
        code = await self.chain.get_code(await self.get_address())
        return len(code) > 0

    # ============================================
    # Calls and nonces
    # ============================================

    def encode_calls(self, calls: Sequence[CallLike]) -> HexBytes:
        return self.variant.encode_calls(calls)

    async def get_nonce(self, key: Optional[int] = None) -> int:
        """
        Get the next nonce of this account from the EntryPoint.

        Args:
            key: Nonce key for parallel operations (default: the account's nonce key, else 0)

        Returns:
            Full nonce, ``key << 64 | sequence``
        """
        if key is None:
            key = self.nonce_key or 0
        return await self.chain.get_nonce(await self.get_address(), self.entry_point_address, key)

    # ============================================
    # Signing
    # ============================================

    def get_stub_signature(self) -> HexBytes:
        """Realistically sized signature for gas estimation, never valid on-chain."""
        return self.variant.stub_signature()

    def _require_owner(self):
        if self.owner is None:
            raise OwnerMissing("Owner account not found")
        return self.owner

    async def sign_message(self, message: Message) -> HexBytes:
        owner = self._require_owner()
        return await self.composer.wrap_and_sign(
            owner, await self.get_chain_id(), await self.get_address(), hash_message(message)
        )

    async def sign_typed_data(self, typed_data: Dict[str, Any]) -> HexBytes:
        owner = self._require_owner()
        return await self.composer.wrap_and_sign(
            owner, await self.get_chain_id(), await self.get_address(), hash_typed_data(typed_data)
        )

    async def sign(self, hash) -> HexBytes:
        # The hex string of the hash is signed as text
        return await self.sign_message(to_hex(HexBytes(hash)))

    async def get_user_operation_hash(
        self,
        user_operation: UserOperation,
        chain_id: Optional[int] = None
    ) -> HexBytes:
        if chain_id is None:
            chain_id = await self.get_chain_id()
        return user_operation.replace(signature=b"").calculate_user_operation_hash(
            self.entry_point_address, self.entry_point_version, chain_id
        )

    async def sign_user_operation(
        self,
        user_operation: UserOperation,
        chain_id: Optional[int] = None
    ) -> HexBytes:
        """
        Sign a UserOperation for this account's entry point.

        The owner signs the operation hash as an EIP-191 message, without the
        LightAccountMessage wrapper.
        """
        owner = self._require_owner()
        user_op_hash = await self.get_user_operation_hash(user_operation, chain_id)
        signature = await owner.sign_message(bytes(user_op_hash))
        return self.composer.compose(signature)

    def __repr__(self):
        # Also reached for instances whose __init__ raised
        version = getattr(self, "version", None)
        entry_point_version = getattr(self, "entry_point_version", None)
        return (
            f"<LightAccount version={version.value if version else None} "
            f"address={getattr(self, '_address', None) or 'unresolved'} "
            f"entry_point={entry_point_version.value if entry_point_version else None}>"
        )
