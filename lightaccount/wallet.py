"""
Wallet class for managing LightAccounts of one owner across chains.
Integrates with KeyManager for signing operations.
"""
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional
import json
import os

from eth_utils import to_checksum_address

from .account import LightAccount
from .client import SmartAccountClient
from .config import Config
from .keymanager.keyManager import KeyManager
from .transport import BundlerTransport, ChainTransport
from .exceptions import UnsupportedAccountVersion
from .variants import get_variant


@dataclass
class AccountRecord:
    """Persisted description of one LightAccount."""
    version: str
    index: int = 0
    address: Optional[str] = None
    nonce_key: int = 0
    factory_address: Optional[str] = None

    def __post_init__(self):
        # Unknown versions are rejected before anything is persisted
        self.version = get_variant(self.version).version.value
        if self.address:
            self.address = to_checksum_address(self.address)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AccountRecord':
        return cls(**data)


class Wallet:
    """
    Wallet manages the LightAccounts owned by one KeyManager key.

    Usage:
        km = KeyManager()
        km.unlock(password)

        wallet = Wallet(key_manager=km)
        wallet.add_account("sepolia", version="2.0.0")

        client = wallet.get_client("sepolia")
        user_op_hash = await client.send_calls([...])
    """

    def __init__(
        self,
        key_manager: KeyManager,
        wallet_name: str = "default",
        storage_path: Optional[str] = None,
        auto_load: bool = True,
        config: Optional[Config] = None
    ):
        """
        Initialize Wallet instance.

        Args:
            key_manager: KeyManager owning every account of the wallet
            wallet_name: Unique name for this wallet
            storage_path: Path to persist wallet data (optional)
            auto_load: Whether to automatically load from JSON if exists
            config: Network configuration (defaults to the Config singleton)
        """
        if not isinstance(key_manager, KeyManager):
            raise TypeError("key_manager must be a KeyManager instance")

        self.key_manager = key_manager
        self.wallet_name = wallet_name
        self.storage_path = storage_path or f"wallet_{wallet_name}.json"
        self._config = config or Config()

        # {network_name: [AccountRecord, ...]}
        self._accounts: Dict[str, List[AccountRecord]] = {}

        if auto_load and os.path.exists(self.storage_path):
            self.load()

    # ============================================
    # Account Management
    # ============================================

    def add_account(
        self,
        network_name: str,
        version: str,
        index: int = 0,
        address: Optional[str] = None,
        nonce_key: int = 0,
        factory_address: Optional[str] = None,
        save: bool = True
    ) -> AccountRecord:
        """
        Add a LightAccount to the wallet.

        Raises:
            ValueError: If the network is not configured or the account already exists
            UnknownAccountVersion: For an unknown LightAccount version
            UnsupportedAccountVersion: If the network runs another entry point version
        """
        if not self._config.has_network(network_name):
            raise ValueError(f"Network '{network_name}' not configured")

        record = AccountRecord(
            version=version,
            index=index,
            address=address,
            nonce_key=nonce_key,
            factory_address=factory_address,
        )

        variant = get_variant(record.version)
        network = self._config.get_network(network_name)
        if variant.entry_point_version.value != network.entrypoint_version:
            raise UnsupportedAccountVersion(
                f"Light Account {record.version} requires entry point "
                f"{variant.entry_point_version.value}, but {network_name} uses "
                f"{network.entrypoint_version}"
            )

        records = self._accounts.setdefault(network_name, [])
        for existing in records:
            if existing.version == record.version and existing.index == record.index:
                raise ValueError(
                    f"Light Account {record.version} #{record.index} already exists on {network_name}"
                )

        records.append(record)

        if save:
            self.save()

        return record

    def get_accounts(self, network_name: str) -> List[AccountRecord]:
        return self._accounts.get(network_name, [])

    def list_networks(self) -> List[str]:
        return [network for network, records in self._accounts.items() if records]

    def remove_account(self, network_name: str, index: Optional[int] = None, save: bool = True):
        """Remove one account (by position) or every account of a network."""
        if network_name not in self._accounts:
            return

        if index is None:
            del self._accounts[network_name]
        else:
            self._accounts[network_name].pop(index)
            if not self._accounts[network_name]:
                del self._accounts[network_name]

        if save:
            self.save()

    def get_account(self, network_name: str, position: int = 0) -> LightAccount:
        """
        Build the LightAccount at ``position`` for a network.

        Raises:
            KeyError: If the network has no accounts
            IndexError: If position out of range
        """
        records = self._accounts.get(network_name)
        if not records:
            raise KeyError(
                f"No accounts for network '{network_name}'. "
                f"Available networks: {self.list_networks()}"
            )
        if position >= len(records):
            raise IndexError(
                f"Account position {position} out of range. "
                f"{network_name} has {len(records)} account(s)"
            )

        record = records[position]
        network = self._config.get_network(network_name)
        return LightAccount(
            chain=ChainTransport(network.rpc_url),
            owner=self.key_manager,
            version=record.version,
            entry_point_address=network.entrypoint_address,
            entry_point_version=network.entrypoint_version,
            factory_address=record.factory_address or network.factory_address,
            index=record.index,
            address=record.address,
            nonce_key=record.nonce_key,
            chain_id=network.chain_id,
        )

    def get_client(self, network_name: str, position: int = 0) -> SmartAccountClient:
        account = self.get_account(network_name, position)
        bundler = BundlerTransport(self._config.get_bundler_url(network_name))
        return SmartAccountClient(account, bundler)

    async def resolve_addresses(self, save: bool = True) -> Dict[str, List[str]]:
        """Resolve and remember the address of every account."""
        addresses = {}
        for network_name, records in self._accounts.items():
            addresses[network_name] = []
            for position, record in enumerate(records):
                if not record.address:
                    record.address = await self.get_account(network_name, position).get_address()
                addresses[network_name].append(record.address)

        if save:
            self.save()
        return addresses

    # ============================================
    # Wallet State Persistence
    # ============================================

    def save(self, path: Optional[str] = None):
        """
        Save wallet configuration to disk.

        Note: This only saves account configurations, not the KeyManager private key.
        """
        save_path = path or self.storage_path

        wallet_data = {
            'wallet_name': self.wallet_name,
            'owner': self.key_manager.address,
            'accounts': {
                network: [record.to_dict() for record in records]
                for network, records in self._accounts.items()
            }
        }

        with open(save_path, 'w') as f:
            json.dump(wallet_data, f, indent=2)

    def load(self, path: Optional[str] = None):
        """
        Load wallet configuration from disk.

        Raises:
            FileNotFoundError: If wallet file doesn't exist
            ValueError: If the wallet belongs to another owner
        """
        load_path = path or self.storage_path

        if not os.path.exists(load_path):
            raise FileNotFoundError(f"Wallet file not found: {load_path}")

        with open(load_path, 'r') as f:
            wallet_data = json.load(f)

        if wallet_data.get('owner') != self.key_manager.address:
            raise ValueError(
                f"Wallet owner mismatch. "
                f"Expected: {wallet_data.get('owner')}, "
                f"Got: {self.key_manager.address}"
            )

        self._accounts.clear()
        for network_name, records in wallet_data.get('accounts', {}).items():
            self._accounts[network_name] = [AccountRecord.from_dict(data) for data in records]

    def __repr__(self):
        total_accounts = sum(len(records) for records in self._accounts.values())
        return (
            f"<Wallet name={self.wallet_name} "
            f"total_accounts={total_accounts} "
            f"networks={list(self._accounts.keys())}>"
        )
