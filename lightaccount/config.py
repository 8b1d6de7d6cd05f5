"""
Global configuration for multi-chain support.
Keeps, per network, where to read the chain, where to send UserOperations
and which EntryPoint and factory the accounts use.
"""
from typing import Dict, List, Optional
from dataclasses import dataclass, asdict, replace
import json
import os

from .variants import ENTRY_POINT_ADDRESSES, EntryPointVersion, get_entry_point_version


@dataclass
class NetworkConfig:
    """Settings of a single network. Validated on creation."""
    chain_id: int
    rpc_url: str
    bundler_url: Optional[str] = None
    entrypoint_address: Optional[str] = None
    entrypoint_version: str = EntryPointVersion.V07.value
    factory_address: Optional[str] = None
    name: Optional[str] = None

    def __post_init__(self):
        if not self.rpc_url:
            raise ValueError("RPC URL cannot be empty")
        self.chain_id = int(self.chain_id)
        self.entrypoint_version = get_entry_point_version(self.entrypoint_version).value
        if not self.entrypoint_address:
            self.entrypoint_address = ENTRY_POINT_ADDRESSES[EntryPointVersion(self.entrypoint_version)]

    @property
    def bundler(self) -> str:
        # Providers such as Alchemy serve both APIs on one endpoint
        return self.bundler_url or self.rpc_url

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'NetworkConfig':
        return cls(**data)


# Public endpoints, bundler URLs have to be set per deployment
DEFAULT_NETWORKS: Dict[str, dict] = {
    "sepolia": {"chain_id": 11155111, "rpc_url": "https://rpc.sepolia.org", "name": "Sepolia Testnet"},
    "mainnet": {"chain_id": 1, "rpc_url": "https://eth.llamarpc.com", "name": "Ethereum Mainnet"},
    "base-sepolia": {"chain_id": 84532, "rpc_url": "https://sepolia.base.org", "name": "Base Sepolia"},
}


class Config:
    """
    Configuration singleton shared by every Wallet.
    Loads config.json on first use if it exists.

    Usage:
        config = Config()
        config.add_network("sepolia", NetworkConfig(...))
        config.set_bundler("sepolia", "https://...")
    """

    _instance = None
    DEFAULT_CONFIG_PATH = "config.json"

    def __new__(cls, config_path: Optional[str] = None):
        if cls._instance is None:
            cls._instance = super(Config, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self, config_path: Optional[str] = None):
        if self._initialized:
            return

        self._networks: Dict[str, NetworkConfig] = {}
        self.config_path = config_path or self.DEFAULT_CONFIG_PATH
        self._initialized = True

        if os.path.exists(self.config_path):
            self.load_from_json()

    @classmethod
    def reset(cls):
        """Drop the singleton, the next Config() starts fresh."""
        cls._instance = None

    # ============================================
    # Networks
    # ============================================

    def add_network(self, network_name: str, network_config: NetworkConfig, save: bool = True):
        """Add or replace a network."""
        self._networks[network_name] = network_config
        self._persist(save)

    def update_network(self, network_name: str, save: bool = True, **changes) -> NetworkConfig:
        """
        Change some settings of a configured network.

        The result goes through NetworkConfig validation again, so an
        unsupported ``entrypoint_version`` leaves the network untouched.

        Raises:
            KeyError: If the network is not configured
            UnsupportedAccountVersion: For an unknown entry point version
        """
        network = replace(self.get_network(network_name), **changes)
        self._networks[network_name] = network
        self._persist(save)
        return network

    def get_network(self, network_name: str) -> NetworkConfig:
        """
        Raises:
            KeyError: If network not found
        """
        try:
            return self._networks[network_name]
        except KeyError:
            raise KeyError(f"Network '{network_name}' not configured")

    def has_network(self, network_name: str) -> bool:
        return network_name in self._networks

    def list_networks(self) -> List[str]:
        return list(self._networks)

    def remove_network(self, network_name: str, save: bool = True):
        if self._networks.pop(network_name, None) is not None:
            self._persist(save)

    # ============================================
    # Lookups
    # ============================================

    def get_rpc_url(self, network_name: str) -> str:
        return self.get_network(network_name).rpc_url

    def get_bundler_url(self, network_name: str) -> str:
        return self.get_network(network_name).bundler

    def get_chain_id(self, network_name: str) -> int:
        return self.get_network(network_name).chain_id

    def get_entry_point(self, network_name: str) -> str:
        return self.get_network(network_name).entrypoint_address

    def get_entry_point_version(self, network_name: str) -> str:
        return self.get_network(network_name).entrypoint_version

    def get_factory(self, network_name: str) -> Optional[str]:
        return self.get_network(network_name).factory_address

    # ============================================
    # Deployment settings
    # ============================================

    def set_entry_point(
        self,
        network_name: str,
        entrypoint_address: str,
        entrypoint_version: Optional[str] = None,
        save: bool = True
    ):
        """
        Point a network at another EntryPoint, e.g. one deployed on a local node.

        Args:
            entrypoint_version: "0.6" or "0.7", unchanged if not provided
        """
        changes = {"entrypoint_address": entrypoint_address}
        if entrypoint_version is not None:
            changes["entrypoint_version"] = entrypoint_version
        self.update_network(network_name, save=save, **changes)

    def set_factory(self, network_name: str, factory_address: str, save: bool = True):
        self.update_network(network_name, save=save, factory_address=factory_address)

    def set_bundler(self, network_name: str, bundler_url: str, save: bool = True):
        self.update_network(network_name, save=save, bundler_url=bundler_url)

    def load_default_networks(self, save: bool = True):
        """Add the networks of DEFAULT_NETWORKS, keeping any already configured."""
        for network_name, settings in DEFAULT_NETWORKS.items():
            if network_name not in self._networks:
                self._networks[network_name] = NetworkConfig(**settings)
        self._persist(save)

    # ============================================
    # JSON Persistence
    # ============================================

    def _persist(self, save: bool):
        if save:
            self.save_to_json()

    def save_to_json(self, path: Optional[str] = None):
        config_data = {
            'networks': {
                name: network.to_dict()
                for name, network in self._networks.items()
            }
        }

        with open(path or self.config_path, 'w') as f:
            json.dump(config_data, f, indent=2)

    def load_from_json(self, path: Optional[str] = None):
        """
        Replace the configured networks with the ones of a JSON file.

        Raises:
            FileNotFoundError: If config file doesn't exist
        """
        load_path = path or self.config_path

        if not os.path.exists(load_path):
            raise FileNotFoundError(f"Config file not found: {load_path}")

        with open(load_path, 'r') as f:
            config_data = json.load(f)

        self._networks = {
            network_name: NetworkConfig.from_dict(network_data)
            for network_name, network_data in config_data.get('networks', {}).items()
        }

    def __repr__(self):
        return f"<Config networks={self.list_networks()} path={self.config_path}>"
