"""
LightAccount - ERC-4337 smart account client

Core modules:
- KeyManager: Encrypted owner key management
- Config: Multi-chain network configuration
- LightAccount: Address derivation, call encoding and signing
- SmartAccountClient: UserOperation preparation and submission
- ModuleManager: ERC-7579 module installation and removal
- Wallet: Multi-chain account management
"""

from .keymanager.keyManager import KeyManager, LocalOwner
from .keymanager.crypto_utils import CryptoError, WrongPassword, HMACVerificationFailed
from .config import Config, NetworkConfig
from .exceptions import (
    LightAccountError,
    OwnerMissing,
    UnsupportedAccountVersion,
    UnknownAccountVersion,
    InvalidInput,
    TransportFailure,
    ReceiptTimeout,
    ReceiptMismatch,
    OperationReverted,
)
from .calls import Call, encode_calls
from .variants import AccountVariant, EntryPointVersion, LightAccountVersion, get_variant
from .user_operation import UserOperation
from .account import LightAccount
from .transport import BundlerTransport, ChainTransport
from .client import SmartAccountClient
from .modules import (
    Module,
    ModuleAction,
    ModuleActionStatus,
    ModuleManager,
    ModuleRegistry,
    ModuleType,
    SENTINEL_ADDRESS,
    encode_install_context,
    encode_uninstall_context,
)
from .wallet import Wallet

__version__ = "0.1.0"

__all__ = [
    # Key Management
    "KeyManager",
    "LocalOwner",
    "CryptoError",
    "WrongPassword",
    "HMACVerificationFailed",

    # Configuration
    "Config",
    "NetworkConfig",

    # Errors
    "LightAccountError",
    "OwnerMissing",
    "UnsupportedAccountVersion",
    "UnknownAccountVersion",
    "InvalidInput",
    "TransportFailure",
    "ReceiptTimeout",
    "ReceiptMismatch",
    "OperationReverted",

    # Core Classes
    "Call",
    "encode_calls",
    "AccountVariant",
    "EntryPointVersion",
    "LightAccountVersion",
    "get_variant",
    "UserOperation",
    "LightAccount",
    "ChainTransport",
    "BundlerTransport",
    "SmartAccountClient",

    # Modules
    "Module",
    "ModuleAction",
    "ModuleActionStatus",
    "ModuleManager",
    "ModuleRegistry",
    "ModuleType",
    "SENTINEL_ADDRESS",
    "encode_install_context",
    "encode_uninstall_context",

    "Wallet",
]
