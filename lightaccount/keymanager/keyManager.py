from typing import Any, Dict, Optional
import os

from eth_account import Account
from eth_account.messages import encode_defunct, encode_typed_data
from hexbytes import HexBytes

from .crypto_utils import (
    aes_encrypt, aes_decrypt,
    CryptoError
)


class LocalOwner:
    """
    Owner backed by an in-memory eth_account key.

    Any object with an ``address`` and the async ``sign_message`` /
    ``sign_typed_data`` coroutines can own a LightAccount.
    """

    def __init__(self, private_key):
        self._account = Account.from_key(private_key)
        self.address = self._account.address

    @classmethod
    def create(cls) -> 'LocalOwner':
        return cls(Account.create().key)

    async def sign_message(self, message: bytes) -> HexBytes:
        """EIP-191 personal signature over raw bytes."""
        return HexBytes(self._account.sign_message(encode_defunct(primitive=bytes(message))).signature)

    async def sign_typed_data(self, full_message: Dict[str, Any]) -> HexBytes:
        """EIP-712 signature over a full typed-data document."""
        return HexBytes(self._account.sign_message(encode_typed_data(full_message=full_message)).signature)


class KeyManager:
    """
    Encrypted keystore for the owner key of a LightAccount.

    Once unlocked, the KeyManager is itself a valid account owner.
    """

    def __init__(self, storage_path="keystore.json"):
        self.storage_path = storage_path
        self._owner: Optional[LocalOwner] = None
        self.address = None
        self.unlocked = False

    # ---------------- keystore ----------------

    def _write(self, private_key: bytes, password: str):
        encrypted = aes_encrypt(private_key, password)
        with open(self.storage_path, "wb") as f:
            f.write(encrypted)

    def create_new_key(self, password: str):
        acct = Account.create()
        try:
            self._write(acct.key, password)
        except OSError as e:
            raise CryptoError(f"Create key failed: {e}")

        self.address = acct.address
        return acct.address

    def import_private_key(self, private_key_hex: str, password: str):
        try:
            private_key_bytes = bytes.fromhex(private_key_hex.replace("0x", ""))
            address = Account.from_key(private_key_bytes).address
        except ValueError as e:
            raise CryptoError(f"Import private key failed: {e}")

        try:
            self._write(private_key_bytes, password)
        except OSError as e:
            raise CryptoError(f"Import private key failed: {e}")

        self.address = address
        return self.address

    def unlock(self, password: str):
        if not os.path.exists(self.storage_path):
            raise FileNotFoundError("Keystore not found.")

        with open(self.storage_path, "rb") as f:
            private_key_bytes = aes_decrypt(f.read(), password)

        self._owner = LocalOwner(private_key_bytes)
        self.address = self._owner.address
        self.unlocked = True
        return self.address

    def lock(self):
        self._owner = None
        self.unlocked = False

    def export_keystore(self, dest_path: str):
        if not os.path.exists(self.storage_path):
            raise FileNotFoundError("Keystore not found.")

        with open(self.storage_path, "rb") as f:
            data = f.read()
        with open(dest_path, "wb") as f:
            f.write(data)

    def import_keystore(self, src_path: str, password: str):
        with open(src_path, "rb") as f:
            data = f.read()

        # Decrypt first so a bad password never replaces the current keystore
        private_key = aes_decrypt(data, password)
        acct = Account.from_key(private_key)

        with open(self.storage_path, "wb") as f:
            f.write(data)

        self.address = acct.address
        return self.address

    # ---------------- owner interface ----------------

    def _require_owner(self) -> LocalOwner:
        if not self.unlocked or self._owner is None:
            raise PermissionError("Wallet is locked.")
        return self._owner

    async def sign_message(self, message: bytes) -> HexBytes:
        return await self._require_owner().sign_message(message)

    async def sign_typed_data(self, full_message: Dict[str, Any]) -> HexBytes:
        return await self._require_owner().sign_typed_data(full_message)

    def get_address(self):
        return self.address
