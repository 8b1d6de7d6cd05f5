import os
import base64
import hmac
import hashlib
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

SALT_SIZE = 16
IV_SIZE = 16
MAC_SIZE = 32
KDF_ITERATIONS = 390000


class CryptoError(Exception):
    pass


class HMACVerificationFailed(CryptoError):
    pass


class WrongPassword(CryptoError):
    pass


def derive_keys(password: str, salt: bytes) -> tuple:
    """PBKDF2-SHA256 over the password; first half encrypts, second half authenticates."""
    try:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=64,
            salt=salt,
            iterations=KDF_ITERATIONS,
        )
        material = kdf.derive(password.encode())
    except Exception as e:
        raise CryptoError(f"KDF key derivation failed: {e}")
    return material[:32], material[32:]


def aes_encrypt(data: bytes, password: str) -> bytes:
    """Encrypt ``data`` into ``base64(salt || iv || ciphertext || hmac)``."""
    try:
        salt = os.urandom(SALT_SIZE)
        key, hmac_key = derive_keys(password, salt)
        iv = os.urandom(IV_SIZE)

        encryptor = Cipher(algorithms.AES(key), modes.CFB(iv)).encryptor()
        ciphertext = encryptor.update(data) + encryptor.finalize()

        mac = hmac.new(hmac_key, salt + iv + ciphertext, hashlib.sha256).digest()
        return base64.b64encode(salt + iv + ciphertext + mac)
    except CryptoError:
        raise
    except Exception as e:
        raise CryptoError(f"AES encrypt failed: {e}")


def aes_decrypt(enc_data: bytes, password: str) -> bytes:
    try:
        raw = base64.b64decode(enc_data, validate=True)
    except Exception:
        raise CryptoError("Base64 decode failed (corrupted keystore).")

    if len(raw) < SALT_SIZE + IV_SIZE + MAC_SIZE:
        raise CryptoError("Encrypted data too short or invalid.")

    salt = raw[:SALT_SIZE]
    iv = raw[SALT_SIZE:SALT_SIZE + IV_SIZE]
    ciphertext = raw[SALT_SIZE + IV_SIZE:-MAC_SIZE]
    mac = raw[-MAC_SIZE:]

    key, hmac_key = derive_keys(password, salt)

    # A wrong password and a tampered file both fail here
    real_mac = hmac.new(hmac_key, salt + iv + ciphertext, hashlib.sha256).digest()
    if not hmac.compare_digest(mac, real_mac):
        raise HMACVerificationFailed("HMAC check failed: wrong password or tampered keystore.")

    try:
        decryptor = Cipher(algorithms.AES(key), modes.CFB(iv)).decryptor()
        return decryptor.update(ciphertext) + decryptor.finalize()
    except Exception:
        raise WrongPassword("Wrong password or corrupted keystore.")
