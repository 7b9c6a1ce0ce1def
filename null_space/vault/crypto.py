"""Core cryptographic primitives for vault encryption.

Uses the cryptography library for:
- PBKDF2-HMAC-SHA256 key derivation (480,000 iterations per OWASP 2023)
- Fernet (AES-128-CBC + HMAC-SHA256) for note and verifier payloads

Salts travel as URL-safe base64 text and ciphertexts as Fernet tokens
(also ASCII text), so both can be stored in JSON and written as-is.
"""

import base64
import binascii
import os

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..exceptions import CryptoError

# Key derivation parameters (OWASP 2023 recommendations)
PBKDF2_ITERATIONS = 480_000
SALT_SIZE = 32  # 256 bits
KEY_SIZE = 32  # 256 bits

# Fernet token layout: version (1) | timestamp (8) | IV (16) | ciphertext | HMAC (32)
FERNET_VERSION = 0x80
FERNET_MIN_TOKEN_SIZE = 1 + 8 + 16 + 16 + 32

# Verification plaintext (encrypted at vault creation to verify passwords)
VERIFICATION_PLAINTEXT = "vault_unlock_test"


class KeyDerivation:
    """Derives encryption keys from a vault password using PBKDF2."""

    @staticmethod
    def generate_salt() -> str:
        """Generate a cryptographically secure random salt as base64 text."""
        return base64.urlsafe_b64encode(os.urandom(SALT_SIZE)).decode("ascii")

    @staticmethod
    def decode_salt(salt: str) -> bytes:
        try:
            raw = base64.urlsafe_b64decode(salt.encode("ascii"))
        except (binascii.Error, UnicodeEncodeError, ValueError) as e:
            raise CryptoError(f"Malformed salt: {e}", operation="derive_key") from e
        if not raw:
            raise CryptoError("Empty salt", operation="derive_key")
        return raw

    @staticmethod
    def derive_key(password: str, salt: str, iterations: int = PBKDF2_ITERATIONS) -> bytes:
        """
        Derive a 256-bit key from password using PBKDF2-HMAC-SHA256.

        Args:
            password: Vault password
            salt: Base64 salt stored with the vault
            iterations: PBKDF2 iteration count

        Returns:
            32-byte derived key
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_SIZE,
            salt=KeyDerivation.decode_salt(salt),
            iterations=iterations,
        )
        return kdf.derive(password.encode("utf-8"))

    @staticmethod
    def derive_fernet_key(password: str, salt: str, iterations: int = PBKDF2_ITERATIONS) -> bytes:
        """Derive a Fernet-compatible (URL-safe base64 encoded) key."""
        raw_key = KeyDerivation.derive_key(password, salt, iterations)
        return base64.urlsafe_b64encode(raw_key)


class NoteCipher:
    """
    Fernet cipher bound to one derived key.

    Obtained from CryptoEngine.cipher() so bulk operations derive the key
    once; callers drop it when the operation ends.
    """

    def __init__(self, fernet_key: bytes):
        self.fernet = Fernet(fernet_key)

    def encrypt(self, plaintext: str) -> str:
        try:
            return self.fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")
        except Exception as e:
            raise CryptoError(f"Fernet encryption failed: {e}", operation="encrypt") from e

    def decrypt(self, ciphertext: str) -> str:
        try:
            return self.fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except InvalidToken as e:
            raise CryptoError("Invalid ciphertext or wrong key", operation="decrypt") from e
        except (UnicodeError, ValueError) as e:
            raise CryptoError(f"Fernet decryption failed: {e}", operation="decrypt") from e


class CryptoEngine:
    """
    Stateless encrypt/decrypt/generate-salt transform.

    Nothing derived from a password is kept between calls.

    Usage:
        engine = CryptoEngine()
        salt = engine.generate_salt()
        token = engine.encrypt("hello", "password", salt)
        assert engine.decrypt(token, "password", salt) == "hello"
    """

    def __init__(self, iterations: int = PBKDF2_ITERATIONS):
        if iterations < 1:
            raise ValueError("iterations must be positive")
        self.iterations = iterations

    def generate_salt(self) -> str:
        return KeyDerivation.generate_salt()

    def cipher(self, password: str, salt: str) -> NoteCipher:
        """Derive the key for (password, salt) once and wrap it."""
        return NoteCipher(KeyDerivation.derive_fernet_key(password, salt, self.iterations))

    def encrypt(self, plaintext: str, password: str, salt: str) -> str:
        """
        Encrypt text.

        Raises:
            CryptoError: If the salt is malformed or encryption fails
        """
        return self.cipher(password, salt).encrypt(plaintext)

    def decrypt(self, ciphertext: str, password: str, salt: str) -> str:
        """
        Decrypt text.

        Raises:
            CryptoError: On wrong key or corrupt input
        """
        return self.cipher(password, salt).decrypt(ciphertext)

    def create_verifier(self, password: str, salt: str) -> str:
        """Encrypt the fixed sentinel so a password can be checked later."""
        return self.encrypt(VERIFICATION_PLAINTEXT, password, salt)

    @staticmethod
    def is_well_formed(token: str) -> bool:
        """Structural check of a Fernet token without any key material.

        Lets callers tell a corrupt token apart from a wrong password,
        since Fernet reports both as InvalidToken.
        """
        try:
            raw = base64.urlsafe_b64decode(token.encode("ascii"))
        except (binascii.Error, UnicodeEncodeError, ValueError):
            return False
        return len(raw) >= FERNET_MIN_TOKEN_SIZE and raw[0] == FERNET_VERSION
