"""
Mail Helper - Encryption Module
AES-256-GCM für OAuth-Tokens der verbundenen Accounts (Token Provider)
"""

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.backends import default_backend
from cryptography.exceptions import InvalidTag
import os
import base64
import binascii
import logging

from src.services.errors import TokenDecryptionError

logger = logging.getLogger(__name__)


class EncryptionManager:
    """Verwaltet Verschlüsselung mit AES-256-GCM"""

    KEY_SIZE = 32
    IV_LENGTH = 12
    TAG_LENGTH = 16

    @staticmethod
    def encrypt_data(plaintext: str, master_key: str) -> str:
        """Verschlüsselt Daten mit AES-256-GCM

        Args:
            plaintext: Zu verschlüsselnde Daten
            master_key: Base64-kodierter Master-Key

        Returns:
            Base64-kodiertes Encrypted-Blob (IV + Ciphertext + Tag)
        """
        if not plaintext:
            return ""

        try:
            key = base64.b64decode(master_key)
            iv = os.urandom(EncryptionManager.IV_LENGTH)

            cipher = Cipher(
                algorithms.AES(key), modes.GCM(iv), backend=default_backend()
            )
            encryptor = cipher.encryptor()

            ciphertext = encryptor.update(plaintext.encode()) + encryptor.finalize()

            encrypted_blob = iv + ciphertext + encryptor.tag
            return base64.b64encode(encrypted_blob).decode()

        except Exception as e:
            logger.error(f"Encryption error: {type(e).__name__}")
            raise

    @staticmethod
    def decrypt_data(encrypted_blob: str, master_key: str) -> str:
        """Entschlüsselt Daten mit AES-256-GCM

        Args:
            encrypted_blob: Base64-kodiertes Encrypted-Blob
            master_key: Base64-kodierter Master-Key

        Returns:
            Entschlüsselte Daten als String
        """
        if not encrypted_blob:
            return ""

        try:
            key = base64.b64decode(master_key)
            encrypted_bytes = base64.b64decode(encrypted_blob)

            iv = encrypted_bytes[: EncryptionManager.IV_LENGTH]
            ciphertext = encrypted_bytes[
                EncryptionManager.IV_LENGTH : -EncryptionManager.TAG_LENGTH
            ]
            tag = encrypted_bytes[-EncryptionManager.TAG_LENGTH :]

            cipher = Cipher(
                algorithms.AES(key), modes.GCM(iv, tag), backend=default_backend()
            )
            decryptor = cipher.decryptor()

            plaintext = decryptor.update(ciphertext) + decryptor.finalize()
            return plaintext.decode()

        except Exception as e:
            # Security: Kein Blob/Key im Log
            logger.error(f"Decryption error: {type(e).__name__}")
            raise


class TokenCipher:
    """Token Provider für verbundene Accounts.

    Der Schlüssel kommt als 64-stelliger Hex-String aus ENCRYPTION_KEY
    (32 Bytes) und wird intern auf das Base64-Format von EncryptionManager
    abgebildet.
    """

    @staticmethod
    def _key_from_hex(hex_key: str) -> str:
        if not hex_key or len(hex_key) != EncryptionManager.KEY_SIZE * 2:
            raise TokenDecryptionError("Encryption key must be 32 bytes (64 hex chars)")
        try:
            return base64.b64encode(binascii.unhexlify(hex_key)).decode()
        except (binascii.Error, ValueError) as e:
            raise TokenDecryptionError("Encryption key is not valid hex") from e

    @staticmethod
    def encrypt_token(plaintext: str, hex_key: str) -> str:
        """Verschlüsselt einen OAuth-Token (Account-Verwaltung + Tests)"""
        return EncryptionManager.encrypt_data(plaintext, TokenCipher._key_from_hex(hex_key))

    @staticmethod
    def decrypt_token(ciphertext: str, hex_key: str) -> str:
        """Entschlüsselt einen OAuth-Token

        Raises:
            TokenDecryptionError: falscher Key, beschädigter oder leerer Blob
        """
        key = TokenCipher._key_from_hex(hex_key)
        if not ciphertext:
            raise TokenDecryptionError("Empty token ciphertext")
        try:
            return EncryptionManager.decrypt_data(ciphertext, key)
        except (InvalidTag, binascii.Error, ValueError, UnicodeDecodeError) as e:
            raise TokenDecryptionError(f"Token decryption failed: {type(e).__name__}") from e


class TokenProvider:
    """Gebundener Token Provider: hält den Schlüssel, entschlüsselt pro Account"""

    def __init__(self, hex_key: str):
        self._hex_key = hex_key

    def decrypt(self, ciphertext: str) -> str:
        return TokenCipher.decrypt_token(ciphertext, self._hex_key)

    def decrypt_optional(self, ciphertext: str | None) -> str | None:
        """Wie decrypt(), aber None für fehlende Werte (Refresh-Token ist optional)"""
        if not ciphertext:
            return None
        return self.decrypt(ciphertext)

    def encrypt(self, plaintext: str) -> str:
        return TokenCipher.encrypt_token(plaintext, self._hex_key)
