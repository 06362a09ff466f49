"""
Credential Codec for the Plaid Test Kit
Envelope encryption of Plaid API credentials for session/cookie storage
"""

import os
import json
import hashlib
import logging
from dataclasses import dataclass, asdict
from typing import Dict, Any

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from logging_config import mask_key_id
from services.errors import DecryptionError, EncryptionError

# Configure logging
logger = logging.getLogger(__name__)

# Cipher Configuration
IV_LENGTH = 16  # AES block size
BLOB_SEPARATOR = ':'

SUPPORTED_ENVIRONMENTS = ('sandbox',)

RECORD_FIELDS = ('api_key_id', 'api_secret', 'environment')


@dataclass(frozen=True)
class CredentialRecord:
    """Plaid API credentials owned by the authenticated caller."""
    api_key_id: str
    api_secret: str
    environment: str = 'sandbox'

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CredentialRecord':
        """Build a record, rejecting anything that is not exactly the expected shape."""
        if not isinstance(data, dict) or set(data) != set(RECORD_FIELDS):
            raise ValueError("Credential record has unexpected fields")

        for name in RECORD_FIELDS:
            value = data[name]
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"Credential field {name} must be a non-empty string")

        if data['environment'] not in SUPPORTED_ENVIRONMENTS:
            raise ValueError(f"Unsupported environment: {data['environment']}")

        return cls(
            api_key_id=data['api_key_id'],
            api_secret=data['api_secret'],
            environment=data['environment'],
        )

    def masked_key_id(self) -> str:
        """Key id safe for log lines."""
        return mask_key_id(self.api_key_id) or '***'


class CredentialCodec:
    """
    Credential Codec

    Encrypts a CredentialRecord as a unit with AES-256-CBC. The output is
    hex(iv) + ":" + hex(ciphertext); a fresh random IV is generated for every
    call. The 32-byte key is the SHA-256 digest of a single configured secret.
    """

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("An encryption secret is required")
        self._key = hashlib.sha256(secret.encode('utf-8')).digest()

    def encrypt(self, record: CredentialRecord) -> str:
        """
        Encrypt a credential record.

        Args:
            record: The credentials to protect

        Returns:
            The encoded blob "hex(iv):hex(ciphertext)"

        Raises:
            EncryptionError: If the record could not be encrypted
        """
        try:
            plaintext = json.dumps(record.to_dict()).encode('utf-8')

            padder = padding.PKCS7(algorithms.AES.block_size).padder()
            padded = padder.update(plaintext) + padder.finalize()

            iv = os.urandom(IV_LENGTH)
            encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
            ciphertext = encryptor.update(padded) + encryptor.finalize()
        except (TypeError, ValueError) as e:
            logger.error(f"Encryption failed: {e}")
            raise EncryptionError("Failed to encrypt credentials") from e

        return iv.hex() + BLOB_SEPARATOR + ciphertext.hex()

    def decrypt(self, blob: str) -> CredentialRecord:
        """
        Decrypt a blob produced by encrypt().

        Any failure (bad layout, bad hex, bad padding, invalid JSON or an
        unexpected record shape) surfaces as DecryptionError. The underlying
        cause is logged but never exposed to callers.
        """
        try:
            if not isinstance(blob, str) or BLOB_SEPARATOR not in blob:
                raise ValueError("Blob is not in iv:ciphertext layout")

            iv_hex, ciphertext_hex = blob.split(BLOB_SEPARATOR, 1)
            iv = bytes.fromhex(iv_hex)
            ciphertext = bytes.fromhex(ciphertext_hex)

            if len(iv) != IV_LENGTH:
                raise ValueError("Invalid IV length")
            if not ciphertext:
                raise ValueError("Empty ciphertext")

            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()

            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()

            return CredentialRecord.from_dict(json.loads(plaintext.decode('utf-8')))
        except (ValueError, TypeError, KeyError) as e:
            # UnicodeDecodeError and JSONDecodeError are both ValueErrors
            logger.warning(f"Credential decryption failed: {type(e).__name__}")
            raise DecryptionError("Failed to decrypt credentials - session may be corrupted") from e
