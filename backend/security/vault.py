"""
Credential Vault

Encrypts and decrypts long-lived aggregator access tokens. Blobs are
self-describing so both schemes can coexist while keys rotate:

    v1:gcm:<iv b64>:<ciphertext b64>:<tag b64>   AES-256-GCM, local key
    v1:kms:<ciphertext b64>                       AWS KMS envelope

The blob layout is persisted and read by backup tooling, so it must stay
byte-compatible.
"""

import base64
import binascii
import os
import re
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from config import VaultConfig
from errors import ConfigurationError, DecryptionError
from logging_config import get_logger

logger = get_logger(__name__)

BLOB_VERSION = "v1"
MODE_GCM = "gcm"
MODE_KMS = "kms"
IV_LENGTH = 12
TAG_LENGTH = 16
KEY_LENGTH = 32

_HEX_KEY = re.compile(r"^[0-9a-fA-F]{64}$")


def parse_data_key(raw: str) -> bytes:
    """Decode a 32-byte key given as 64 hex characters or base64.

    Raises:
        ConfigurationError: if the value does not decode to 32 bytes
    """
    value = raw.strip()
    if _HEX_KEY.match(value):
        return bytes.fromhex(value)
    try:
        key = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise ConfigurationError("TOKEN_ENCRYPTION_KEY is neither hex nor base64")
    if len(key) != KEY_LENGTH:
        raise ConfigurationError(
            f"TOKEN_ENCRYPTION_KEY must decode to {KEY_LENGTH} bytes, got {len(key)}"
        )
    return key


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(segment: str) -> bytes:
    try:
        return base64.b64decode(segment, validate=True)
    except (binascii.Error, ValueError):
        raise DecryptionError("Ciphertext segment is not valid base64")


class CredentialVault:
    """Dual-mode token encryption.

    ``encrypt`` prefers the local GCM key when both key sources are
    configured. ``decrypt`` follows whatever mode the blob names.
    """

    def __init__(
        self,
        data_key: Optional[bytes] = None,
        kms_key_id: Optional[str] = None,
        kms_client=None,
        aws_region: Optional[str] = None,
    ):
        if data_key is not None and len(data_key) != KEY_LENGTH:
            raise ConfigurationError(f"Vault key must be {KEY_LENGTH} bytes")
        self._aead = AESGCM(data_key) if data_key is not None else None
        self.kms_key_id = kms_key_id
        self._kms_client = kms_client
        self._aws_region = aws_region

    @classmethod
    def from_config(cls, config: VaultConfig) -> "CredentialVault":
        data_key = parse_data_key(config.data_key) if config.data_key else None
        return cls(
            data_key=data_key,
            kms_key_id=config.kms_key_id,
            aws_region=config.aws_region,
        )

    @property
    def has_gcm_key(self) -> bool:
        return self._aead is not None

    @property
    def has_kms_key(self) -> bool:
        return bool(self.kms_key_id)

    @property
    def kms(self):
        if self._kms_client is None:
            self._kms_client = boto3.client("kms", region_name=self._aws_region)
        return self._kms_client

    # ========================================================================
    # ENCRYPT
    # ========================================================================

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a token into a versioned blob.

        Raises:
            ConfigurationError: if no key material is configured
        """
        if self.has_gcm_key:
            return self._encrypt_gcm(plaintext)
        if self.has_kms_key:
            return self._encrypt_kms(plaintext)
        raise ConfigurationError(
            "No vault key configured (set TOKEN_ENCRYPTION_KEY or KMS_KEY_ID)"
        )

    def _encrypt_gcm(self, plaintext: str) -> str:
        iv = os.urandom(IV_LENGTH)
        sealed = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return ":".join([BLOB_VERSION, MODE_GCM, _b64(iv), _b64(ciphertext), _b64(tag)])

    def _encrypt_kms(self, plaintext: str) -> str:
        try:
            response = self.kms.encrypt(
                KeyId=self.kms_key_id, Plaintext=plaintext.encode("utf-8")
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"KMS encrypt failed: {e}")
            raise ConfigurationError(f"KMS encrypt failed: {e}")
        blob = response.get("CiphertextBlob")
        if not blob:
            raise ConfigurationError("KMS encrypt returned no ciphertext")
        return ":".join([BLOB_VERSION, MODE_KMS, _b64(blob)])

    # ========================================================================
    # DECRYPT
    # ========================================================================

    def decrypt(self, blob) -> Optional[str]:
        """Decrypt a versioned blob.

        Returns:
            Plaintext token, or None when ``blob`` is not a versioned blob

        Raises:
            DecryptionError: if the blob's mode has no configured key, or the
                ciphertext fails authentication
        """
        if not isinstance(blob, str) or not blob.startswith(BLOB_VERSION + ":"):
            return None

        parts = blob.split(":")
        mode = parts[1] if len(parts) > 1 else ""

        if mode == MODE_GCM:
            if not self.has_gcm_key:
                raise DecryptionError("Blob uses gcm mode but no local key is configured")
            if len(parts) != 5:
                raise DecryptionError("Malformed gcm blob")
            iv, ciphertext, tag = (_unb64(p) for p in parts[2:])
            try:
                plaintext = self._aead.decrypt(iv, ciphertext + tag, None)
            except InvalidTag:
                raise DecryptionError("Ciphertext failed authentication")
            return plaintext.decode("utf-8")

        if mode == MODE_KMS:
            if not self.has_kms_key:
                raise DecryptionError("Blob uses kms mode but no KMS key is configured")
            if len(parts) != 3:
                raise DecryptionError("Malformed kms blob")
            try:
                response = self.kms.decrypt(CiphertextBlob=_unb64(parts[2]))
            except (BotoCoreError, ClientError) as e:
                logger.error(f"KMS decrypt failed: {e}")
                raise DecryptionError(f"KMS decrypt failed: {e}")
            plaintext = response.get("Plaintext")
            if plaintext is None:
                raise DecryptionError("KMS decrypt returned no plaintext")
            return plaintext.decode("utf-8")

        raise DecryptionError(f"Unsupported vault mode: {mode!r}")
