"""Authenticated encryption for the long-lived API token.

Envelopes are sniffed structurally rather than tagged with a version so that
tokens stored by older releases stay readable:

* ``base64(IV | ciphertext | HMAC-SHA256)`` - current format
* ``base64(IV | ciphertext)`` - written before the HMAC was introduced
* ``base64(plaintext)`` - written when no cipher was available
* plain text - tokens stored before encryption existed
"""
from __future__ import annotations

import base64
import binascii
import logging
import os
from typing import Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .errors import TokenDecryptionFailed
from .store import KeyValueStore

LOGGER = logging.getLogger(__name__)

IV_LENGTH = 16
HMAC_LENGTH = 32
DEFAULT_TOKEN_KEY = "fieldsync_api_token"


def _derive_key(secret: str) -> bytes:
    digest = hashes.Hash(hashes.SHA256())
    digest.update(secret.encode("utf-8"))
    return digest.finalize()


class CredentialVault:
    """Encrypt and decrypt API tokens with AES-256-CBC and HMAC-SHA256.

    ``cipher_secret`` and ``hmac_secret`` must differ so that knowing one key
    does not allow forging the other. Without a cipher secret the vault only
    base64-encodes; without an HMAC secret it writes the pre-HMAC format.
    """

    def __init__(self, cipher_secret: Optional[str] = None, hmac_secret: Optional[str] = None) -> None:
        if cipher_secret and hmac_secret and cipher_secret == hmac_secret:
            raise ValueError("cipher_secret and hmac_secret must be distinct secrets")
        self._cipher_key = _derive_key(cipher_secret) if cipher_secret else None
        self._hmac_key = _derive_key(hmac_secret) if hmac_secret else None

    @property
    def can_encrypt(self) -> bool:
        return self._cipher_key is not None

    @property
    def can_authenticate(self) -> bool:
        return self._hmac_key is not None

    # -- Encryption ------------------------------------------------------------
    def encrypt(self, token: str) -> str:
        """Return a wire-safe envelope for ``token``.

        Confidentiality is not guaranteed: when a primitive is unavailable the
        envelope degrades to base64 of the plaintext.
        """
        if not token:
            return ""
        plaintext = token.encode("utf-8")
        if self._cipher_key is None:
            LOGGER.warning("No cipher secret configured; storing token base64 encoded only")
            return base64.b64encode(plaintext).decode("ascii")
        try:
            iv = os.urandom(IV_LENGTH)
            ciphertext = self._encrypt_bytes(iv, plaintext)
        except (NotImplementedError, ValueError) as exc:
            LOGGER.warning("Token encryption unavailable (%s); storing token base64 encoded only", exc)
            # Envelopes written from here on are plain base64; read them back the same way.
            self._cipher_key = None
            self._hmac_key = None
            return base64.b64encode(plaintext).decode("ascii")

        mac = self._sign(iv + ciphertext) if self._hmac_key is not None else b""
        return base64.b64encode(iv + ciphertext + mac).decode("ascii")

    def _encrypt_bytes(self, iv: bytes, plaintext: bytes) -> bytes:
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._cipher_key), modes.CBC(iv)).encryptor()
        return encryptor.update(padded) + encryptor.finalize()

    def _sign(self, data: bytes) -> bytes:
        mac = hmac.HMAC(self._hmac_key, hashes.SHA256())
        mac.update(data)
        return mac.finalize()

    # -- Decryption ------------------------------------------------------------
    def decrypt(self, envelope: str) -> str:
        """Return the token stored in ``envelope`` or ``""`` if it is unusable."""
        try:
            return self.open_envelope(envelope)
        except TokenDecryptionFailed as exc:
            LOGGER.error("Token could not be decrypted: %s", exc)
            return ""

    def open_envelope(self, envelope: str) -> str:
        """Like :meth:`decrypt` but raise :class:`TokenDecryptionFailed`."""
        if not envelope:
            return ""
        try:
            decoded = base64.b64decode(envelope, validate=True)
        except (binascii.Error, ValueError):
            # Never encoded: a token stored before encryption was introduced.
            return envelope

        if self._cipher_key is None:
            return _as_text(decoded, fallback=envelope)

        if len(decoded) < IV_LENGTH:
            return _as_text(decoded, fallback=envelope)

        if len(decoded) >= IV_LENGTH + HMAC_LENGTH and self._hmac_key is not None:
            iv = decoded[:IV_LENGTH]
            ciphertext = decoded[IV_LENGTH:-HMAC_LENGTH]
            received = decoded[-HMAC_LENGTH:]
            mac = hmac.HMAC(self._hmac_key, hashes.SHA256())
            mac.update(iv + ciphertext)
            try:
                mac.verify(received)
            except InvalidSignature as exc:
                LOGGER.error("Token HMAC verification failed - possible manipulation detected")
                raise TokenDecryptionFailed("HMAC mismatch") from exc
        else:
            iv = decoded[:IV_LENGTH]
            ciphertext = decoded[IV_LENGTH:]

        return self._decrypt_bytes(iv, ciphertext)

    def _decrypt_bytes(self, iv: bytes, ciphertext: bytes) -> str:
        if not ciphertext or len(ciphertext) % IV_LENGTH:
            raise TokenDecryptionFailed("Ciphertext length is not a multiple of the block size")
        decryptor = Cipher(algorithms.AES(self._cipher_key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        try:
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except ValueError as exc:
            raise TokenDecryptionFailed("Ciphertext could not be decrypted") from exc


def _as_text(raw: bytes, *, fallback: str) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return fallback


class TokenStore:
    """Keep the API token in a key-value store, always as a vault envelope."""

    def __init__(self, store: KeyValueStore, vault: CredentialVault, *, key: str = DEFAULT_TOKEN_KEY) -> None:
        self.store = store
        self.vault = vault
        self.key = key

    def load(self) -> str:
        envelope = self.store.get(self.key)
        if not envelope:
            return ""
        return self.vault.decrypt(str(envelope))

    def save(self, token: str) -> None:
        LOGGER.info("Storing encrypted API token under %s", self.key)
        self.store.set(self.key, self.vault.encrypt(token))

    def clear(self) -> None:
        self.store.delete(self.key)
