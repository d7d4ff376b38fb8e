"""
strategies.py - pluggable payload ciphers.

A strategy is anything with `encrypt(payload, nonce) -> str` and
`decrypt(ciphertext, nonce) -> str` where decrypt inverts encrypt for the
same nonce. Commands are always protected with the keystream XOR; only the
payload field goes through the strategy.

Built in:
- KeystreamXor:    default; same length as the payload.
- CallableStrategy: wrap a caller's own (encrypt, decrypt) function pair.
- AesGcmStrategy:  real AEAD encryption (AES-256-GCM) with a key derived from
                   a passphrase, for callers who want more than obfuscation.
"""

import base64
import os
from typing import Callable, Optional, Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .errors import InvalidArgument
from .keystream import derive_keystream, xor_text

TextCipher = Callable[[str, str], str]

# -----------------------------
# Base64 URL helpers (no padding)
# -----------------------------


def b64url_encode(data: bytes) -> str:
    """URL-safe Base64 without '=' padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(data: str) -> bytes:
    """Decode our URL-safe, no-padding Base64 back to bytes."""
    pad_len = (-len(data)) % 4
    return base64.urlsafe_b64decode(data + "=" * pad_len)


class CipherStrategy(Protocol):
    def encrypt(self, payload: str, nonce: str) -> str: ...

    def decrypt(self, ciphertext: str, nonce: str) -> str: ...


class KeystreamXor:
    """Default strategy: XOR the payload with the nonce-derived keystream."""

    def __init__(self, obfuscation_key: str) -> None:
        if not obfuscation_key:
            raise InvalidArgument("Obfuscation key must not be empty.")
        self._key = obfuscation_key

    def encrypt(self, payload: str, nonce: str) -> str:
        return xor_text(payload, derive_keystream(self._key, nonce))

    def decrypt(self, ciphertext: str, nonce: str) -> str:
        return xor_text(ciphertext, derive_keystream(self._key, nonce))


class CallableStrategy:
    """Adapter for a caller-supplied (encrypt, decrypt) function pair."""

    def __init__(self, encrypt: TextCipher, decrypt: TextCipher) -> None:
        self._encrypt = encrypt
        self._decrypt = decrypt

    def encrypt(self, payload: str, nonce: str) -> str:
        return self._encrypt(payload, nonce)

    def decrypt(self, ciphertext: str, nonce: str) -> str:
        return self._decrypt(ciphertext, nonce)


class AesGcmStrategy:
    """
    AES-256-GCM over the UTF-8 payload.

    The 256-bit key comes from HKDF-SHA256 over the passphrase. Every encrypt
    draws a random 96-bit IV (the envelope nonce is not unique enough to be
    a GCM IV); the envelope nonce is bound in as associated data instead, so
    moving a ciphertext into another envelope fails the tag check.

    Output text is base64url(iv || ciphertext || tag), so the payload field
    is longer than the plaintext.
    """

    IV_SIZE = 12
    INFO = b"tabseal payload v1"

    def __init__(self, passphrase: str, salt: Optional[bytes] = None) -> None:
        if not passphrase:
            raise InvalidArgument("Passphrase must not be empty.")
        hkdf = HKDF(algorithm=hashes.SHA256(), length=32, salt=salt, info=self.INFO)
        self._aead = AESGCM(hkdf.derive(passphrase.encode("utf-8")))

    def encrypt(self, payload: str, nonce: str) -> str:
        iv = os.urandom(self.IV_SIZE)
        ct = self._aead.encrypt(iv, payload.encode("utf-8"), nonce.encode("ascii"))
        return b64url_encode(iv + ct)

    def decrypt(self, ciphertext: str, nonce: str) -> str:
        """Raises ValueError on malformed input or a failed tag check."""
        try:
            raw = b64url_decode(ciphertext)
        except (ValueError, UnicodeEncodeError) as exc:
            raise ValueError("Ciphertext is not base64url") from exc
        if len(raw) < self.IV_SIZE:
            raise ValueError("Ciphertext too short")
        try:
            pt = self._aead.decrypt(raw[: self.IV_SIZE], raw[self.IV_SIZE :], nonce.encode("ascii"))
        except InvalidTag as exc:
            raise ValueError("Authentication tag mismatch") from exc
        return pt.decode("utf-8")
