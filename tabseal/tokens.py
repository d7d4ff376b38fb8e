"""
tokens.py - where the signing and obfuscation keys come from.

Providers:
- StaticTokenProvider: fixed strings (tests, embedding apps).
- EnvTokenProvider:    TABSEAL_SIGN_KEY / TABSEAL_XOR_KEY from the environment.
- FileTokenStore:      load-or-generate a key pair under ~/.tabseal (or
                       $TABSEAL_HOME) the first time it is initialized.

The env and file providers fall back to a well-known pair when they have
nothing better.
That keeps two processes talking out of the box, but anyone who reads this
file can forge envelopes; configure real keys for anything that matters.
"""

import json
import logging
import os
import secrets
import string
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from .errors import InvalidArgument, TokenStoreError

logger = logging.getLogger(__name__)

SIGN_KEY_ENV = "TABSEAL_SIGN_KEY"
XOR_KEY_ENV = "TABSEAL_XOR_KEY"
HOME_ENV = "TABSEAL_HOME"
TOKEN_FILE = "tokens.json"

FALLBACK_SIGN_KEY = "tabseal_fallback_sign_key_2025"
FALLBACK_XOR_KEY = "tabseal_fallback_xor_key_2025"

GENERATED_KEY_LEN = 16
_KEY_ALPHABET = string.ascii_letters + string.digits


class TokenProvider(Protocol):
    def get_signing_key(self) -> str: ...

    def get_obfuscation_key(self) -> str: ...


@dataclass(frozen=True)
class KeyPair:
    """Immutable (signing key, obfuscation key) snapshot used by the codec."""
    signing_key: str
    obfuscation_key: str

    def __post_init__(self) -> None:
        if not self.signing_key or not self.obfuscation_key:
            raise InvalidArgument("Signing and obfuscation keys must be non-empty.")

    @classmethod
    def from_provider(cls, provider: TokenProvider) -> "KeyPair":
        return cls(provider.get_signing_key(), provider.get_obfuscation_key())

    @classmethod
    def fallback(cls) -> "KeyPair":
        return cls(FALLBACK_SIGN_KEY, FALLBACK_XOR_KEY)


def generate_key(length: int = GENERATED_KEY_LEN) -> str:
    """Random alphanumeric key from the OS CSPRNG."""
    return "".join(secrets.choice(_KEY_ALPHABET) for _ in range(length))


def default_home() -> Path:
    return Path(os.environ.get(HOME_ENV) or Path.home() / ".tabseal")


class StaticTokenProvider:
    def __init__(self, signing_key: str, obfuscation_key: str) -> None:
        self._keys = KeyPair(signing_key, obfuscation_key)

    def get_signing_key(self) -> str:
        return self._keys.signing_key

    def get_obfuscation_key(self) -> str:
        return self._keys.obfuscation_key


class EnvTokenProvider:
    """Keys from the environment, read once at construction."""

    def __init__(self, environ: Optional[dict] = None) -> None:
        env = os.environ if environ is None else environ
        sign_key = env.get(SIGN_KEY_ENV)
        xor_key = env.get(XOR_KEY_ENV)
        if not sign_key or not xor_key:
            logger.warning(
                "%s/%s not set; using the built-in fallback key pair", SIGN_KEY_ENV, XOR_KEY_ENV
            )
            self._keys = KeyPair.fallback()
            self.using_fallback = True
        else:
            self._keys = KeyPair(sign_key, xor_key)
            self.using_fallback = False

    def get_signing_key(self) -> str:
        return self._keys.signing_key

    def get_obfuscation_key(self) -> str:
        return self._keys.obfuscation_key


class FileTokenStore:
    """
    Key pair persisted as JSON in <home>/tokens.json.

    Until initialize() is called the store hands out the fallback pair.
    initialize() loads the file, generates and writes any missing key, and
    caches the result; concurrent callers share a single load. If that load
    fails the store raises TokenStoreError from then on rather than quietly
    dropping back to the fallback keys.
    """

    def __init__(self, home: Optional[Path] = None) -> None:
        self.path = Path(home or default_home()) / TOKEN_FILE
        self._lock = threading.Lock()
        self._requested = False
        self._keys: Optional[KeyPair] = None

    @property
    def initialized(self) -> bool:
        return self._keys is not None

    def initialize(self) -> KeyPair:
        """Load (or create) the persisted key pair. Safe to call repeatedly."""
        with self._lock:
            self._requested = True
            if self._keys is None:
                try:
                    self._keys = self._load_or_create()
                except (OSError, ValueError, TypeError) as exc:
                    raise TokenStoreError(
                        f"Failed to initialize token store at {self.path}: {exc}"
                    ) from exc
            return self._keys

    def _load_or_create(self) -> KeyPair:
        data = {}
        if self.path.exists():
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("token file must hold a JSON object")

        sign_key = data.get("sign_token")
        xor_key = data.get("xor_token")
        for value in (sign_key, xor_key):
            if value is not None and not isinstance(value, str):
                raise ValueError("token values must be strings")
        if sign_key and xor_key:
            return KeyPair(sign_key, xor_key)

        sign_key = sign_key or generate_key()
        xor_key = xor_key or generate_key()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump({"sign_token": sign_key, "xor_token": xor_key}, f)
        try:
            os.chmod(self.path, 0o600)
        except OSError:
            pass  # not supported everywhere (e.g. some Windows filesystems)
        logger.info("Generated new token pair at %s", self.path)
        return KeyPair(sign_key, xor_key)

    def _current(self) -> KeyPair:
        if not self._requested:
            return KeyPair.fallback()
        if self._keys is None:
            # A load may still be running; wait for it to settle.
            with self._lock:
                pass
        if self._keys is None:
            raise TokenStoreError(
                f"Token store at {self.path} failed to initialize; check the file."
            )
        return self._keys

    def get_signing_key(self) -> str:
        return self._current().signing_key

    def get_obfuscation_key(self) -> str:
        return self._current().obfuscation_key
