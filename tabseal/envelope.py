import hmac
import logging
import secrets
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import hmac as crypto_hmac

from .errors import InvalidArgument
from .keystream import derive_keystream, xor_text
from .strategies import CipherStrategy, KeystreamXor
from .tokens import KeyPair, TokenProvider

"""
envelope.py - seal a (command, payload) pair into one tamper-evident string.

Wire layout (character offsets, no separators):

    [0:19]    nonce           13-digit ms timestamp + 6-digit random
    [19:83]   signature       hex HMAC-SHA256(signing_key, payload + nonce)
    [83:115]  cipher command  '='-padded command XOR keystream
    [115:]    cipher payload  payload through the cipher strategy

Checks on the way back in:
- verify_command: re-obfuscates the expected command and compares the field.
  Only proves both ends share the obfuscation key; says nothing about the
  payload.
- match_command: decrypts the command field once and looks it up in a list.
- verify_payload: decrypts the payload and recomputes the HMAC. This is the
  only real authentication step; the command field is NOT covered by it.

Decode functions return False/None for short or tampered input and only
raise InvalidArgument for caller mistakes (commands over 32 characters).
"""

logger = logging.getLogger(__name__)

NONCE_LEN = 19
SIGNATURE_LEN = 64
COMMAND_LEN = 32
PAD_CHAR = "="

SIGNATURE_OFFSET = NONCE_LEN                        # 19
COMMAND_OFFSET = SIGNATURE_OFFSET + SIGNATURE_LEN   # 83
PAYLOAD_OFFSET = COMMAND_OFFSET + COMMAND_LEN       # 115
MIN_ENVELOPE_LEN = PAYLOAD_OFFSET


def now_ms() -> int:
    """Current time in milliseconds (first 13 digits of the nonce)."""
    return int(time.time() * 1000)


def new_nonce() -> str:
    """19 ASCII digits: ms timestamp + zero-padded random in [0, 999999]."""
    return f"{now_ms():013d}{secrets.randbelow(1_000_000):06d}"


def check_command(command: str) -> None:
    if len(command) > COMMAND_LEN:
        raise InvalidArgument(
            f"Command cannot exceed {COMMAND_LEN} characters. Got: {len(command)}"
        )


def pad_command(command: str) -> str:
    """Canonical 32-character form of a command ('=' right padding)."""
    check_command(command)
    return command.ljust(COMMAND_LEN, PAD_CHAR)


def _check_key(key: str, name: str) -> None:
    if not key:
        raise InvalidArgument(f"{name} must not be empty.")


def _utf8(text: str) -> bytes:
    # surrogatepass: decrypted text from a bad key may hold lone surrogates.
    return text.encode("utf-8", "surrogatepass")


def compute_signature(signing_key: str, payload: str, nonce: str) -> str:
    """Lowercase hex HMAC-SHA256 over payload + nonce."""
    h = crypto_hmac.HMAC(_utf8(signing_key), hashes.SHA256())
    h.update(_utf8(payload + nonce))
    return h.finalize().hex()


def _same(a: str, b: str) -> bool:
    """Constant-time string equality (compare_digest only takes ASCII str)."""
    return hmac.compare_digest(_utf8(a), _utf8(b))


@dataclass(frozen=True)
class EnvelopeFields:
    nonce: str
    signature: str
    cipher_command: str
    cipher_payload: str


def split_envelope(envelope: str) -> Optional[EnvelopeFields]:
    """Cut an envelope into its fields, or None if it is too short to be one."""
    if not isinstance(envelope, str) or len(envelope) < MIN_ENVELOPE_LEN:
        return None
    return EnvelopeFields(
        nonce=envelope[:SIGNATURE_OFFSET],
        signature=envelope[SIGNATURE_OFFSET:COMMAND_OFFSET],
        cipher_command=envelope[COMMAND_OFFSET:PAYLOAD_OFFSET],
        cipher_payload=envelope[PAYLOAD_OFFSET:],
    )


# -----------------------
# Encode
# -----------------------

def seal(
    command: str,
    payload: str,
    signing_key: str,
    obfuscation_key: str,
    strategy: Optional[CipherStrategy] = None,
) -> str:
    """
    Build an envelope for (command, payload).

    Args:
        command:         Up to 32 characters; longer raises InvalidArgument.
        payload:         Any string.
        signing_key:     HMAC key (non-empty).
        obfuscation_key: Keystream key (non-empty).
        strategy:        Payload cipher; defaults to the keystream XOR.

    Returns:
        nonce + signature + cipher command + cipher payload. With the default
        strategy the result is exactly 115 + len(payload) characters.
    """
    padded = pad_command(command)
    _check_key(signing_key, "Signing key")
    _check_key(obfuscation_key, "Obfuscation key")

    nonce = new_nonce()
    signature = compute_signature(signing_key, payload, nonce)
    keystream = derive_keystream(obfuscation_key, nonce)
    cipher_command = xor_text(padded, keystream)

    if strategy is None:
        cipher_payload = xor_text(payload, keystream)
    else:
        cipher_payload = strategy.encrypt(payload, nonce)

    return nonce + signature + cipher_command + cipher_payload


# -----------------------
# Decode
# -----------------------

def verify_command(envelope: str, expected_command: str, obfuscation_key: str) -> bool:
    """True if the envelope's command field is `expected_command` under this key."""
    padded = pad_command(expected_command)
    _check_key(obfuscation_key, "Obfuscation key")

    fields = split_envelope(envelope)
    if fields is None:
        logger.debug("verify_command: envelope shorter than %d", MIN_ENVELOPE_LEN)
        return False

    expected = xor_text(padded, derive_keystream(obfuscation_key, fields.nonce))
    return _same(expected, fields.cipher_command)


def match_command(
    envelope: str, candidates: Sequence[str], obfuscation_key: str
) -> Optional[str]:
    """
    Decrypt the command field once and return the first candidate equal to it.

    Every candidate is length-checked before anything else happens. Trailing
    '=' is stripped from the recovered command, so a command that itself ends
    in '=' can never be matched here; use verify_command for those.
    """
    for candidate in candidates:
        check_command(candidate)
    _check_key(obfuscation_key, "Obfuscation key")

    fields = split_envelope(envelope)
    if fields is None:
        logger.debug("match_command: envelope shorter than %d", MIN_ENVELOPE_LEN)
        return None

    keystream = derive_keystream(obfuscation_key, fields.nonce)
    recovered = xor_text(fields.cipher_command, keystream).rstrip(PAD_CHAR)
    for candidate in candidates:
        if recovered == candidate:
            return candidate
    return None


def verify_payload(
    envelope: str,
    signing_key: str,
    obfuscation_key: str,
    strategy: Optional[CipherStrategy] = None,
) -> Optional[str]:
    """
    Recover and authenticate the payload.

    Returns the payload, or None when the envelope is too short, the
    signature does not match, or the strategy cannot decrypt. Those cases
    are deliberately indistinguishable to the caller.
    """
    _check_key(signing_key, "Signing key")
    _check_key(obfuscation_key, "Obfuscation key")

    fields = split_envelope(envelope)
    if fields is None:
        logger.debug("verify_payload: envelope shorter than %d", MIN_ENVELOPE_LEN)
        return None

    if strategy is None:
        keystream = derive_keystream(obfuscation_key, fields.nonce)
        payload = xor_text(fields.cipher_payload, keystream)
    else:
        try:
            payload = strategy.decrypt(fields.cipher_payload, fields.nonce)
        except Exception as exc:
            logger.debug("verify_payload: strategy failed to decrypt: %s", exc)
            return None
        if not isinstance(payload, str):
            logger.debug("verify_payload: strategy returned %s", type(payload).__name__)
            return None

    expected = compute_signature(signing_key, payload, fields.nonce)
    if not _same(expected, fields.signature):
        logger.debug("verify_payload: signature mismatch")
        return None
    return payload


# -----------------------
# Unified result
# -----------------------

class Outcome(str, Enum):
    OK = "ok"
    INVALID_ARGUMENT = "invalid_argument"
    MALFORMED = "malformed"
    NO_MATCH = "no_match"
    AUTHENTICATION_FAILURE = "authentication_failure"


@dataclass(frozen=True)
class Opened:
    """What EnvelopeCodec.open() found. `command`/`payload` set only on OK."""
    outcome: Outcome
    command: Optional[str] = None
    payload: Optional[str] = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.OK


class EnvelopeCodec:
    """
    Keys and payload strategy bound once, then used for every call.

    The codec holds no mutable state, so one instance can be shared across
    threads as long as its strategy is side-effect free. To switch keys or
    strategy, build another codec.
    """

    def __init__(self, keys: KeyPair, strategy: Optional[CipherStrategy] = None) -> None:
        self._keys = keys
        self._strategy = strategy if strategy is not None else KeystreamXor(keys.obfuscation_key)

    @classmethod
    def from_provider(
        cls, provider: TokenProvider, strategy: Optional[CipherStrategy] = None
    ) -> "EnvelopeCodec":
        return cls(KeyPair.from_provider(provider), strategy)

    @property
    def keys(self) -> KeyPair:
        return self._keys

    @property
    def strategy(self) -> CipherStrategy:
        return self._strategy

    def encode(self, command: str, payload: str) -> str:
        return seal(
            command, payload, self._keys.signing_key, self._keys.obfuscation_key, self.strategy
        )

    def verify_command(self, envelope: str, expected_command: str) -> bool:
        return verify_command(envelope, expected_command, self._keys.obfuscation_key)

    def match_command(self, envelope: str, candidates: Sequence[str]) -> Optional[str]:
        return match_command(envelope, candidates, self._keys.obfuscation_key)

    def decode_payload(self, envelope: str) -> Optional[str]:
        return verify_payload(
            envelope, self._keys.signing_key, self._keys.obfuscation_key, self.strategy
        )

    def open(self, envelope: str, candidates: Sequence[str]) -> Opened:
        """
        Match the command against `candidates` and authenticate the payload.

        Never raises: bad candidates, short input, unknown commands and
        authentication failures each come back as their own Outcome.
        """
        try:
            for candidate in candidates:
                check_command(candidate)
        except InvalidArgument as exc:
            return Opened(Outcome.INVALID_ARGUMENT, detail=str(exc))

        if split_envelope(envelope) is None:
            return Opened(Outcome.MALFORMED, detail="envelope too short")

        command = self.match_command(envelope, candidates)
        if command is None:
            return Opened(Outcome.NO_MATCH)

        payload = self.decode_payload(envelope)
        if payload is None:
            return Opened(Outcome.AUTHENTICATION_FAILURE)
        return Opened(Outcome.OK, command=command, payload=payload)
