"""Shared fixtures: fixed key pairs and a codec built from them."""

from __future__ import annotations

import pytest

from tabseal.envelope import EnvelopeCodec
from tabseal.tokens import KeyPair

SIGN_KEY = "test_sign_token_123"
XOR_KEY = "test_xor_token_456"


def flip(text: str, index: int) -> str:
    """Return `text` with one character changed (low bit flipped)."""
    return text[:index] + chr(ord(text[index]) ^ 1) + text[index + 1 :]


@pytest.fixture
def keys() -> KeyPair:
    return KeyPair(SIGN_KEY, XOR_KEY)


@pytest.fixture
def codec(keys: KeyPair) -> EnvelopeCodec:
    return EnvelopeCodec(keys)
