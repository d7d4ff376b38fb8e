"""
keystream.py - per-message keystream and the XOR that applies it.

The keystream is the obfuscation key XORed, unit by unit, with the message
nonce (repeated as needed). It is applied cyclically to whatever text it
protects. XOR is its own inverse, so the same call obfuscates and recovers.

Keys are read as UTF-16 code units, so a key outside the BMP contributes two
keystream entries, one per surrogate. Every keystream entry fits in 16 bits,
which keeps text XORed with it inside the Unicode range whatever the input.
"""

from typing import List

UNIT_MASK = 0xFFFF


def _code_units(text: str) -> List[int]:
    raw = text.encode("utf-16-le", "surrogatepass")
    return [int.from_bytes(raw[i : i + 2], "little") for i in range(0, len(raw), 2)]


def xor_text(text: str, key: str) -> str:
    """XOR each character of `text` with the low 16 bits of `key`, repeating `key` as needed."""
    n = len(key)
    return "".join(chr(ord(ch) ^ (ord(key[i % n]) & UNIT_MASK)) for i, ch in enumerate(text))


def derive_keystream(obfuscation_key: str, nonce: str) -> str:
    """keystream[i] = unit(obfuscation_key, i) XOR nonce[i % len(nonce)], masked to 16 bits."""
    n = len(nonce)
    return "".join(
        chr((unit ^ ord(nonce[i % n])) & UNIT_MASK)
        for i, unit in enumerate(_code_units(obfuscation_key))
    )
