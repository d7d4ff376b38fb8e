"""
tabseal - authenticated envelopes for short commands with a payload.

What an envelope gives you:
- HMAC-SHA256 over payload + nonce, checked in constant time.
- Command and payload obfuscated with a per-message keystream (or the payload
  encrypted by a pluggable strategy, e.g. AES-GCM).
- A fixed, delimiter-free text layout: 115 characters of header + payload.

What it does NOT give you:
- The command field is not covered by the HMAC; only the obfuscation key
  protects it. Always authenticate the payload before acting on a command.
- No replay protection and no forward secrecy.

Keys come from a token provider (environment, ~/.tabseal/tokens.json, or the
well-known fallback pair). Run generate_tokens.py once per machine.
"""
__version__ = "0.1.0"
__all__ = ["channel", "envelope", "errors", "framing", "keystream", "run", "strategies", "tokens"]
