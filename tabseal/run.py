import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from .envelope import EnvelopeCodec, Outcome
from .errors import InvalidArgument, TokenStoreError
from .strategies import AesGcmStrategy
from .tokens import EnvTokenProvider, FileTokenStore, KeyPair

"""
run.py - command-line front end for sealing and opening envelopes.

Envelopes can hold arbitrary characters after obfuscation, so on the command
line they always travel as JSON string literals: `seal` prints one, and the
other subcommands read one from --envelope or stdin.

Quick examples:
  python -m tabseal.run seal --command notify hello world > env.json
  python -m tabseal.run verify --command notify < env.json
  python -m tabseal.run match notify refresh logout < env.json
  python -m tabseal.run open notify refresh < env.json

Exit status: 0 success, 1 negative result (no match / failed check),
2 bad arguments or unusable token store.
"""

PASSPHRASE_ENV = "TABSEAL_PASSPHRASE"

EXIT_OK = 0
EXIT_REJECTED = 1
EXIT_USAGE = 2


# -------------------------
# Setup helpers
# -------------------------

def load_keys(args: argparse.Namespace) -> KeyPair:
    """Pick the token provider named by --tokens and snapshot its keys."""
    if args.tokens == "file":
        store = FileTokenStore(Path(args.home) if args.home else None)
        return store.initialize()
    if args.tokens == "fallback":
        return KeyPair.fallback()
    return KeyPair.from_provider(EnvTokenProvider())


def build_codec(args: argparse.Namespace) -> EnvelopeCodec:
    keys = load_keys(args)
    strategy = None
    if args.aes:
        passphrase = os.environ.get(PASSPHRASE_ENV)
        if not passphrase:
            raise InvalidArgument(f"--aes needs {PASSPHRASE_ENV} to be set")
        strategy = AesGcmStrategy(passphrase)
    return EnvelopeCodec(keys, strategy)


def read_envelope_arg(args: argparse.Namespace) -> str:
    """The envelope as a JSON string literal, from --envelope or stdin."""
    raw = args.envelope if args.envelope is not None else sys.stdin.read()
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidArgument(f"Envelope must be a JSON string literal: {exc}") from exc
    if not isinstance(value, str):
        raise InvalidArgument("Envelope must be a JSON string literal")
    return value


# -------------------------
# Subcommands
# -------------------------

def cmd_seal(args: argparse.Namespace, codec: EnvelopeCodec) -> int:
    envelope = codec.encode(args.command, " ".join(args.message))
    print(json.dumps(envelope))
    return EXIT_OK


def cmd_verify(args: argparse.Namespace, codec: EnvelopeCodec) -> int:
    envelope = read_envelope_arg(args)
    ok = codec.verify_command(envelope, args.command)
    print("match" if ok else "no match")
    return EXIT_OK if ok else EXIT_REJECTED


def cmd_match(args: argparse.Namespace, codec: EnvelopeCodec) -> int:
    envelope = read_envelope_arg(args)
    found = codec.match_command(envelope, args.commands)
    if found is None:
        print("no match")
        return EXIT_REJECTED
    print(found)
    return EXIT_OK


def cmd_open(args: argparse.Namespace, codec: EnvelopeCodec) -> int:
    envelope = read_envelope_arg(args)
    opened = codec.open(envelope, args.commands)
    if opened.outcome is Outcome.INVALID_ARGUMENT:
        raise InvalidArgument(opened.detail)
    print(json.dumps({
        "outcome": opened.outcome.value,
        "command": opened.command,
        "payload": opened.payload,
    }, ensure_ascii=False))
    return EXIT_OK if opened.ok else EXIT_REJECTED


# -------------------------
# Argument parsing
# -------------------------

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="tabseal", description="Seal and open tabseal envelopes.")
    p.add_argument("--tokens", choices=["env", "file", "fallback"], default="env",
                   help="Where keys come from (default: TABSEAL_SIGN_KEY/TABSEAL_XOR_KEY)")
    p.add_argument("--home", help="Token directory for --tokens file (default: $TABSEAL_HOME or ~/.tabseal)")
    p.add_argument("--aes", action="store_true",
                   help=f"Encrypt payloads with AES-GCM keyed from ${PASSPHRASE_ENV}")
    p.add_argument("--log-level", default="WARNING")

    sub = p.add_subparsers(dest="subcommand", required=True)

    sp = sub.add_parser("seal", help="Seal a message and print the envelope")
    sp.add_argument("--command", required=True)
    sp.add_argument("message", nargs=argparse.REMAINDER)

    sp = sub.add_parser("verify", help="Check an envelope's command")
    sp.add_argument("--command", required=True)
    sp.add_argument("--envelope")

    sp = sub.add_parser("match", help="Find which of several commands an envelope carries")
    sp.add_argument("commands", nargs="+")
    sp.add_argument("--envelope")

    sp = sub.add_parser("open", help="Match the command and authenticate the payload")
    sp.add_argument("commands", nargs="+")
    sp.add_argument("--envelope")

    return p.parse_args(argv)


HANDLERS = {
    "seal": cmd_seal,
    "verify": cmd_verify,
    "match": cmd_match,
    "open": cmd_open,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Dispatch into the chosen subcommand; keep top-level code very small."""
    args = parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")
    try:
        codec = build_codec(args)
        return HANDLERS[args.subcommand](args, codec)
    except (InvalidArgument, TokenStoreError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_USAGE


if __name__ == "__main__":
    raise SystemExit(main())
