import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional

from .envelope import EnvelopeCodec, check_command
from .errors import FrameEncodingError
from .framing import read_envelope, write_envelope

"""
channel.py - route envelopes to receivers by command.

A Channel owns a codec and a table of command -> Receiver. Outbound, it
serializes the data (JSON by default), seals it and hands the envelope to
whatever transport it was given. Inbound, it:

  1) matches the command field against the registered commands,
  2) authenticates and decrypts the payload,
  3) decodes it the way the receiver asked for, and
  4) calls the receiver.

Anything failing 1-3 is dropped without an error: on a shared medium,
envelopes for other channels or keys are normal traffic, not faults.
"""

logger = logging.getLogger(__name__)

Transport = Callable[[str], Any]


class Receiver:
    """Base receiver. Subclasses implement receive(); is_json picks decoding."""

    def __init__(self, is_json: bool = True) -> None:
        self.is_json = is_json

    def receive(self, data: Any) -> None:
        raise NotImplementedError

    def prehandle(self, text: str) -> Any:
        if self.is_json:
            return json.loads(text)
        return text

    def handle(self, text: str) -> None:
        self.receive(self.prehandle(text))


class FunctionReceiver(Receiver):
    """Receiver wrapper around a plain callable."""

    def __init__(self, fn: Callable[[Any], None], is_json: bool = True) -> None:
        super().__init__(is_json=is_json)
        self.fn = fn

    def receive(self, data: Any) -> None:
        self.fn(data)


class Channel:
    """
    One named logical channel.

    `transport` is called with each outbound envelope; leave it None to just
    get envelopes back from send() and move them yourself.
    """

    def __init__(
        self,
        codec: EnvelopeCodec,
        transport: Optional[Transport] = None,
        name: str = "untitled",
    ) -> None:
        self.codec = codec
        self.transport = transport
        self.name = name
        self._receivers: Dict[str, Receiver] = {}

    @property
    def commands(self) -> List[str]:
        return list(self._receivers)

    def register(self, command: str, receiver: Any, is_json: bool = True) -> Receiver:
        """Attach a Receiver (or a plain callable) to a command. Last one wins."""
        check_command(command)
        if not isinstance(receiver, Receiver):
            receiver = FunctionReceiver(receiver, is_json=is_json)
        self._receivers[command] = receiver
        return receiver

    def unregister(self, command: str) -> None:
        self._receivers.pop(command, None)

    def seal(self, command: str, data: Any, is_json: bool = True) -> str:
        text = json.dumps(data, separators=(",", ":"), ensure_ascii=False) if is_json else str(data)
        return self.codec.encode(command, text)

    def send(self, command: str, data: Any, is_json: bool = True) -> str:
        """Seal `data` under `command`, pass it to the transport, return the envelope."""
        envelope = self.seal(command, data, is_json=is_json)
        if self.transport is not None:
            self.transport(envelope)
        return envelope

    def dispatch(self, envelope: str) -> bool:
        """Deliver one inbound envelope. Returns True if a receiver got it."""
        if not self._receivers:
            return False

        command = self.codec.match_command(envelope, self.commands)
        if command is None:
            return False

        text = self.codec.decode_payload(envelope)
        if text is None:
            logger.debug("[%s] dropped %r: payload failed authentication", self.name, command)
            return False

        receiver = self._receivers.get(command)
        if receiver is None:
            return False  # unregistered between match and delivery

        try:
            data = receiver.prehandle(text)
        except ValueError as exc:
            logger.debug("[%s] dropped %r: undecodable payload: %s", self.name, command, exc)
            return False

        receiver.receive(data)
        return True

    # -------------------------
    # asyncio stream helpers
    # -------------------------

    async def publish(
        self, writer: asyncio.StreamWriter, command: str, data: Any, is_json: bool = True
    ) -> str:
        """Seal and write one framed envelope to `writer`."""
        envelope = self.seal(command, data, is_json=is_json)
        await write_envelope(writer, envelope)
        return envelope

    async def listen(self, reader: asyncio.StreamReader) -> int:
        """
        Dispatch every frame from `reader` until EOF. Returns how many were delivered.

        Frames that are not UTF-8 are skipped. An oversized frame leaves the
        stream out of step, so its FrameError ends the listener.
        """
        delivered = 0
        try:
            while True:
                try:
                    envelope = await read_envelope(reader)
                except FrameEncodingError as exc:
                    logger.debug("[%s] dropped frame: %s", self.name, exc)
                    continue
                if envelope is None:
                    break
                if self.dispatch(envelope):
                    delivered += 1
        except asyncio.IncompleteReadError:
            # Peer went away mid-frame; nothing to do.
            logger.debug("[%s] stream closed mid-frame", self.name)
        return delivered
