"""
Incremental word / sentence framing on top of a byte source.

Nothing here blocks: poll_word() and feed() return "need more data" and are
called again by the owner when the transport reports new bytes. Partial
length prefixes and partial word bodies are kept across calls.
"""

import logging
from dataclasses import dataclass, field
from typing import Protocol

from .api_protocol import decode_length, encode_word, prefix_size
from .errors import InternalConsistencyFault

log = logging.getLogger("Framer")


class ByteSource(Protocol):
    def read(self, max_bytes: int) -> bytes: ...


class ByteSink(Protocol):
    def write(self, data: bytes) -> None: ...


@dataclass
class PendingWord:
    expected_length: int = -1
    prefix: bytearray = field(default_factory=bytearray)
    buffer: bytearray = field(default_factory=bytearray)

    def reset(self):
        self.expected_length = -1
        self.prefix = bytearray()
        self.buffer = bytearray()

    @property
    def idle(self) -> bool:
        return self.expected_length < 0 and not self.prefix and not self.buffer


class WordFramer:
    """
    Reads and writes single length-prefixed words.

    poll_word() results:
      None        – need more data
      b""         – empty word (end of sentence)
      b"..."      – complete word
    """

    def __init__(self, source: ByteSource, sink: ByteSink):
        self._source = source
        self._sink = sink
        self.pending = PendingWord()
        self._outgoing: bytearray | None = None

    def write_word(self, word: bytes):
        data = encode_word(word)
        if self._outgoing is not None:
            self._outgoing.extend(data)
        else:
            self._sink.write(data)

    def write_sentence(self, words: list[bytes]):
        """Write the words plus the terminating empty word in a single sink write."""
        self._outgoing = bytearray()
        try:
            for word in words:
                self.write_word(word)
            self.write_word(b"")
            data = bytes(self._outgoing)
        finally:
            self._outgoing = None
        self._sink.write(data)

    def reset(self):
        self.pending.reset()

    def poll_word(self) -> bytes | None:
        p = self.pending
        if p.expected_length < 0 and not self._poll_length():
            return None

        if p.expected_length == 0:
            p.reset()
            return b""

        chunk = self._source.read(p.expected_length - len(p.buffer))
        if chunk:
            p.buffer.extend(chunk)
        if len(p.buffer) < p.expected_length:
            return None

        word = bytes(p.buffer)
        p.reset()
        return word

    def _poll_length(self) -> bool:
        p = self.pending
        needed = prefix_size(p.prefix[0]) if p.prefix else 1
        while len(p.prefix) < needed:
            chunk = self._source.read(needed - len(p.prefix))
            if not chunk:
                if p.prefix:
                    log.debug(f"Length prefix split across reads ({len(p.prefix)}/{needed} bytes)")
                return False
            p.prefix.extend(chunk)
            if needed == 1:
                needed = prefix_size(p.prefix[0])

        p.expected_length, _ = decode_length(bytes(p.prefix))
        p.prefix = bytearray()
        return True


class SentenceAssembler:
    """Collects words from a WordFramer until an empty word ends the sentence."""

    def __init__(self, framer: WordFramer):
        self._framer = framer
        self.words: list[bytes] = []
        self.completed = False

    def feed(self) -> bool:
        """Returns True if a sentence was completed during this pass."""
        if self.completed:
            raise InternalConsistencyFault("Previous sentence was not consumed")
        while True:
            word = self._framer.poll_word()
            if word is None:
                return False
            if not word:
                self.completed = True
                return True
            self.words.append(word)

    def take(self) -> list[bytes]:
        words, self.words = self.words, []
        self.completed = False
        return words

    def clear(self):
        self.words = []
        self.completed = False
