"""
RouterOS API binary protocol primitives.
Compatible with RouterOS 6.x and 7.x (same protocol).

Wire format:
  Sentence = Word* + ZeroWord
  Word     = Length + Data
  ZeroWord = 0x00
  Length   = variable (1–4 bytes)

Length prefix:
  0xxxxxxx                             < 0x80
  10xxxxxx xxxxxxxx                    < 0x4000
  110xxxxx xxxxxxxx xxxxxxxx           < 0x200000
  1110xxxx xxxxxxxx xxxxxxxx xxxxxxxx  < 0x10000000
  1111xxxx ...                         never sent by the router, rejected
"""

import hashlib

from .errors import FramingError, IncompleteLength, WordTooLong

MAX_WORD_LENGTH = 0x10000000

# (upper bound, prefix size, marker bits)
_SIZE_CLASSES = (
    (0x80, 1, 0x00),
    (0x4000, 2, 0x80),
    (0x200000, 3, 0xC0),
    (0x10000000, 4, 0xE0),
)


# ─── Length Encoding ──────────────────────────────────────────────────────────

def encode_length(length: int) -> bytes:
    if length < 0:
        raise ValueError(f"Negative word length: {length}")
    for upper, size, marker in _SIZE_CLASSES:
        if length < upper:
            out = bytearray(size)
            value = length
            for i in range(size - 1, -1, -1):
                out[i] = value & 0xFF
                value >>= 8
            out[0] |= marker
            return bytes(out)
    raise WordTooLong(length)


def prefix_size(first_byte: int) -> int:
    """Total length prefix size announced by its first byte."""
    if first_byte < 0x80:
        return 1
    if first_byte < 0xC0:
        return 2
    if first_byte < 0xE0:
        return 3
    if first_byte < 0xF0:
        return 4
    raise FramingError(f"Invalid length prefix byte 0x{first_byte:02X}")


def decode_length(data: bytes, offset: int = 0) -> tuple[int, int]:
    """
    Returns (length, new_offset).

    Raises IncompleteLength if data ends inside the prefix, so the caller can
    keep the bytes it has and retry once more data arrives.
    """
    if offset >= len(data):
        raise IncompleteLength(1)
    size = prefix_size(data[offset])
    available = len(data) - offset
    if available < size:
        raise IncompleteLength(size - available)

    # strip marker bits: 1 → 0x7F, 2 → 0x3F, 3 → 0x1F, 4 → 0x0F
    value = data[offset] & (0xFF >> size)
    for b in data[offset + 1:offset + size]:
        value = (value << 8) | b
    return value, offset + size


# ─── Word Encoding ────────────────────────────────────────────────────────────

def encode_word(word: bytes) -> bytes:
    return encode_length(len(word)) + word


def build_sentence(words: list[bytes]) -> bytes:
    return b"".join(encode_word(w) for w in words) + b"\x00"


# ─── MD5 Login Helper ─────────────────────────────────────────────────────────

def md5_challenge_response(password: str, challenge_hex: str, encoding: str = "utf-8") -> str:
    """
    RouterOS MD5 login:
      MD5( 0x00 + password_bytes + challenge_bytes )
    Returns lowercase hex string (without the "00" prefix).
    """
    challenge_bytes = bytes.fromhex(challenge_hex)
    h = hashlib.md5()
    h.update(b"\x00")
    h.update(password.encode(encoding))
    h.update(challenge_bytes)
    return h.hexdigest()
