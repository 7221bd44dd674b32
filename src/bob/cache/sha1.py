"""SHA-1 content hashing.

A self-contained SHA-1 used as the content identity of tracked build inputs.
Change detection only needs a stable, well-distributed digest; collision
resistance against adversaries is not a requirement here.

Algorithm summary:
    - message padded with 0x80, zeros, and the 64-bit big-endian bit length
      to a multiple of 64 bytes
    - each 64-byte block expanded to 80 32-bit words
    - 80 rounds over five 32-bit chaining values
    - digest is the five chaining values, big-endian (20 bytes)
"""

import struct
from pathlib import Path
from typing import Optional, Union

BLOCK_SIZE = 64
DIGEST_SIZE = 20

_INITIAL_STATE = (0x67452301, 0xEFCDAB89, 0x98BADCFE, 0x10325476, 0xC3D2E1F0)
_MASK = 0xFFFFFFFF
_READ_CHUNK = 64 * 1024


def _rotl(value: int, count: int) -> int:
    return ((value << count) | (value >> (32 - count))) & _MASK


def _compress(state: tuple[int, ...], block: bytes) -> tuple[int, ...]:
    """Process one 64-byte block and return the new chaining values."""
    w = list(struct.unpack(">16I", block))
    for i in range(16, 80):
        w.append(_rotl(w[i - 3] ^ w[i - 8] ^ w[i - 14] ^ w[i - 16], 1))

    a, b, c, d, e = state
    for i in range(80):
        if i < 20:
            f = (b & c) | (~b & d)
            k = 0x5A827999
        elif i < 40:
            f = b ^ c ^ d
            k = 0x6ED9EBA1
        elif i < 60:
            f = (b & c) | (b & d) | (c & d)
            k = 0x8F1BBCDC
        else:
            f = b ^ c ^ d
            k = 0xCA62C1D6
        temp = (_rotl(a, 5) + f + e + k + w[i]) & _MASK
        e = d
        d = c
        c = _rotl(b, 30)
        b = a
        a = temp

    return tuple((x + y) & _MASK for x, y in zip(state, (a, b, c, d, e)))


class Sha1:
    """Incremental SHA-1 hasher.

    Usage:
        hasher = Sha1()
        hasher.update(b"hello ")
        hasher.update(b"world")
        hasher.hexdigest()  # "2aae6c35c94fcfb415dbe95f408b9ce91ee846ed"
    """

    def __init__(self, data: Optional[bytes] = None) -> None:
        self._state: tuple[int, ...] = _INITIAL_STATE
        self._buffer = b""
        self._length = 0
        if data:
            self.update(data)

    def update(self, data: bytes) -> None:
        """Feed more bytes into the hash."""
        self._length += len(data)
        buffer = self._buffer + data
        full = len(buffer) - len(buffer) % BLOCK_SIZE
        for offset in range(0, full, BLOCK_SIZE):
            self._state = _compress(self._state, buffer[offset : offset + BLOCK_SIZE])
        self._buffer = buffer[full:]

    def copy(self) -> "Sha1":
        clone = Sha1()
        clone._state = self._state
        clone._buffer = self._buffer
        clone._length = self._length
        return clone

    def digest(self) -> bytes:
        """Return the 20-byte digest of everything fed so far.

        The hasher stays usable; more data can be added afterwards.
        """
        bit_length = (self._length * 8) & 0xFFFFFFFFFFFFFFFF
        padding = b"\x80" + b"\x00" * ((55 - self._length) % BLOCK_SIZE)
        tail = self._buffer + padding + struct.pack(">Q", bit_length)
        state = self._state
        for offset in range(0, len(tail), BLOCK_SIZE):
            state = _compress(state, tail[offset : offset + BLOCK_SIZE])
        return struct.pack(">5I", *state)

    def hexdigest(self) -> str:
        return self.digest().hex()


def sha1(data: bytes) -> bytes:
    """Return the SHA-1 digest of a byte string."""
    return Sha1(data).digest()


def sha1_file(path: Union[str, Path]) -> bytes:
    """Return the SHA-1 digest of a file's contents, read in chunks.

    Raises:
        FileNotFoundError: If the file does not exist.
        OSError: If the file cannot be read.
    """
    hasher = Sha1()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_READ_CHUNK), b""):
            hasher.update(chunk)
    return hasher.digest()
