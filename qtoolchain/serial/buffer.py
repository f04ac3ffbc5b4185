"""
Big-endian scalar codec over a fixed-size byte buffer.

Writers never fail for lack of room: when the buffer is absent or too small
the cursor still advances, so a first pass with no buffer measures the
encoded size and a second pass writes it. Readers check the remaining
bytes before consuming anything.
"""

from __future__ import annotations

import struct
from typing import Optional, Sequence, Union

import numpy as np

from qtoolchain.exceptions import MalformedInputError, TruncatedInputError

_U32 = struct.Struct(">I")
_U64 = struct.Struct(">Q")
_F32 = struct.Struct(">f")
_F64 = struct.Struct(">d")

COMPLEX_SIZE = 16
COMPLEX_DTYPE = np.dtype(">c16")

BytesLike = Union[bytes, bytearray, memoryview]


class SerialBuffer:
    """
    Cursor over a byte buffer.

    Attributes:
        data: Underlying buffer, ``None`` for a measuring pass
    """

    def __init__(self, data: Optional[BytesLike] = None):
        self.data = data
        self._pos = 0

    @classmethod
    def allocate(cls, size: int) -> SerialBuffer:
        return cls(bytearray(size))

    @property
    def size(self) -> int:
        return 0 if self.data is None else len(self.data)

    @property
    def remaining(self) -> int:
        return max(0, self.size - self._pos)

    def tell(self) -> int:
        return self._pos

    def seek(self, pos: int) -> None:
        if pos < 0:
            raise ValueError(f"Cannot seek to negative offset {pos}")
        self._pos = pos

    def advance(self, count: int) -> None:
        self._pos += count

    def ensure(self, count: int, what: str = "data") -> None:
        """
        Raises:
            TruncatedInputError: If fewer than ``count`` bytes remain
        """
        if self.remaining < count:
            raise TruncatedInputError(
                f"Truncated input: {what} needs {count} bytes at offset "
                f"{self._pos}, {self.remaining} available"
            )

    def getvalue(self) -> bytes:
        return b"" if self.data is None else bytes(self.data)

    # Writers

    def write_bytes(self, raw: BytesLike) -> None:
        end = self._pos + len(raw)
        if self.data is not None and end <= len(self.data):
            self.data[self._pos:end] = raw
        self._pos = end

    def write_u32(self, value: int) -> None:
        self.write_bytes(_U32.pack(value))

    def write_u64(self, value: int) -> None:
        self.write_bytes(_U64.pack(value))

    def write_f32(self, value: float) -> None:
        self.write_bytes(_F32.pack(value))

    def write_f64(self, value: float) -> None:
        self.write_bytes(_F64.pack(value))

    def write_complex(self, value: complex) -> None:
        """Real part then imaginary part, as doubles."""
        value = complex(value)
        self.write_f64(value.real)
        self.write_f64(value.imag)

    def write_complex_array(self, values: Sequence[complex]) -> None:
        self.write_bytes(np.asarray(values, dtype=COMPLEX_DTYPE).tobytes())

    def write_string(self, text: str) -> None:
        """Length (counting the trailing NUL) followed by the NUL-terminated bytes."""
        raw = text.encode("utf-8") + b"\0"
        self.write_u32(len(raw))
        self.write_bytes(raw)

    def patch_u32(self, offset: int, value: int) -> None:
        """Overwrite a u32 at ``offset`` without moving the cursor."""
        pos = self._pos
        self._pos = offset
        self.write_u32(value)
        self._pos = pos

    # Readers

    def read_bytes(self, count: int, what: str = "data") -> bytes:
        self.ensure(count, what)
        raw = bytes(self.data[self._pos:self._pos + count])
        self._pos += count
        return raw

    def read_u32(self, what: str = "u32") -> int:
        return _U32.unpack(self.read_bytes(4, what))[0]

    def read_u64(self, what: str = "u64") -> int:
        return _U64.unpack(self.read_bytes(8, what))[0]

    def read_f32(self, what: str = "f32") -> float:
        return _F32.unpack(self.read_bytes(4, what))[0]

    def read_f64(self, what: str = "f64") -> float:
        return _F64.unpack(self.read_bytes(8, what))[0]

    def read_complex(self, what: str = "complex") -> complex:
        self.ensure(COMPLEX_SIZE, what)
        real = self.read_f64(what)
        imag = self.read_f64(what)
        return complex(real, imag)

    def read_complex_array(self, count: int, what: str = "complex array") -> np.ndarray:
        raw = self.read_bytes(count * COMPLEX_SIZE, what)
        return np.frombuffer(raw, dtype=COMPLEX_DTYPE).astype(np.complex128)

    def read_string(self, what: str = "string") -> str:
        """
        Raises:
            MalformedInputError: If the string is empty or not NUL-terminated
        """
        start = self._pos
        length = self.read_u32(what)

        if length == 0:
            self._pos = start
            raise MalformedInputError(f"Malformed {what}: zero length at offset {start}")

        try:
            raw = self.read_bytes(length, what)
        except TruncatedInputError:
            self._pos = start
            raise

        if raw[-1:] != b"\0":
            self._pos = start
            raise MalformedInputError(f"Malformed {what}: missing terminator at offset {start}")

        try:
            return raw[:-1].decode("utf-8")
        except UnicodeDecodeError as exc:
            self._pos = start
            raise MalformedInputError(f"Malformed {what}: {exc}") from exc
