"""
Error taxonomy for QToolChain.

Every error derives from :class:`QToolchainError` and from the builtin
exception that best describes it, so callers may catch either.
"""

from __future__ import annotations

from typing import Optional


class QToolchainError(Exception):
    """Base class for all toolchain errors."""


class OutOfMemoryError(QToolchainError, MemoryError):
    """Storage for an operator, state or table could not be allocated."""


class OrderTooLargeError(QToolchainError, ValueError):
    """Requested qubit count exceeds the sparse operator ceiling."""


class OrderMismatchError(QToolchainError, ValueError):
    """Two operands have incompatible qubit counts."""


class IndexOutOfRangeError(QToolchainError, IndexError):
    """Matrix index or qubit index outside the operator dimension."""


class RemapError(QToolchainError, ValueError):
    """Base class for invalid qubit remaps."""


class RemapConflictError(RemapError):
    """Two source qubits were mapped onto the same target qubit."""


class RemapOutOfRangeError(RemapError):
    """A remap target is outside the destination qubit space."""


class BadRemapError(RemapError):
    """A wiring remap does not fit the gate or the circuit."""


class GateError(QToolchainError, ValueError):
    """Gate construction or coefficient assignment failed."""


class GateNotReadyError(QToolchainError, RuntimeError):
    """The gate has no sparse operator yet."""


class NotUpdatedError(QToolchainError, RuntimeError):
    """The circuit operator is stale; call ``rebuild()`` first."""


class DegenerateStateError(QToolchainError, ValueError):
    """The surviving branch of a state has zero norm."""


class DeserializationError(QToolchainError, ValueError):
    """Base class for wire format decoding errors."""


class TruncatedInputError(DeserializationError):
    """Input ended before the expected data."""


class MalformedInputError(DeserializationError):
    """Input is complete but inconsistent."""


class RegistryError(QToolchainError, ValueError):
    """Object registration failed, e.g. a duplicate name."""


class AssemblerError(QToolchainError):
    """Assembler failure, located at a file and line."""

    def __init__(self, message: str, path: Optional[str] = None, line: Optional[int] = None):
        self.message = message
        self.path = path
        self.line = line
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.path is not None and self.line is not None:
            return f"{self.path}:{self.line}: {self.message}"
        if self.path is not None:
            return f"{self.path}: {self.message}"
        return self.message
