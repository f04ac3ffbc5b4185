"""Bit manipulation helpers shared by operators and circuits."""

from __future__ import annotations

from typing import Iterator, List, Sequence


def iter_bits(value: int) -> Iterator[int]:
    """Yield the positions of the set bits of ``value`` in ascending order."""
    while value:
        low = value & -value
        yield low.bit_length() - 1
        value ^= low


def bit_positions(mask: int, width: int) -> List[int]:
    """Positions below ``width`` whose bit is set in ``mask``."""
    return [i for i in range(width) if (mask >> i) & 1]


def scatter_bits(value: int, positions: Sequence[int]) -> int:
    """
    Deposit bit ``k`` of ``value`` at bit ``positions[k]`` of the result.

    This is how a gate-local index is translated into a circuit index, and
    how an enumeration counter is spread over a set of free qubits.
    """
    result = 0
    for k, position in enumerate(positions):
        if (value >> k) & 1:
            result |= 1 << position
    return result
