"""
Measurement sampling for QToolChain.

Outcomes are drawn from a cumulative distribution with a bias-free variant
of inverse-CDF sampling: a uniform draw only identifies an interval
``[x, x + scale)`` of width ``scale`` (the resolution of the source), and
when that interval straddles a bin boundary the tie is broken with an
exact Bernoulli trial built from further uniform draws.

With a ``b``-bit source the plain inverse-CDF method would carry a bias of
up to ``2^-b`` per boundary; the tie-break removes it, so the only
remaining deviation is that of the pseudo-random generator itself.
"""

from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

import numpy as np

from qtoolchain.config import DEFAULT_CONFIG, Config

if TYPE_CHECKING:
    from qtoolchain.core.circuit import Circuit


class RandomSource:
    """
    Uniform source on the grid ``{k * scale : 0 <= k < 2^bits}``.

    Wraps a :class:`numpy.random.Generator` so tests can inject a seeded or
    scripted source instead of relying on global state.
    """

    def __init__(
        self,
        seed: Optional[int] = None,
        bits: int = 53,
        generator: Optional[np.random.Generator] = None
    ):
        if not 1 <= bits <= 53:
            raise ValueError(f"bits must be within [1, 53], got {bits}")

        self.bits = bits
        self.scale = 1.0 / (1 << bits)
        self.generator = generator if generator is not None else np.random.default_rng(seed)

    @classmethod
    def from_config(cls, config: Optional[Config] = None) -> RandomSource:
        config = config or DEFAULT_CONFIG
        return cls(seed=config.seed, bits=config.sampler_bits)

    def uniform(self) -> float:
        """Draw from ``[0, 1)`` with resolution ``scale``."""
        return int(self.generator.integers(0, 1 << self.bits)) * self.scale


def randbiased(x: float, source: RandomSource) -> bool:
    """
    Return ``True`` with probability exactly ``x``.

    Each draw ``p`` either settles the trial (``[p, p + scale)`` lies wholly
    below or above ``x``) or zooms into the straddled cell and retries.
    """
    scale = source.scale

    while True:
        p = source.uniform()

        if p >= x:
            return False

        if p + scale <= x:
            return True

        # p < x < p + scale
        x = (x - p) / scale


def randslot(cumulative: Sequence[float], source: RandomSource) -> int:
    """
    Draw a bin index from an ascending cumulative distribution.

    Args:
        cumulative: Non-decreasing upper bounds of the bins, last one ~1
        source: Random source

    Returns:
        Index of the selected bin
    """
    n = len(cumulative)
    if n == 0:
        raise ValueError("Cannot sample from an empty distribution")
    if n == 1:
        return 0

    scale = source.scale
    x = source.uniform()

    # Binary search for the bin containing x
    lo, hi = 0, n - 2
    while hi > lo:
        mi = (lo + hi) // 2
        if x >= cumulative[mi]:
            lo = mi + 1
        else:
            hi = mi

    # Taking cumulative[-1] = 0: cumulative[lo - 1] <= x < cumulative[lo]
    xhi = x + scale
    if xhi <= cumulative[lo]:
        return lo

    # x < cumulative[lo] < xhi: split the draw interval between the bins
    while True:
        if randbiased((cumulative[lo] - x) / (xhi - x), source):
            return lo

        x = cumulative[lo]
        lo += 1

        if lo >= n - 1:
            return n - 1

        if xhi <= cumulative[lo]:
            return lo


def sample_index(probabilities: Sequence[float], source: RandomSource) -> int:
    """
    Draw an index with the given (normalized) probabilities.

    Zero-probability entries are never selected.
    """
    probabilities = np.asarray(probabilities, dtype=np.float64)
    candidates = np.flatnonzero(probabilities > 0)

    if candidates.size == 0:
        raise ValueError("All probabilities are zero")

    cumulative = np.cumsum(probabilities[candidates])
    slot = randslot(cumulative.tolist(), source)
    return int(candidates[slot])


def format_outcome(outcome: int, num_qubits: int) -> str:
    """Render an outcome as a bitstring, highest qubit first."""
    return format(outcome, f"0{num_qubits}b") if num_qubits > 0 else ""


def sample_outcomes(circuit: Circuit, qubit_mask: int, num_samples: int) -> List[int]:
    """
    Measure ``qubit_mask`` on the circuit's current state repeatedly.

    The measurement state is reset before every shot and after the last
    one, so the circuit is left as it was found.
    """
    outcomes = []

    for _ in range(num_samples):
        circuit.measure_reset()
        outcomes.append(circuit.collapse(qubit_mask))

    circuit.measure_reset()
    return outcomes


def estimate_counts(circuit: Circuit, qubit_mask: int, num_samples: int) -> Dict[str, int]:
    """
    Sample and return counts (like Qiskit's counts format).

    Returns:
        Dictionary mapping bitstring -> count
    """
    samples = sample_outcomes(circuit, qubit_mask, num_samples)
    return {
        format_outcome(outcome, circuit.order): count
        for outcome, count in sorted(Counter(samples).items())
    }
