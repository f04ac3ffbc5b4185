"""
Sticky measurement demo using QToolChain.

A two-qubit circuit with no gates is fed the Bell state
(|00> + |11>)/sqrt(2). Measuring qubit 1 first and then both qubits
must only ever give 00 or 11: the second measurement reuses the outcome
of qubit 1 and qubit 0 follows it.
"""

from collections import Counter

import numpy as np

from qtoolchain import Circuit
from qtoolchain.observables.sampler import RandomSource, format_outcome

BELL = np.array([1, 0, 0, 1], dtype=np.complex128) / np.sqrt(2)


def demo_bell_collapse(trials: int = 1000, seed: int = 42):
    print("=" * 60)
    print("Bell state measurement statistics")
    print("=" * 60)

    circuit = Circuit(2, "bell", rng=RandomSource(seed))
    circuit.rebuild()

    counts = Counter()

    for _ in range(trials):
        circuit.apply_state(BELL)
        circuit.collapse(0b10)
        counts[format_outcome(circuit.collapse(0b11), circuit.order)] += 1

    for outcome in ("00", "01", "10", "11"):
        print(f"|{outcome}>: {counts[outcome]:5d} ({counts[outcome] / trials:.3f})")

    print("=" * 60)


if __name__ == "__main__":
    demo_bell_collapse()
