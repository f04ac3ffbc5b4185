"""
Quantum teleportation demo using QToolChain.

Assembles teleporter.qas, prepares Alice's qubit in alpha|0> + beta|1>
next to a Bell pair, measures Alice's qubits after the sending circuit and
shows that Bob's qubit ends up in the sent state once the receiving
circuit has run.
"""

from pathlib import Path

import numpy as np

from qtoolchain import assemble_file

ALPHA = 0.6
BETA = -0.8


def initial_state(alpha: float, beta: float) -> np.ndarray:
    """(alpha|0> + beta|1>) on qubit 0, (|00> + |11>)/sqrt(2) on qubits 1 and 2."""
    state = np.zeros(8, dtype=np.complex128)
    state[0b000] = state[0b110] = alpha / np.sqrt(2)
    state[0b001] = state[0b111] = beta / np.sqrt(2)
    return state


def teleport(send, recv, alpha: float, beta: float):
    """
    Run one teleportation.

    Returns:
        Tuple of (Alice's measurement, Bob's amplitudes for |0> and |1>)
    """
    send.apply_state(initial_state(alpha, beta))
    send.collapse(0b01)
    send.collapse(0b10)
    measured = send.measured_bits

    recv.apply_state(send.get_state())
    state = recv.get_state()

    return measured, (state[measured], state[measured | 0b100])


def demo_teleporter(trials: int = 10):
    print("=" * 60)
    print("Quantum teleportation")
    print("=" * 60)

    registry = assemble_file(Path(__file__).with_name("teleporter.qas"))
    send = registry.lookup_circuit("teleporter_send")
    recv = registry.lookup_circuit("teleporter_recv")

    for circuit in (send, recv):
        print(f"Circuit {circuit.name} ({circuit.order} qubits, {len(circuit)} wirings)")
        print(np.round(circuit.operator.to_dense().real, 3))
        print()

    for _ in range(trials):
        measured, (zero, one) = teleport(send, recv, ALPHA, BETA)
        print(f"Alice sends {ALPHA:+.3f}|0> {BETA:+.3f}|1>, measures {measured:02b}, "
              f"Bob gets {zero.real:+.3f}|0> {one.real:+.3f}|1>")

    print("=" * 60)


if __name__ == "__main__":
    demo_teleporter()
