"""
Validation utilities for QToolChain.

Compares composed circuit operators and evolved states against qiskit's
exact ``Operator`` and ``Statevector``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional, Sequence

import numpy as np

if TYPE_CHECKING:
    from qtoolchain.core.circuit import Circuit


@dataclass
class ValidationResult:
    """Result of validating a circuit against qiskit."""
    actual: np.ndarray
    exact: np.ndarray
    max_error: float
    passed: bool
    atol: float
    details: Dict[str, Any]


def to_qiskit_circuit(circuit: Circuit):
    """
    Build the qiskit equivalent of a circuit.

    Every wiring becomes a ``UnitaryGate`` on its remapped qubits. Both
    libraries treat the first listed qubit as the least significant index
    bit, so gate matrices carry over unchanged.

    Returns:
        Tuple of (``qiskit.QuantumCircuit``, scalar factor of order-0 gates)
    """
    try:
        from qiskit import QuantumCircuit
        from qiskit.circuit.library import UnitaryGate
    except ImportError:
        raise ImportError("Qiskit is required for validation. "
                          "Install with: pip install qiskit")

    qc = QuantumCircuit(circuit.order, name=circuit.name)
    scalar = 1.0 + 0j

    for wiring in circuit:
        gate = wiring.gate
        if gate.order == 0:
            scalar *= gate.matrix[0, 0]
            continue

        qc.append(
            UnitaryGate(gate.matrix, label=gate.name, check_input=False),
            list(wiring.remap)
        )

    return qc, scalar


def validate_circuit_against_qiskit(
    circuit: Circuit,
    atol: Optional[float] = None
) -> ValidationResult:
    """
    Compare the circuit's composed operator with qiskit's ``Operator``.

    The circuit is rebuilt first if it is stale.

    Args:
        circuit: Circuit to check
        atol: Absolute tolerance (default: the circuit's norm tolerance)

    Returns:
        ValidationResult with both matrices
    """
    from qiskit.quantum_info import Operator

    atol = atol if atol is not None else circuit.config.norm_tolerance

    if not circuit.is_updated:
        circuit.rebuild()

    qc, scalar = to_qiskit_circuit(circuit)
    exact = scalar * Operator(qc).data
    actual = circuit.operator.to_dense()

    max_error = float(np.max(np.abs(actual - exact))) if actual.size else 0.0

    return ValidationResult(
        actual=actual,
        exact=exact,
        max_error=max_error,
        passed=max_error <= atol,
        atol=atol,
        details={
            "num_qubits": circuit.order,
            "num_wirings": len(circuit),
            "circuit_depth": qc.depth(),
            "nnz": circuit.operator.nnz,
        }
    )


def validate_state_against_qiskit(
    circuit: Circuit,
    psi: Sequence[complex],
    atol: Optional[float] = None
) -> ValidationResult:
    """
    Compare ``circuit.apply_state(psi)`` with qiskit's ``Statevector.evolve``.

    Applying the state resets the circuit's measurement record.
    """
    from qiskit.quantum_info import Statevector

    atol = atol if atol is not None else circuit.config.norm_tolerance

    if not circuit.is_updated:
        circuit.rebuild()

    psi = np.asarray(psi, dtype=np.complex128)
    qc, scalar = to_qiskit_circuit(circuit)
    exact = scalar * Statevector(psi).evolve(qc).data
    actual = circuit.apply_state(psi)

    max_error = float(np.max(np.abs(actual - exact)))

    return ValidationResult(
        actual=actual,
        exact=exact,
        max_error=max_error,
        passed=max_error <= atol,
        atol=atol,
        details={
            "num_qubits": circuit.order,
            "num_wirings": len(circuit),
        }
    )
