"""
Cross-checks of QToolChain circuits against qiskit.
"""

import pytest
import numpy as np

pytest.importorskip("qiskit")

from qtoolchain.core.circuit import Circuit
from qtoolchain.core.gates import Gate, GateLibrary
from qtoolchain.utils.validation import (
    to_qiskit_circuit,
    validate_circuit_against_qiskit,
    validate_state_against_qiskit,
)


def mixed_circuit():
    circuit = Circuit(3, "mixed")
    circuit.wire(GateLibrary.get_gate("H"), [0])
    circuit.wire(GateLibrary.get_gate("CNOT"), [0, 2])
    circuit.wire(GateLibrary.get_gate("RY", 0.4), [1])
    circuit.wire(GateLibrary.get_gate("CZ"), [2, 1])
    circuit.wire(GateLibrary.get_gate("TOFFOLI"), [1, 2, 0])
    circuit.wire(GateLibrary.get_gate("U3", 0.3, 0.2, 0.1), [2])
    return circuit


class TestQiskitConversion:
    """Tests for the qiskit circuit builder."""

    def test_structure(self):
        qc, scalar = to_qiskit_circuit(mixed_circuit())
        assert qc.num_qubits == 3
        assert len(qc.data) == 6
        assert scalar == 1

    def test_global_phase_gate(self):
        circuit = Circuit(1, "phase")
        circuit.wire(Gate(0, "minus", coefficients=[-1]), [])
        circuit.wire(GateLibrary.get_gate("X"), [0])

        qc, scalar = to_qiskit_circuit(circuit)
        assert len(qc.data) == 1
        assert scalar == -1


class TestOperatorValidation:
    """Composed operators against qiskit's Operator."""

    def test_mixed_circuit(self):
        result = validate_circuit_against_qiskit(mixed_circuit())
        assert result.passed
        assert result.details["num_wirings"] == 6
        assert np.allclose(result.actual, result.exact)

    def test_reversed_cnot(self):
        circuit = Circuit(2, "rev")
        circuit.wire(GateLibrary.get_gate("CNOT"), [1, 0])
        assert validate_circuit_against_qiskit(circuit).passed

    def test_global_phase(self):
        circuit = Circuit(1, "phase")
        circuit.wire(Gate(0, "minus", coefficients=[-1]), [])
        circuit.wire(GateLibrary.get_gate("H"), [0])
        assert validate_circuit_against_qiskit(circuit).passed

    def test_rebuilds_stale_circuit(self):
        circuit = mixed_circuit()
        assert not circuit.is_updated
        validate_circuit_against_qiskit(circuit)
        assert circuit.is_updated


class TestStateValidation:
    """Evolved states against qiskit's Statevector."""

    def test_random_state(self):
        rng = np.random.default_rng(5)
        psi = rng.normal(size=8) + 1j * rng.normal(size=8)
        psi /= np.linalg.norm(psi)

        result = validate_state_against_qiskit(mixed_circuit(), psi)
        assert result.passed
        assert np.isclose(np.linalg.norm(result.actual), 1.0)

    def test_basis_state(self):
        circuit = Circuit(2, "bell")
        circuit.wire(GateLibrary.get_gate("H"), [0])
        circuit.wire(GateLibrary.get_gate("CNOT"), [0, 1])

        result = validate_state_against_qiskit(circuit, [1, 0, 0, 0])
        assert result.passed
        assert np.allclose(result.actual, np.array([1, 0, 0, 1]) / np.sqrt(2))
