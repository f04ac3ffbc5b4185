"""
Tests for QToolChain circuits: composition, evolution and measurement.
"""

import pytest
import numpy as np

from qtoolchain.core.circuit import Circuit, CircuitState
from qtoolchain.core.gates import Gate, GateLibrary, HADAMARD, PAULI_X, CNOT
from qtoolchain.core.sparse import SparseOperator
from qtoolchain.core.wiring import Wiring
from qtoolchain.exceptions import (
    BadRemapError,
    DegenerateStateError,
    GateNotReadyError,
    IndexOutOfRangeError,
    NotUpdatedError,
    RemapConflictError,
)
from qtoolchain.observables.sampler import RandomSource, estimate_counts, sample_outcomes

BELL = np.array([1, 0, 0, 1], dtype=np.complex128) / np.sqrt(2)


def random_state(order, seed):
    rng = np.random.default_rng(seed)
    psi = rng.normal(size=1 << order) + 1j * rng.normal(size=1 << order)
    return psi / np.linalg.norm(psi)


def consistent_norm(circuit):
    return float(np.sum(np.abs(circuit.get_state()) ** 2))


class TestWiringChain:
    """Tests for the wiring arena."""

    def test_append_order(self):
        circuit = Circuit(2, "c")
        h = circuit.wire(GateLibrary.get_gate("H"), [0])
        x = circuit.wire(GateLibrary.get_gate("X"), [1])

        assert [w.gate.name for w in circuit] == ["H", "X"]
        assert circuit.head == h
        assert circuit.tail == x
        assert len(circuit) == 2

    def test_prepend(self):
        circuit = Circuit(1, "c")
        circuit.wire(GateLibrary.get_gate("H"), [0])
        circuit.prepend_wiring(Wiring(GateLibrary.get_gate("X"), [0]))

        assert [w.gate.name for w in circuit] == ["X", "H"]

        # X runs first, so U = H X
        circuit.rebuild()
        assert np.allclose(circuit.operator.to_dense(), HADAMARD @ PAULI_X)

    def test_remove_and_reuse_slot(self):
        circuit = Circuit(2, "c")
        first = circuit.wire(GateLibrary.get_gate("H"), [0])
        middle = circuit.wire(GateLibrary.get_gate("X"), [1])
        last = circuit.wire(GateLibrary.get_gate("Z"), [0])

        removed = circuit.remove_wiring(middle)
        assert removed.gate.name == "X"
        assert not removed.is_linked
        assert [w.gate.name for w in circuit] == ["H", "Z"]
        assert circuit.get_wiring(first).next == last
        assert circuit.get_wiring(last).prev == first

        reused = circuit.wire(GateLibrary.get_gate("Y"), [1])
        assert reused == middle
        assert [w.gate.name for w in circuit] == ["H", "Z", "Y"]

    def test_remove_only_wiring(self):
        circuit = Circuit(1, "c")
        handle = circuit.wire(GateLibrary.get_gate("X"), [0])
        circuit.remove_wiring(handle)

        assert circuit.head is None
        assert circuit.tail is None
        assert list(circuit) == []

    def test_unknown_handle(self):
        with pytest.raises(IndexOutOfRangeError):
            Circuit(1, "c").get_wiring(0)

    def test_remap_outside_circuit(self):
        circuit = Circuit(2, "c")
        with pytest.raises(BadRemapError):
            circuit.wire(GateLibrary.get_gate("X"), [2])
        assert len(circuit) == 0

    def test_wiring_linked_once(self):
        circuit = Circuit(1, "c")
        wiring = Wiring(GateLibrary.get_gate("X"), [0])
        circuit.append_wiring(wiring)
        with pytest.raises(ValueError):
            circuit.append_wiring(wiring)


class TestRebuild:
    """Tests for operator composition."""

    def test_not_not_is_identity(self):
        circuit = Circuit(1, "nn")
        not_gate = GateLibrary.get_gate("NOT")
        circuit.wire(not_gate, [0])
        circuit.wire(not_gate, [0])

        assert circuit.rebuild() == SparseOperator.identity(1)
        assert circuit.status is CircuitState.FRESH

    def test_empty_circuit_is_identity(self):
        circuit = Circuit(3, "empty")
        assert circuit.rebuild() == SparseOperator.identity(3)

    def test_bell_preparation(self):
        circuit = Circuit(2, "bell")
        circuit.wire(GateLibrary.get_gate("H"), [0])
        circuit.wire(GateLibrary.get_gate("CNOT"), [0, 1])
        circuit.rebuild()

        psi = circuit.apply_state([1, 0, 0, 0])
        assert np.allclose(psi, BELL)

    def test_composition_order(self):
        circuit = Circuit(2, "c")
        circuit.wire(GateLibrary.get_gate("H"), [0])
        circuit.wire(GateLibrary.get_gate("CNOT"), [0, 1])
        circuit.rebuild()

        expected = CNOT @ np.kron(np.eye(2), HADAMARD)
        assert np.allclose(circuit.operator.to_dense(), expected)

    def test_mutation_marks_stale(self):
        circuit = Circuit(1, "c")
        circuit.wire(GateLibrary.get_gate("X"), [0])
        circuit.rebuild()
        assert circuit.is_updated

        circuit.wire(GateLibrary.get_gate("X"), [0])
        assert not circuit.is_updated
        with pytest.raises(NotUpdatedError):
            circuit.apply_state([1, 0])

        circuit.rebuild()
        handle = circuit.prepend_wiring(Wiring(GateLibrary.get_gate("Z"), [0]))
        assert not circuit.is_updated

        circuit.rebuild()
        circuit.remove_wiring(handle)
        assert not circuit.is_updated

    def test_failed_rebuild_stays_stale(self):
        circuit = Circuit(1, "c")
        circuit.wire(GateLibrary.get_gate("X"), [0])
        circuit.rebuild()
        circuit.wire(Gate(1, "pending"), [0])

        with pytest.raises(GateNotReadyError):
            circuit.rebuild()
        assert circuit.status is CircuitState.STALE
        with pytest.raises(NotUpdatedError):
            circuit.operator

    def test_conflicting_remap_fails_rebuild(self):
        circuit = Circuit(2, "c")
        circuit.wire(GateLibrary.get_gate("CNOT"), [1, 1])
        with pytest.raises(RemapConflictError):
            circuit.rebuild()
        assert not circuit.is_updated

    def test_requires_rebuild(self):
        circuit = Circuit(1, "c")
        with pytest.raises(NotUpdatedError):
            circuit.apply_state([1, 0])
        with pytest.raises(NotUpdatedError):
            circuit.get_state()
        with pytest.raises(NotUpdatedError):
            circuit.collapse(1)


class TestState:
    """Tests for state evolution."""

    def test_apply_and_get(self):
        circuit = Circuit(1, "x")
        circuit.wire(GateLibrary.get_gate("X"), [0])
        circuit.rebuild()

        circuit.apply_state([0.6, 0.8])
        assert np.allclose(circuit.get_state(), [0.8, 0.6])

    def test_get_state_out(self):
        circuit = Circuit(1, "id")
        circuit.rebuild()
        circuit.apply_state([1, 0])

        out = np.empty(2, dtype=np.complex128)
        assert circuit.get_state(out=out) is out
        assert np.allclose(out, [1, 0])

    def test_wrong_state_length(self):
        circuit = Circuit(2, "c")
        circuit.rebuild()
        with pytest.raises(ValueError):
            circuit.apply_state([1, 0])

    def test_unnormalized_state_warns(self, caplog):
        circuit = Circuit(1, "c")
        circuit.rebuild()
        with caplog.at_level("WARNING", logger="qtoolchain.core.circuit"):
            circuit.apply_state([1, 1])
        assert "not normalized" in caplog.text


class TestCollapse:
    """Tests for sticky measurement."""

    def test_bell_correlation(self):
        circuit = Circuit(2, "bell", rng=RandomSource(seed=1234))
        circuit.rebuild()

        outcomes = set()
        for _ in range(200):
            circuit.apply_state(BELL)
            high = circuit.collapse(0b10)
            both = circuit.collapse(0b11)

            assert both in (0b00, 0b11)
            assert both & 0b10 == high
            outcomes.add(both)

        assert outcomes == {0b00, 0b11}

    def test_deterministic_outcome(self):
        circuit = Circuit(2, "c")
        circuit.rebuild()
        circuit.apply_state([0, 0, 1, 0])

        assert circuit.collapse(0b11) == 0b10
        assert circuit.collapsed_mask == 0b11
        assert circuit.measured_bits == 0b10

    def test_measured_qubits_are_sticky(self):
        circuit = Circuit(2, "c", rng=RandomSource(seed=5))
        circuit.rebuild()
        circuit.apply_state([0.5, 0.5, 0.5, 0.5])

        first = circuit.collapse(0b01)
        for _ in range(20):
            assert circuit.collapse(0b01) == first
        assert circuit.collapsed_mask == 0b01

    def test_returns_only_requested_bits(self):
        circuit = Circuit(3, "c")
        circuit.rebuild()
        circuit.apply_state(np.eye(8)[0b101])

        assert circuit.collapse(0b001) == 0b001
        assert circuit.collapse(0b110) == 0b100
        assert circuit.measured_bits == 0b101

    def test_zero_mask(self):
        circuit = Circuit(2, "c")
        circuit.rebuild()
        circuit.apply_state(BELL)
        assert circuit.collapse(0) == 0
        assert circuit.collapsed_mask == 0

    def test_mask_out_of_range(self):
        circuit = Circuit(2, "c")
        circuit.rebuild()
        circuit.apply_state(BELL)
        with pytest.raises(IndexOutOfRangeError):
            circuit.collapse(0b100)

    def test_zero_state(self):
        circuit = Circuit(1, "c")
        circuit.rebuild()
        circuit.apply_state([0, 0])
        with pytest.raises(DegenerateStateError):
            circuit.collapse(1)

    @pytest.mark.parametrize("masks", [
        [0b001, 0b010, 0b100],
        [0b011, 0b110],
        [0b101, 0b101, 0b111],
        [0b111],
    ])
    def test_normalization(self, masks):
        circuit = Circuit(3, "c", rng=RandomSource(seed=7))
        circuit.wire(GateLibrary.get_gate("H"), [1])
        circuit.wire(GateLibrary.get_gate("CNOT"), [1, 2])
        circuit.rebuild()

        for seed in range(10):
            circuit.apply_state(random_state(3, seed))
            for mask in masks:
                circuit.collapse(mask)
                assert np.isclose(consistent_norm(circuit), 1.0)

    def test_get_state_masks_other_branches(self):
        circuit = Circuit(2, "c", rng=RandomSource(seed=3))
        circuit.rebuild()
        circuit.apply_state([0.5, 0.5, 0.5, 0.5])

        bit = circuit.collapse(0b01)
        state = circuit.get_state()
        for index in range(4):
            if index & 1 == bit:
                assert np.isclose(state[index], 1 / np.sqrt(2))
            else:
                assert state[index] == 0

    def test_measure_reset(self):
        circuit = Circuit(1, "c", rng=RandomSource(seed=0))
        circuit.rebuild()
        circuit.apply_state([np.sqrt(0.5), np.sqrt(0.5)])

        circuit.collapse(1)
        circuit.measure_reset()
        assert circuit.collapsed_mask == 0
        assert np.allclose(circuit.get_state(), [np.sqrt(0.5), np.sqrt(0.5)])

    def test_probabilities(self):
        circuit = Circuit(1, "c")
        circuit.rebuild()
        circuit.apply_state([0.6, 0.8])
        assert np.allclose(circuit.probabilities(), [0.36, 0.64])


class TestSampling:
    """Tests for repeated measurement."""

    def test_sample_outcomes_bell(self):
        circuit = Circuit(2, "bell", rng=RandomSource(seed=11))
        circuit.rebuild()
        circuit.apply_state(BELL)

        outcomes = sample_outcomes(circuit, 0b11, 100)
        assert set(outcomes) <= {0b00, 0b11}
        assert circuit.collapsed_mask == 0

    def test_estimate_counts(self):
        circuit = Circuit(2, "bell", rng=RandomSource(seed=12))
        circuit.rebuild()
        circuit.apply_state(BELL)

        counts = estimate_counts(circuit, 0b11, 2000)
        assert set(counts) <= {"00", "11"}
        assert sum(counts.values()) == 2000
        assert abs(counts["00"] / 2000 - 0.5) < 0.05
