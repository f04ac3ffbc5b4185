"""
Quantum circuits for QToolChain.

A :class:`Circuit` holds an ordered chain of :class:`Wiring` objects, the
unitary they compose to, the state vector it was last applied to, and a
sticky measurement record. Measured qubits stay measured: later collapses
only draw randomness for qubits that were not fixed yet, until
:meth:`Circuit.measure_reset` or a new :meth:`Circuit.apply_state`.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Iterator, List, Optional, Sequence

import numpy as np

from qtoolchain.config import DEFAULT_CONFIG, Config
from qtoolchain.core.gates import Gate
from qtoolchain.core.sparse import ORDER_MAX, SparseOperator
from qtoolchain.core.wiring import Wiring
from qtoolchain.exceptions import (
    BadRemapError,
    DegenerateStateError,
    IndexOutOfRangeError,
    NotUpdatedError,
    OrderTooLargeError,
    OutOfMemoryError,
)
from qtoolchain.observables.sampler import RandomSource, sample_index
from qtoolchain.utils.bits import bit_positions, scatter_bits

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Validity of a circuit's composed operator."""
    STALE = "stale"
    REBUILDING = "rebuilding"
    FRESH = "fresh"


class Circuit:
    """
    Ordered chain of wirings acting on ``order`` qubits.

    Wirings live in an arena of slots addressed by integer handles; a
    removed wiring's slot is reused by the next insertion.

    Attributes:
        order: Number of qubits
        name: Circuit name
        config: Configuration (norm tolerance, random seed)
        rng: Random source used by :meth:`collapse`
    """

    def __init__(
        self,
        order: int,
        name: str,
        config: Optional[Config] = None,
        rng: Optional[RandomSource] = None
    ):
        if order < 0:
            raise ValueError(f"Circuit order must be non-negative, got {order}")
        if order > ORDER_MAX:
            raise OrderTooLargeError(
                f"Circuit `{name}' order {order} exceeds maximum order {ORDER_MAX}"
            )

        self.order = order
        self.name = str(name)
        self.config = config or DEFAULT_CONFIG
        self.rng = rng if rng is not None else RandomSource.from_config(self.config)

        self._slots: List[Optional[Wiring]] = []
        self._free: List[int] = []
        self.head: Optional[int] = None
        self.tail: Optional[int] = None
        self._count = 0

        self._operator: Optional[SparseOperator] = None
        self.status = CircuitState.STALE

        try:
            self._state = np.zeros(1 << order, dtype=np.complex128)
            self._collapsed = np.zeros(1 << order, dtype=np.complex128)
        except MemoryError as exc:
            raise OutOfMemoryError(
                f"Memory exhausted while allocating state of circuit `{name}'"
            ) from exc

        self._collapsed_mask = 0
        self._measured_bits = 0

    @property
    def length(self) -> int:
        """State vector length ``2^order``."""
        return 1 << self.order

    @property
    def is_updated(self) -> bool:
        return self.status is CircuitState.FRESH

    @property
    def operator(self) -> SparseOperator:
        """The composed unitary."""
        self._require_fresh("read operator of")
        return self._operator

    @property
    def collapsed_mask(self) -> int:
        """Qubits fixed by measurements since the last reset."""
        return self._collapsed_mask

    @property
    def measured_bits(self) -> int:
        """Outcome of the fixed qubits (only bits of ``collapsed_mask`` set)."""
        return self._measured_bits

    # Wiring chain

    def _check_remap(self, wiring: Wiring) -> None:
        if wiring.is_linked:
            raise ValueError(f"{wiring!r} is already part of a circuit")

        for i, target in enumerate(wiring.remap):
            if target < 0 or target >= self.order:
                raise BadRemapError(
                    f"Wiring of gate `{wiring.gate.name}' maps qubit {i} to {target}, "
                    f"circuit `{self.name}' has {self.order} qubits"
                )

    def _allocate(self, wiring: Wiring) -> int:
        if self._free:
            handle = self._free.pop()
            self._slots[handle] = wiring
        else:
            handle = len(self._slots)
            self._slots.append(wiring)

        wiring.handle = handle
        self._count += 1
        return handle

    def _invalidate(self) -> None:
        self._operator = None
        self.status = CircuitState.STALE

    def append_wiring(self, wiring: Wiring) -> int:
        """
        Link a wiring at the end of the chain.

        Returns:
            Handle of the wiring within this circuit

        Raises:
            BadRemapError: If the wiring targets a qubit outside the circuit
        """
        self._check_remap(wiring)
        handle = self._allocate(wiring)

        wiring.prev = self.tail
        wiring.next = None

        if self.tail is None:
            self.head = handle
        else:
            self._slots[self.tail].next = handle

        self.tail = handle
        self._invalidate()
        return handle

    def prepend_wiring(self, wiring: Wiring) -> int:
        """Link a wiring at the start of the chain; see :meth:`append_wiring`."""
        self._check_remap(wiring)
        handle = self._allocate(wiring)

        wiring.prev = None
        wiring.next = self.head

        if self.head is None:
            self.tail = handle
        else:
            self._slots[self.head].prev = handle

        self.head = handle
        self._invalidate()
        return handle

    def wire(self, gate: Gate, remap: Sequence[int]) -> int:
        """Create a wiring of ``gate`` onto ``remap`` and append it."""
        return self.append_wiring(Wiring(gate, remap))

    def get_wiring(self, handle: int) -> Wiring:
        if not 0 <= handle < len(self._slots) or self._slots[handle] is None:
            raise IndexOutOfRangeError(
                f"No wiring with handle {handle} in circuit `{self.name}'"
            )
        return self._slots[handle]

    def remove_wiring(self, handle: int) -> Wiring:
        """Unlink a wiring and free its slot."""
        wiring = self.get_wiring(handle)

        if wiring.prev is None:
            self.head = wiring.next
        else:
            self._slots[wiring.prev].next = wiring.next

        if wiring.next is None:
            self.tail = wiring.prev
        else:
            self._slots[wiring.next].prev = wiring.prev

        self._slots[handle] = None
        self._free.append(handle)
        self._count -= 1

        wiring.handle = wiring.prev = wiring.next = None
        wiring.invalidate()

        self._invalidate()
        return wiring

    def __iter__(self) -> Iterator[Wiring]:
        handle = self.head
        while handle is not None:
            wiring = self._slots[handle]
            yield wiring
            handle = wiring.next

    def __len__(self) -> int:
        return self._count

    # Evolution

    def rebuild(self) -> SparseOperator:
        """
        Compose the wirings into the circuit unitary.

        Wirings apply head first, so each one multiplies the running product
        from the left. On failure the circuit stays stale.
        """
        self._invalidate()
        self.status = CircuitState.REBUILDING

        try:
            unitary = SparseOperator.identity(self.order)
            for wiring in self:
                unitary = wiring.assert_expanded(self) * unitary
        except Exception:
            self.status = CircuitState.STALE
            raise

        self._operator = unitary
        self.status = CircuitState.FRESH

        logger.debug(
            "Rebuilt circuit `%s' (%d wirings, %d non-zeros)",
            self.name, self._count, unitary.nnz,
        )

        return unitary

    def _require_fresh(self, action: str) -> None:
        if self.status is not CircuitState.FRESH:
            raise NotUpdatedError(
                f"Cannot {action} circuit `{self.name}': circuit was not updated"
            )

    def apply_state(self, psi: Sequence[complex]) -> np.ndarray:
        """
        Evolve ``psi`` through the circuit and reset the measurement record.

        Returns:
            The evolved state (a copy)
        """
        self._require_fresh("apply state to")

        psi = np.asarray(psi, dtype=np.complex128)
        if psi.shape != (self.length,):
            raise ValueError(
                f"Circuit `{self.name}' needs a state of length {self.length}, "
                f"got shape {psi.shape}"
            )

        norm = float(np.vdot(psi, psi).real)
        if abs(norm - 1.0) > self.config.norm_tolerance:
            logger.warning(
                "State applied to circuit `%s' is not normalized (squared norm %g)",
                self.name, norm,
            )

        self._operator.mul_vec(psi, out=self._state)
        self.measure_reset()
        return self._state.copy()

    def measure_reset(self) -> None:
        """Forget all measurements since the last applied state."""
        self._collapsed[:] = self._state
        self._collapsed_mask = 0
        self._measured_bits = 0

    def _consistent(self) -> np.ndarray:
        indices = np.arange(self.length)
        return (indices & self._collapsed_mask) == self._measured_bits

    def get_state(self, out: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Current state, with amplitudes ruled out by measurements zeroed.

        Args:
            out: Optional destination array of length ``2^order``
        """
        self._require_fresh("read state of")

        result = np.where(self._consistent(), self._collapsed, 0)

        if out is not None:
            out[:] = result
            return out

        return result

    def probabilities(self) -> np.ndarray:
        """Born-rule probabilities of the current state."""
        return np.abs(self.get_state()) ** 2

    def collapse(self, qubit_mask: int) -> int:
        """
        Measure the qubits set in ``qubit_mask``.

        Qubits measured earlier keep their outcome and draw no randomness.
        The surviving branch is renormalized to unit norm.

        Args:
            qubit_mask: Bit ``k`` set to measure qubit ``k``

        Returns:
            Outcome bits of the requested qubits

        Raises:
            NotUpdatedError: If the circuit is not rebuilt
            IndexOutOfRangeError: If the mask names a qubit outside the circuit
            DegenerateStateError: If the state has no weight left to measure
        """
        self._require_fresh("collapse")

        qubit_mask = int(qubit_mask)
        if qubit_mask < 0 or qubit_mask >> self.order:
            raise IndexOutOfRangeError(
                f"Measurement mask {qubit_mask:#x} out of range for "
                f"{self.order}-qubit circuit `{self.name}'"
            )

        new_mask = qubit_mask & ~self._collapsed_mask
        if new_mask == 0:
            return self._measured_bits & qubit_mask

        full_mask = self.length - 1
        measure_qubits = bit_positions(new_mask, self.order)
        free_qubits = bit_positions(full_mask & ~(new_mask | self._collapsed_mask), self.order)

        candidates = np.array(
            [scatter_bits(c, measure_qubits) for c in range(1 << len(measure_qubits))],
            dtype=np.int64
        )
        offsets = np.array(
            [scatter_bits(f, free_qubits) for f in range(1 << len(free_qubits))],
            dtype=np.int64
        )

        # indices[c, f]: basis state of candidate c with free assignment f
        indices = self._measured_bits | candidates[:, None] | offsets[None, :]
        weights = np.abs(self._collapsed[indices]) ** 2
        probs = weights.sum(axis=1)
        total = float(probs.sum())

        if total <= 0.0:
            raise DegenerateStateError(
                f"Cannot collapse circuit `{self.name}': state has zero norm"
            )

        choice = sample_index(probs / total, self.rng)

        self._measured_bits |= int(candidates[choice])
        self._collapsed_mask |= new_mask
        self._collapsed[indices[choice]] /= np.sqrt(probs[choice])

        logger.debug(
            "Collapsed qubits %#x of circuit `%s' to %#x (p=%.6g)",
            new_mask, self.name, int(candidates[choice]), probs[choice] / total,
        )

        return self._measured_bits & qubit_mask

    def __repr__(self) -> str:
        return (
            f"Circuit(name={self.name!r}, order={self.order}, "
            f"wirings={self._count}, {self.status.value})"
        )
