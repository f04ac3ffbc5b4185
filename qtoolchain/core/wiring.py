"""Binding of a gate to a set of circuit qubits."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Sequence, Tuple

from qtoolchain.core.gates import Gate
from qtoolchain.core.sparse import SparseOperator
from qtoolchain.exceptions import BadRemapError, GateNotReadyError

if TYPE_CHECKING:
    from qtoolchain.core.circuit import Circuit


class Wiring:
    """
    A gate placed on specific qubits of a circuit.

    ``remap[i]`` is the circuit qubit driven by local qubit ``i`` of the
    gate. The gate is shared, not owned: it must outlive the wiring.

    Attributes:
        gate: The wired gate
        prev: Handle of the previous wiring in the owning circuit
        next: Handle of the next wiring in the owning circuit
    """

    def __init__(self, gate: Gate, remap: Optional[Sequence[int]] = None):
        self.gate = gate

        if remap is None:
            remap = [0] * gate.order

        remap = tuple(int(q) for q in remap)
        if len(remap) != gate.order:
            raise BadRemapError(
                f"Gate `{gate.name}' acts on {gate.order} qubits, "
                f"remap has {len(remap)} entries"
            )

        self._remap: Tuple[int, ...] = remap
        self._cached: Optional[SparseOperator] = None
        self._cached_order: Optional[int] = None

        self.handle: Optional[int] = None
        self.prev: Optional[int] = None
        self.next: Optional[int] = None

    @property
    def remap(self) -> Tuple[int, ...]:
        return self._remap

    @property
    def sparse(self) -> Optional[SparseOperator]:
        """Gate expanded into the circuit space, once built."""
        return self._cached

    @property
    def is_linked(self) -> bool:
        return self.handle is not None

    def assert_expanded(self, circuit: Circuit) -> SparseOperator:
        """
        Build (once) the gate operator expanded into ``circuit``'s space.

        Raises:
            GateNotReadyError: If the gate has no sparse view
        """
        if self.gate.sparse is None:
            raise GateNotReadyError(
                f"Cannot expand wiring of uninitialized gate `{self.gate.name}'"
            )

        if self._cached is not None and self._cached_order == circuit.order:
            return self._cached

        self._cached = None
        expanded = self.gate.sparse.expand(circuit.order, self._remap)

        self._cached = expanded
        self._cached_order = circuit.order
        return expanded

    def invalidate(self) -> None:
        """Drop the cached expansion."""
        self._cached = None
        self._cached_order = None

    def __repr__(self) -> str:
        return f"Wiring(gate={self.gate.name!r}, remap={list(self._remap)})"
