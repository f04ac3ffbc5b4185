"""Named lookup of gates and circuits."""

from __future__ import annotations

import logging
from typing import Dict, Iterator, List, Optional

from qtoolchain.core.circuit import Circuit
from qtoolchain.core.gates import Gate
from qtoolchain.exceptions import RegistryError

logger = logging.getLogger(__name__)


class ObjectRegistry:
    """
    Append-only database of gates and circuits, keyed by name.

    Gates and circuits live in separate namespaces. Registration order is
    preserved, which is the order objects are written to object files.
    """

    def __init__(self):
        self._gates: List[Gate] = []
        self._circuits: List[Circuit] = []
        self._gate_index: Dict[str, Gate] = {}
        self._circuit_index: Dict[str, Circuit] = {}

    @property
    def gates(self) -> List[Gate]:
        return list(self._gates)

    @property
    def circuits(self) -> List[Circuit]:
        return list(self._circuits)

    def register_gate(self, gate: Gate) -> None:
        if gate.name in self._gate_index:
            raise RegistryError(f"Gate `{gate.name}' already registered")

        self._gates.append(gate)
        self._gate_index[gate.name] = gate
        logger.debug("Registered gate `%s' (order %d)", gate.name, gate.order)

    def register_circuit(self, circuit: Circuit) -> None:
        if circuit.name in self._circuit_index:
            raise RegistryError(f"Circuit `{circuit.name}' already registered")

        self._circuits.append(circuit)
        self._circuit_index[circuit.name] = circuit
        logger.debug("Registered circuit `%s' (order %d)", circuit.name, circuit.order)

    def lookup_gate(self, name: str) -> Optional[Gate]:
        return self._gate_index.get(name)

    def lookup_circuit(self, name: str) -> Optional[Circuit]:
        return self._circuit_index.get(name)

    def __iter__(self) -> Iterator:
        yield from self._gates
        yield from self._circuits

    def __len__(self) -> int:
        return len(self._gates) + len(self._circuits)

    def __repr__(self) -> str:
        return f"ObjectRegistry(gates={len(self._gates)}, circuits={len(self._circuits)})"
