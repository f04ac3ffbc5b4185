"""Core QToolChain components: sparse operators, gates, wirings and circuits."""

from qtoolchain.core.sparse import SparseOperator, ORDER_MAX
from qtoolchain.core.gates import Gate, GateLibrary
from qtoolchain.core.wiring import Wiring
from qtoolchain.core.circuit import Circuit, CircuitState

__all__ = [
    # Operators
    "SparseOperator",
    "ORDER_MAX",
    # Gates
    "Gate",
    "GateLibrary",
    # Circuits
    "Wiring",
    "Circuit",
    "CircuitState",
]
