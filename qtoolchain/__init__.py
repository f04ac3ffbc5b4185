"""
QToolChain - sparse quantum circuit simulator

Gates are wired onto qubits of a circuit, composed into a sparse unitary
and applied to state vectors, which can then be measured qubit by qubit.
"""

from qtoolchain.core.sparse import SparseOperator
from qtoolchain.core.gates import Gate, GateLibrary
from qtoolchain.core.wiring import Wiring
from qtoolchain.core.circuit import Circuit, CircuitState
from qtoolchain.compiler.registry import ObjectRegistry
from qtoolchain.compiler.assembler import Assembler, assemble_file, assemble_string
from qtoolchain.config import Config, DEFAULT_CONFIG

__version__ = "0.1.0"
__all__ = [
    "SparseOperator",
    "Gate",
    "GateLibrary",
    "Wiring",
    "Circuit",
    "CircuitState",
    "ObjectRegistry",
    "Assembler",
    "assemble_file",
    "assemble_string",
    "Config",
    "DEFAULT_CONFIG",
]
