"""
Quantum gates for QToolChain.

A :class:`Gate` is a named unitary given as a dense row-major coefficient
table, plus a lazily built :class:`~qtoolchain.core.sparse.SparseOperator`
view of that table. Gate-local qubit ``i`` is bit ``i`` of the table
indices.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional, Sequence

import numpy as np

from qtoolchain.core.sparse import ORDER_MAX, SparseOperator
from qtoolchain.exceptions import GateError, OrderTooLargeError, OutOfMemoryError

logger = logging.getLogger(__name__)


# Common gate matrices
PAULI_I = np.array([[1, 0], [0, 1]], dtype=np.complex128)
PAULI_X = np.array([[0, 1], [1, 0]], dtype=np.complex128)
PAULI_Y = np.array([[0, -1j], [1j, 0]], dtype=np.complex128)
PAULI_Z = np.array([[1, 0], [0, -1]], dtype=np.complex128)
HADAMARD = np.array([[1, 1], [1, -1]], dtype=np.complex128) / np.sqrt(2)
S_GATE = np.array([[1, 0], [0, 1j]], dtype=np.complex128)
T_GATE = np.array([[1, 0], [0, np.exp(1j * np.pi / 4)]], dtype=np.complex128)
SQRT_X = np.array([[1+1j, 1-1j], [1-1j, 1+1j]], dtype=np.complex128) / 2


def rx_matrix(theta: float) -> np.ndarray:
    """Rotation around X-axis: Rx(θ) = exp(-iθX/2)"""
    c, s = np.cos(theta / 2), np.sin(theta / 2)
    return np.array([[c, -1j * s], [-1j * s, c]], dtype=np.complex128)


def ry_matrix(theta: float) -> np.ndarray:
    """Rotation around Y-axis: Ry(θ) = exp(-iθY/2)"""
    c, s = np.cos(theta / 2), np.sin(theta / 2)
    return np.array([[c, -s], [s, c]], dtype=np.complex128)


def rz_matrix(theta: float) -> np.ndarray:
    """Rotation around Z-axis: Rz(θ) = exp(-iθZ/2)"""
    return np.array([
        [np.exp(-1j * theta / 2), 0],
        [0, np.exp(1j * theta / 2)]
    ], dtype=np.complex128)


def u3_matrix(theta: float, phi: float, lam: float) -> np.ndarray:
    """General single-qubit unitary U3(θ, φ, λ)."""
    c, s = np.cos(theta / 2), np.sin(theta / 2)
    return np.array([
        [c, -np.exp(1j * lam) * s],
        [np.exp(1j * phi) * s, np.exp(1j * (phi + lam)) * c]
    ], dtype=np.complex128)


# Two-qubit gates. Local qubit 0 is the least significant index bit, so
# the control of CNOT is local qubit 0 and its target local qubit 1.
CNOT = np.array([
    [1, 0, 0, 0],
    [0, 0, 0, 1],
    [0, 0, 1, 0],
    [0, 1, 0, 0]
], dtype=np.complex128)

CZ = np.array([
    [1, 0, 0, 0],
    [0, 1, 0, 0],
    [0, 0, 1, 0],
    [0, 0, 0, -1]
], dtype=np.complex128)

SWAP = np.array([
    [1, 0, 0, 0],
    [0, 0, 1, 0],
    [0, 1, 0, 0],
    [0, 0, 0, 1]
], dtype=np.complex128)


def _toffoli_matrix() -> np.ndarray:
    # Controls on local qubits 0 and 1, target on local qubit 2
    matrix = np.eye(8, dtype=np.complex128)
    matrix[[3, 7]] = matrix[[7, 3]]
    return matrix


TOFFOLI = _toffoli_matrix()


class Gate:
    """
    Named unitary operator.

    Attributes:
        order: Number of qubits the gate acts on
        name: Identity key of the gate (used to resolve wirings)
        description: Free-form description
        coefficients: Dense row-major table of ``4^order`` coefficients
        sparse: Sparse view of the table, ``None`` until built
    """

    def __init__(
        self,
        order: int,
        name: str,
        description: str = "",
        coefficients: Optional[Sequence[complex]] = None
    ):
        if order < 0:
            raise GateError(f"Gate order must be non-negative, got {order}")
        if order > ORDER_MAX:
            raise OrderTooLargeError(
                f"Gate `{name}' order {order} exceeds maximum order {ORDER_MAX}"
            )

        self._order = order
        self._name = str(name)
        self._description = str(description)
        self.sparse: Optional[SparseOperator] = None
        self._coefficients_set = False

        try:
            self._coefficients = np.zeros(self.table_length, dtype=np.complex128)
        except MemoryError as exc:
            raise OutOfMemoryError(
                f"Memory exhausted while allocating coefficients of gate `{name}'"
            ) from exc

        if coefficients is not None:
            self.set_coefficients(coefficients)

    @classmethod
    def from_matrix(cls, name: str, matrix: np.ndarray, description: str = "") -> Gate:
        """Create a gate from a square dense matrix."""
        matrix = np.asarray(matrix, dtype=np.complex128)
        length = matrix.shape[0] if matrix.ndim == 2 else 0
        order = max(length.bit_length() - 1, 0)
        if length == 0 or matrix.shape != (length, length) or (1 << order) != length:
            raise GateError(
                f"Gate `{name}' needs a square power-of-two matrix, got shape {matrix.shape}"
            )
        return cls(order, name, description, matrix.reshape(-1))

    @property
    def order(self) -> int:
        return self._order

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def length(self) -> int:
        """Matrix side ``2^order``."""
        return 1 << self._order

    @property
    def table_length(self) -> int:
        """Number of dense coefficients, ``2^(2 order)``."""
        return 1 << (self._order << 1)

    @property
    def coefficients(self) -> np.ndarray:
        """Read-only copy of the dense coefficient table."""
        coefficients = self._coefficients.copy()
        coefficients.flags.writeable = False
        return coefficients

    @property
    def matrix(self) -> np.ndarray:
        """Dense ``2^order x 2^order`` matrix of the gate."""
        return self._coefficients.reshape(self.length, self.length).copy()

    @property
    def is_ready(self) -> bool:
        """Whether the sparse view has been built."""
        return self.sparse is not None

    def is_unitary(self, atol: float = 1e-9) -> bool:
        m = self._coefficients.reshape(self.length, self.length)
        return bool(np.allclose(m @ m.conj().T, np.eye(self.length), atol=atol))

    def build_sparse(self) -> SparseOperator:
        """
        Convert the dense table into the sparse view.

        Raises:
            GateError: If the sparse view was already built
        """
        if self.sparse is not None:
            raise GateError(f"Gate `{self._name}' sparse matrix already initialized")

        length = self.length
        sparse = SparseOperator(self._order)

        for index in np.flatnonzero(self._coefficients).tolist():
            row, col = divmod(index, length)
            sparse.set(row, col, self._coefficients[index])

        self.sparse = sparse

        logger.debug(
            "Built sparse view of gate `%s' (order %d, %d non-zeros)",
            self._name, self._order, sparse.nnz,
        )

        return sparse

    def set_coefficients(self, coefficients: Sequence[complex]) -> None:
        """
        Assign the dense table and build the sparse view.

        May only be called once, on a gate created without coefficients.
        """
        if self._coefficients_set or self.sparse is not None:
            raise GateError(f"Cannot set coefficients of gate `{self._name}' twice")

        table = np.asarray(coefficients, dtype=np.complex128).reshape(-1)
        if table.shape[0] != self.table_length:
            raise GateError(
                f"Gate `{self._name}' of order {self._order} needs "
                f"{self.table_length} coefficients, got {table.shape[0]}"
            )

        self._coefficients[:] = table
        self._coefficients_set = True

        try:
            self.build_sparse()
        except Exception:
            self._coefficients_set = False
            self._coefficients[:] = 0
            raise

    def __repr__(self) -> str:
        state = "ready" if self.is_ready else "pending"
        return f"Gate(name={self._name!r}, order={self._order}, {state})"


class GateLibrary:
    """Factories for common gates. Every call returns a fresh :class:`Gate`."""

    _FIXED: Dict[str, tuple] = {
        "I": (PAULI_I, "Identity"),
        "X": (PAULI_X, "Pauli X (NOT)"),
        "Y": (PAULI_Y, "Pauli Y"),
        "Z": (PAULI_Z, "Pauli Z"),
        "H": (HADAMARD, "Hadamard"),
        "S": (S_GATE, "Phase"),
        "SDG": (S_GATE.conj().T, "Inverse phase"),
        "T": (T_GATE, "pi/8"),
        "TDG": (T_GATE.conj().T, "Inverse pi/8"),
        "SX": (SQRT_X, "Square root of X"),
        "CNOT": (CNOT, "Controlled NOT, control on local qubit 0"),
        "CZ": (CZ, "Controlled Z"),
        "SWAP": (SWAP, "Swap"),
        "TOFFOLI": (TOFFOLI, "Controlled-controlled NOT, target on local qubit 2"),
    }

    _ALIASES = {"NOT": "X", "CX": "CNOT", "CCX": "TOFFOLI", "ID": "I"}

    _PARAMETRIC: Dict[str, Callable[..., np.ndarray]] = {
        "RX": rx_matrix,
        "RY": ry_matrix,
        "RZ": rz_matrix,
        "U3": u3_matrix,
    }

    @classmethod
    def names(cls) -> list:
        return sorted(cls._FIXED) + sorted(cls._PARAMETRIC)

    @classmethod
    def get_gate(cls, name: str, *params: float, gate_name: Optional[str] = None) -> Gate:
        """
        Build a standard gate by name.

        Args:
            name: Library name (case-insensitive), e.g. ``"H"`` or ``"RX"``
            params: Angles for parametric gates
            gate_name: Name of the created gate (defaults to ``name``)
        """
        key = name.upper()
        key = cls._ALIASES.get(key, key)

        if key in cls._FIXED:
            if params:
                raise ValueError(f"Gate {name} takes no parameters")
            matrix, description = cls._FIXED[key]
        elif key in cls._PARAMETRIC:
            matrix = cls._PARAMETRIC[key](*params)
            description = f"{key}({', '.join(f'{p:g}' for p in params)})"
        else:
            raise ValueError(f"Unknown gate: {name}")

        return Gate.from_matrix(gate_name or name, matrix, description)
