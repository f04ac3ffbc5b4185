"""
Sparse quantum operators for QToolChain.

A :class:`SparseOperator` is a ``2^order x 2^order`` complex matrix. Every
row tracks its non-zero columns in a bitmap of 64-bit words and stores its
coefficients in a single contiguous window ``[start, start + size)`` whose
start and size are aligned to powers of two. Growing a window means
reallocating and copying, so aligning both ends bounds how often that happens
at the cost of a few wasted cells.

Row and column non-zero counters let multiplication and vector application
skip empty rows and columns without touching their storage.
"""

from __future__ import annotations

import logging
from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np
from scipy import sparse

from qtoolchain.exceptions import (
    BadRemapError,
    IndexOutOfRangeError,
    OrderMismatchError,
    OrderTooLargeError,
    OutOfMemoryError,
    RemapConflictError,
    RemapOutOfRangeError,
)
from qtoolchain.utils.bits import iter_bits, scatter_bits

logger = logging.getLogger(__name__)

# Dense worst cases (determinant, multiplication) grow fast with the order
ORDER_MAX = 8

WORD_BITS = 64
WORD_SHIFT = 6
WORD_MASK = WORD_BITS - 1


def aligned_window(start: int, size: int) -> Tuple[int, int]:
    """
    Round a column run up to a power-of-two block layout.

    The size is rounded up to the next power of two and the start is
    aligned down to a multiple of that size. If the aligned block no longer
    reaches the end of the run, the size is doubled once more.

    Args:
        start: First column of the run
        size: Number of columns in the run

    Returns:
        Tuple of (aligned start, aligned size)
    """
    rounded_size = 1
    while size > rounded_size:
        rounded_size <<= 1

    rounded_start = (start // rounded_size) * rounded_size

    if rounded_start + rounded_size < start + size:
        rounded_size <<= 1

    return rounded_start, rounded_size


class _SparseRow:
    """Coefficient window plus non-zero bitmap of one operator row."""

    __slots__ = ("coef", "start", "size", "words")

    def __init__(self, num_words: int):
        self.coef: Optional[np.ndarray] = None
        self.start = 0
        self.size = 0
        self.words = [0] * num_words

    def has(self, col: int) -> bool:
        return bool((self.words[col >> WORD_SHIFT] >> (col & WORD_MASK)) & 1)

    def mark(self, col: int) -> None:
        self.words[col >> WORD_SHIFT] |= 1 << (col & WORD_MASK)

    def unmark(self, col: int) -> None:
        self.words[col >> WORD_SHIFT] &= ~(1 << (col & WORD_MASK))

    def mask(self) -> int:
        """Whole-row bitmap as a single integer."""
        result = 0
        for i, word in enumerate(self.words):
            result |= word << (i * WORD_BITS)
        return result

    def columns(self) -> Iterator[int]:
        for i, word in enumerate(self.words):
            base = i * WORD_BITS
            for bit in iter_bits(word):
                yield base + bit

    def in_window(self, col: int) -> bool:
        return self.coef is not None and self.start <= col < self.start + self.size

    def copy(self) -> _SparseRow:
        dup = _SparseRow(len(self.words))
        dup.coef = None if self.coef is None else self.coef.copy()
        dup.start = self.start
        dup.size = self.size
        dup.words = list(self.words)
        return dup


class _NonZeroView:
    """Restartable view over the ``(row, col)`` pairs of non-zero cells."""

    def __init__(self, operator: SparseOperator):
        self._operator = operator

    def __iter__(self) -> Iterator[Tuple[int, int]]:
        op = self._operator
        for i, row in enumerate(op._rows):
            if op.row_nz[i] == 0:
                continue
            for col in row.columns():
                yield i, col

    def __len__(self) -> int:
        return self._operator.nnz


class SparseOperator:
    """
    Bitmap-indexed sparse complex matrix acting on ``order`` qubits.

    Bit ``k`` of a row or column index is the value of qubit ``k``.

    Attributes:
        order: Number of qubits; the dimension is ``2^order``
        row_nz: Number of non-zero cells of every row
        col_nz: Number of non-zero cells of every column
    """

    def __init__(self, order: int):
        if order < 0:
            raise ValueError(f"Operator order must be non-negative, got {order}")

        length = 1 << order

        if order > ORDER_MAX:
            raise OrderTooLargeError(
                f"Sparse operator order {order} ({length}x{length}) too big "
                f"(maximum order is {ORDER_MAX})"
            )

        self.order = order

        try:
            self.row_nz = np.zeros(length, dtype=np.int64)
            self.col_nz = np.zeros(length, dtype=np.int64)
            num_words = max(1, length >> WORD_SHIFT)
            self._rows = [_SparseRow(num_words) for _ in range(length)]
        except MemoryError as exc:
            raise OutOfMemoryError(
                f"Memory exhausted while allocating {length}x{length} operator"
            ) from exc

    @classmethod
    def identity(cls, order: int) -> SparseOperator:
        """Identity operator on ``order`` qubits."""
        eye = cls(order)
        for i in range(eye.length):
            eye.set(i, i, 1.0)
        return eye

    @classmethod
    def from_dense(cls, matrix: np.ndarray) -> SparseOperator:
        """Build an operator from a square dense matrix of side ``2^order``."""
        matrix = np.asarray(matrix, dtype=np.complex128)
        if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
            raise ValueError(f"Expected a square matrix, got shape {matrix.shape}")

        length = matrix.shape[0]
        order = length.bit_length() - 1
        if length == 0 or (1 << order) != length:
            raise ValueError(f"Matrix side must be a power of two, got {length}")

        op = cls(order)
        rows, cols = np.nonzero(matrix)
        for row, col in zip(rows.tolist(), cols.tolist()):
            op.set(row, col, matrix[row, col])
        return op

    @property
    def length(self) -> int:
        """Matrix dimension ``2^order``."""
        return 1 << self.order

    @property
    def words_per_row(self) -> int:
        return len(self._rows[0].words)

    @property
    def nnz(self) -> int:
        """Total number of non-zero cells."""
        return int(self.row_nz.sum())

    def row_count(self, row: int) -> int:
        return int(self.row_nz[row])

    def col_count(self, col: int) -> int:
        return int(self.col_nz[col])

    def row_bitmap(self, row: int) -> Tuple[int, ...]:
        """Non-zero bitmap words of ``row``, least significant columns first."""
        return tuple(self._rows[row].words)

    def row_window(self, row: int) -> Tuple[int, int]:
        """Allocated column window ``(start, size)`` of ``row``; size 0 if none."""
        row_obj = self._rows[row]
        if row_obj.coef is None:
            return 0, 0
        return row_obj.start, row_obj.size

    def is_nonzero(self, row: int, col: int) -> bool:
        if not (0 <= row < self.length and 0 <= col < self.length):
            return False
        return self._rows[row].has(col)

    def get(self, row: int, col: int) -> complex:
        """
        Return the coefficient at ``(row, col)``.

        Indices outside the matrix, and columns outside the row's
        allocated window, read as zero.
        """
        if row < 0 or row >= self.length:
            return 0j

        row_obj = self._rows[row]
        if not row_obj.in_window(col):
            return 0j

        return complex(row_obj.coef[col - row_obj.start])

    def set(self, row: int, col: int, value: complex) -> None:
        """
        Store ``value`` at ``(row, col)``.

        Zero values never allocate: writing zero into an empty row or
        outside the row's window does nothing. Non-zero values outside the
        window grow it to the aligned block covering both.

        Raises:
            IndexOutOfRangeError: If ``row`` or ``col`` is outside the matrix
            OutOfMemoryError: If the row window cannot be grown
        """
        length = self.length

        if not (0 <= row < length and 0 <= col < length):
            raise IndexOutOfRangeError(
                f"Coefficient indices ({row}, {col}) out of bounds for "
                f"{length}x{length} operator"
            )

        value = complex(value)
        is_zero = value == 0
        row_obj = self._rows[row]

        if row_obj.coef is None:
            if is_zero:
                return

            row_obj.coef = np.zeros(1, dtype=np.complex128)
            row_obj.start = col
            row_obj.size = 1
        elif not row_obj.in_window(col):
            if is_zero:
                return

            if col < row_obj.start:
                new_start, new_size = aligned_window(
                    col, row_obj.size + row_obj.start - col
                )
            else:
                new_start, new_size = aligned_window(
                    row_obj.start, col - row_obj.start + 1
                )

            try:
                grown = np.zeros(new_size, dtype=np.complex128)
            except MemoryError as exc:
                raise OutOfMemoryError(
                    f"Memory exhausted while growing row {row} to {new_size} elements"
                ) from exc

            offset = row_obj.start - new_start
            grown[offset:offset + row_obj.size] = row_obj.coef

            row_obj.coef = grown
            row_obj.start = new_start
            row_obj.size = new_size

        row_obj.coef[col - row_obj.start] = value

        present = row_obj.has(col)
        if is_zero and present:
            row_obj.unmark(col)
            self.row_nz[row] -= 1
            self.col_nz[col] -= 1
        elif not is_zero and not present:
            row_obj.mark(col)
            self.row_nz[row] += 1
            self.col_nz[col] += 1

    def nonzero(self) -> _NonZeroView:
        """
        Non-zero cells as ``(row, col)`` pairs.

        Pairs come in row-major, ascending-column order. The returned view
        can be iterated any number of times.
        """
        return _NonZeroView(self)

    def items(self) -> Iterator[Tuple[int, int, complex]]:
        """Iterate over ``(row, col, value)`` of the non-zero cells."""
        for row, col in self.nonzero():
            yield row, col, self.get(row, col)

    def det(self) -> complex:
        """
        Determinant by cofactor expansion.

        Runs in exponential time; only meant for the small operators this
        class is limited to.
        """
        try:
            available = (1 << self.length) - 1
            return self._det(available, self.length)
        except MemoryError as exc:
            raise OutOfMemoryError(
                "Memory exhausted when computing determinant"
            ) from exc

    def _det(self, available: int, n: int) -> complex:
        # Minors always use the last n rows and the columns left in `available`
        length = self.length
        cols = list(iter_bits(available))

        if n == 1:
            return self.get(length - 1, cols[0])

        if n == 2:
            c1, c2 = cols
            return (self.get(length - 2, c1) * self.get(length - 1, c2)
                    - self.get(length - 2, c2) * self.get(length - 1, c1))

        row = length - n
        row_obj = self._rows[row]
        det = 0j

        for rank, col in enumerate(cols):
            if not row_obj.has(col):
                continue
            sign = -1 if rank & 1 else 1
            det += sign * self.get(row, col) * self._det(available & ~(1 << col), n - 1)

        return det

    def expand(self, order: int, remap: Sequence[int]) -> SparseOperator:
        """
        Embed this operator into a larger qubit space.

        Source qubit ``i`` becomes qubit ``remap[i]`` of the result; the
        qubits no source maps to are free and the result acts on them as
        the identity (a tensor product with the identity, permuted into
        place).

        Args:
            order: Qubit count of the destination space
            remap: Destination qubit of every source qubit

        Returns:
            New operator of the given order

        Raises:
            OrderMismatchError: If ``order`` is smaller than this operator's
            BadRemapError: If ``remap`` does not have one entry per qubit
            RemapOutOfRangeError: If a destination is ``>= order``
            RemapConflictError: If two sources share a destination
        """
        if order < self.order:
            raise OrderMismatchError(
                f"Cannot expand order {self.order} operator to lower order {order}"
            )

        remap = [int(target) for target in remap]
        if len(remap) != self.order:
            raise BadRemapError(
                f"Remap has {len(remap)} entries, operator has {self.order} qubits"
            )

        used = 0
        for i, target in enumerate(remap):
            if target < 0 or target >= order:
                raise RemapOutOfRangeError(
                    f"Index remap out of bounds ({i} -> {target})"
                )
            if (used >> target) & 1:
                raise RemapConflictError(
                    f"Index remapped to the same qubit twice ({i} -> {target})"
                )
            used |= 1 << target

        free_qubits = [q for q in range(order) if not (used >> q) & 1]
        offsets = [scatter_bits(i, free_qubits) for i in range(1 << len(free_qubits))]

        expanded = SparseOperator(order)

        for row, col in self.nonzero():
            value = self.get(row, col)
            mapped_row = scatter_bits(row, remap)
            mapped_col = scatter_bits(col, remap)

            for offset in offsets:
                expanded.set(mapped_row | offset, mapped_col | offset, value)

        logger.debug(
            "Expanded order %d operator (%d non-zeros) to order %d with remap %s",
            self.order, self.nnz, order, remap,
        )

        return expanded

    def _column_masks(self) -> List[int]:
        masks = [0] * self.length
        for row, col in self.nonzero():
            masks[col] |= 1 << row
        return masks

    def multiply(self, other: SparseOperator) -> SparseOperator:
        """
        Matrix product ``self @ other``.

        Only columns of ``other`` and rows of ``self`` holding non-zeros are
        visited, and each dot product only runs over the indices where both
        factors are non-zero.
        """
        if self.order != other.order:
            raise OrderMismatchError(
                f"Operator order mismatch ({self.order} != {other.order})"
            )

        length = self.length
        result = SparseOperator(self.order)

        row_masks = [row.mask() for row in self._rows]
        col_masks = other._column_masks()

        for j in range(length):
            if other.col_nz[j] == 0:
                continue

            col_mask = col_masks[j]

            for i in range(length):
                if self.row_nz[i] == 0:
                    continue

                common = row_masks[i] & col_mask
                if not common:
                    continue

                prod = 0j
                for k in iter_bits(common):
                    prod += self.get(i, k) * other.get(k, j)

                result.set(i, j, prod)

        return result

    def mul_vec(self, x: np.ndarray, out: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Apply the operator to an amplitude vector.

        Args:
            x: Vector of ``2^order`` amplitudes
            out: Optional destination array

        Returns:
            The vector ``self @ x``
        """
        x = np.asarray(x, dtype=np.complex128)
        length = self.length

        if x.shape != (length,):
            raise ValueError(f"Expected vector of length {length}, got shape {x.shape}")

        y = np.zeros(length, dtype=np.complex128)

        for i, row_obj in enumerate(self._rows):
            if self.row_nz[i] == 0:
                continue

            prod = 0j
            for col in row_obj.columns():
                prod += x[col] * row_obj.coef[col - row_obj.start]
            y[i] = prod

        if out is not None:
            out[:] = y
            return out

        return y

    def __mul__(self, other: SparseOperator) -> SparseOperator:
        if not isinstance(other, SparseOperator):
            return NotImplemented
        return self.multiply(other)

    def __matmul__(self, other):
        if isinstance(other, SparseOperator):
            return self.multiply(other)
        return self.mul_vec(other)

    def copy(self) -> SparseOperator:
        dup = SparseOperator(self.order)
        dup.row_nz = self.row_nz.copy()
        dup.col_nz = self.col_nz.copy()
        dup._rows = [row.copy() for row in self._rows]
        return dup

    def to_dense(self) -> np.ndarray:
        dense = np.zeros((self.length, self.length), dtype=np.complex128)
        for row, col, value in self.items():
            dense[row, col] = value
        return dense

    def to_scipy_sparse(self) -> sparse.csr_matrix:
        """Convert to a scipy CSR matrix."""
        rows = []
        cols = []
        data = []

        for row, col, value in self.items():
            rows.append(row)
            cols.append(col)
            data.append(value)

        return sparse.csr_matrix(
            (np.asarray(data, dtype=np.complex128), (rows, cols)),
            shape=(self.length, self.length)
        )

    def allclose(self, other: SparseOperator, atol: float = 1e-12) -> bool:
        """Cell-wise comparison within an absolute tolerance."""
        if self.order != other.order:
            return False
        return bool(np.allclose(self.to_dense(), other.to_dense(), rtol=0.0, atol=atol))

    def __eq__(self, other) -> bool:
        if not isinstance(other, SparseOperator):
            return NotImplemented
        if self.order != other.order:
            return False
        return list(self.items()) == list(other.items())

    __hash__ = None

    def __repr__(self) -> str:
        return f"SparseOperator(order={self.order}, nnz={self.nnz})"
