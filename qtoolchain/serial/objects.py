"""
Wire formats of operators, gates, wirings and circuits.

Every object has a ``write_*`` function appending it to a
:class:`SerialBuffer`, a ``read_*`` function consuming it, and
``serialize_*`` / ``deserialize_*`` wrappers working on plain bytes.
Writers follow the buffer's measure-then-write convention: passing a
buffer with no storage returns the encoded size.

Wirings store the name of their gate rather than the gate itself; reading
them needs a registry that resolves gate names (see
:class:`qtoolchain.compiler.registry.ObjectRegistry`).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, List, Optional, TypeVar

from qtoolchain.config import Config
from qtoolchain.core.circuit import Circuit
from qtoolchain.core.gates import Gate
from qtoolchain.core.sparse import ORDER_MAX, WORD_BITS, SparseOperator
from qtoolchain.core.wiring import Wiring
from qtoolchain.exceptions import BadRemapError, MalformedInputError, TruncatedInputError
from qtoolchain.observables.sampler import RandomSource
from qtoolchain.serial.buffer import SerialBuffer

if TYPE_CHECKING:
    from qtoolchain.compiler.registry import ObjectRegistry

T = TypeVar("T")

WORD_SIZE = WORD_BITS // 8


def _check_order(order: int, what: str) -> None:
    if order > ORDER_MAX:
        raise MalformedInputError(
            f"Malformed {what}: order {order} exceeds maximum order {ORDER_MAX}"
        )


def measure(writer: Callable[[SerialBuffer, T], int], obj: T) -> int:
    """Encoded size of ``obj`` under ``writer``."""
    return writer(SerialBuffer(), obj)


def _to_bytes(writer: Callable[[SerialBuffer, T], int], obj: T) -> bytes:
    buf = SerialBuffer.allocate(measure(writer, obj))
    writer(buf, obj)
    return buf.getvalue()


# Sparse operators

def write_operator(buf: SerialBuffer, op: SparseOperator) -> int:
    """
    Append ``op`` to ``buf``.

    Layout: total length, order, bitmap of non-empty rows, column bitmap of
    every non-empty row, then the non-zero coefficients in row-major order.
    All bitmaps are 64-bit words. The length prefix is patched in last.

    Returns:
        Number of bytes the operator takes
    """
    start = buf.tell()
    length = op.length
    num_words = op.words_per_row

    # Length placeholder
    buf.advance(4)
    buf.write_u32(op.order)

    row_words = [0] * num_words
    for row in range(length):
        if op.row_count(row):
            row_words[row // WORD_BITS] |= 1 << (row % WORD_BITS)

    for word in row_words:
        buf.write_u64(word)

    for row in range(length):
        if op.row_count(row):
            for word in op.row_bitmap(row):
                buf.write_u64(word)

    buf.write_complex_array([value for _, _, value in op.items()])

    size = buf.tell() - start
    buf.patch_u32(start, size)
    return size


def read_operator(buf: SerialBuffer) -> SparseOperator:
    """
    Consume an operator from ``buf``.

    Raises:
        TruncatedInputError: If the buffer ends before the operator
        MalformedInputError: If the encoding is inconsistent
    """
    start = buf.tell()
    total = buf.read_u32("operator length")

    if total > buf.remaining + 4:
        raise TruncatedInputError(
            f"Truncated input: operator needs {total} bytes, "
            f"{buf.remaining + 4} available"
        )

    order = buf.read_u32("operator order")
    _check_order(order, "operator")

    op = SparseOperator(order)
    length = op.length
    num_words = op.words_per_row

    buf.ensure(num_words * WORD_SIZE, "row allocation bitmap")
    row_mask = 0
    for i in range(num_words):
        row_mask |= buf.read_u64() << (i * WORD_BITS)

    if row_mask >> length:
        raise MalformedInputError("Malformed operator: row bitmap marks rows beyond the matrix")

    cells = []
    for row in range(length):
        if not (row_mask >> row) & 1:
            continue

        buf.ensure(num_words * WORD_SIZE, f"column bitmap of row {row}")
        col_mask = 0
        for i in range(num_words):
            col_mask |= buf.read_u64() << (i * WORD_BITS)

        if col_mask == 0:
            raise MalformedInputError(f"Malformed operator: row {row} marked but empty")
        if col_mask >> length:
            raise MalformedInputError(
                f"Malformed operator: row {row} marks columns beyond the matrix"
            )

        cells.extend((row, col) for col in range(length) if (col_mask >> col) & 1)

    values = buf.read_complex_array(len(cells), "operator coefficients")

    for (row, col), value in zip(cells, values.tolist()):
        if value == 0:
            raise MalformedInputError(
                f"Malformed operator: zero coefficient at marked cell ({row}, {col})"
            )
        op.set(row, col, value)

    if buf.tell() - start != total:
        raise MalformedInputError(
            f"Malformed operator: length prefix {total} does not match "
            f"encoded size {buf.tell() - start}"
        )

    return op


def serialize_operator(op: SparseOperator) -> bytes:
    return _to_bytes(write_operator, op)


def deserialize_operator(data: bytes) -> SparseOperator:
    return read_operator(SerialBuffer(data))


# Gates

def write_gate(buf: SerialBuffer, gate: Gate) -> int:
    """Append ``gate`` as order, name, description and dense table."""
    start = buf.tell()
    buf.write_u32(gate.order)
    buf.write_string(gate.name)
    buf.write_string(gate.description)
    buf.write_complex_array(gate.coefficients)
    return buf.tell() - start


def read_gate(buf: SerialBuffer) -> Gate:
    order = buf.read_u32("gate order")
    _check_order(order, "gate")

    name = buf.read_string("gate name")
    description = buf.read_string("gate description")
    coefficients = buf.read_complex_array(1 << (order << 1), f"coefficients of gate `{name}'")

    return Gate(order, name, description, coefficients)


def serialize_gate(gate: Gate) -> bytes:
    return _to_bytes(write_gate, gate)


def deserialize_gate(data: bytes) -> Gate:
    return read_gate(SerialBuffer(data))


# Wirings

def write_wiring(buf: SerialBuffer, wiring: Wiring) -> int:
    """Append ``wiring`` as gate order, gate name and remap."""
    start = buf.tell()
    buf.write_u32(wiring.gate.order)
    buf.write_string(wiring.gate.name)
    for target in wiring.remap:
        buf.write_u32(target)
    return buf.tell() - start


def read_wiring(buf: SerialBuffer, registry: ObjectRegistry) -> Wiring:
    """
    Consume a wiring, resolving its gate through ``registry``.

    Raises:
        MalformedInputError: If the gate is unknown or its order differs
    """
    order = buf.read_u32("wiring order")
    _check_order(order, "wiring")

    name = buf.read_string("wiring gate name")
    buf.ensure(4 * order, f"remap of wiring of gate `{name}'")

    gate = registry.lookup_gate(name)
    if gate is None:
        raise MalformedInputError(f"Wiring error: cannot find gate `{name}' in registry")
    if gate.order != order:
        raise MalformedInputError(
            f"Wiring error: gate `{name}' has order {gate.order}, wiring says {order}"
        )

    remap = [buf.read_u32() for _ in range(order)]
    return Wiring(gate, remap)


def serialize_wiring(wiring: Wiring) -> bytes:
    return _to_bytes(write_wiring, wiring)


def deserialize_wiring(data: bytes, registry: ObjectRegistry) -> Wiring:
    return read_wiring(SerialBuffer(data), registry)


# Circuits

def write_circuit(buf: SerialBuffer, circuit: Circuit) -> int:
    """Append ``circuit`` as order, name, wiring count and size-prefixed wirings."""
    start = buf.tell()
    buf.write_u32(circuit.order)
    buf.write_string(circuit.name)
    buf.write_u32(len(circuit))

    for wiring in circuit:
        buf.write_u32(measure(write_wiring, wiring))
        write_wiring(buf, wiring)

    return buf.tell() - start


def read_circuit(
    buf: SerialBuffer,
    registry: ObjectRegistry,
    config: Optional[Config] = None,
    rng: Optional[RandomSource] = None
) -> Circuit:
    """
    Consume a circuit, resolving gates through ``registry``.

    All wirings are decoded before the circuit is created, so a failure
    never leaves a partially linked circuit behind.
    """
    order = buf.read_u32("circuit order")
    _check_order(order, "circuit")

    name = buf.read_string("circuit name")
    count = buf.read_u32("circuit wiring count")

    wirings: List[Wiring] = []
    for i in range(count):
        size = buf.read_u32(f"size of wiring {i} of circuit `{name}'")
        raw = buf.read_bytes(size, f"wiring {i} of circuit `{name}'")

        sub = SerialBuffer(raw)
        wirings.append(read_wiring(sub, registry))

        if sub.tell() != size:
            raise MalformedInputError(
                f"Malformed circuit `{name}': wiring {i} is {sub.tell()} bytes, "
                f"prefix says {size}"
            )

    circuit = Circuit(order, name, config=config, rng=rng)

    try:
        for wiring in wirings:
            circuit.append_wiring(wiring)
    except BadRemapError as exc:
        raise MalformedInputError(f"Malformed circuit `{name}': {exc}") from exc

    return circuit


def serialize_circuit(circuit: Circuit) -> bytes:
    return _to_bytes(write_circuit, circuit)


def deserialize_circuit(
    data: bytes,
    registry: ObjectRegistry,
    config: Optional[Config] = None,
    rng: Optional[RandomSource] = None
) -> Circuit:
    return read_circuit(SerialBuffer(data), registry, config=config, rng=rng)
