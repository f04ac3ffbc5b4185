"""
Quantum object (``.qo``) files.

A quantum object file bundles gates and circuits with the names of the
object files they depend on::

    header      "QOFF", depnum, depoff, gatenum, gateoff, circuitnum, circuitoff
    tables      {offset, size} per dependency / gate / circuit
    objects     serialized dependencies, gates and circuits

Offsets are absolute; all integers are big-endian u32.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple, Union

from qtoolchain.compiler.registry import ObjectRegistry
from qtoolchain.config import Config
from qtoolchain.core.circuit import Circuit
from qtoolchain.core.gates import Gate
from qtoolchain.exceptions import MalformedInputError, RegistryError
from qtoolchain.observables.sampler import RandomSource
from qtoolchain.serial.buffer import SerialBuffer
from qtoolchain.serial.objects import measure, read_circuit, read_gate, write_circuit, write_gate

logger = logging.getLogger(__name__)

QO_SIGNATURE = b"QOFF"
HEADER_SIZE = len(QO_SIGNATURE) + 6 * 4
DESCRIPTOR_SIZE = 8


def _write_depend(buf: SerialBuffer, depend: str) -> int:
    start = buf.tell()
    buf.write_string(depend)
    return buf.tell() - start


class ObjectPlan:
    """
    Collects the contents of an object file before dumping it.

    Adding a circuit also adds every gate its wirings reference. Objects
    added twice are only stored once.
    """

    def __init__(self):
        self.depends: List[str] = []
        self.gates: List[Gate] = []
        self.circuits: List[Circuit] = []

    def add_gate(self, gate: Gate) -> None:
        if not any(g is gate for g in self.gates):
            self.gates.append(gate)

    def add_circuit(self, circuit: Circuit) -> None:
        if any(c is circuit for c in self.circuits):
            return

        for wiring in circuit:
            self.add_gate(wiring.gate)

        self.circuits.append(circuit)

    def add_depend(self, depend: str) -> None:
        if depend not in self.depends:
            self.depends.append(depend)

    @classmethod
    def from_registry(cls, registry: ObjectRegistry) -> ObjectPlan:
        plan = cls()
        for gate in registry.gates:
            plan.add_gate(gate)
        for circuit in registry.circuits:
            plan.add_circuit(circuit)
        return plan

    def dumps(self) -> bytes:
        """Encode the plan as an object file image."""
        sections = [
            (_write_depend, self.depends),
            (write_gate, self.gates),
            (write_circuit, self.circuits),
        ]

        # Lay out tables right after the header, objects after the tables
        table_offsets = []
        offset = HEADER_SIZE
        for _, objects in sections:
            table_offsets.append(offset)
            offset += DESCRIPTOR_SIZE * len(objects)

        descriptors: List[List[Tuple[int, int]]] = []
        for writer, objects in sections:
            entries = []
            for obj in objects:
                size = measure(writer, obj)
                entries.append((offset, size))
                offset += size
            descriptors.append(entries)

        buf = SerialBuffer.allocate(offset)
        buf.write_bytes(QO_SIGNATURE)
        for (_, objects), table_offset in zip(sections, table_offsets):
            buf.write_u32(len(objects))
            buf.write_u32(table_offset)

        for entries in descriptors:
            for obj_offset, size in entries:
                buf.write_u32(obj_offset)
                buf.write_u32(size)

        for writer, objects in sections:
            for obj in objects:
                writer(buf, obj)

        return buf.getvalue()

    def dump_to_file(self, path: Union[str, Path]) -> None:
        data = self.dumps()
        Path(path).write_bytes(data)
        logger.info(
            "Wrote %s (%d dependencies, %d gates, %d circuits, %d bytes)",
            path, len(self.depends), len(self.gates), len(self.circuits), len(data),
        )


@dataclass
class QuantumObject:
    """
    Contents of a loaded object file.

    Attributes:
        depends: Names of the object files this one depends on
        gates: Gates in file order
        circuits: Circuits in file order
    """
    depends: List[str] = field(default_factory=list)
    gates: List[Gate] = field(default_factory=list)
    circuits: List[Circuit] = field(default_factory=list)


def _read_table(buf: SerialBuffer, count: int, offset: int, what: str) -> List[Tuple[int, int]]:
    buf.seek(offset)
    buf.ensure(count * DESCRIPTOR_SIZE, f"{what} descriptor table")

    entries = []
    for i in range(count):
        obj_offset = buf.read_u32()
        size = buf.read_u32()
        if obj_offset + size > buf.size:
            raise MalformedInputError(
                f"Malformed object file: {what} {i} ({size} bytes at {obj_offset}) "
                f"lies beyond end of file ({buf.size} bytes)"
            )
        entries.append((obj_offset, size))

    return entries


def load_objects(
    data: bytes,
    registry: Optional[ObjectRegistry] = None,
    config: Optional[Config] = None,
    rng: Optional[RandomSource] = None,
    rebuild: bool = True
) -> QuantumObject:
    """
    Decode an object file image and register its contents.

    Circuits may wire gates from the same file as well as gates already in
    ``registry``. The whole image is decoded (and circuits rebuilt) before
    anything is registered, so a failure leaves ``registry`` untouched.

    Args:
        data: Object file image
        registry: Registry receiving the objects (a new one if omitted)
        config: Configuration of the loaded circuits
        rng: Random source of the loaded circuits
        rebuild: Compose the loaded circuits' operators

    Returns:
        The loaded objects
    """
    registry = registry if registry is not None else ObjectRegistry()
    buf = SerialBuffer(data)

    signature = buf.read_bytes(len(QO_SIGNATURE), "object file signature")
    if signature != QO_SIGNATURE:
        raise MalformedInputError(f"Not a quantum object file (signature {signature!r})")

    header = [buf.read_u32("object file header") for _ in range(6)]
    depnum, depoff, gatenum, gateoff, circuitnum, circuitoff = header

    dep_table = _read_table(buf, depnum, depoff, "dependency")
    gate_table = _read_table(buf, gatenum, gateoff, "gate")
    circuit_table = _read_table(buf, circuitnum, circuitoff, "circuit")

    result = QuantumObject()

    for offset, size in dep_table:
        result.depends.append(SerialBuffer(data[offset:offset + size]).read_string("dependency"))

    # Wirings resolve against the existing gates plus the ones in this image
    scratch = ObjectRegistry()
    for gate in registry.gates:
        scratch.register_gate(gate)

    for offset, size in gate_table:
        gate = read_gate(SerialBuffer(data[offset:offset + size]))
        if registry.lookup_gate(gate.name) is not None:
            raise RegistryError(f"Gate `{gate.name}' already registered")
        scratch.register_gate(gate)
        result.gates.append(gate)

    for offset, size in circuit_table:
        circuit = read_circuit(
            SerialBuffer(data[offset:offset + size]), scratch, config=config, rng=rng
        )
        if registry.lookup_circuit(circuit.name) is not None:
            raise RegistryError(f"Circuit `{circuit.name}' already registered")
        scratch.register_circuit(circuit)
        if rebuild:
            circuit.rebuild()
        result.circuits.append(circuit)

    for gate in result.gates:
        registry.register_gate(gate)
    for circuit in result.circuits:
        registry.register_circuit(circuit)

    logger.debug(
        "Loaded object image (%d dependencies, %d gates, %d circuits)",
        len(result.depends), len(result.gates), len(result.circuits),
    )

    return result


def load_object_file(
    path: Union[str, Path],
    registry: Optional[ObjectRegistry] = None,
    config: Optional[Config] = None,
    rng: Optional[RandomSource] = None,
    rebuild: bool = True
) -> QuantumObject:
    """Read and load a ``.qo`` file; see :func:`load_objects`."""
    return load_objects(
        Path(path).read_bytes(), registry, config=config, rng=rng, rebuild=rebuild
    )
