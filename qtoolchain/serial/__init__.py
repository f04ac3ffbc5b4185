"""Binary serialization of operators, gates, circuits and object files."""

from qtoolchain.serial.buffer import SerialBuffer
from qtoolchain.serial.objects import (
    serialize_operator,
    deserialize_operator,
    serialize_gate,
    deserialize_gate,
    serialize_wiring,
    deserialize_wiring,
    serialize_circuit,
    deserialize_circuit,
)
from qtoolchain.serial.qobject import (
    ObjectPlan,
    QuantumObject,
    load_objects,
    load_object_file,
)

__all__ = [
    "SerialBuffer",
    "serialize_operator",
    "deserialize_operator",
    "serialize_gate",
    "deserialize_gate",
    "serialize_wiring",
    "deserialize_wiring",
    "serialize_circuit",
    "deserialize_circuit",
    "ObjectPlan",
    "QuantumObject",
    "load_objects",
    "load_object_file",
]
