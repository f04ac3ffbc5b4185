"""
Quantum assembler.

Builds gates and circuits from ``.qas`` sources and registers them into an
:class:`ObjectRegistry`. A source alternates between three contexts::

    .gate NOT, 1, "Pauli X"     # global -> gate
    .coef 0, 1, 1, 0
    .end                        # gate -> global

    .circuit flip, 2            # global -> circuit
    .qubit a
    .qubit b
    NOT b
    .end                        # circuit -> global

``.include "file"`` (global context) assembles another file into the same
registry. Files are looked up next to the including file first, then in
the configured include path. The include graph is tracked with networkx so
cycles are reported instead of recursing forever, and a file reached twice
is only assembled once.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import networkx as nx
import numpy as np

from qtoolchain.compiler.parser import (
    Statement,
    is_string,
    parse_complex,
    parse_int,
    parse_source,
    split_polar,
    unquote,
)
from qtoolchain.compiler.registry import ObjectRegistry
from qtoolchain.config import DEFAULT_CONFIG, Config
from qtoolchain.core.circuit import Circuit
from qtoolchain.core.gates import Gate
from qtoolchain.exceptions import AssemblerError, QToolchainError
from qtoolchain.observables.sampler import RandomSource
from qtoolchain.serial.qobject import ObjectPlan

logger = logging.getLogger(__name__)

STRING_SOURCE = "<string>"


class ContextKind(Enum):
    GLOBAL = "global"
    GATE = "gate"
    CIRCUIT = "circuit"


@dataclass
class _FileContext:
    """Parsing state of one source file."""
    path: str
    directory: Path
    kind: ContextKind = ContextKind.GLOBAL
    gate: Optional[Gate] = None
    coefficients: List[complex] = field(default_factory=list)
    circuit: Optional[Circuit] = None
    aliases: Dict[str, int] = field(default_factory=dict)
    line: int = 0

    def error(self, message: str) -> AssemblerError:
        if self.kind is ContextKind.GATE and self.gate is not None:
            message = f"in gate `{self.gate.name}': {message}"
        elif self.kind is ContextKind.CIRCUIT and self.circuit is not None:
            message = f"in circuit `{self.circuit.name}': {message}"
        return AssemblerError(message, self.path, self.line)


class Assembler:
    """
    Assembles ``.qas`` sources into a registry.

    Usage:
        asm = Assembler()
        registry = asm.assemble_file("teleporter.qas")
        send = registry.lookup_circuit("teleporter_send")

    Attributes:
        registry: Destination of assembled gates and circuits
        config: Configuration (include path) and circuit configuration
        rng: Random source given to assembled circuits
    """

    def __init__(
        self,
        registry: Optional[ObjectRegistry] = None,
        config: Optional[Config] = None,
        rng: Optional[RandomSource] = None
    ):
        self.registry = registry if registry is not None else ObjectRegistry()
        self.config = config or DEFAULT_CONFIG
        self.rng = rng
        self.includes = nx.DiGraph()

        self._directives: Dict[str, Callable[[_FileContext, Statement], None]] = {
            ".gate": self._directive_gate,
            ".coef": self._directive_coef,
            ".circuit": self._directive_circuit,
            ".qubit": self._directive_qubit,
            ".include": self._directive_include,
            ".end": self._directive_end,
        }

    # Entry points

    def assemble_file(self, path: Union[str, Path]) -> ObjectRegistry:
        """Assemble a source file (and its includes) into the registry."""
        path = Path(path).resolve()
        key = str(path)

        if self.includes.nodes.get(key, {}).get("done"):
            logger.debug("Skipping already assembled `%s'", key)
            return self.registry

        try:
            source = path.read_text()
        except OSError as exc:
            raise AssemblerError(f"cannot open `{path}' for reading: {exc.strerror}") from exc

        self.includes.add_node(key, done=False)
        self._assemble(source, key, path.parent)
        self.includes.nodes[key]["done"] = True

        return self.registry

    def assemble_string(
        self,
        source: str,
        path: str = STRING_SOURCE,
        directory: Optional[Union[str, Path]] = None
    ) -> ObjectRegistry:
        """
        Assemble source text.

        Args:
            source: Assembly text
            path: Name used in error messages
            directory: Base directory of relative includes (default: cwd)
        """
        base = Path(directory) if directory is not None else Path.cwd()
        self.includes.add_node(path, done=False)
        self._assemble(source, path, base)
        self.includes.nodes[path]["done"] = True
        return self.registry

    def plan(self) -> ObjectPlan:
        """Object file plan holding everything assembled so far."""
        return ObjectPlan.from_registry(self.registry)

    # Driver

    def _assemble(self, source: str, path: str, directory: Path) -> None:
        ctx = _FileContext(path=path, directory=directory)
        logger.debug("Assembling `%s'", path)

        for statement in parse_source(source, path):
            ctx.line = statement.line
            self._execute(ctx, statement)

        if ctx.kind is not ContextKind.GLOBAL:
            raise ctx.error(f"unexpected end of file inside {ctx.kind.value} definition")

    def _execute(self, ctx: _FileContext, statement: Statement) -> None:
        if statement.is_directive:
            handler = self._directives.get(statement.instruction)
            if handler is None:
                raise ctx.error(f"unrecognized instruction `{statement.instruction}'")
        elif ctx.kind is ContextKind.CIRCUIT:
            handler = self._wire
        else:
            raise ctx.error(f"unrecognized instruction `{statement.instruction}'")

        logger.debug("%s:%d: %s", ctx.path, statement.line, statement.instruction)

        try:
            handler(ctx, statement)
        except AssemblerError:
            raise
        except (QToolchainError, ValueError) as exc:
            raise ctx.error(str(exc)) from exc

    @staticmethod
    def _expect_args(ctx: _FileContext, statement: Statement, count: int) -> None:
        if len(statement.args) != count:
            raise ctx.error(
                f"{statement.instruction}: expected {count} arguments, "
                f"but {len(statement.args)} were given"
            )

    @staticmethod
    def _expect_context(ctx: _FileContext, statement: Statement, kind: ContextKind) -> None:
        if ctx.kind is not kind:
            raise ctx.error(f"{statement.instruction}: wrong context for instruction")

    @staticmethod
    def _identifier(ctx: _FileContext, statement: Statement, index: int) -> str:
        arg = statement.args[index]
        if is_string(arg) or not (arg[0].isalpha() or arg[0] in "._-$"):
            raise ctx.error(f"{statement.instruction}: argument {index + 1} not an identifier")
        return arg

    @staticmethod
    def _number(ctx: _FileContext, statement: Statement, index: int) -> int:
        arg = statement.args[index]
        try:
            return parse_int(arg)
        except ValueError:
            raise ctx.error(
                f"{statement.instruction}: argument {index + 1} not a number"
            ) from None

    @staticmethod
    def _string(ctx: _FileContext, statement: Statement, index: int) -> str:
        arg = statement.args[index]
        if not is_string(arg):
            raise ctx.error(f"{statement.instruction}: argument {index + 1} not a string")
        return unquote(arg)

    # Directives

    def _directive_gate(self, ctx: _FileContext, statement: Statement) -> None:
        self._expect_args(ctx, statement, 3)
        self._expect_context(ctx, statement, ContextKind.GLOBAL)

        name = self._identifier(ctx, statement, 0)
        order = self._number(ctx, statement, 1)
        description = self._string(ctx, statement, 2)

        ctx.gate = Gate(order, name, description)
        ctx.coefficients = []
        ctx.kind = ContextKind.GATE

    def _directive_coef(self, ctx: _FileContext, statement: Statement) -> None:
        if not statement.args:
            raise ctx.error(f"{statement.instruction}: expected at least 1 argument")
        self._expect_context(ctx, statement, ContextKind.GATE)

        table_length = ctx.gate.table_length

        for i, arg in enumerate(statement.args):
            try:
                value = parse_complex(arg)
            except ValueError:
                raise ctx.error(
                    f"{statement.instruction}: argument {i + 1} not a complex number"
                ) from None

            if len(ctx.coefficients) >= table_length:
                raise ctx.error(
                    f"gate matrix coefficient count exceeded ({table_length})"
                )

            ctx.coefficients.append(value)

    def _directive_circuit(self, ctx: _FileContext, statement: Statement) -> None:
        self._expect_args(ctx, statement, 2)
        self._expect_context(ctx, statement, ContextKind.GLOBAL)

        name = self._identifier(ctx, statement, 0)
        order = self._number(ctx, statement, 1)

        ctx.circuit = Circuit(order, name, config=self.config, rng=self.rng)
        ctx.aliases = {}
        ctx.kind = ContextKind.CIRCUIT

    def _directive_qubit(self, ctx: _FileContext, statement: Statement) -> None:
        self._expect_args(ctx, statement, 1)
        self._expect_context(ctx, statement, ContextKind.CIRCUIT)

        alias = self._identifier(ctx, statement, 0)

        if len(ctx.aliases) >= ctx.circuit.order:
            raise ctx.error("too many qubits")
        if alias in ctx.aliases:
            raise ctx.error(f"qubit `{alias}' already declared")

        ctx.aliases[alias] = len(ctx.aliases)

    def _directive_include(self, ctx: _FileContext, statement: Statement) -> None:
        self._expect_args(ctx, statement, 1)
        self._expect_context(ctx, statement, ContextKind.GLOBAL)

        target = self._resolve_include(ctx, self._string(ctx, statement, 0))
        key = str(target)

        self.includes.add_edge(ctx.path, key)
        if not nx.is_directed_acyclic_graph(self.includes):
            cycle = [edge[0] for edge in nx.find_cycle(self.includes, source=key)]
            self.includes.remove_edge(ctx.path, key)
            raise ctx.error(f".include: include cycle {' -> '.join(cycle + [key])}")

        self.assemble_file(target)

    def _resolve_include(self, ctx: _FileContext, name: str) -> Path:
        candidate = Path(name)
        if candidate.is_absolute():
            if candidate.is_file():
                return candidate.resolve()
        else:
            for directory in [ctx.directory] + [Path(p) for p in self.config.include_path]:
                path = directory / candidate
                if path.is_file():
                    return path.resolve()

        raise ctx.error(
            f".include: cannot find `{name}' (search path: "
            f"{os.pathsep.join([str(ctx.directory)] + list(self.config.include_path))})"
        )

    def _directive_end(self, ctx: _FileContext, statement: Statement) -> None:
        self._expect_args(ctx, statement, 0)

        if ctx.kind is ContextKind.GATE:
            gate = ctx.gate
            table = np.zeros(gate.table_length, dtype=np.complex128)
            table[:len(ctx.coefficients)] = ctx.coefficients

            try:
                gate.set_coefficients(table)
                self.registry.register_gate(gate)
            except QToolchainError as exc:
                raise ctx.error(f"cannot register gate: {exc}") from exc

            ctx.gate = None
            ctx.coefficients = []
        elif ctx.kind is ContextKind.CIRCUIT:
            circuit = ctx.circuit

            try:
                circuit.rebuild()
                self.registry.register_circuit(circuit)
            except QToolchainError as exc:
                raise ctx.error(f"cannot register circuit: {exc}") from exc

            ctx.circuit = None
            ctx.aliases = {}
        else:
            raise ctx.error(f"{statement.instruction}: no context to close")

        ctx.kind = ContextKind.GLOBAL

    # Wiring lines

    def _qubit(self, ctx: _FileContext, arg: str) -> int:
        if arg in ctx.aliases:
            return ctx.aliases[arg]

        try:
            qubit = parse_int(arg)
        except ValueError:
            raise ctx.error(f"unknown qubit `{arg}'") from None

        if not 0 <= qubit < ctx.circuit.order:
            raise ctx.error(f"qubit {qubit} out of range")

        return qubit

    def _wire(self, ctx: _FileContext, statement: Statement) -> None:
        gate = self.registry.lookup_gate(statement.instruction)
        if gate is None:
            raise ctx.error(f"unknown gate `{statement.instruction}'")

        self._expect_args(ctx, statement, gate.order)

        remap = [self._qubit(ctx, arg) for arg in statement.args]
        if len(set(remap)) != len(remap):
            raise ctx.error(f"{statement.instruction}: qubit wired twice")

        ctx.circuit.wire(gate, remap)


def assemble_file(
    path: Union[str, Path],
    registry: Optional[ObjectRegistry] = None,
    config: Optional[Config] = None,
    rng: Optional[RandomSource] = None
) -> ObjectRegistry:
    """Assemble a ``.qas`` file into ``registry`` (a new one if omitted)."""
    return Assembler(registry, config, rng).assemble_file(path)


def assemble_string(
    source: str,
    registry: Optional[ObjectRegistry] = None,
    config: Optional[Config] = None,
    rng: Optional[RandomSource] = None,
    path: str = STRING_SOURCE
) -> ObjectRegistry:
    """Assemble ``.qas`` source text into ``registry`` (a new one if omitted)."""
    return Assembler(registry, config, rng).assemble_string(source, path)


def format_gate(gate: Gate, per_line: Optional[int] = None) -> str:
    """
    Render a gate as ``.qas`` source.

    Each ``.coef`` line holds one matrix row unless ``per_line`` says
    otherwise. Real coefficients are written as plain numbers, others in
    ``modulus[phase]`` form.
    """
    per_line = per_line or gate.length
    description = gate.description.replace("\\", "\\\\").replace('"', '\\"')
    lines = [f'.gate {gate.name}, {gate.order}, "{description}"']

    cells = []
    for value in gate.coefficients.tolist():
        if value.imag == 0:
            cells.append(repr(value.real))
        else:
            modulus, phase = split_polar(value)
            cells.append(f"{modulus!r}[{phase!r}]")

    for start in range(0, len(cells), per_line):
        lines.append(".coef " + ", ".join(cells[start:start + per_line]))

    lines.append(".end")
    return "\n".join(lines) + "\n"
