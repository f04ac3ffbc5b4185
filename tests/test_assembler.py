"""
Tests for the QToolChain assembler.
"""

from pathlib import Path

import pytest
import numpy as np

from qtoolchain.compiler.assembler import Assembler, assemble_file, assemble_string, format_gate
from qtoolchain.compiler.parser import parse_complex, parse_int, parse_line, parse_source, unquote
from qtoolchain.compiler.registry import ObjectRegistry
from qtoolchain.config import Config
from qtoolchain.core.gates import CNOT, HADAMARD, PAULI_X, GateLibrary
from qtoolchain.exceptions import AssemblerError
from qtoolchain.observables.sampler import RandomSource
from qtoolchain.serial.qobject import load_objects

EXAMPLES = Path(__file__).parent.parent / "examples"

NOT_GATE = """
.gate NOT, 1, "Pauli X"
.coef 0, 1
.coef 1, 0
.end
"""


def assembly_error(source, **kwargs):
    with pytest.raises(AssemblerError) as info:
        assemble_string(source, **kwargs)
    return info.value


class TestParser:
    """Tests for the line parser."""

    def test_directive(self):
        statement = parse_line('.gate H, 1, "Hadamard, gate"  # comment', line=4)
        assert statement.instruction == ".gate"
        assert statement.args == ["H", "1", '"Hadamard, gate"']
        assert statement.line == 4
        assert statement.is_directive

    def test_wiring_line(self):
        statement = parse_line("  CNOT alice,epr_a")
        assert statement.instruction == "CNOT"
        assert statement.args == ["alice", "epr_a"]
        assert not statement.is_directive

    def test_blank_and_comment(self):
        assert parse_line("") is None
        assert parse_line("    ") is None
        assert parse_line("   # just a comment") is None

    def test_escaped_quote(self):
        statement = parse_line(r'.gate A, 1, "say \"hi\""')
        assert unquote(statement.args[2]) == 'say "hi"'

    def test_missing_comma(self):
        with pytest.raises(AssemblerError, match="after argument"):
            parse_line("CNOT a b")

    def test_trailing_comma(self):
        with pytest.raises(AssemblerError, match="missing argument"):
            parse_line(".coef 1, 0,")

    def test_unterminated_string(self):
        with pytest.raises(AssemblerError, match="unterminated string"):
            parse_line('.gate A, 1, "open')

    def test_bad_character(self):
        with pytest.raises(AssemblerError, match="before argument"):
            parse_line(".coef 1, (2)")

    def test_line_numbers(self):
        with pytest.raises(AssemblerError) as info:
            list(parse_source("\n.end\n.coef 1,\n", "bad.qas"))
        assert info.value.line == 3
        assert str(info.value).startswith("bad.qas:3:")

    def test_parse_int(self):
        assert parse_int("12") == 12
        assert parse_int("0x10") == 16
        with pytest.raises(ValueError):
            parse_int("twelve")

    def test_parse_complex(self):
        assert parse_complex("0.5") == 0.5
        assert parse_complex("-1") == -1
        assert np.isclose(parse_complex("2[1.5707963267948966]"), 2j)
        assert np.isclose(parse_complex("1[3.141592653589793]"), -1)
        with pytest.raises(ValueError):
            parse_complex("1[")
        with pytest.raises(ValueError):
            parse_complex("abc")


class TestAssembly:
    """Tests for gate and circuit definitions."""

    def test_gate_and_circuit(self):
        registry = assemble_string(NOT_GATE + """
.circuit flip, 2
.qubit a
.qubit b
NOT b
.end
""")
        gate = registry.lookup_gate("NOT")
        assert gate.description == "Pauli X"
        assert np.allclose(gate.matrix, PAULI_X)

        flip = registry.lookup_circuit("flip")
        assert flip.is_updated
        assert np.allclose(flip.operator.to_dense(), np.kron(PAULI_X, np.eye(2)))

    def test_integer_qubits(self):
        registry = assemble_string(NOT_GATE + """
.circuit flip, 2
NOT 1
.end
""")
        assert [w.remap for w in registry.lookup_circuit("flip")] == [(1,)]

    def test_polar_coefficients(self):
        registry = assemble_string("""
.gate H, 1, "Hadamard"
.coef 0.7071067811865476, 0.7071067811865476
.coef 0.7071067811865476, 0.7071067811865476[3.141592653589793]
.end
""")
        assert np.allclose(registry.lookup_gate("H").matrix, HADAMARD)

    def test_missing_coefficients_are_zero(self):
        registry = assemble_string('.gate P0, 1, ""\n.coef 1\n.end\n')
        assert np.allclose(registry.lookup_gate("P0").matrix, [[1, 0], [0, 0]])

    def test_empty_circuit(self):
        registry = assemble_string(".circuit idle, 2\n.end\n")
        assert np.allclose(registry.lookup_circuit("idle").operator.to_dense(), np.eye(4))

    def test_into_existing_registry(self):
        registry = ObjectRegistry()
        registry.register_gate(GateLibrary.get_gate("CNOT"))
        assemble_string(".circuit c, 2\nCNOT 0, 1\n.end\n", registry)
        assert np.allclose(registry.lookup_circuit("c").operator.to_dense(), CNOT)

    def test_plan_roundtrip(self):
        asm = Assembler()
        asm.assemble_string(NOT_GATE + ".circuit flip, 1\nNOT 0\n.end\n")

        registry = ObjectRegistry()
        load_objects(asm.plan().dumps(), registry)
        assert registry.lookup_gate("NOT") is not None
        assert np.allclose(registry.lookup_circuit("flip").operator.to_dense(), PAULI_X)


class TestAssemblyErrors:
    """Tests for assembler diagnostics."""

    def test_too_many_coefficients(self):
        error = assembly_error('.gate X, 1, ""\n.coef 0, 1, 1, 0, 0\n.end\n')
        assert error.line == 2
        assert "in gate `X'" in str(error)
        assert "coefficient count exceeded (4)" in str(error)

    def test_unknown_gate(self):
        error = assembly_error(".circuit c, 1\nFOO 0\n.end\n")
        assert error.line == 2
        assert "unknown gate `FOO'" in str(error)

    def test_wrong_argument_count(self):
        error = assembly_error(NOT_GATE + ".circuit c, 2\nNOT 0, 1\n.end\n")
        assert "expected 1 arguments" in str(error)

    def test_qubit_wired_twice(self):
        source = ".circuit c, 2\n.qubit a\nCX a, a\n.end\n"
        registry = ObjectRegistry()
        registry.register_gate(GateLibrary.get_gate("CX"))
        error = assembly_error(source, registry=registry)
        assert "qubit wired twice" in str(error)

    def test_qubit_out_of_range(self):
        error = assembly_error(NOT_GATE + ".circuit c, 2\nNOT 2\n.end\n")
        assert "out of range" in str(error)

    def test_unknown_qubit(self):
        error = assembly_error(NOT_GATE + ".circuit c, 2\nNOT bob\n.end\n")
        assert "unknown qubit `bob'" in str(error)

    def test_too_many_qubits(self):
        error = assembly_error(".circuit c, 1\n.qubit a\n.qubit b\n.end\n")
        assert error.line == 3
        assert "too many qubits" in str(error)

    def test_duplicate_qubit(self):
        error = assembly_error(".circuit c, 2\n.qubit a\n.qubit a\n.end\n")
        assert "qubit `a' already declared" in str(error)

    def test_wrong_context(self):
        error = assembly_error('.circuit c, 1\n.gate X, 1, ""\n')
        assert "wrong context" in str(error)

    def test_nothing_to_close(self):
        error = assembly_error(".end\n")
        assert "no context to close" in str(error)

    def test_unexpected_end_of_file(self):
        error = assembly_error('.gate X, 1, ""\n.coef 0, 1\n')
        assert "unexpected end of file inside gate definition" in str(error)

    def test_wiring_outside_circuit(self):
        error = assembly_error("NOT 0\n")
        assert "unrecognized instruction `NOT'" in str(error)

    def test_unknown_directive(self):
        error = assembly_error(".bogus 1\n")
        assert "unrecognized instruction `.bogus'" in str(error)

    def test_duplicate_gate(self):
        error = assembly_error(NOT_GATE + NOT_GATE)
        assert "cannot register gate" in str(error)

    def test_order_too_large(self):
        error = assembly_error('.gate big, 9, ""\n')
        assert error.line == 1
        assert "exceeds maximum order" in str(error)

    def test_not_a_number(self):
        error = assembly_error(".circuit c, two\n")
        assert "argument 2 not a number" in str(error)

    def test_path_in_message(self):
        error = assembly_error(".end\n", path="inline.qas")
        assert str(error).startswith("inline.qas:1:")


class TestIncludes:
    """Tests for .include resolution."""

    def test_relative_include(self, tmp_path):
        (tmp_path / "lib.qas").write_text(NOT_GATE)
        (tmp_path / "main.qas").write_text(
            '.include "lib.qas"\n.circuit flip, 1\nNOT 0\n.end\n'
        )

        registry = assemble_file(tmp_path / "main.qas")
        assert np.allclose(registry.lookup_circuit("flip").operator.to_dense(), PAULI_X)

    def test_include_path(self, tmp_path):
        libdir = tmp_path / "lib"
        srcdir = tmp_path / "src"
        libdir.mkdir()
        srcdir.mkdir()
        (libdir / "gates.qas").write_text(NOT_GATE)
        (srcdir / "main.qas").write_text('.include "gates.qas"\n')

        with pytest.raises(AssemblerError, match="cannot find"):
            assemble_file(srcdir / "main.qas")

        registry = assemble_file(srcdir / "main.qas", config=Config(include_path=[str(libdir)]))
        assert registry.lookup_gate("NOT") is not None

    def test_include_from_string(self, tmp_path):
        (tmp_path / "lib.qas").write_text(NOT_GATE)
        asm = Assembler()
        asm.assemble_string('.include "lib.qas"\n', directory=tmp_path)
        assert asm.registry.lookup_gate("NOT") is not None

    def test_cycle(self, tmp_path):
        (tmp_path / "a.qas").write_text('.include "b.qas"\n')
        (tmp_path / "b.qas").write_text('.include "a.qas"\n')

        with pytest.raises(AssemblerError, match="include cycle"):
            assemble_file(tmp_path / "a.qas")

    def test_self_include(self, tmp_path):
        (tmp_path / "a.qas").write_text('.include "a.qas"\n')
        with pytest.raises(AssemblerError, match="include cycle"):
            assemble_file(tmp_path / "a.qas")

    def test_diamond_assembles_once(self, tmp_path):
        (tmp_path / "base.qas").write_text(NOT_GATE)
        (tmp_path / "left.qas").write_text('.include "base.qas"\n')
        (tmp_path / "right.qas").write_text('.include "base.qas"\n')
        (tmp_path / "top.qas").write_text('.include "left.qas"\n.include "right.qas"\n')

        asm = Assembler()
        asm.assemble_file(tmp_path / "top.qas")

        assert [g.name for g in asm.registry.gates] == ["NOT"]
        assert asm.includes.number_of_nodes() == 4
        assert asm.includes.number_of_edges() == 4

    def test_missing_file(self, tmp_path):
        with pytest.raises(AssemblerError, match="cannot open"):
            assemble_file(tmp_path / "nope.qas")

    def test_include_outside_global_context(self, tmp_path):
        (tmp_path / "lib.qas").write_text(NOT_GATE)
        asm = Assembler()
        with pytest.raises(AssemblerError, match="wrong context"):
            asm.assemble_string('.circuit c, 1\n.include "lib.qas"\n', directory=tmp_path)


class TestTeleporter:
    """Runs the teleportation example end to end."""

    @pytest.fixture
    def circuits(self):
        registry = assemble_file(EXAMPLES / "teleporter.qas", rng=RandomSource(seed=7))
        return registry.lookup_circuit("teleporter_send"), registry.lookup_circuit("teleporter_recv")

    def test_assembled(self, circuits):
        send, recv = circuits
        assert send.order == recv.order == 3
        assert [w.gate.name for w in send] == ["CNOT", "H"]
        assert [w.remap for w in recv] == [(1, 2), (0, 2)]

    def test_state_arrives(self, circuits):
        send, recv = circuits
        alpha, beta = 0.6, -0.8

        psi = np.zeros(8, dtype=np.complex128)
        psi[0b000] = psi[0b110] = alpha / np.sqrt(2)
        psi[0b001] = psi[0b111] = beta / np.sqrt(2)

        seen = set()
        for _ in range(40):
            send.apply_state(psi)
            send.collapse(0b01)
            send.collapse(0b10)
            measured = send.measured_bits
            seen.add(measured)

            state = recv.apply_state(send.get_state())
            assert np.isclose(state[measured], alpha)
            assert np.isclose(state[measured | 0b100], beta)
            assert np.isclose(np.sum(np.abs(state) ** 2), 1.0)

        assert seen == {0, 1, 2, 3}


class TestFormatGate:
    """Tests for rendering gates back to source."""

    @pytest.mark.parametrize("name", ["H", "S", "CNOT", "T"])
    def test_roundtrip(self, name):
        gate = GateLibrary.get_gate(name)
        registry = assemble_string(format_gate(gate))

        restored = registry.lookup_gate(name)
        assert restored.description == gate.description
        assert np.allclose(restored.matrix, gate.matrix)

    def test_layout(self):
        text = format_gate(GateLibrary.get_gate("X", gate_name="NOT"))
        assert text.splitlines() == [
            '.gate NOT, 1, "Pauli X (NOT)"',
            ".coef 0.0, 1.0",
            ".coef 1.0, 0.0",
            ".end",
        ]

    def test_per_line(self):
        text = format_gate(GateLibrary.get_gate("CNOT"), per_line=8)
        assert len([line for line in text.splitlines() if line.startswith(".coef")]) == 2
