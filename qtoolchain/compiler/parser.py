"""
Line parser for quantum assembly (``.qas``) sources.

Each non-blank line holds one instruction followed by comma-separated
arguments::

    .gate H, 1, "Hadamard"     # comment
    .coef 0.70710678, 0.70710678[3.14159265]

Arguments are either tokens (letters, digits and ``._-$[]``) or double
quoted strings with backslash escapes. ``#`` starts a comment.
"""

from __future__ import annotations

import cmath
import re
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple

from qtoolchain.exceptions import AssemblerError

_TOKEN_CHARS = "._-$[]"
_COMPLEX_RE = re.compile(r"^(?P<modulus>[^\[\]]+)(?:\[(?P<phase>[^\[\]]+)\])?$")


@dataclass
class Statement:
    """
    One parsed source line.

    Attributes:
        instruction: Directive (``.gate``) or gate name (``CNOT``)
        args: Raw arguments; strings keep their quotes
        line: 1-based line number
    """
    instruction: str
    args: List[str] = field(default_factory=list)
    line: int = 0

    @property
    def is_directive(self) -> bool:
        return self.instruction.startswith(".")

    def __repr__(self) -> str:
        return f"{self.instruction} {', '.join(self.args)} @ {self.line}"


def _is_token_char(c: str) -> bool:
    return c.isalnum() or c in _TOKEN_CHARS


def _is_terminator(text: str, pos: int) -> bool:
    return pos >= len(text) or text[pos] == "#"


def _skip_spaces(text: str, pos: int) -> int:
    while pos < len(text) and text[pos].isspace():
        pos += 1
    return pos


def _scan_token(text: str, pos: int) -> int:
    while pos < len(text) and _is_token_char(text[pos]):
        pos += 1
    return pos


def _scan_string(text: str, pos: int) -> Optional[int]:
    # pos is on the opening quote; returns the position past the closing one
    escaped = False
    pos += 1
    while pos < len(text):
        c = text[pos]
        if escaped:
            escaped = False
        elif c == "\\":
            escaped = True
        elif c == '"':
            return pos + 1
        pos += 1
    return None


def parse_line(text: str, line: int = 0, path: Optional[str] = None) -> Optional[Statement]:
    """
    Split a source line into instruction and arguments.

    Returns:
        The statement, or ``None`` for blank and comment lines

    Raises:
        AssemblerError: On malformed lines
    """
    pos = _skip_spaces(text, 0)
    if _is_terminator(text, pos):
        return None

    end = _scan_token(text, pos)
    if end == pos:
        raise AssemblerError(f"unrecognized character `{text[pos]}'", path, line)

    statement = Statement(text[pos:end], line=line)
    pos = _skip_spaces(text, end)

    while not _is_terminator(text, pos):
        c = text[pos]

        if _is_token_char(c):
            end = _scan_token(text, pos)
        elif c == '"':
            end = _scan_string(text, pos)
            if end is None:
                raise AssemblerError("unterminated string", path, line)
        else:
            raise AssemblerError(f"unrecognized character before argument `{c}'", path, line)

        statement.args.append(text[pos:end])
        pos = _skip_spaces(text, end)

        if _is_terminator(text, pos):
            break

        if text[pos] != ",":
            raise AssemblerError(
                f"unrecognized character after argument `{text[pos]}'", path, line
            )

        pos = _skip_spaces(text, pos + 1)
        if _is_terminator(text, pos):
            raise AssemblerError("missing argument after `,'", path, line)

    return statement


def parse_source(source: str, path: Optional[str] = None) -> Iterator[Statement]:
    """Yield the statements of a whole source text."""
    for number, text in enumerate(source.splitlines(), start=1):
        statement = parse_line(text, number, path)
        if statement is not None:
            yield statement


def is_string(arg: str) -> bool:
    return len(arg) >= 2 and arg[0] == '"' and arg[-1] == '"'


def unquote(arg: str) -> str:
    """Strip the quotes of a string argument and resolve backslash escapes."""
    body = arg[1:-1]
    return re.sub(r"\\(.)", r"\1", body)


def parse_int(arg: str) -> int:
    """Integer in any Python base notation (``12``, ``0x0c``)."""
    return int(arg, 0)


def parse_complex(arg: str) -> complex:
    """
    Parse ``modulus`` or ``modulus[phase]`` into ``modulus * exp(i * phase)``.

    Raises:
        ValueError: If the argument is not of either form
    """
    match = _COMPLEX_RE.match(arg)
    if match is None:
        raise ValueError(f"`{arg}' is not a complex number")

    modulus = float(match.group("modulus"))
    phase = match.group("phase")

    if phase is None:
        return complex(modulus)

    return cmath.rect(modulus, float(phase))


def split_polar(value: complex) -> Tuple[float, float]:
    """Inverse of :func:`parse_complex`: ``(modulus, phase)``."""
    return abs(value), cmath.phase(value)
