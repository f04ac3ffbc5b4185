"""Assembler components for QToolChain."""

from qtoolchain.compiler.registry import ObjectRegistry
from qtoolchain.compiler.parser import Statement, parse_source
from qtoolchain.compiler.assembler import (
    Assembler,
    assemble_file,
    assemble_string,
    format_gate,
)

__all__ = [
    "ObjectRegistry",
    "Statement",
    "parse_source",
    "Assembler",
    "assemble_file",
    "assemble_string",
    "format_gate",
]
