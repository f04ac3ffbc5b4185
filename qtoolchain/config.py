"""Runtime configuration defaults for QToolChain."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional


def _int_from_env(name: str, default: Optional[int]) -> Optional[int]:
    val = os.getenv(name)
    if val is None or not val.strip():
        return default
    if val.strip().lower() == "none":
        return None
    try:
        return int(val, 0)
    except ValueError:
        return default


def _float_from_env(name: str, default: float) -> float:
    """Return a floating-point value parsed from the environment."""

    val = os.getenv(name)
    if val is None or not val.strip():
        return default
    try:
        return float(val)
    except ValueError:
        return default


def _paths_from_env(name: str) -> List[str]:
    val = os.getenv(name)
    if val is None or not val.strip():
        return []
    return [p for p in val.split(os.pathsep) if p]


@dataclass
class Config:
    """Runtime configuration defaults for QToolChain.

    Values may be overridden via environment variables or by supplying an
    explicit :class:`Config` to :class:`~qtoolchain.core.circuit.Circuit`,
    :class:`~qtoolchain.compiler.assembler.Assembler` and the validation
    helpers.
    """

    seed: Optional[int] = field(default_factory=lambda: _int_from_env("QTOOLCHAIN_SEED", None))
    include_path: List[str] = field(
        default_factory=lambda: _paths_from_env("QTOOLCHAIN_INCLUDE_PATH")
    )
    sampler_bits: int = field(
        default_factory=lambda: _int_from_env("QTOOLCHAIN_SAMPLER_BITS", 53)
    )
    norm_tolerance: float = field(
        default_factory=lambda: _float_from_env("QTOOLCHAIN_NORM_TOLERANCE", 1e-9)
    )

    def __post_init__(self) -> None:
        if self.sampler_bits is None or not 1 <= self.sampler_bits <= 53:
            raise ValueError(
                f"sampler_bits must be within [1, 53], got {self.sampler_bits}"
            )


DEFAULT_CONFIG = Config()
