"""Measurement sampling components."""

from qtoolchain.observables.sampler import (
    RandomSource,
    randbiased,
    randslot,
    sample_index,
    sample_outcomes,
    estimate_counts,
)

__all__ = [
    "RandomSource",
    "randbiased",
    "randslot",
    "sample_index",
    "sample_outcomes",
    "estimate_counts",
]
