"""Utility functions for QToolChain."""

from qtoolchain.utils.validation import (
    validate_circuit_against_qiskit,
    validate_state_against_qiskit,
)

__all__ = ["validate_circuit_against_qiskit", "validate_state_against_qiskit"]
