"""
Error types raised by the pricing and calibration pipeline.

Every error names the validation rule that triggered it so that callers
(CLI wrappers, notebooks, services) can report a structured failure instead
of a raw numerical exception.
"""

from typing import Optional


class HestonCalibrationError(Exception):
    """Base class for all package errors."""

    def __init__(self, rule: str, message: Optional[str] = None):
        self.rule = rule
        self.message = message or rule
        super().__init__(f"[{rule}] {self.message}")


class InvalidInputError(HestonCalibrationError, ValueError):
    """Input data or configuration violates a validation rule."""


class NumericalDegeneracyError(HestonCalibrationError, ArithmeticError):
    """A computation produced non-finite values that could not be recovered."""
