"""
Error and warning types raised by tinydmrg.
"""


class TTException(Exception):
    """Base class of all tinydmrg errors."""


class ShapeMismatch(TTException):
    """Mode sizes of the operands are not compatible."""


class RankMismatch(TTException):
    """Neighbouring TT-cores do not share the same rank."""


class IncompatibleTypes(TTException):
    """A TT-matrix was given where a TT-tensor is expected (or vice versa)."""


class InvalidArguments(TTException):
    """The arguments are invalid."""


class ConfigurationError(TTException):
    """Unknown solver option or invalid option value."""


class LocalSolverWarning(UserWarning):
    """The local iterative solver did not reach the requested tolerance."""


class ResidualDampWarning(UserWarning):
    """The local residual decreased less than the truncation assumes."""


class ReorthogonalizationWarning(UserWarning):
    """Gram-Schmidt reorthogonalization hit its round limit."""
