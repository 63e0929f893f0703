r"""
Linear systems in the Tensor-Train (TT) format solved by two-site DMRG, using tinygrad as the backend.
"""

from ._tt_base import TT
from ._extras import (
    eye,
    zeros,
    kron,
    ones,
    random,
    randn,
    dot,
    numel,
    erank,
)
from ._backend import manual_seed
from ._reort import reort
from .errors import (
    TTException,
    ShapeMismatch,
    RankMismatch,
    IncompatibleTypes,
    InvalidArguments,
    ConfigurationError,
    LocalSolverWarning,
    ResidualDampWarning,
    ReorthogonalizationWarning,
)
from .options import SolverOptions
from .solvers import Diagnostic, SolveInfo, dmrg_solve
from . import solvers

__all__ = [
    'TT',
    'eye',
    'zeros',
    'kron',
    'ones',
    'random',
    'randn',
    'dot',
    'numel',
    'erank',
    'manual_seed',
    'reort',
    'TTException',
    'ShapeMismatch',
    'RankMismatch',
    'IncompatibleTypes',
    'InvalidArguments',
    'ConfigurationError',
    'LocalSolverWarning',
    'ResidualDampWarning',
    'ReorthogonalizationWarning',
    'SolverOptions',
    'SolveInfo',
    'Diagnostic',
    'dmrg_solve',
    'solvers',
]
