"""
Options of the two-site DMRG solver.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Any, Mapping, Optional

from tinydmrg.errors import ConfigurationError

LOCAL_SOLVERS = ('gmres', 'pcg')
LOCAL_PRECONDITIONERS = (None, 'jacobi')
TRUNCATION_NORMS = ('residual', 'fro')


@dataclass(frozen=True)
class SolverOptions:
    """
    Configuration for :func:`tinydmrg.solvers.dmrg_solve`.

    Parameters
    ----------
    x0 : TT, optional
        Initial guess. Default is a random TT-tensor of rank ``kickrank``.
    P : TT, optional
        TT-matrix applied from the left to the system, ``(P A) x = P y``.
    nswp : int, default=10
        Maximal number of sweeps.
    rmax : int, default=1000
        Maximal TT-rank of the solution.
    verb : int, default=1
        0 silent, 1 information per sweep, 2 information per block.
    max_full_size : int, default=2500
        Local systems smaller than this are assembled and solved directly.
    local_prec : str, optional
        ``None`` or ``'jacobi'`` (block-Jacobi for the iterative local solver).
    local_solver : str, default='gmres'
        ``'gmres'`` or ``'pcg'``.
    local_restart : int, default=40
        Krylov dimension of the local GMRES.
    local_iters : int, default=2
        Number of GMRES restarts (PCG runs ``local_iters * local_restart`` steps).
    kickrank : int, default=2
        Number of random directions added to the basis after each local step.
    step_dpow : float, default=0.1
        Step of the adaptive truncation exponent.
    min_dpow : float, default=1
        Lower bound of the adaptive truncation exponent.
    resid_damp : float, default=1.5
        Ratio between truncation accuracy and local residual.
    trunc_norm : str, default='residual'
        ``'residual'`` or ``'fro'``.
    bot_conv : float, default=0.1
        Below this ratio of successive corrections the rank pressure is relaxed.
    top_conv : float, default=0.99
        Above this ratio of successive corrections the rank pressure is raised.
    """

    x0: Optional[Any] = None
    P: Optional[Any] = None
    nswp: int = 10
    rmax: int = 1000
    verb: int = 1
    max_full_size: int = 2500
    local_prec: Optional[str] = None
    local_solver: str = 'gmres'
    local_restart: int = 40
    local_iters: int = 2
    kickrank: int = 2
    step_dpow: float = 0.1
    min_dpow: float = 1.0
    resid_damp: float = 1.5
    trunc_norm: str = 'residual'
    bot_conv: float = 0.1
    top_conv: float = 0.99

    def __post_init__(self):
        if self.local_prec == '':
            object.__setattr__(self, 'local_prec', None)
        if isinstance(self.local_prec, str):
            object.__setattr__(self, 'local_prec', self.local_prec.lower())
        if self.local_prec not in LOCAL_PRECONDITIONERS:
            raise ConfigurationError("local_prec must be None or 'jacobi', got %r" % (self.local_prec,))
        if self.local_solver not in LOCAL_SOLVERS:
            raise ConfigurationError("local_solver must be one of %s, got %r" % (LOCAL_SOLVERS, self.local_solver))
        if self.trunc_norm not in TRUNCATION_NORMS:
            raise ConfigurationError("trunc_norm must be one of %s, got %r" % (TRUNCATION_NORMS, self.trunc_norm))
        for name in ('nswp', 'rmax', 'local_restart', 'local_iters'):
            if int(getattr(self, name)) < 1:
                raise ConfigurationError("%s must be a positive integer" % name)
        if int(self.kickrank) < 0:
            raise ConfigurationError("kickrank must be non-negative")
        if int(self.max_full_size) < 0:
            raise ConfigurationError("max_full_size must be non-negative")
        if self.resid_damp <= 0 or self.step_dpow < 0:
            raise ConfigurationError("resid_damp must be positive and step_dpow non-negative")
        if not 0 <= self.bot_conv <= self.top_conv:
            raise ConfigurationError("expected 0 <= bot_conv <= top_conv")

    @classmethod
    def create(cls, options=None, **kwargs) -> "SolverOptions":
        """
        Builds options from an instance, a mapping and/or keyword arguments.

        Keys are matched case-insensitively; keyword arguments override the mapping.

        Raises:
            ConfigurationError: on unknown keys or invalid values.
        """
        base = options if isinstance(options, SolverOptions) else cls()
        mapping = {}
        if options is not None and not isinstance(options, SolverOptions):
            if not isinstance(options, Mapping):
                raise ConfigurationError("options must be a SolverOptions instance or a mapping")
            mapping.update(options)
        mapping.update(kwargs)
        if not mapping:
            return base
        return replace(base, **_canonical_keys(mapping))


def _canonical_keys(mapping: Mapping[str, Any]) -> dict:
    known = {f.name.lower(): f.name for f in fields(SolverOptions)}
    result = {}
    for key, value in mapping.items():
        name = known.get(str(key).lower())
        if name is None:
            raise ConfigurationError("Unrecognized option: %s" % key)
        result[name] = value
    return result
