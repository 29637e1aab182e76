"""
Parameter Optimizers
====================

Pluggable derivative-free optimizers for the small nonlinear
parameter-fitting problems of the model family.

Design Principles:
    - Abstract base class (``ParameterOptimizer``) defines the interface:
      ``minimize(objective, x0) → OptimizationResult``
    - The cross-validation driver never sees the optimizer; models receive
      one at construction, so optimizers can be swapped freely
    - Running out of iterations is not an error: the best point is
      returned with ``converged=False``
    - Factory pattern via ``create_optimizer()`` driven by config, with
      ``register_optimizer()`` for runtime extensions

Usage::

    from fsi_encoder.models.optimizers import create_optimizer

    opt = create_optimizer({"method": "nelder-mead", "max_iter": 50000})
    result = opt.minimize(lambda x: ((x - 1.0) ** 2).sum(), np.zeros(4))
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional

import numpy as np
from scipy.optimize import minimize

from fsi_encoder.errors import ConfigurationError
from fsi_encoder.utils.logging import get_logger

logger = get_logger(__name__)

Objective = Callable[[np.ndarray], float]


@dataclass(frozen=True)
class OptimizationResult:
    """Outcome of a parameter search.

    Attributes
    ----------
    x : np.ndarray
        Best parameters found.
    fun : float
        Objective value at ``x``.
    n_iter : int
        Iterations used.
    n_fev : int
        Objective evaluations used.
    converged : bool
        False when the search stopped on its budget.
    message : str
        Optimizer status message.
    """

    x: np.ndarray
    fun: float
    n_iter: int
    n_fev: int
    converged: bool
    message: str = ""


class ParameterOptimizer(ABC):
    """Abstract base for derivative-free minimisers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Registry name, e.g. ``'nelder-mead'``."""
        ...

    @abstractmethod
    def minimize(self, objective: Objective, x0: np.ndarray) -> OptimizationResult:
        """Minimise ``objective`` starting from ``x0``."""
        ...


def _from_scipy(res) -> OptimizationResult:
    return OptimizationResult(
        x=np.asarray(res.x, dtype=np.float64),
        fun=float(res.fun),
        n_iter=int(getattr(res, "nit", 0)),
        n_fev=int(getattr(res, "nfev", 0)),
        converged=bool(res.success),
        message=str(res.message),
    )


class NelderMeadOptimizer(ParameterOptimizer):
    """Downhill-simplex search (``scipy.optimize.minimize``, Nelder-Mead).

    Parameters
    ----------
    max_iter : int
        Iteration budget.
    xatol, fatol : float
        Absolute convergence tolerances on parameters and objective.
    max_fev : int or None
        Evaluation budget. None leaves evaluations bounded only by
        ``max_iter``.
    """

    def __init__(
        self,
        max_iter: int = 50000,
        xatol: float = 1e-4,
        fatol: float = 1e-4,
        max_fev: Optional[int] = None,
    ):
        self.max_iter = max_iter
        self.xatol = xatol
        self.fatol = fatol
        self.max_fev = max_fev

    @property
    def name(self) -> str:
        return "nelder-mead"

    def minimize(self, objective: Objective, x0: np.ndarray) -> OptimizationResult:
        options: dict[str, Any] = {
            "maxiter": self.max_iter,
            "xatol": self.xatol,
            "fatol": self.fatol,
        }
        if self.max_fev is not None:
            options["maxfev"] = self.max_fev
        res = minimize(objective, np.asarray(x0, dtype=np.float64), method="Nelder-Mead", options=options)
        return _from_scipy(res)


class PowellOptimizer(ParameterOptimizer):
    """Powell's conjugate-direction search (``scipy.optimize.minimize``).

    ``xatol`` / ``fatol`` map onto scipy's ``xtol`` / ``ftol`` so both
    optimizers accept the same config section.
    """

    def __init__(self, max_iter: int = 10000, xatol: float = 1e-4, fatol: float = 1e-4):
        self.max_iter = max_iter
        self.xatol = xatol
        self.fatol = fatol

    @property
    def name(self) -> str:
        return "powell"

    def minimize(self, objective: Objective, x0: np.ndarray) -> OptimizationResult:
        res = minimize(
            objective,
            np.asarray(x0, dtype=np.float64),
            method="Powell",
            options={"maxiter": self.max_iter, "xtol": self.xatol, "ftol": self.fatol},
        )
        return _from_scipy(res)


_REGISTRY: dict[str, type[ParameterOptimizer]] = {
    "nelder-mead": NelderMeadOptimizer,
    "powell": PowellOptimizer,
}


def list_optimizers() -> list[str]:
    """Return all registered optimizer names."""
    return list(_REGISTRY.keys())


def register_optimizer(name: str, cls: type[ParameterOptimizer]) -> None:
    """Register a custom optimizer class under ``name``."""
    if not (isinstance(cls, type) and issubclass(cls, ParameterOptimizer)):
        raise ConfigurationError(f"{cls!r} is not a ParameterOptimizer subclass")
    _REGISTRY[name] = cls
    logger.info("Registered optimizer: %s → %s", name, cls.__name__)


def create_optimizer(config: Optional[dict[str, Any]] = None) -> ParameterOptimizer:
    """Create a ParameterOptimizer from a config dictionary.

    Parameters
    ----------
    config : dict or None
        ``'method'`` selects the registered optimizer (default
        ``'nelder-mead'``); remaining keys go to its constructor.

    Raises
    ------
    ConfigurationError
        If the method is not registered.
    """
    config = dict(config or {})
    method = config.pop("method", "nelder-mead")

    if method not in _REGISTRY:
        raise ConfigurationError(
            f"Unknown optimizer: '{method}'. Available: {list_optimizers()}. "
            f"Register custom optimizers with register_optimizer()."
        )

    logger.debug("Creating optimizer: method=%s, %s", method, config)
    return _REGISTRY[method](**config)
