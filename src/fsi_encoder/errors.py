"""
Error taxonomy for model fitting.

Three kinds of trouble are distinguished:

* ``ConfigurationError``: unknown model name, malformed design matrix,
  invalid prior, too few channels for a model's feature rank. Fatal for the
  participant/region unit being fitted.
* ``NumericDegeneracy``: zero-variance correlation denominators or a
  singular covariance. Recovered locally: the affected metric becomes NaN
  and a diagnostic is attached to the fit record.
* ``OptimizationNonConvergence``: an iterative search exhausted its
  budget. The best point found is used and a diagnostic is attached.

The last two are warning categories; they are recorded, not raised.
"""

from __future__ import annotations


class FsiEncoderError(Exception):
    """Base class for all fsi_encoder exceptions."""


class ConfigurationError(FsiEncoderError, ValueError):
    """Invalid model, design, prior or data layout."""


class InsufficientChannels(ConfigurationError):
    """Fewer measurement channels than the feature rank a model requires."""

    def __init__(self, required_rank: int, n_channels: int, features: str = ""):
        self.required_rank = required_rank
        self.n_channels = n_channels
        self.features = features
        where = f" for features '{features}'" if features else ""
        super().__init__(
            f"Feature rank {required_rank}{where} exceeds the number of "
            f"channels ({n_channels})"
        )

    def __reduce__(self):
        return (type(self), (self.required_rank, self.n_channels, self.features))


class DegenerateEstimate(FsiEncoderError, ArithmeticError):
    """Training data carry no variance, so no scale can be estimated."""


class NumericDegeneracy(RuntimeWarning):
    """A metric or estimate was undefined and reported as NaN."""


class OptimizationNonConvergence(RuntimeWarning):
    """An iterative search stopped at its iteration budget."""
