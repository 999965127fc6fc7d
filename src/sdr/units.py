"""
Elementwise activation units used for gates, cell squashing and readouts.

Each unit is an immutable strategy object with a value and a first
derivative (and optionally a second derivative). Memory blocks and
readout layers receive units by composition, so swapping the gate or
squashing function never requires a new block type.
"""

from dataclasses import dataclass

import torch
from torch import Tensor

from .const import DERIVATIVE_CLIP
from .exceptions import InvalidConfigurationError


class ActivationUnit:
    """
    Scalar function applied elementwise.

    Subclasses implement `value` and `derivative`. The capability flags
    let consumers refuse units they cannot differentiate through.

    Attributes
    ----------
    input_count, output_count : int
        Arity of the scalar function. Always 1 for the built-in units.
    stateless : bool
        True if the value depends on the current argument only.
    differentiable : bool
        True if `derivative` is available.
    has_second_derivative : bool
        True if `second_derivative` is available.
    """

    input_count = 1
    output_count = 1
    stateless = True
    differentiable = True
    has_second_derivative = False

    def value(self, x: Tensor) -> Tensor:
        raise NotImplementedError

    def derivative(self, x: Tensor) -> Tensor:
        raise NotImplementedError

    def second_derivative(self, x: Tensor) -> Tensor:
        raise InvalidConfigurationError(
            f"{type(self).__name__} does not provide a second derivative."
        )

    def __call__(self, x: Tensor) -> Tensor:
        return self.value(x)


@dataclass(frozen=True)
class LogisticUnit(ActivationUnit):
    """
    Scaled and shifted logistic sigmoid.

    f(x) = factor / (1 + exp((mu - x) / beta)) + offset

    Parameters
    ----------
    factor : float
        Output scale. Default 1.0.
    offset : float
        Output shift. Default 0.0. `LogisticUnit(2.0, -1.0)` spans (-1, 1).
    beta : float
        Slope temperature, must be > 0. Default 1.0.
    mu : float
        Midpoint. Default 0.0.

    Notes
    -----
    The first derivative is exactly 0 for |x| > 25 so that saturated
    gates never produce overflowed exponentials.
    """

    factor: float = 1.0
    offset: float = 0.0
    beta: float = 1.0
    mu: float = 0.0

    has_second_derivative = True

    def __post_init__(self):
        if not self.beta > 0:
            raise InvalidConfigurationError(
                f"LogisticUnit beta must be positive, got {self.beta}."
            )

    def _sigmoid(self, x: Tensor) -> Tensor:
        return torch.sigmoid((x - self.mu) / self.beta)

    def value(self, x: Tensor) -> Tensor:
        return self.factor * self._sigmoid(x) + self.offset

    def derivative(self, x: Tensor) -> Tensor:
        s = self._sigmoid(x)
        d = self.factor * s * (1.0 - s) / self.beta
        return torch.where(x.abs() > DERIVATIVE_CLIP, torch.zeros_like(d), d)

    def second_derivative(self, x: Tensor) -> Tensor:
        s = self._sigmoid(x)
        return self.factor * s * (1.0 - s) * (1.0 - 2.0 * s) / (self.beta**2)


@dataclass(frozen=True)
class LinearUnit(ActivationUnit):
    """Affine unit f(x) = factor * x + offset. The identity by default."""

    factor: float = 1.0
    offset: float = 0.0

    has_second_derivative = True

    def value(self, x: Tensor) -> Tensor:
        return self.factor * x + self.offset

    def derivative(self, x: Tensor) -> Tensor:
        return torch.full_like(x, self.factor)

    def second_derivative(self, x: Tensor) -> Tensor:
        return torch.zeros_like(x)


def squashing_unit(squash: bool) -> ActivationUnit:
    """Cell squashing function: logistic over (-1, 1) when squash is set, else identity."""
    return LogisticUnit(factor=2.0, offset=-1.0) if squash else LinearUnit()


def check_unit(unit, role: str) -> ActivationUnit:
    """
    Ensure a unit can be used inside a differentiable block.

    Raises
    ------
    InvalidConfigurationError
        If the unit is not a single-input, single-output, stateless and
        differentiable ActivationUnit.
    """
    if not isinstance(unit, ActivationUnit):
        raise InvalidConfigurationError(
            f"{role} must be an ActivationUnit, got {type(unit).__name__}."
        )
    if unit.input_count != 1 or unit.output_count != 1:
        raise InvalidConfigurationError(
            f"{role} must map one input to one output, got "
            f"{unit.input_count} -> {unit.output_count}."
        )
    if not unit.stateless:
        raise InvalidConfigurationError(f"{role} must be stateless.")
    if not unit.differentiable:
        raise InvalidConfigurationError(f"{role} must be differentiable.")
    return unit
