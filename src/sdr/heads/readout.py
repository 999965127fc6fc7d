from typing import Optional, Tuple

import torch
from torch import Tensor
from torch.nn import Module, Parameter

from sdr.units import ActivationUnit, LogisticUnit, check_unit
from sdr.util import _check_width, _uniform


class Readout(Module):
    """
    Single-layer readout y = f(W x) with analytic derivatives.

    The readout has no internal bias; a network that wants one prepends a
    constant 1 to `x`.

    Parameters
    ----------
    rows : int
        Output dimension.
    cols : int
        Input dimension.
    dtype : torch.dtype
        Parameter precision.
    unit : ActivationUnit, optional
        Output function f applied elementwise. Default LogisticUnit().
    generator : torch.Generator, optional
        Source for uniform weight initialization.
    initial_weight_range : (float, float), optional
        Initialization interval. Default (-0.1, 0.1).
    name : str, optional
        Identifier for logging. Default "Readout".

    Attributes
    ----------
    weight : Parameter [rows, cols]

    Methods
    -------
    forward(x) -> (y, net)
        Output and pre-activation.
    parameter_derivative(x, net)
        dy/dW flattened row by row, shape [rows, rows * cols].
    input_derivative(net)
        dy/dx, shape [rows, cols].
    """

    weight: Parameter

    def __init__(
        self,
        *,
        rows: int,
        cols: int,
        dtype: torch.dtype,
        unit: Optional[ActivationUnit] = None,
        generator: Optional[torch.Generator] = None,
        initial_weight_range=(-0.1, 0.1),
        name: str = "Readout",
    ):
        super().__init__()

        self.dtype = dtype
        self.rows = int(rows)
        self.cols = int(cols)
        self.unit = check_unit(unit or LogisticUnit(), "readout unit")
        self.name = name

        low, high = initial_weight_range
        self.register_parameter(
            "weight",
            Parameter(
                _uniform(dtype, (self.rows, self.cols), low, high, generator),
                requires_grad=False,
            ),
        )

    @property
    def parameter_count(self) -> int:
        return self.rows * self.cols

    def get_parameters(self) -> Tensor:
        return self.weight.data.reshape(-1).clone()

    @torch.no_grad()
    def set_parameters(self, parameters: Tensor):
        _check_width(parameters, self.parameter_count, f"{self.name} parameters")
        self.weight.data.copy_(parameters.reshape(self.rows, self.cols))

    @torch.no_grad()
    def forward(self, x: Tensor) -> Tuple[Tensor, Tensor]:
        net = self.weight @ x
        return self.unit.value(net), net

    @torch.no_grad()
    def parameter_derivative(self, x: Tensor, net: Tensor) -> Tensor:
        """Output o depends only on row o, so the result is block diagonal."""
        rows = self.unit.derivative(net).unsqueeze(1) * x.unsqueeze(0)
        return torch.block_diag(*rows.unsqueeze(1))

    @torch.no_grad()
    def input_derivative(self, net: Tensor) -> Tensor:
        return self.unit.derivative(net).unsqueeze(1) * self.weight
