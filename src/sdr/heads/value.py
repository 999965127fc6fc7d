"""
Critic head for temporal-difference learning.

The critic predicts discounted future reward as the sum of its linear
units and learns from the TD error through a bounded eligibility trace.
"""

import torch
from torch import Tensor
from torch.nn import Module, Parameter

from sdr.const import DEVICE


class Critic(Module):
    """
    Linear critic V(s) = sum_k (W s)_k with trace-based TD updates.

    Parameters
    ----------
    rows : int
        Number of critic units.
    cols : int
        Dimension of the stimulus representation.
    dtype : torch.dtype
        Parameter precision.
    init_weight_factor : float
        Every weight starts at init_weight_factor / rows.
    lr : float, optional
        Learning rate. Default 0.01.
    name : str, optional
        Identifier for logging. Default "Critic".

    Attributes
    ----------
    weight : Parameter [rows, cols]
        Critic weights, strictly positive at construction.

    Methods
    -------
    forward(x)
        Critic unit activities W x.
    backward(error, trace)
        W[k, i] += lr * error * trace[i] for every unit k.
    """

    weight: Parameter

    def __init__(
        self,
        *,
        rows: int,
        cols: int,
        dtype: torch.dtype,
        init_weight_factor: float,
        lr: float = 0.01,
        name: str = "Critic",
    ):
        super().__init__()

        self.dtype = dtype
        self.rows = int(rows)
        self.cols = int(cols)
        self.lr = float(lr)
        self.name = name

        self.register_parameter(
            "weight",
            Parameter(
                torch.full(
                    (self.rows, self.cols),
                    init_weight_factor / self.rows,
                    dtype=dtype,
                    device=DEVICE,
                ),
                requires_grad=False,
            ),
        )

    @torch.no_grad()
    def forward(self, x: Tensor) -> Tensor:
        return self.weight @ x

    @torch.no_grad()
    def backward(self, error: float, trace: Tensor):
        """
        Apply the TD update with the stimulus eligibility trace.

        The same delta is broadcast to every critic unit.
        """
        self.weight.data.add_((self.lr * error) * trace.unsqueeze(0))
