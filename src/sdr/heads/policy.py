from typing import Optional, Tuple

import torch
from torch import Tensor
from torch.nn import Module, Parameter

from sdr.const import DEVICE
from sdr.util import _one_hot, _random_argmax


class WinnerTakeAllPolicy(Module):
    """
    Linear actor with winner-take-all action selection.

    Each actor unit scores the stimulus; the highest score wins, ties
    broken uniformly at random. Learning is a three-factor Hebbian rule:
    TD error x previous action (post-synaptic) x previous stimulus
    (pre-synaptic).

    Parameters
    ----------
    rows : int
        Number of actions.
    cols : int
        Dimension of the stimulus representation.
    dtype : torch.dtype
        Parameter precision.
    init_weight_factor : float
        Every weight starts at init_weight_factor / rows.
    lr : float, optional
        Learning rate. Default 0.01.
    generator : torch.Generator, optional
        Source of randomness for tie-breaking.
    name : str, optional
        Identifier for logging. Default "Actor".

    Attributes
    ----------
    weight : Parameter [rows, cols]
        Actor weights, strictly positive at construction.
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
        generator: Optional[torch.Generator] = None,
        name: str = "Actor",
    ):
        super().__init__()

        self.dtype = dtype
        self.rows = int(rows)
        self.cols = int(cols)
        self.lr = float(lr)
        self.generator = generator
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

    def select(self, activities: Tensor) -> Tuple[int, Tensor]:
        """
        Pick the winning action.

        Returns
        -------
        index : int
            Winner, ties broken uniformly at random.
        action : Tensor [rows]
            One-hot encoding of the winner.
        """
        index = _random_argmax(activities, self.generator)
        return index, _one_hot(index, self.rows, self.dtype)

    @torch.no_grad()
    def backward(self, error: float, previous_action: Tensor, previous_stimulus: Tensor):
        """W[j, i] += lr * error * previous_action[j] * previous_stimulus[i]."""
        self.weight.data.add_(
            (self.lr * error) * torch.outer(previous_action, previous_stimulus)
        )
