import logging
from typing import Optional

import torch
from torch import Tensor

from sdr.const import DEVICE
from sdr.exceptions import InvalidArgumentError, InvalidConfigurationError
from sdr.hyperparameters import PredictiveLearnerConfig
from sdr.network import RecurrentNetwork
from sdr.types import LearnerStepResult
from sdr.util import _check_width

logger = logging.getLogger(__name__)


class OnlinePredictiveLearner:
    """
    Online gradient descent on next-step prediction of one input component.

    Supervision for the prediction made at step t only arrives with the
    pattern of step t + 1. Each call to `train` therefore first corrects
    the parameters with the output and parameter derivative cached at the
    previous call, then runs the forward pass on the new pattern and
    caches its output and derivative for the next call.

        error    = previous_output - pattern[target_index]
        gradient = error * previous_derivative
        params  <- params - learning_rate * gradient

    Parameters
    ----------
    network : RecurrentNetwork
        Network with exactly one output.
    cfg : PredictiveLearnerConfig
        Base learning rate and target index.

    Raises
    ------
    InvalidConfigurationError
        If the network has more than one output or the target index does
        not address a component of its input.
    """

    def __init__(self, network: RecurrentNetwork, cfg: PredictiveLearnerConfig):
        if network.cfg.output_features != 1:
            raise InvalidConfigurationError(
                "the predictive learner needs a network with exactly one output, "
                f"got {network.cfg.output_features}."
            )
        if cfg.target_index >= network.cfg.input_features:
            raise InvalidConfigurationError(
                f"target_index {cfg.target_index} is outside an input of width "
                f"{network.cfg.input_features}."
            )
        self.network = network
        self.cfg = cfg
        self.dtype = network.dtype
        self.learning_rate = float(cfg.learning_rate)
        self.target_index = int(cfg.target_index)
        self.previous_output = torch.zeros(1, dtype=self.dtype, device=DEVICE)
        self.previous_derivative = torch.zeros(
            1, network.parameter_count, dtype=self.dtype, device=DEVICE
        )
        logger.debug(
            "OnlinePredictiveLearner: target index %d, learning rate %.4g",
            self.target_index,
            self.learning_rate,
        )

    def set_learning_rate(self, learning_rate: float):
        self.learning_rate = float(learning_rate)

    def reset(self):
        """Reset the network and forget the cached prediction and derivative."""
        self.network.reset()
        self.previous_output.zero_()
        self.previous_derivative.zero_()

    @torch.no_grad()
    def train(
        self, pattern: Tensor, learning_rate: Optional[float] = None
    ) -> LearnerStepResult:
        """
        Correct the previous prediction against `pattern`, then predict again.

        Parameters
        ----------
        pattern : Tensor [input_features]
            Newly observed input.
        learning_rate : float, optional
            Replaces the current learning rate before the update.

        Returns
        -------
        LearnerStepResult

        Raises
        ------
        InvalidArgumentError
            If `pattern` has the wrong width. Nothing is modified then.
        """
        _check_width(pattern, self.network.cfg.input_features, "input pattern")
        if not torch.isfinite(pattern).all():
            raise InvalidArgumentError("input pattern contains non-finite values.")
        if learning_rate is not None:
            self.set_learning_rate(learning_rate)

        pattern = pattern.to(self.dtype)
        target = pattern[self.target_index : self.target_index + 1].clone()
        error = self.previous_output - target
        sum_squared_error = torch.sum(error**2)
        gradient = error @ self.previous_derivative
        changes = -self.learning_rate * gradient

        parameters = self.network.get_parameters()
        self.network.set_parameters(parameters + changes)

        step = self.network(pattern, compute_derivatives=True)
        self.previous_output = step.output.clone()
        self.previous_derivative = step.parameter_derivative.clone()

        return LearnerStepResult(
            input=pattern.clone(),
            output=step.output.clone(),
            target=target,
            error=error,
            sum_squared_error=sum_squared_error,
            gradient=gradient,
            parameters=parameters,
            parameter_changes=changes,
            learning_rate=self.learning_rate,
            network=step,
        )
