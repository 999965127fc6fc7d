"""
Cortex and basal ganglia coupled through a dopamine-like signal.

Every step, the actor-critic agent sees the task signals together with
the previous cortex output and cell states. Its TD error then scales
the cortex learning rate before the cortex learns to predict the reward.
"""

import logging
from typing import Optional

import torch

from sdr.exceptions import InvalidConfigurationError
from sdr.hyperparameters import CoupledAgentConfig
from sdr.network import RecurrentNetwork
from sdr.paradigms.actor_critic import ActorCriticAgent
from sdr.paradigms.predictive_learning import OnlinePredictiveLearner
from sdr.task import (
    ConcatenatedRepresentation,
    ExternalRepresentation,
    FlexibleSignalRepresentation,
    ObservableState,
    StateRepresentation,
    TwoSignalRepresentation,
)
from sdr.types import CoupledStepResult
from sdr.util import _bound

logger = logging.getLogger(__name__)


class CoupledAgent:
    """
    Predictive eligibility-trace LSTM cortex driven by actor-critic dopamine.

    Per step, for observation s (both in `request_action` and `end_episode`):

    1. The critic input is [task signals(s), cortex state of the previous step].
    2. The actor-critic agent receives s's reward and processes s.
    3. The cortex learning rate becomes predictor_lr * (1 + |TD error|).
    4. The cortex trains on [stimulus, reward] of s.
    5. The cortex output and cell states, bounded to [0, 1], become the
       cortex state shown to the critic at the next step.

    Rewards reach the agent through the observations, so `return_reward`
    does nothing.

    Parameters
    ----------
    cfg : CoupledAgentConfig
        Topology, learning rates and task signals.
    task_representation : StateRepresentation, optional
        Task signals for the critic. Built from the cfg signal flags if None.

    Attributes
    ----------
    network : RecurrentNetwork
    cortex : OnlinePredictiveLearner
    basal_ganglia : ActorCriticAgent
    cortex_state : Tensor [1 + B * C]

    Raises
    ------
    InvalidConfigurationError
        If `task_representation` does not have cfg.task_signal_features entries.
    """

    def __init__(
        self,
        cfg: CoupledAgentConfig,
        task_representation: Optional[StateRepresentation] = None,
    ):
        if task_representation is None:
            task_representation = FlexibleSignalRepresentation(
                bias=cfg.bias_signal, cs=cfg.cs_signal, us=cfg.us_signal
            )
        if task_representation.width != cfg.task_signal_features:
            raise InvalidConfigurationError(
                f"task representation width {task_representation.width} does not "
                f"match task_signal_features {cfg.task_signal_features}."
            )
        self.cfg = cfg
        self.dtype = cfg.dtype

        self.network = RecurrentNetwork(cfg.network)
        self.cortex = OnlinePredictiveLearner(self.network, cfg.learner)
        self.cortex_input = TwoSignalRepresentation()
        self.cortex_feedback = ExternalRepresentation(cfg.cortex_state_features)
        self.basal_ganglia = ActorCriticAgent(
            cfg.actor_critic,
            ConcatenatedRepresentation([task_representation, self.cortex_feedback]),
        )

        logger.debug(
            "CoupledAgent: cortex %d x %d (%d parameters), critic input %d",
            cfg.num_blocks,
            cfg.cells_per_block,
            self.network.parameter_count,
            cfg.actor_critic.stimulus_features,
        )

    @property
    def cortex_state(self):
        return self.cortex_feedback.value

    def new_episode(self, state: ObservableState):
        self.cortex.reset()
        self.basal_ganglia.new_episode(state)
        self.cortex_feedback.reset()

    def request_action(self, state: ObservableState) -> CoupledStepResult:
        return self._process(state)

    def return_reward(self, state: ObservableState, reward: float):
        pass

    def end_episode(self, state: ObservableState) -> CoupledStepResult:
        return self._process(state)

    @torch.no_grad()
    def _process(self, state: ObservableState) -> CoupledStepResult:
        self.basal_ganglia.return_reward(state, state.reward)
        basal_ganglia = self.basal_ganglia.request_action(state)

        learning_rate = self.cfg.predictor_lr * (1.0 + abs(basal_ganglia.dopamine))
        cortex = self.cortex.train(
            self.cortex_input.represent(state), learning_rate=learning_rate
        )

        cortex_state = _bound(
            torch.cat([cortex.output, cortex.network.internal_states]), 0.0, 1.0
        )
        self.cortex_feedback.set_value(cortex_state)

        return CoupledStepResult(
            basal_ganglia=basal_ganglia,
            cortex=cortex,
            cortex_state=cortex_state.clone(),
        )
