"""
Actor-critic model of the basal ganglia.

A linear critic learns to predict discounted reward by temporal
difference; its TD error plays the role of a phasic dopamine signal that
also trains a winner-take-all actor with a three-factor Hebbian rule.
"""

import logging
from typing import Optional

import torch

from sdr.const import DEVICE
from sdr.exceptions import InvalidConfigurationError
from sdr.heads import Critic, WinnerTakeAllPolicy
from sdr.hyperparameters import ActorCriticConfig
from sdr.task import ObservableState, StateRepresentation
from sdr.types import ActorCriticStepResult
from sdr.util import _bound, _check_width, _new_generator

logger = logging.getLogger(__name__)


class ActorCriticAgent:
    """
    Temporal-difference actor-critic agent with delayed reward handling.

    The agent learns inside `request_action` and `end_episode`, using the
    reward cached by the preceding `return_reward`. Each processing step
    for state s and cached reward r:

        stimuli    = representation(s)
        prediction = sum_k (Wc stimuli)_k
        action     = one-hot argmax (Wa stimuli), random tie-break
        e          = r + gamma * prediction - previous_prediction   (0 on the first step)
        trace      = clip(lambda * previous_trace + previous_stimuli, -1, 1)
        Wc[k, i]  += eta_c * e * trace[i]
        Wa[j, i]  += eta_a * e * previous_action[j] * previous_stimuli[i]

    Call order per episode is new_episode, then request_action and
    return_reward alternately, then end_episode. Calling request_action
    twice without return_reward in between reuses the same cached reward
    and is not supported.

    Parameters
    ----------
    cfg : ActorCriticConfig
        Sizes, constants and seed.
    representation : StateRepresentation
        Maps observations to stimulus vectors of width cfg.stimulus_features.
    generator : torch.Generator, optional
        Tie-breaking source. Seeded from cfg.seed if None.

    Attributes
    ----------
    critic : Critic
    actor : WinnerTakeAllPolicy
    previous_stimuli, previous_action, eligibility_trace : Tensor
    previous_prediction : float
    cached_reward : float

    Raises
    ------
    InvalidConfigurationError
        If the representation width differs from cfg.stimulus_features.
    """

    def __init__(
        self,
        cfg: ActorCriticConfig,
        representation: StateRepresentation,
        generator: Optional[torch.Generator] = None,
    ):
        if representation.width != cfg.stimulus_features:
            raise InvalidConfigurationError(
                f"representation width {representation.width} does not match "
                f"stimulus_features {cfg.stimulus_features}."
            )
        self.cfg = cfg
        self.dtype = cfg.dtype
        self.representation = representation
        self.generator = generator if generator is not None else _new_generator(cfg.seed)

        self.critic = Critic(
            rows=cfg.critic_count,
            cols=cfg.stimulus_features,
            dtype=cfg.dtype,
            init_weight_factor=cfg.init_weight_factor,
            lr=cfg.critic_lr,
        )
        self.actor = WinnerTakeAllPolicy(
            rows=cfg.actor_count,
            cols=cfg.stimulus_features,
            dtype=cfg.dtype,
            init_weight_factor=cfg.init_weight_factor,
            lr=cfg.actor_lr,
            generator=self.generator,
        )
        self._clear_episode()

        logger.debug(
            "ActorCriticAgent: %d stimuli, %d critics, %d actors, gamma %.3f, lambda %.3f",
            cfg.stimulus_features,
            cfg.critic_count,
            cfg.actor_count,
            cfg.gamma,
            cfg.trace_decay,
        )

    def _clear_episode(self):
        def zeros(n):
            return torch.zeros(n, dtype=self.dtype, device=DEVICE)

        self.previous_stimuli = zeros(self.cfg.stimulus_features)
        self.previous_prediction = 0.0
        self.previous_action = zeros(self.cfg.actor_count)
        self.eligibility_trace = zeros(self.cfg.stimulus_features)
        self.cached_reward = 0.0
        self.first_step = True

    def new_episode(self, state: ObservableState):
        """Forget the previous-step snapshot and reset the representation."""
        self._clear_episode()
        self.representation.reset()

    def request_action(self, state: ObservableState) -> ActorCriticStepResult:
        """Learn from the cached reward and pick an action for `state`."""
        return self._process(state, self.cached_reward)

    def return_reward(self, state: ObservableState, reward: float):
        """Cache the reward for the next processing step, unless `state` is final."""
        if not state.is_final:
            self.cached_reward = float(reward)

    def end_episode(self, state: ObservableState) -> ActorCriticStepResult:
        """Run one last processing step on the final state."""
        return self._process(state, self.cached_reward)

    @torch.no_grad()
    def _process(self, state: ObservableState, reward: float) -> ActorCriticStepResult:
        cfg = self.cfg
        stimuli = self.representation.represent(state).to(self.dtype)
        _check_width(stimuli, cfg.stimulus_features, "stimulus representation")

        critics = self.critic(stimuli)
        prediction = float(critics.sum().item())
        actors = self.actor(stimuli)
        action_index, action = self.actor.select(actors)

        if self.first_step:
            error = 0.0
            self.first_step = False
        else:
            error = reward + cfg.gamma * prediction - self.previous_prediction

        # The critic trace accumulates the raw previous stimuli, not the
        # TD-weighted ones.
        trace = _bound(cfg.trace_decay * self.eligibility_trace + self.previous_stimuli)
        self.critic.backward(error, trace)
        self.actor.backward(error, self.previous_action, self.previous_stimuli)

        self.previous_stimuli = stimuli.clone()
        self.previous_prediction = prediction
        self.previous_action = action.clone()
        self.eligibility_trace = trace

        return ActorCriticStepResult(
            stimulus=stimuli.clone(),
            reward=float(reward),
            critics=critics.clone(),
            prediction=prediction,
            actors=actors.clone(),
            action=action,
            action_index=action_index,
            dopamine=float(error),
            eligibility_trace=trace.clone(),
            critic_weights=self.critic.weight.data.clone(),
            actor_weights=self.actor.weight.data.clone(),
        )
