"""
Stimulus-delay-reward conditioning task.

Trial state machines producing the observable stimulus (CS) and reward
(US) signals, state representations turning observations into vectors,
and the single-agent loop that drives an agent through an episode.
"""

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Sequence, Tuple

import torch
from torch import Tensor

from sdr.const import DEVICE, DTYPE
from sdr.exceptions import InvalidArgumentError, InvalidConfigurationError
from sdr.types import CoupledStepResult, EpisodeSummary, LearnerStepResult
from sdr.util import _as_vector, _check_width

logger = logging.getLogger(__name__)


class TrialType(IntEnum):
    ITI = 0
    CS_ONLY = 1
    US_ONLY = 2
    FIX = 4
    SHORT = 8
    LONG = 16
    MISS = LONG + CS_ONLY


@dataclass(frozen=True)
class ObservableState:
    """What the animal perceives at one step."""

    stimulus: float = 0.0
    reward: float = 0.0
    is_final: bool = False


# ----- Trial state machines -----


class ConditioningExperiment:
    """
    Trace conditioning: a CS followed by a US after a fixed delay,
    separated by random inter-trial intervals (ITI).

    Within a trial of delay d steps, the CS is on at trial step 0 and the
    US at trial step d, so a trial lasts d + 1 steps. The experiment
    starts in an ITI and never ends on its own.

    Parameters
    ----------
    fixed_delay_ms : float, optional
        CS-US delay. Default 1000.
    step_ms : float, optional
        Duration of one simulation step. Default 200.
    iti_range_ms : (float, float), optional
        Uniform ITI range. Default (4000, 6000).
    generator : torch.Generator, optional
        Source for ITI and trial-type draws.
    """

    def __init__(
        self,
        *,
        fixed_delay_ms: float = 1000.0,
        step_ms: float = 200.0,
        iti_range_ms: Tuple[float, float] = (4000.0, 6000.0),
        generator: Optional[torch.Generator] = None,
    ):
        if step_ms <= 0:
            raise InvalidConfigurationError("step_ms must be positive.")
        if iti_range_ms[0] > iti_range_ms[1] or iti_range_ms[0] < step_ms:
            raise InvalidConfigurationError(
                f"iti_range_ms must be an interval of at least one step, got {iti_range_ms}."
            )
        self.fixed_delay_ms = float(fixed_delay_ms)
        self.step_ms = float(step_ms)
        self.iti_range_ms = (float(iti_range_ms[0]), float(iti_range_ms[1]))
        self.generator = generator
        self.reset()

    def reset(self):
        self.step = 0
        self.trial_step = 0
        self.trial = 0
        self.in_trial = False
        self.trial_type = TrialType.ITI
        self.current_delay = self._steps(self._inter_trial_ms())
        self.stimulus = 0.0
        self.reward = 0.0
        self.is_final = False

    @property
    def state(self) -> ObservableState:
        return ObservableState(self.stimulus, self.reward, self.is_final)

    @property
    def fixed_delay_steps(self) -> int:
        return self._steps(self.fixed_delay_ms)

    def _steps(self, ms: float) -> int:
        return int(ms / self.step_ms)

    def _random(self) -> float:
        return float(torch.rand(1, generator=self.generator, device=DEVICE).item())

    def _inter_trial_ms(self) -> float:
        low, high = self.iti_range_ms
        return low + self._random() * (high - low)

    def _trial_delay_ms(self) -> float:
        return self.fixed_delay_ms

    def _trial_type(self, delay: int) -> TrialType:
        if delay < self.fixed_delay_steps:
            return TrialType.SHORT
        if delay > self.fixed_delay_steps:
            return TrialType.LONG
        return TrialType.FIX

    def _delivers_reward(self) -> bool:
        return True

    def _switch_phase(self) -> bool:
        if self.in_trial:
            return self.trial_step == self.current_delay + 1
        return self.trial_step == self.current_delay

    def advance(self) -> ObservableState:
        """Move one step forward and return the new observation."""
        self.step += 1
        self.trial_step += 1
        if self._switch_phase():
            self.in_trial = not self.in_trial
            self.trial_step = 0
            if self.in_trial:
                self.current_delay = self._steps(self._trial_delay_ms())
                self.trial += 1
                self.trial_type = self._trial_type(self.current_delay)
            else:
                self.current_delay = self._steps(self._inter_trial_ms())
                self.trial_type = TrialType.ITI

        self.stimulus, self.reward = 0.0, 0.0
        if self.in_trial:
            if self.trial_step == 0:
                self.stimulus = 1.0
            elif self.trial_step == self.current_delay and self._delivers_reward():
                self.reward = 1.0
        return self.state


class ControlExperiment(ConditioningExperiment):
    """
    Unpaired control: one-step trials presenting either the CS or the US
    alone, with equal probability.
    """

    def __init__(self, *, iti_range_ms: Tuple[float, float] = (5000.0, 7000.0), **kwargs):
        super().__init__(iti_range_ms=iti_range_ms, **kwargs)

    def _switch_phase(self) -> bool:
        if self.in_trial:
            return self.trial_step > 0
        return self.trial_step == self.current_delay

    def advance(self) -> ObservableState:
        self.step += 1
        self.trial_step += 1
        if self._switch_phase():
            self.in_trial = not self.in_trial
            self.trial_step = 0
            if self.in_trial:
                self.current_delay = 0
                self.trial += 1
            else:
                self.current_delay = self._steps(self._inter_trial_ms())

        self.stimulus, self.reward = 0.0, 0.0
        self.trial_type = TrialType.ITI
        if self.in_trial:
            if self._random() < 0.5:
                self.stimulus = 1.0
                self.trial_type = TrialType.CS_ONLY
            else:
                self.reward = 1.0
                self.trial_type = TrialType.US_ONLY
        return self.state


class ProbeExperiment(ConditioningExperiment):
    """
    Timing probe: trials use a short (500 ms) or long (1500 ms) delay at
    random. The episode ends when the trial after `max_trials` would start.
    """

    def __init__(
        self,
        *,
        short_delay_ms: float = 500.0,
        long_delay_ms: float = 1500.0,
        max_trials: int = 5,
        **kwargs,
    ):
        self.short_delay_ms = float(short_delay_ms)
        self.long_delay_ms = float(long_delay_ms)
        self.max_trials = int(max_trials)
        super().__init__(**kwargs)

    def _trial_delay_ms(self) -> float:
        return self.short_delay_ms if self._random() < 0.5 else self.long_delay_ms

    def advance(self) -> ObservableState:
        super().advance()
        if self.trial > self.max_trials:
            self.stimulus, self.reward = 0.0, 0.0
            self.is_final = True
        return self.state


class MissProbeExperiment(ProbeExperiment):
    """Timing probe where every long-delay trial omits the US."""

    def _trial_type(self, delay: int) -> TrialType:
        trial_type = super()._trial_type(delay)
        return TrialType.MISS if trial_type == TrialType.LONG else trial_type

    def _delivers_reward(self) -> bool:
        return self.trial_type != TrialType.MISS


# ----- State representations -----


class StateRepresentation:
    """
    Maps an ObservableState to a vector of fixed width.

    Stateful representations override `reset`, called at every episode start.
    """

    width: int = 0
    dtype: torch.dtype = DTYPE

    def represent(self, state: ObservableState) -> Tensor:
        raise NotImplementedError

    def reset(self):
        pass

    def __call__(self, state: ObservableState) -> Tensor:
        return self.represent(state)


class TwoSignalRepresentation(StateRepresentation):
    """[stimulus, reward]."""

    width = 2

    def represent(self, state: ObservableState) -> Tensor:
        return _as_vector([state.stimulus, state.reward], self.dtype)


class FlexibleSignalRepresentation(StateRepresentation):
    """Any subset of [1, stimulus, reward], in that order."""

    def __init__(self, bias: bool = False, cs: bool = True, us: bool = False):
        self.bias = bool(bias)
        self.cs = bool(cs)
        self.us = bool(us)
        self.width = int(self.bias) + int(self.cs) + int(self.us)

    def represent(self, state: ObservableState) -> Tensor:
        values = []
        if self.bias:
            values.append(1.0)
        if self.cs:
            values.append(state.stimulus)
        if self.us:
            values.append(state.reward)
        return _as_vector(values, self.dtype)


class ExternalRepresentation(StateRepresentation):
    """A vector set by its owner, independent of the observed state."""

    def __init__(self, width: int):
        self.width = int(width)
        self.value = torch.zeros(self.width, dtype=self.dtype, device=DEVICE)

    def set_value(self, value: Tensor):
        """
        Raises
        ------
        InvalidArgumentError
            If `value` does not have the representation's width.
        """
        value = _as_vector(value, self.dtype)
        _check_width(value, self.width, "representation")
        self.value = value.clone()

    def reset(self):
        self.value = torch.zeros(self.width, dtype=self.dtype, device=DEVICE)

    def represent(self, state: ObservableState) -> Tensor:
        return self.value.clone()


class ConcatenatedRepresentation(StateRepresentation):
    """Concatenation of several representations."""

    def __init__(self, parts: Sequence[StateRepresentation]):
        self.parts = list(parts)
        self.width = sum(part.width for part in self.parts)

    def reset(self):
        for part in self.parts:
            part.reset()

    def represent(self, state: ObservableState) -> Tensor:
        return torch.cat([part.represent(state) for part in self.parts])


# ----- Episode loop -----


def run_episode(agent, experiment: ConditioningExperiment, max_steps: int) -> EpisodeSummary:
    """
    Drive an agent through one episode.

    Call order: new_episode, then per step request_action, advance the
    experiment, return_reward with the new observation's US; finally
    end_episode on the last observation. The loop stops when the
    observation is final or after `max_steps` steps.

    Parameters
    ----------
    agent : object
        Implements new_episode, request_action, return_reward and end_episode.
    experiment : ConditioningExperiment
        Reset at the start of the episode.
    max_steps : int
        Step limit.

    Returns
    -------
    EpisodeSummary
    """
    if max_steps < 0:
        raise InvalidArgumentError("max_steps must be non-negative.")
    experiment.reset()
    state = experiment.state
    agent.new_episode(state)
    logger.debug("episode start: %s, at most %d steps", type(experiment).__name__, max_steps)

    results = []
    steps = 0
    total_reward = 0.0
    while not state.is_final and steps < max_steps:
        results.append(agent.request_action(state))
        state = experiment.advance()
        agent.return_reward(state, state.reward)
        total_reward += state.reward
        steps += 1
    results.append(agent.end_episode(state))

    logger.debug("episode end: %d steps, total reward %.1f", steps, total_reward)
    return EpisodeSummary(steps=steps, total_reward=total_reward, results=results)


class PredictionMonitor:
    """
    Tracks whether the cortex has learned to predict the reward.

    The criterion is met once the absolute prediction error of the last
    error component stays at or below `threshold` for `window`
    consecutive steps.

    Attributes
    ----------
    step : int
        Number of results seen.
    consecutive : int
        Length of the current run of accurate predictions.
    first_correct_step : int
        Step at which the current run started, -1 outside a run.
    satisfied : bool
        True once the criterion has been met. It then stays True.
    """

    def __init__(self, threshold: float = 0.5, window: int = 300):
        self.threshold = float(threshold)
        self.window = int(window)
        self.step = 0
        self.consecutive = 0
        self.first_correct_step = -1
        self.satisfied = False

    def update(self, result) -> bool:
        if isinstance(result, CoupledStepResult):
            result = result.cortex
        if not isinstance(result, LearnerStepResult):
            raise InvalidArgumentError(
                f"cannot read a prediction error from {type(result).__name__}."
            )
        error = abs(float(result.error[-1]))
        if not self.satisfied:
            if error <= self.threshold:
                self.consecutive += 1
                if self.first_correct_step == -1:
                    self.first_correct_step = self.step
                if self.consecutive >= self.window:
                    self.satisfied = True
            else:
                self.consecutive = 0
                self.first_correct_step = -1
        self.step += 1
        return self.satisfied
