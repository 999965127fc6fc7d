from dataclasses import dataclass
from typing import List, Optional

from torch import Tensor

from sdr.records import RecordField, StepRecord


@dataclass
class BlockStepResult:
    """
    Outcome of one memory block step.

    Attributes
    ----------
    output : Tensor [C + 3]
        Cell outputs followed by the input, forget and output gate values.
    state : Tensor [C]
        New internal cell state.
    parameter_derivative : Tensor [C + 3, P], optional
        Derivative of every output with respect to every block parameter.
        Gate rows are zero. None unless derivatives were requested.
    """

    output: Tensor
    state: Tensor
    parameter_derivative: Optional[Tensor] = None

    @property
    def cell_outputs(self) -> Tensor:
        return self.output[:-3]

    @property
    def input_gate(self) -> Tensor:
        return self.output[-3]

    @property
    def forget_gate(self) -> Tensor:
        return self.output[-2]

    @property
    def output_gate(self) -> Tensor:
        return self.output[-1]


@dataclass
class NetworkStepResult:
    """
    Outcome of one recurrent network step.

    Attributes
    ----------
    output : Tensor [O]
        Readout values.
    parameter_derivative : Tensor [O, P], optional
        Derivative of the readout with respect to the full parameter vector.
    internal_states : Tensor [B * C]
        Cell states of all blocks, block after block.
    internal_activations : Tensor [B * C]
        Cell outputs of all blocks.
    input_gates, forget_gates, output_gates : Tensor [B]
        Gate values, one per block.
    """

    output: Tensor
    internal_states: Tensor
    internal_activations: Tensor
    input_gates: Tensor
    forget_gates: Tensor
    output_gates: Tensor
    parameter_derivative: Optional[Tensor] = None

    def to_record(self) -> StepRecord:
        record = StepRecord()
        record[RecordField.OUTPUT_PATTERN] = self.output
        record[RecordField.LSTM_INTERNAL_STATES] = self.internal_states
        record[RecordField.LSTM_INTERNAL_ACTIVATIONS] = self.internal_activations
        record[RecordField.LSTM_INPUT_GATES] = self.input_gates
        record[RecordField.LSTM_FORGET_GATES] = self.forget_gates
        record[RecordField.LSTM_OUTPUT_GATES] = self.output_gates
        return record


@dataclass
class LearnerStepResult:
    """
    Outcome of one online predictive learning step.

    Attributes
    ----------
    input : Tensor [I]
        Pattern just observed.
    output : Tensor [1]
        Prediction made from `input`, to be checked at the next step.
    target : Tensor [1]
        Component of `input` the previous prediction is checked against.
    error : Tensor [1]
        Previous prediction minus target.
    sum_squared_error : Tensor []
        Sum of squared errors.
    gradient : Tensor [P]
        error times the parameter derivative cached at the previous step.
    parameters : Tensor [P]
        Parameters before this step's update.
    parameter_changes : Tensor [P]
        Update applied this step, -learning_rate * gradient.
    learning_rate : float
        Step size used for the update.
    network : NetworkStepResult
        Forward pass on `input` with the updated parameters.
    """

    input: Tensor
    output: Tensor
    target: Tensor
    error: Tensor
    sum_squared_error: Tensor
    gradient: Tensor
    parameters: Tensor
    parameter_changes: Tensor
    learning_rate: float
    network: NetworkStepResult

    def to_record(self) -> StepRecord:
        record = self.network.to_record()
        record[RecordField.INPUT_PATTERN] = self.input
        record[RecordField.OUTPUT_PATTERN] = self.output
        record[RecordField.TARGET_PATTERN] = self.target
        record[RecordField.ERROR_PATTERN] = self.error
        record[RecordField.SUM_SQUARED_ERROR] = self.sum_squared_error
        record[RecordField.GRADIENT] = self.gradient
        record[RecordField.PARAMETERS] = self.parameters
        record[RecordField.PARAMETER_CHANGES] = self.parameter_changes
        return record


@dataclass
class ActorCriticStepResult:
    """
    Outcome of one actor-critic step.

    Attributes
    ----------
    stimulus : Tensor [S]
        State representation of the current state.
    reward : float
        Reward that entered the TD error.
    critics : Tensor [K]
        Critic unit activities.
    prediction : float
        Sum of the critic activities.
    actors : Tensor [A]
        Actor unit activities.
    action : Tensor [A]
        One-hot vector of the selected action.
    action_index : int
        Index of the selected action.
    dopamine : float
        Temporal-difference error; 0 on the first step of an episode.
    eligibility_trace : Tensor [S]
        Bounded trace of previous stimuli used for the critic update.
    critic_weights : Tensor [K, S]
        Critic weights after the update.
    actor_weights : Tensor [A, S]
        Actor weights after the update.
    """

    stimulus: Tensor
    reward: float
    critics: Tensor
    prediction: float
    actors: Tensor
    action: Tensor
    action_index: int
    dopamine: float
    eligibility_trace: Tensor
    critic_weights: Tensor
    actor_weights: Tensor

    def to_record(self) -> StepRecord:
        record = StepRecord()
        record[RecordField.STIMULUS] = self.stimulus
        record[RecordField.REWARD] = self.reward
        record[RecordField.CRITICS] = self.critics
        record[RecordField.PREDICTION] = self.prediction
        record[RecordField.ACTORS] = self.actors
        record[RecordField.ACTION] = self.action_index
        record[RecordField.DOPAMINE] = self.dopamine
        record[RecordField.CRITIC_WEIGHTS] = self.critic_weights
        record[RecordField.ACTOR_WEIGHTS] = self.actor_weights
        return record


@dataclass
class CoupledStepResult:
    """
    Outcome of one coupled agent step.

    Attributes
    ----------
    basal_ganglia : ActorCriticStepResult
        Actor-critic step on the extended state representation.
    cortex : LearnerStepResult
        Predictive learner step run with the modulated learning rate.
    cortex_state : Tensor [1 + B * C]
        Cortex output and internal states bounded to [0, 1], shown to the
        critic at the next step.
    """

    basal_ganglia: ActorCriticStepResult
    cortex: LearnerStepResult
    cortex_state: Tensor

    @property
    def action_index(self) -> int:
        return self.basal_ganglia.action_index

    @property
    def dopamine(self) -> float:
        return self.basal_ganglia.dopamine

    def to_record(self) -> StepRecord:
        record = self.basal_ganglia.to_record()
        record.children["cortex"] = self.cortex.to_record()
        return record


@dataclass
class EpisodeSummary:
    """
    Outcome of one episode driven by `run_episode`.

    Attributes
    ----------
    steps : int
        Number of request_action calls.
    total_reward : float
        Sum of rewards passed back to the agent.
    results : list
        Per-step results, the end-of-episode result last.
    """

    steps: int
    total_reward: float
    results: List
