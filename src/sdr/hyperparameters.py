import logging
from dataclasses import dataclass, field
from typing import Optional, Tuple

import torch

from sdr.const import DTYPE
from sdr.exceptions import InvalidConfigurationError
from sdr.units import ActivationUnit, LogisticUnit, check_unit, squashing_unit

logger = logging.getLogger(__name__)

GATE_COUNT = 3


@dataclass
class NetworkConfig:
    """
    Configuration of a recurrent memory-block network with derived widths.

    Users set the topology (input width, number of blocks, cells per
    block, outputs) and the connection switches. The block input width,
    readout input width and parameter counts are derived in __post_init__.

    Attributes
    ----------
    input_features : int
        Width of the external input pattern.
    num_blocks : int
        Number of memory blocks. Default 2.
    cells_per_block : int
        Memory cells per block. Default 2.
    output_features : int
        Number of readout units. Default 1.
    squash_cell_input : bool
        Use logistic(2, -1) for the cell input function g, else identity.
    squash_cell_output : bool
        Use logistic(2, -1) for the cell output function h, else identity
        (default).
    gate_to_gate : bool
        Feed previous gate values (not only cell outputs) back into every block.
    bias_to_output, input_to_output, gate_to_output : bool
        Which signals the readout sees besides the cell outputs.
    output_weights_local_gradient_factor : float
        Scale applied to the readout portion of the parameter derivative.
    use_eligibility_traces : bool
        Replace raw inputs and states in the local gradient terms with
        bounded decaying traces.
    trace_decay : float
        Trace decay factor (lambda) in [0, 1]. Default 0.8.
    reset_traces_on_sign_flip : bool
        Restart a trace element when its new input has the opposite sign.
    initial_weight_range : (float, float)
        Interval for uniform weight initialization. Default (-0.1, 0.1).
    seed : int
        Seed of the initialization generator.
    dtype : torch.dtype
        Compute precision.
    gate_unit, cell_input_unit, cell_output_unit, output_unit : ActivationUnit, optional
        Explicit activation units. Derived from the switches above if None.

    Derived Attributes (computed in __post_init__)
    -----------------------------------------------
    block_input_features : int
        1 + input_features + num_blocks * (cells_per_block + 3 if gate_to_gate).
    block_output_features : int
        cells_per_block + 3.
    readout_input_features : int
        Bias, input and per-block signals routed to the readout.
    block_parameter_count : int
        I * (C + 3) + 3 * C for block input width I and C cells.
    readout_parameter_count : int
        output_features * readout_input_features.
    parameter_count : int
        Size of the full network parameter vector.
    """

    input_features: int = 2
    num_blocks: int = 2
    cells_per_block: int = 2
    output_features: int = 1
    squash_cell_input: bool = True
    squash_cell_output: bool = False
    gate_to_gate: bool = False
    bias_to_output: bool = True
    input_to_output: bool = True
    gate_to_output: bool = True
    output_weights_local_gradient_factor: float = 1.0
    use_eligibility_traces: bool = False
    trace_decay: float = 0.8
    reset_traces_on_sign_flip: bool = True
    initial_weight_range: Tuple[float, float] = (-0.1, 0.1)
    seed: int = 42
    dtype: torch.dtype = DTYPE
    gate_unit: Optional[ActivationUnit] = None
    cell_input_unit: Optional[ActivationUnit] = None
    cell_output_unit: Optional[ActivationUnit] = None
    output_unit: Optional[ActivationUnit] = None
    block_input_features: int = field(init=False)
    block_output_features: int = field(init=False)
    readout_input_features: int = field(init=False)
    block_parameter_count: int = field(init=False)
    readout_parameter_count: int = field(init=False)
    parameter_count: int = field(init=False)

    def _validate(self):
        if self.input_features < 1:
            raise InvalidConfigurationError("input_features must be at least 1.")
        if self.num_blocks < 1:
            raise InvalidConfigurationError("num_blocks must be at least 1.")
        if self.cells_per_block < 1:
            raise InvalidConfigurationError("cells_per_block must be at least 1.")
        if self.output_features < 1:
            raise InvalidConfigurationError("output_features must be at least 1.")
        if not 0.0 <= self.trace_decay <= 1.0:
            raise InvalidConfigurationError(
                f"trace_decay must lie in [0, 1], got {self.trace_decay}."
            )
        low, high = self.initial_weight_range
        if low > high:
            raise InvalidConfigurationError(
                f"initial_weight_range is empty: ({low}, {high})."
            )
        if self.use_eligibility_traces and self.trace_decay == 0.0:
            logger.warning(
                "trace_decay is 0. Eligibility traces reduce to clipped raw inputs."
            )

    def __post_init__(self):
        self._validate()

        if self.gate_unit is None:
            self.gate_unit = LogisticUnit()
        if self.cell_input_unit is None:
            self.cell_input_unit = squashing_unit(self.squash_cell_input)
        if self.cell_output_unit is None:
            self.cell_output_unit = squashing_unit(self.squash_cell_output)
        if self.output_unit is None:
            self.output_unit = LogisticUnit()
        check_unit(self.gate_unit, "gate_unit")
        check_unit(self.cell_input_unit, "cell_input_unit")
        check_unit(self.cell_output_unit, "cell_output_unit")
        check_unit(self.output_unit, "output_unit")

        C = self.cells_per_block
        self.block_output_features = C + GATE_COUNT
        recurrent_per_block = C + (GATE_COUNT if self.gate_to_gate else 0)
        self.block_input_features = (
            1 + self.input_features + self.num_blocks * recurrent_per_block
        )

        routed_per_block = C + (GATE_COUNT if self.gate_to_output else 0)
        self.readout_input_features = (
            (1 if self.bias_to_output else 0)
            + (self.input_features if self.input_to_output else 0)
            + self.num_blocks * routed_per_block
        )

        width = self.block_input_features
        self.block_parameter_count = width * (C + GATE_COUNT) + GATE_COUNT * C
        self.readout_parameter_count = (
            self.output_features * self.readout_input_features
        )
        self.parameter_count = (
            self.num_blocks * self.block_parameter_count
            + self.readout_parameter_count
        )


@dataclass
class ActorCriticConfig:
    """
    Configuration for the temporal-difference actor-critic agent.

    Attributes
    ----------
    stimulus_features : int
        Width of the state representation fed to both heads.
    actor_count : int
        Number of actions (actor units). Default 1.
    critic_count : int
        Number of critic units; the prediction is their sum. Default 1.
    gamma : float
        Discount factor. Default 0.98.
    trace_decay : float
        Decay of the critic eligibility trace (lambda). Default 0.9.
    learning_rate : float
        Shared default for both heads. Default 0.01.
    actor_lr, critic_lr : float, optional
        Per-head learning rates. Default to learning_rate.
    init_weight_factor : float
        Initial weights are init_weight_factor / unit count. Must be > 0.
    seed : int
        Seed of the tie-breaking generator.
    dtype : torch.dtype
        Compute precision.
    """

    stimulus_features: int = 1
    actor_count: int = 1
    critic_count: int = 1
    gamma: float = 0.98
    trace_decay: float = 0.9
    learning_rate: float = 0.01
    actor_lr: Optional[float] = None
    critic_lr: Optional[float] = None
    init_weight_factor: float = 0.1
    seed: int = 42
    dtype: torch.dtype = DTYPE

    def _validate(self):
        if self.stimulus_features < 1:
            raise InvalidConfigurationError("stimulus_features must be at least 1.")
        if self.actor_count < 1 or self.critic_count < 1:
            raise InvalidConfigurationError(
                "actor_count and critic_count must be at least 1."
            )
        if not self.init_weight_factor > 0:
            raise InvalidConfigurationError(
                f"init_weight_factor must be positive, got {self.init_weight_factor}."
            )
        if not 0.0 <= self.gamma <= 1.0:
            raise InvalidConfigurationError(f"gamma must lie in [0, 1], got {self.gamma}.")
        if not 0.0 <= self.trace_decay <= 1.0:
            raise InvalidConfigurationError(
                f"trace_decay must lie in [0, 1], got {self.trace_decay}."
            )
        if self.actor_lr == 0.0 and self.critic_lr == 0.0:
            logger.warning("actor_lr and critic_lr are 0. The agent will not learn.")

    def __post_init__(self):
        if self.actor_lr is None:
            self.actor_lr = self.learning_rate
        if self.critic_lr is None:
            self.critic_lr = self.learning_rate
        self._validate()


@dataclass
class PredictiveLearnerConfig:
    """
    Online predictive learner settings.

    Attributes
    ----------
    learning_rate : float
        Base gradient-descent step size. Default 0.5.
    target_index : int
        Component of the next input pattern the network predicts.
    """

    learning_rate: float = 0.5
    target_index: int = 0

    def _validate(self):
        if self.learning_rate < 0:
            raise InvalidConfigurationError(
                f"learning_rate must be non-negative, got {self.learning_rate}."
            )
        if self.target_index < 0:
            raise InvalidConfigurationError("target_index must be non-negative.")
        if self.learning_rate == 0.0:
            logger.warning("learning_rate is 0. The predictive learner will not learn.")

    def __post_init__(self):
        self._validate()


@dataclass
class CoupledAgentConfig:
    """
    Configuration of the cortex/basal-ganglia coupled agent.

    The cortex is an eligibility-trace memory-block network predicting the
    reward channel of a [stimulus, reward] pattern. The basal ganglia is an
    actor-critic agent whose state is the task signal vector extended with
    the cortex output and internal states of the previous step.

    Users set the cortex topology, the two learning rates and the task
    signals shown to the critic; the sub-configurations are derived.

    Attributes
    ----------
    num_blocks, cells_per_block : int
        Cortex topology. Default 2 x 2.
    squash_cell_input, squash_cell_output : bool
        Cortex cell squashing. Default True.
    gate_to_gate, input_to_output : bool
        Cortex connection switches. Default False.
    predictor_lr : float
        Base cortex learning rate, scaled by (1 + |TD error|) every step.
    critic_lr : float
        Learning rate of both actor and critic.
    trace_decay : float
        Cortex eligibility trace decay. Default 0.8.
    reset_traces_on_sign_flip : bool
        Cortex trace reset rule. Default True.
    critic_gamma, critic_trace_decay, critic_init_weight_factor : float
        Actor-critic constants.
    bias_signal, cs_signal, us_signal : bool
        Task signals shown to the critic besides the cortex state.
    seed : int
        Base seed. The cortex uses seed, the actor-critic seed + 1.
    dtype : torch.dtype
        Compute precision.

    Derived Attributes (computed in __post_init__)
    -----------------------------------------------
    task_signal_features : int
        Number of enabled task signals.
    cortex_state_features : int
        1 + num_blocks * cells_per_block (output and internal states).
    network : NetworkConfig
    learner : PredictiveLearnerConfig
    actor_critic : ActorCriticConfig
    """

    num_blocks: int = 2
    cells_per_block: int = 2
    squash_cell_input: bool = True
    squash_cell_output: bool = True
    gate_to_gate: bool = False
    input_to_output: bool = False
    predictor_lr: float = 0.5
    critic_lr: float = 0.1
    trace_decay: float = 0.8
    reset_traces_on_sign_flip: bool = True
    critic_gamma: float = 0.98
    critic_trace_decay: float = 0.9
    critic_init_weight_factor: float = 0.1
    bias_signal: bool = False
    cs_signal: bool = True
    us_signal: bool = False
    seed: int = 42
    dtype: torch.dtype = DTYPE
    task_signal_features: int = field(init=False)
    cortex_state_features: int = field(init=False)
    network: NetworkConfig = field(init=False, repr=False)
    learner: PredictiveLearnerConfig = field(init=False, repr=False)
    actor_critic: ActorCriticConfig = field(init=False, repr=False)

    def __post_init__(self):
        self.task_signal_features = int(self.bias_signal) + int(self.cs_signal) + int(
            self.us_signal
        )
        self.network = NetworkConfig(
            input_features=2,
            num_blocks=self.num_blocks,
            cells_per_block=self.cells_per_block,
            output_features=1,
            squash_cell_input=self.squash_cell_input,
            squash_cell_output=self.squash_cell_output,
            gate_to_gate=self.gate_to_gate,
            bias_to_output=True,
            input_to_output=self.input_to_output,
            gate_to_output=False,
            output_weights_local_gradient_factor=1.0,
            use_eligibility_traces=True,
            trace_decay=self.trace_decay,
            reset_traces_on_sign_flip=self.reset_traces_on_sign_flip,
            seed=self.seed,
            dtype=self.dtype,
            output_unit=LogisticUnit(),
        )
        self.cortex_state_features = (
            self.network.output_features + self.num_blocks * self.cells_per_block
        )
        # The cortex predicts the reward channel of [stimulus, reward].
        self.learner = PredictiveLearnerConfig(
            learning_rate=self.predictor_lr, target_index=1
        )
        self.actor_critic = ActorCriticConfig(
            stimulus_features=self.task_signal_features + self.cortex_state_features,
            actor_count=1,
            critic_count=1,
            gamma=self.critic_gamma,
            trace_decay=self.critic_trace_decay,
            learning_rate=self.critic_lr,
            init_weight_factor=self.critic_init_weight_factor,
            seed=self.seed + 1,
            dtype=self.dtype,
        )
