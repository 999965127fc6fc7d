from .heads import Readout, Critic, WinnerTakeAllPolicy

from .block import MemoryBlock
from .network import RecurrentNetwork
from .hyperparameters import (
    NetworkConfig,
    ActorCriticConfig,
    PredictiveLearnerConfig,
    CoupledAgentConfig,
)
from .const import DEVICE, DTYPE, DERIVATIVE_CLIP
from .exceptions import InvalidConfigurationError, InvalidArgumentError
from .records import RecordField, StepRecord
from .traces import sign_agreement, update_trace
from .types import (
    BlockStepResult,
    NetworkStepResult,
    LearnerStepResult,
    ActorCriticStepResult,
    CoupledStepResult,
    EpisodeSummary,
)
from .units import ActivationUnit, LogisticUnit, LinearUnit

from .paradigms import (
    OnlinePredictiveLearner,
    ActorCriticAgent,
    CoupledAgent,
)

from .task import (
    ObservableState,
    TrialType,
    ConditioningExperiment,
    ControlExperiment,
    ProbeExperiment,
    MissProbeExperiment,
    StateRepresentation,
    TwoSignalRepresentation,
    FlexibleSignalRepresentation,
    ExternalRepresentation,
    ConcatenatedRepresentation,
    PredictionMonitor,
    run_episode,
)

from .util import config_to_dict, print_config

__all__ = [
    "Readout",
    "Critic",
    "WinnerTakeAllPolicy",
    "MemoryBlock",
    "RecurrentNetwork",
    "NetworkConfig",
    "ActorCriticConfig",
    "PredictiveLearnerConfig",
    "CoupledAgentConfig",
    "DEVICE",
    "DTYPE",
    "DERIVATIVE_CLIP",
    "InvalidConfigurationError",
    "InvalidArgumentError",
    "RecordField",
    "StepRecord",
    "sign_agreement",
    "update_trace",
    "BlockStepResult",
    "NetworkStepResult",
    "LearnerStepResult",
    "ActorCriticStepResult",
    "CoupledStepResult",
    "EpisodeSummary",
    "ActivationUnit",
    "LogisticUnit",
    "LinearUnit",
    "OnlinePredictiveLearner",
    "ActorCriticAgent",
    "CoupledAgent",
    "ObservableState",
    "TrialType",
    "ConditioningExperiment",
    "ControlExperiment",
    "ProbeExperiment",
    "MissProbeExperiment",
    "StateRepresentation",
    "TwoSignalRepresentation",
    "FlexibleSignalRepresentation",
    "ExternalRepresentation",
    "ConcatenatedRepresentation",
    "PredictionMonitor",
    "run_episode",
    "config_to_dict",
    "print_config",
]
