"""
Per-step diagnostic export.

Components return typed results; `StepRecord` is the only generic
key-value view, keyed by the closed `RecordField` enum, and is meant for
external loggers and persistence layers.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, Optional

import torch
from torch import Tensor

from .exceptions import InvalidArgumentError


class RecordField(str, Enum):
    """Names of the tensors a simulation step can export."""

    STIMULUS = "Stimulus"
    REWARD = "Reward"
    CRITICS = "Critics"
    PREDICTION = "Prediction"
    ACTORS = "Actors"
    ACTION = "Action"
    DOPAMINE = "Dopamine"
    CRITIC_WEIGHTS = "CriticsWeights"
    ACTOR_WEIGHTS = "ActorsWeights"
    INPUT_PATTERN = "InputPattern"
    OUTPUT_PATTERN = "OutputPattern"
    TARGET_PATTERN = "TargetPattern"
    ERROR_PATTERN = "ErrorPattern"
    SUM_SQUARED_ERROR = "SumSquaredError"
    GRADIENT = "Gradient"
    PARAMETERS = "Parameters"
    PARAMETER_CHANGES = "ParameterChanges"
    LSTM_INTERNAL_STATES = "LSTMInternalStates"
    LSTM_INTERNAL_ACTIVATIONS = "LSTMInternalActivations"
    LSTM_INPUT_GATES = "LSTMInputGates"
    LSTM_FORGET_GATES = "LSTMForgetGates"
    LSTM_OUTPUT_GATES = "LSTMOutputGates"


@dataclass
class StepRecord:
    """
    Named tensors exported by one simulation step.

    Attributes
    ----------
    values : dict[RecordField, Tensor]
        Detached copies of the exported tensors.
    children : dict[str, StepRecord]
        Records of sub-components, e.g. the cortex of a coupled agent.
    """

    values: Dict[RecordField, Tensor] = field(default_factory=dict)
    children: Dict[str, "StepRecord"] = field(default_factory=dict)

    def __setitem__(self, key: RecordField, value) -> None:
        if not isinstance(key, RecordField):
            raise InvalidArgumentError(f"unknown record field {key!r}.")
        self.values[key] = torch.as_tensor(value).detach().clone()

    def __getitem__(self, key: RecordField) -> Tensor:
        return self.values[key]

    def __contains__(self, key) -> bool:
        return key in self.values

    def __iter__(self) -> Iterator[RecordField]:
        return iter(self.values)

    def __len__(self) -> int:
        return len(self.values)

    def get(self, key: RecordField, default: Optional[Tensor] = None) -> Optional[Tensor]:
        return self.values.get(key, default)

    def update(self, other: "StepRecord") -> "StepRecord":
        """Merge another record's values and children into this one."""
        self.values.update(other.values)
        self.children.update(other.children)
        return self

    def to_dict(self) -> dict:
        """Plain Python rendering: field names to lists or floats, children nested."""
        result = {key.value: value.tolist() for key, value in self.values.items()}
        for name, child in self.children.items():
            result[name] = child.to_dict()
        return result
