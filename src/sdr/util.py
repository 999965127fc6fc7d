"""
Tensor helpers and configuration serialization.

This module provides the bounding, initialization and selection helpers
shared by the memory blocks, the agents and the task layer, plus
configuration rendering for experiment logs.
"""

import dataclasses
import enum
from typing import Optional, Sequence

import numpy as np
import torch
import yaml
from torch import Tensor

from .const import DEVICE, DTYPE
from .exceptions import InvalidArgumentError


def _bound(tensor: Tensor, low: float = -1.0, high: float = 1.0) -> Tensor:
    """
    Clip every element of a tensor into [low, high].

    Returns a new tensor; the input is left untouched.
    """
    return torch.clamp(tensor, min=low, max=high)


def _uniform(
    dtype: torch.dtype,
    shape: Sequence[int],
    low: float,
    high: float,
    generator: Optional[torch.Generator] = None,
) -> Tensor:
    """
    Draw a tensor uniformly from [low, high).

    Parameters
    ----------
    dtype : torch.dtype
        Target data type.
    shape : sequence of int
        Output shape.
    low, high : float
        Interval bounds.
    generator : torch.Generator, optional
        Seeded source of randomness. The global generator is used if None.

    Returns
    -------
    Tensor
        Sample of the requested shape.
    """
    sample = torch.rand(*shape, dtype=dtype, device=DEVICE, generator=generator)
    return sample.mul_(high - low).add_(low)


def _new_generator(seed: int) -> torch.Generator:
    generator = torch.Generator(device=DEVICE)
    generator.manual_seed(int(seed))
    return generator


def _random_argmax(values: Tensor, generator: Optional[torch.Generator] = None) -> int:
    """
    Index of the maximum of a 1-D tensor, ties broken uniformly at random.

    Parameters
    ----------
    values : Tensor [N]
        Activities to compare.
    generator : torch.Generator, optional
        Source of randomness for tie-breaking.

    Returns
    -------
    int
        Winning index.
    """
    if values.numel() == 0:
        raise InvalidArgumentError("cannot select a winner from an empty tensor.")
    winners = torch.nonzero(values == values.max(), as_tuple=True)[0]
    if winners.numel() == 1:
        return int(winners.item())
    pick = torch.randint(
        winners.numel(), (1,), generator=generator, device=DEVICE
    ).item()
    return int(winners[pick].item())


def _one_hot(index: int, size: int, dtype: torch.dtype = DTYPE) -> Tensor:
    vector = torch.zeros(size, dtype=dtype, device=DEVICE)
    vector[index] = 1.0
    return vector


def _check_width(tensor: Tensor, expected: int, name: str) -> Tensor:
    """Raise InvalidArgumentError unless tensor is a vector of length expected."""
    if tensor.dim() != 1 or tensor.shape[0] != expected:
        raise InvalidArgumentError(
            f"{name} must be a vector of length {expected}, got shape {tuple(tensor.shape)}."
        )
    return tensor


def _as_vector(values, dtype: torch.dtype = DTYPE) -> Tensor:
    return torch.as_tensor(values, dtype=dtype, device=DEVICE).reshape(-1)


def config_to_dict(obj):
    """
    Convert a dataclass to a dictionary recursively.

    Handles nested dataclasses, activation units, tensors, numpy arrays,
    enums and standard Python types. Large tensors (>32 elements) are
    converted to shape/dtype strings.

    Parameters
    ----------
    obj : any
        Object to convert (typically a config instance).

    Returns
    -------
    dict or any
        Dictionary representation with all nested structures converted.
    """
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        result = {}
        for field in dataclasses.fields(obj):
            value = getattr(obj, field.name)
            result[field.name] = config_to_dict(value)
        if not result:
            return type(obj).__name__
        return result
    elif isinstance(obj, dict):
        return {config_to_dict(k): config_to_dict(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [config_to_dict(v) for v in obj]
    elif isinstance(obj, torch.Tensor):
        if obj.numel() > 32:
            return f"tensor(shape={list(obj.shape)}, dtype={obj.dtype})"
        return obj.tolist()
    elif isinstance(obj, (torch.dtype, torch.device)):
        return str(obj)
    elif isinstance(obj, enum.Enum):
        return obj.value
    elif isinstance(obj, np.integer):
        return int(obj)
    elif isinstance(obj, np.floating):
        return float(obj)
    elif isinstance(obj, np.ndarray):
        return obj.tolist()
    else:
        return obj


def print_config(cfg, title: str = "Computed Hyperparameters"):
    """
    Pretty-print configuration with YAML formatting.

    Parameters
    ----------
    cfg : dataclass
        Configuration object to display.
    title : str, optional
        Header title for the output. Default "Computed Hyperparameters".
    """
    config_dict = config_to_dict(cfg)

    print("\n" + "=" * 80)
    print(title)
    print("-" * len(title))
    print(
        yaml.dump(
            config_dict,
            Dumper=yaml.SafeDumper,
            sort_keys=False,
            indent=2,
            default_flow_style=False,
        )
    )
    print("=" * 80 + "\n")
