from typing import Callable, Sequence

import torch

from sdr.block import MemoryBlock
from sdr.const import DEVICE, DTYPE
from sdr.hyperparameters import NetworkConfig
from sdr.units import LinearUnit


def random_sequence(steps: int, width: int, seed: int = 0, scale: float = 1.0):
    """Fixed pseudo-random input sequence of shape [steps, width]."""
    generator = torch.Generator(device=DEVICE).manual_seed(seed)
    return (
        torch.rand(steps, width, generator=generator, dtype=DTYPE, device=DEVICE)
        * 2.0
        - 1.0
    ) * scale


def zero_peepholes(block: MemoryBlock):
    """
    Zero the peephole weights of a block.

    The truncated derivative recursion is exact only where the previous
    state does not feed the gates, so gradient checks run at this point.
    """
    with torch.no_grad():
        block.input_peephole.zero_()
        block.forget_peephole.zero_()
        block.output_peephole.zero_()


def finite_difference(
    run: Callable[[torch.Tensor], torch.Tensor],
    parameters: torch.Tensor,
    indices: Sequence[int],
    eps: float = 1e-6,
) -> torch.Tensor:
    """
    Central differences of run(parameters) with respect to selected entries.

    Returns
    -------
    Tensor [outputs, len(indices)]
    """
    columns = []
    for k in indices:
        plus = parameters.clone()
        plus[k] += eps
        minus = parameters.clone()
        minus[k] -= eps
        columns.append((run(plus) - run(minus)) / (2.0 * eps))
    return torch.stack(columns, dim=1)


def small_network_config(**overrides) -> NetworkConfig:
    settings = dict(
        input_features=2,
        num_blocks=2,
        cells_per_block=2,
        output_features=1,
        seed=7,
        dtype=DTYPE,
    )
    settings.update(overrides)
    return NetworkConfig(**settings)


def linear_block(input_features: int, cells: int, **kwargs) -> MemoryBlock:
    generator = torch.Generator(device=DEVICE).manual_seed(3)
    return MemoryBlock(
        input_features=input_features,
        cells=cells,
        dtype=DTYPE,
        cell_input=LinearUnit(),
        cell_output=LinearUnit(),
        generator=generator,
        **kwargs,
    )
