"""
Recurrent network of memory blocks with a single-layer readout.
"""

import logging
from typing import List

import torch
from torch import Tensor
from torch.nn import Module, ModuleList

from sdr.block import MemoryBlock
from sdr.const import DEVICE
from sdr.heads.readout import Readout
from sdr.hyperparameters import GATE_COUNT, NetworkConfig
from sdr.types import BlockStepResult, NetworkStepResult
from sdr.util import _check_width, _new_generator

logger = logging.getLogger(__name__)


class RecurrentNetwork(Module):
    """
    Memory-block network computing one output per step with the analytic
    derivative of that output with respect to all parameters.

    Every block receives the same input

        [1, external input, previous outputs of all blocks]

    where each block's previous outputs are its cell outputs, followed by
    its gate values when `gate_to_gate` is set. The readout sees

        [1 (bias_to_output), external input (input_to_output),
         per block: cell outputs (+ gate values if gate_to_output)].

    Parameter derivatives are composed by the chain rule through exactly
    one layer: the readout input derivative restricted to a block's cell
    outputs times the block's own parameter derivative. Deeper time
    dependencies are already folded into each block's accumulators.

    Parameters
    ----------
    cfg : NetworkConfig
        Topology, connection switches, activation units and seed.

    Attributes
    ----------
    blocks : ModuleList[MemoryBlock]
    readout : Readout
    previous_block_outputs : buffer [B * (C + 3)]
        Block outputs of the previous step, zero after reset.

    Methods
    -------
    forward(pattern, compute_derivatives=False)
        One step. Returns a NetworkStepResult.
    reset()
        Zero every block and the recurrent outputs.
    get_parameters() / set_parameters(vector)
        Copy the full parameter vector out or in.
    """

    def __init__(self, cfg: NetworkConfig):
        super().__init__()
        self.cfg = cfg
        self.dtype = cfg.dtype

        generator = _new_generator(cfg.seed)
        self.blocks = ModuleList(
            MemoryBlock(
                input_features=cfg.block_input_features,
                cells=cfg.cells_per_block,
                dtype=cfg.dtype,
                input_gate=cfg.gate_unit,
                forget_gate=cfg.gate_unit,
                output_gate=cfg.gate_unit,
                cell_input=cfg.cell_input_unit,
                cell_output=cfg.cell_output_unit,
                use_eligibility_traces=cfg.use_eligibility_traces,
                trace_decay=cfg.trace_decay,
                reset_traces_on_sign_flip=cfg.reset_traces_on_sign_flip,
                generator=generator,
                initial_weight_range=cfg.initial_weight_range,
            )
            for _ in range(cfg.num_blocks)
        )
        self.readout = Readout(
            rows=cfg.output_features,
            cols=cfg.readout_input_features,
            dtype=cfg.dtype,
            unit=cfg.output_unit,
            generator=generator,
            initial_weight_range=cfg.initial_weight_range,
        )
        self.register_buffer(
            "previous_block_outputs",
            torch.zeros(
                cfg.num_blocks * cfg.block_output_features,
                dtype=cfg.dtype,
                device=DEVICE,
            ),
        )

        logger.debug(
            "RecurrentNetwork: %d blocks x %d cells, block input %d, readout input %d, %d parameters",
            cfg.num_blocks,
            cfg.cells_per_block,
            cfg.block_input_features,
            cfg.readout_input_features,
            cfg.parameter_count,
        )

    @property
    def parameter_count(self) -> int:
        return self.cfg.parameter_count

    def get_parameters(self) -> Tensor:
        """Copy of [block 1, ..., block B, readout] parameters."""
        return torch.cat(
            [block.get_parameters() for block in self.blocks]
            + [self.readout.get_parameters()]
        )

    @torch.no_grad()
    def set_parameters(self, parameters: Tensor):
        """
        Overwrite all parameters by value.

        Raises
        ------
        InvalidArgumentError
            If `parameters` has the wrong length. Nothing is modified then.
        """
        _check_width(parameters, self.parameter_count, "network parameters")
        parameters = parameters.to(self.dtype)
        offset = 0
        for block in self.blocks:
            n = block.parameter_count
            block.set_parameters(parameters[offset : offset + n])
            offset += n
        self.readout.set_parameters(parameters[offset:])

    @torch.no_grad()
    def reset(self):
        """Clear cell states, accumulators, traces and recurrent outputs."""
        for block in self.blocks:
            block.reset()
        self.previous_block_outputs.zero_()

    def _recurrent_signal(self) -> Tensor:
        if self.cfg.gate_to_gate:
            return self.previous_block_outputs
        per_block = self.previous_block_outputs.view(
            self.cfg.num_blocks, self.cfg.block_output_features
        )
        return per_block[:, : self.cfg.cells_per_block].reshape(-1)

    def _readout_input(self, pattern: Tensor, results: List[BlockStepResult]) -> Tensor:
        parts = []
        if self.cfg.bias_to_output:
            parts.append(torch.ones(1, dtype=self.dtype, device=DEVICE))
        if self.cfg.input_to_output:
            parts.append(pattern)
        for result in results:
            parts.append(result.output if self.cfg.gate_to_output else result.cell_outputs)
        return torch.cat(parts)

    @torch.no_grad()
    def forward(self, pattern: Tensor, compute_derivatives: bool = False) -> NetworkStepResult:
        """
        Advance the network by one step.

        Parameters
        ----------
        pattern : Tensor [input_features]
            External input.
        compute_derivatives : bool, optional
            Also return d output / d parameters, shape [O, P].

        Returns
        -------
        NetworkStepResult

        Raises
        ------
        InvalidArgumentError
            If `pattern` has the wrong width.
        """
        cfg = self.cfg
        _check_width(pattern, cfg.input_features, "input pattern")
        pattern = pattern.to(self.dtype)

        block_input = torch.cat(
            [
                torch.ones(1, dtype=self.dtype, device=DEVICE),
                pattern,
                self._recurrent_signal(),
            ]
        )
        results = [block(block_input, compute_derivatives) for block in self.blocks]
        self.previous_block_outputs.copy_(torch.cat([r.output for r in results]))

        readout_input = self._readout_input(pattern, results)
        output, net = self.readout(readout_input)

        derivative = None
        if compute_derivatives:
            to_readout_input = self.readout.input_derivative(net)
            start = (1 if cfg.bias_to_output else 0) + (
                cfg.input_features if cfg.input_to_output else 0
            )
            stride = cfg.cells_per_block + (GATE_COUNT if cfg.gate_to_output else 0)
            C = cfg.cells_per_block
            parts = []
            for result in results:
                to_cells = to_readout_input[:, start : start + C]
                parts.append(to_cells @ result.parameter_derivative[:C])
                start += stride
            parts.append(
                cfg.output_weights_local_gradient_factor
                * self.readout.parameter_derivative(readout_input, net)
            )
            derivative = torch.cat(parts, dim=1)

        return NetworkStepResult(
            output=output,
            internal_states=torch.cat([r.state for r in results]),
            internal_activations=torch.cat([r.cell_outputs for r in results]),
            input_gates=torch.stack([r.input_gate for r in results]),
            forget_gates=torch.stack([r.forget_gate for r in results]),
            output_gates=torch.stack([r.output_gate for r in results]),
            parameter_derivative=derivative,
        )
