"""
LSTM-style memory block with peephole connections and a truncated
real-time recurrent learning (RTRL) derivative recursion.
"""

import logging
from typing import Optional

import torch
from torch import Tensor
from torch.nn import Module, Parameter

from sdr.const import DEVICE, DTYPE
from sdr.exceptions import InvalidConfigurationError
from sdr.traces import update_trace
from sdr.types import BlockStepResult
from sdr.units import ActivationUnit, LinearUnit, LogisticUnit, check_unit
from sdr.util import _check_width, _uniform

logger = logging.getLogger(__name__)


class MemoryBlock(Module):
    """
    One gated memory block with C cells sharing an input, forget and
    output gate.

    Forward pass for input x [I] and previous state s' [C]:

        in    = f_in(w_in . x + p_in . s')
        fgt   = f_fgt(w_fgt . x + p_fgt . s')
        s_i   = in * g(W_i . x) + fgt * s'_i
        out   = f_out(w_out . x + p_out . s)
        y_i   = out * h(s_i)

    The block output is [y_1 .. y_C, in, fgt, out].

    When derivatives are requested, the derivative of the cell state with
    respect to the cell, input-gate and forget-gate weights is carried
    forward in time as `local term + fgt * previous derivative`. The
    recursion ignores the dependence of the previous state on the
    parameters through the peephole and recurrent paths.

    With `use_eligibility_traces`, the raw input and state multiplying the
    local terms are replaced by bounded decaying traces. The input and
    forget peephole terms use the cell trace from before this step, the
    output peephole term the freshly updated one.

    Parameters
    ----------
    input_features : int
        Width I of the block input (bias, external input and recurrent
        signals already concatenated).
    cells : int
        Number of memory cells C.
    dtype : torch.dtype
        Parameter precision.
    input_gate, forget_gate, output_gate : ActivationUnit, optional
        Gate functions. Default LogisticUnit().
    cell_input, cell_output : ActivationUnit, optional
        Squashing functions g and h. Default identity.
    use_eligibility_traces : bool, optional
        Use traces instead of raw values in the local gradient terms.
    trace_decay : float, optional
        Trace decay lambda. Default 0.8.
    reset_traces_on_sign_flip : bool, optional
        Restart trace elements on strictly opposite signs. Default True.
    generator : torch.Generator, optional
        Source for uniform weight initialization.
    initial_weight_range : (float, float), optional
        Initialization interval. Default (-0.1, 0.1).

    Attributes
    ----------
    cell_weight : Parameter [C, I]
    input_gate_weight, forget_gate_weight, output_gate_weight : Parameter [I]
    input_peephole, forget_peephole, output_peephole : Parameter [C]
    state : buffer [C]
        Cell state carried to the next step.
    input_trace : buffer [I]
    cell_trace : buffer [C]
        Eligibility traces, only updated when derivatives are requested.

    Raises
    ------
    InvalidConfigurationError
        If a gate or squashing function is not a single-input, stateless,
        differentiable unit, or if traces are enabled with fewer inputs
        than cells.
    """

    cell_weight: Parameter
    input_gate_weight: Parameter
    input_peephole: Parameter
    forget_gate_weight: Parameter
    forget_peephole: Parameter
    output_gate_weight: Parameter
    output_peephole: Parameter

    def __init__(
        self,
        *,
        input_features: int,
        cells: int,
        dtype: torch.dtype = DTYPE,
        input_gate: Optional[ActivationUnit] = None,
        forget_gate: Optional[ActivationUnit] = None,
        output_gate: Optional[ActivationUnit] = None,
        cell_input: Optional[ActivationUnit] = None,
        cell_output: Optional[ActivationUnit] = None,
        use_eligibility_traces: bool = False,
        trace_decay: float = 0.8,
        reset_traces_on_sign_flip: bool = True,
        generator: Optional[torch.Generator] = None,
        initial_weight_range=(-0.1, 0.1),
    ):
        super().__init__()

        self.dtype = dtype
        self.input_features = int(input_features)
        self.cells = int(cells)
        self.input_gate = check_unit(input_gate or LogisticUnit(), "input_gate")
        self.forget_gate = check_unit(forget_gate or LogisticUnit(), "forget_gate")
        self.output_gate = check_unit(output_gate or LogisticUnit(), "output_gate")
        self.cell_input = check_unit(cell_input or LinearUnit(), "cell_input")
        self.cell_output = check_unit(cell_output or LinearUnit(), "cell_output")
        self.use_eligibility_traces = bool(use_eligibility_traces)
        self.trace_decay = float(trace_decay)
        self.reset_traces_on_sign_flip = bool(reset_traces_on_sign_flip)

        n_in, C = self.input_features, self.cells
        if n_in < 1 or C < 1:
            raise InvalidConfigurationError(
                "a memory block needs at least one input and one cell."
            )
        if self.use_eligibility_traces and n_in < C:
            raise InvalidConfigurationError(
                f"eligibility traces need at least as many inputs as cells, got {n_in} < {C}."
            )
        low, high = initial_weight_range

        def init(*shape):
            return Parameter(
                _uniform(dtype, shape, low, high, generator), requires_grad=False
            )

        # Registration order is the parameter vector order.
        self.cell_weight = init(C, n_in)
        self.input_gate_weight = init(n_in)
        self.input_peephole = init(C)
        self.forget_gate_weight = init(n_in)
        self.forget_peephole = init(C)
        self.output_gate_weight = init(n_in)
        self.output_peephole = init(C)

        def zeros(*shape):
            return torch.zeros(*shape, dtype=dtype, device=DEVICE)

        self.register_buffer("state", zeros(C))
        self.register_buffer("cell_state_derivative", zeros(C, n_in))
        self.register_buffer("input_gate_state_derivative", zeros(C, n_in))
        self.register_buffer("input_peephole_state_derivative", zeros(C, C))
        self.register_buffer("forget_gate_state_derivative", zeros(C, n_in))
        self.register_buffer("forget_peephole_state_derivative", zeros(C, C))
        self.register_buffer("input_trace", zeros(n_in))
        self.register_buffer("cell_trace", zeros(C))

        logger.debug(
            "MemoryBlock: %d inputs, %d cells, %d parameters, traces=%s",
            n_in,
            C,
            self.parameter_count,
            self.use_eligibility_traces,
        )

    @property
    def output_features(self) -> int:
        return self.cells + 3

    @property
    def parameter_count(self) -> int:
        return self.input_features * (self.cells + 3) + 3 * self.cells

    def _parameter_views(self):
        return (
            self.cell_weight,
            self.input_gate_weight,
            self.input_peephole,
            self.forget_gate_weight,
            self.forget_peephole,
            self.output_gate_weight,
            self.output_peephole,
        )

    def get_parameters(self) -> Tensor:
        """
        Copy of the parameter vector.

        Order: cell weights row by row, then input gate weights and
        peepholes, forget gate weights and peepholes, output gate weights
        and peepholes.
        """
        return torch.cat([p.data.reshape(-1) for p in self._parameter_views()]).clone()

    @torch.no_grad()
    def set_parameters(self, parameters: Tensor):
        """
        Overwrite all parameters by value.

        Raises
        ------
        InvalidArgumentError
            If `parameters` is not a vector of length `parameter_count`.
        """
        _check_width(parameters, self.parameter_count, "parameters")
        offset = 0
        for p in self._parameter_views():
            n = p.numel()
            p.data.copy_(parameters[offset : offset + n].reshape(p.shape))
            offset += n

    @torch.no_grad()
    def reset(self):
        """Zero the cell state, the derivative accumulators and the traces."""
        for buffer in self.buffers():
            buffer.zero_()

    def _update_traces(self, x: Tensor, state: Tensor):
        self.input_trace.copy_(
            update_trace(
                self.input_trace, x, self.trace_decay, self.reset_traces_on_sign_flip
            )
        )
        previous_cell_trace = self.cell_trace.clone()
        # The cell trace reset compares each new state with the input trace
        # at the same index.
        self.cell_trace.copy_(
            update_trace(
                self.cell_trace,
                state,
                self.trace_decay,
                self.reset_traces_on_sign_flip,
                reference=self.input_trace[: self.cells],
            )
        )
        return self.input_trace.clone(), previous_cell_trace, self.cell_trace.clone()

    @torch.no_grad()
    def forward(self, x: Tensor, compute_derivatives: bool = False) -> BlockStepResult:
        """
        Advance the block by one step.

        Parameters
        ----------
        x : Tensor [I]
            Block input.
        compute_derivatives : bool, optional
            Also return the derivative of the outputs with respect to the
            parameters and advance the derivative accumulators.

        Returns
        -------
        BlockStepResult
            Output [C + 3], new state [C] and, if requested, the parameter
            derivative [C + 3, P].

        Raises
        ------
        InvalidArgumentError
            If `x` is not a vector of length `input_features`.
        """
        _check_width(x, self.input_features, "block input")
        x = x.to(self.dtype)
        previous_state = self.state.clone()

        net_in = self.input_gate_weight @ x + self.input_peephole @ previous_state
        in_gate = self.input_gate.value(net_in)
        net_fgt = self.forget_gate_weight @ x + self.forget_peephole @ previous_state
        fgt_gate = self.forget_gate.value(net_fgt)

        net_cell = self.cell_weight @ x
        candidate = self.cell_input.value(net_cell)
        state = in_gate * candidate + fgt_gate * previous_state

        net_out = self.output_gate_weight @ x + self.output_peephole @ state
        out_gate = self.output_gate.value(net_out)
        squashed = self.cell_output.value(state)
        cell_outputs = out_gate * squashed

        output = torch.cat([cell_outputs, torch.stack([in_gate, fgt_gate, out_gate])])
        self.state.copy_(state)

        if not compute_derivatives:
            return BlockStepResult(output=output, state=state.clone())

        if self.use_eligibility_traces:
            x_term, previous_state_term, state_term = self._update_traces(x, state)
        else:
            x_term, previous_state_term, state_term = x, previous_state, state

        # Output gate: no recursion, it does not feed back into the state.
        der_net_out = self.output_gate.derivative(net_out) * squashed
        d_output_gate = torch.outer(der_net_out, x_term)
        d_output_peephole = torch.outer(der_net_out, state_term)

        der_state = out_gate * self.cell_output.derivative(state)

        local_fgt = self.forget_gate.derivative(net_fgt) * previous_state
        cs_fgt = torch.outer(local_fgt, x_term) + fgt_gate * self.forget_gate_state_derivative
        cs_fgt_peephole = (
            torch.outer(local_fgt, previous_state_term)
            + fgt_gate * self.forget_peephole_state_derivative
        )

        local_in = candidate * self.input_gate.derivative(net_in)
        cs_in = torch.outer(local_in, x_term) + fgt_gate * self.input_gate_state_derivative
        cs_in_peephole = (
            torch.outer(local_in, previous_state_term)
            + fgt_gate * self.input_peephole_state_derivative
        )

        local_cell = in_gate * self.cell_input.derivative(net_cell)
        cs_cell = torch.outer(local_cell, x_term) + fgt_gate * self.cell_state_derivative

        derivative = torch.zeros(
            self.output_features, self.parameter_count, dtype=self.dtype, device=DEVICE
        )
        rows = der_state.unsqueeze(1)
        C = self.cells
        # Each cell output depends only on its own row of cell weights.
        derivative[:C, : C * self.input_features] = torch.block_diag(
            *(rows * cs_cell).unsqueeze(1)
        )
        offset = C * self.input_features
        for block in (
            rows * cs_in,
            rows * cs_in_peephole,
            rows * cs_fgt,
            rows * cs_fgt_peephole,
            d_output_gate,
            d_output_peephole,
        ):
            width = block.shape[1]
            derivative[:C, offset : offset + width] = block
            offset += width

        self.cell_state_derivative.copy_(cs_cell)
        self.input_gate_state_derivative.copy_(cs_in)
        self.input_peephole_state_derivative.copy_(cs_in_peephole)
        self.forget_gate_state_derivative.copy_(cs_fgt)
        self.forget_peephole_state_derivative.copy_(cs_fgt_peephole)

        return BlockStepResult(
            output=output, state=state.clone(), parameter_derivative=derivative
        )
