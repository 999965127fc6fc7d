import pytest
import torch

from sdr.block import MemoryBlock
from sdr.const import DEVICE, DTYPE
from sdr.exceptions import InvalidArgumentError, InvalidConfigurationError
from sdr.traces import update_trace
from sdr.units import LinearUnit, squashing_unit
from tests.common import finite_difference, linear_block, random_sequence, zero_peepholes

I, C = 5, 3


@pytest.fixture
def block():
    generator = torch.Generator(device=DEVICE).manual_seed(11)
    return MemoryBlock(
        input_features=I,
        cells=C,
        dtype=DTYPE,
        cell_input=squashing_unit(True),
        cell_output=squashing_unit(True),
        generator=generator,
        initial_weight_range=(-1.0, 1.0),
    )


def with_bias(sequence):
    ones = torch.ones(sequence.shape[0], 1, dtype=DTYPE)
    return torch.cat([ones, sequence], dim=1)


def test_parameter_count_and_shapes(block):
    assert block.parameter_count == I * (C + 3) + 3 * C
    assert block.get_parameters().shape == (block.parameter_count,)
    assert block.output_features == C + 3


def test_parameter_vector_order(block):
    P = block.parameter_count
    block.set_parameters(torch.arange(P, dtype=DTYPE))
    assert torch.equal(block.cell_weight.flatten(), torch.arange(C * I, dtype=DTYPE))
    offset = C * I
    for weight, width in (
        (block.input_gate_weight, I),
        (block.input_peephole, C),
        (block.forget_gate_weight, I),
        (block.forget_peephole, C),
        (block.output_gate_weight, I),
        (block.output_peephole, C),
    ):
        assert torch.equal(weight, torch.arange(offset, offset + width, dtype=DTYPE))
        offset += width
    assert offset == P


def test_get_parameters_returns_copy(block):
    parameters = block.get_parameters()
    parameters.zero_()
    assert block.get_parameters().abs().sum() > 0


def test_set_parameters_wrong_length_leaves_block_untouched(block):
    before = block.get_parameters()
    with pytest.raises(InvalidArgumentError):
        block.set_parameters(torch.zeros(block.parameter_count + 1, dtype=DTYPE))
    assert torch.equal(block.get_parameters(), before)


def test_wrong_input_width_raises(block):
    with pytest.raises(InvalidArgumentError):
        block(torch.zeros(I + 1, dtype=DTYPE))


def test_gates_and_outputs_are_bounded():
    block = MemoryBlock(
        input_features=I,
        cells=C,
        dtype=DTYPE,
        cell_input=squashing_unit(True),
        cell_output=squashing_unit(True),
        generator=torch.Generator(device=DEVICE).manual_seed(1),
    )
    sequence = with_bias(random_sequence(50, I - 1, seed=1, scale=10.0))
    for x in sequence:
        result = block(x, compute_derivatives=True)
        gates = result.output[C:]
        assert torch.all(gates > 0.0) and torch.all(gates < 1.0)
        assert torch.all(result.cell_outputs.abs() < 1.0)
        assert result.output.shape == (C + 3,)


def test_gate_rows_have_zero_derivative(block):
    x = with_bias(random_sequence(1, I - 1, seed=2))[0]
    result = block(x, compute_derivatives=True)
    assert result.parameter_derivative.shape == (C + 3, block.parameter_count)
    assert torch.equal(
        result.parameter_derivative[C:], torch.zeros(3, block.parameter_count, dtype=DTYPE)
    )


def test_cell_output_only_depends_on_own_cell_weights(block):
    x = with_bias(random_sequence(1, I - 1, seed=3))[0]
    derivative = block(x, compute_derivatives=True).parameter_derivative
    for i in range(C):
        for j in range(C):
            columns = derivative[i, j * I : (j + 1) * I]
            if i != j:
                assert torch.equal(columns, torch.zeros(I, dtype=DTYPE))


def test_no_derivative_when_not_requested(block):
    x = with_bias(random_sequence(1, I - 1, seed=4))[0]
    result = block(x)
    assert result.parameter_derivative is None
    assert torch.equal(block.cell_state_derivative, torch.zeros(C, I, dtype=DTYPE))


def test_state_recursion(block):
    x = with_bias(random_sequence(2, I - 1, seed=5))
    first = block(x[0])
    second = block(x[1])
    in_gate, fgt_gate = second.input_gate, second.forget_gate
    candidate = block.cell_input.value(block.cell_weight @ x[1])
    assert torch.allclose(second.state, in_gate * candidate + fgt_gate * first.state)


def test_gradient_matches_finite_differences(block):
    zero_peepholes(block)
    sequence = with_bias(random_sequence(4, I - 1, seed=6))
    parameters = block.get_parameters()

    def run(p):
        block.set_parameters(p)
        block.reset()
        for x in sequence:
            result = block(x)
        return result.cell_outputs

    block.set_parameters(parameters)
    block.reset()
    for x in sequence:
        analytic = block(x, compute_derivatives=True).parameter_derivative[:C]

    indices = list(range(block.parameter_count))
    numeric = finite_difference(run, parameters, indices)
    assert torch.allclose(analytic, numeric, rtol=1e-4, atol=1e-8)


def test_reset_clears_state_and_accumulators(block):
    for x in with_bias(random_sequence(5, I - 1, seed=7)):
        block(x, compute_derivatives=True)
    parameters = block.get_parameters()
    block.reset()
    for buffer in block.buffers():
        assert torch.count_nonzero(buffer) == 0
    assert torch.equal(block.get_parameters(), parameters)


class _Stateful(LinearUnit):
    stateless = False


def test_rejects_stateful_gate():
    with pytest.raises(InvalidConfigurationError):
        MemoryBlock(input_features=I, cells=C, input_gate=_Stateful())


def test_rejects_non_unit_squash():
    with pytest.raises(InvalidConfigurationError):
        MemoryBlock(input_features=I, cells=C, cell_output=torch.tanh)


def test_traces_need_inputs_for_every_cell():
    with pytest.raises(InvalidConfigurationError):
        MemoryBlock(input_features=2, cells=3, use_eligibility_traces=True)


# ----- eligibility traces -----


def trace_pair(**kwargs):
    plain = linear_block(I, C)
    traced = linear_block(I, C, use_eligibility_traces=True, **kwargs)
    traced.set_parameters(plain.get_parameters())
    return plain, traced


def test_traced_block_matches_plain_block_on_first_step():
    plain, traced = trace_pair()
    x = with_bias(random_sequence(1, I - 1, seed=8, scale=0.9))[0]
    a = plain(x, compute_derivatives=True)
    b = traced(x, compute_derivatives=True)
    assert torch.allclose(a.output, b.output)
    assert torch.allclose(a.parameter_derivative, b.parameter_derivative)


def test_traced_block_uses_input_trace_for_output_gate():
    plain, traced = trace_pair(trace_decay=0.8)
    sequence = with_bias(random_sequence(2, I - 1, seed=9, scale=0.9))
    for x in sequence:
        a = plain(x, compute_derivatives=True)
        b = traced(x, compute_derivatives=True)
    assert torch.allclose(a.output, b.output)

    x = sequence[-1]
    start = C * I + 2 * (I + C)
    plain_out = a.parameter_derivative[:C, start : start + I]
    traced_out = b.parameter_derivative[:C, start : start + I]
    assert torch.allclose(traced_out * x, plain_out * traced.input_trace)

    expected_trace = update_trace(
        update_trace(torch.zeros(I, dtype=DTYPE), sequence[0], 0.8), sequence[1], 0.8
    )
    assert torch.allclose(traced.input_trace, expected_trace)


def test_traces_only_advance_with_derivatives():
    _, traced = trace_pair()
    traced(with_bias(random_sequence(1, I - 1, seed=10))[0])
    assert torch.count_nonzero(traced.input_trace) == 0
    assert torch.count_nonzero(traced.cell_trace) == 0


def test_traces_stay_bounded():
    _, traced = trace_pair(trace_decay=0.95)
    for x in with_bias(random_sequence(200, I - 1, seed=12, scale=20.0)):
        traced(x, compute_derivatives=True)
        assert traced.input_trace.abs().max() <= 1.0
        assert traced.cell_trace.abs().max() <= 1.0


@pytest.mark.parametrize("reset, expected", [(True, -0.3), (False, -0.46)])
def test_cell_trace_sign_is_compared_with_input_trace(reset, expected):
    block = MemoryBlock(
        input_features=2,
        cells=1,
        use_eligibility_traces=True,
        trace_decay=0.8,
        reset_traces_on_sign_flip=reset,
    )
    parameters = torch.zeros(block.parameter_count, dtype=DTYPE)
    parameters[0] = -0.4
    block.set_parameters(parameters)
    x = torch.tensor([1.0, 0.0], dtype=DTYPE)

    block(x, compute_derivatives=True)
    assert torch.allclose(block.cell_trace, torch.tensor([-0.2], dtype=DTYPE))
    block(x, compute_derivatives=True)
    assert torch.allclose(block.state, torch.tensor([-0.3], dtype=DTYPE))
    assert torch.allclose(block.cell_trace, torch.tensor([expected], dtype=DTYPE))
