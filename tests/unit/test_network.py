import pytest
import torch

from sdr.const import DTYPE
from sdr.exceptions import InvalidArgumentError
from sdr.network import RecurrentNetwork
from sdr.units import LinearUnit
from tests.common import finite_difference, random_sequence, small_network_config, zero_peepholes


@pytest.fixture
def network():
    return RecurrentNetwork(small_network_config())


def test_derived_widths():
    cfg = small_network_config(input_features=3, num_blocks=2, cells_per_block=4)
    assert cfg.block_input_features == 1 + 3 + 2 * 4
    assert cfg.readout_input_features == 1 + 3 + 2 * (4 + 3)
    assert cfg.block_parameter_count == 12 * 7 + 3 * 4
    assert cfg.parameter_count == 2 * cfg.block_parameter_count + cfg.readout_input_features

    cfg = small_network_config(
        gate_to_gate=True, bias_to_output=False, input_to_output=False, gate_to_output=False
    )
    assert cfg.block_input_features == 1 + 2 + 2 * (2 + 3)
    assert cfg.readout_input_features == 2 * 2


def test_step_result_shapes(network):
    result = network(torch.tensor([0.5, -0.5], dtype=DTYPE), compute_derivatives=True)
    assert result.output.shape == (1,)
    assert result.parameter_derivative.shape == (1, network.parameter_count)
    assert result.internal_states.shape == (4,)
    assert result.internal_activations.shape == (4,)
    for gates in (result.input_gates, result.forget_gates, result.output_gates):
        assert gates.shape == (2,)
        assert torch.all((gates > 0) & (gates < 1))


def test_previous_outputs_are_kept(network):
    first = network(torch.tensor([1.0, 0.0], dtype=DTYPE))
    cells = network.previous_block_outputs.view(2, 5)[:, :2].reshape(-1)
    assert torch.allclose(cells, first.internal_activations)


def test_wrong_input_width_raises(network):
    with pytest.raises(InvalidArgumentError):
        network(torch.zeros(3, dtype=DTYPE))


def test_parameters_are_copied_by_value(network):
    parameters = network.get_parameters()
    assert parameters.shape == (network.parameter_count,)
    parameters += 1.0
    assert not torch.allclose(network.get_parameters(), parameters)

    network.set_parameters(parameters)
    parameters.zero_()
    assert torch.count_nonzero(network.get_parameters()) == network.parameter_count


def test_set_parameters_wrong_length_leaves_network_untouched(network):
    before = network.get_parameters()
    with pytest.raises(InvalidArgumentError):
        network.set_parameters(torch.zeros(network.parameter_count - 1, dtype=DTYPE))
    assert torch.equal(network.get_parameters(), before)


def test_parameter_vector_layout(network):
    P = network.parameter_count
    network.set_parameters(torch.arange(P, dtype=DTYPE))
    block_count = network.cfg.block_parameter_count
    assert torch.equal(
        network.blocks[1].get_parameters(),
        torch.arange(block_count, 2 * block_count, dtype=DTYPE),
    )
    assert torch.equal(
        network.readout.get_parameters(), torch.arange(2 * block_count, P, dtype=DTYPE)
    )


def test_same_seed_same_weights():
    a = RecurrentNetwork(small_network_config(seed=5))
    b = RecurrentNetwork(small_network_config(seed=5))
    c = RecurrentNetwork(small_network_config(seed=6))
    assert torch.equal(a.get_parameters(), b.get_parameters())
    assert not torch.equal(a.get_parameters(), c.get_parameters())
    assert a.get_parameters().abs().max() <= 0.1


@pytest.mark.parametrize(
    "overrides",
    [
        dict(gate_to_output=False),
        dict(gate_to_output=False, bias_to_output=False, input_to_output=False),
        dict(gate_to_output=False, gate_to_gate=True, output_features=2),
        dict(gate_to_output=False, output_unit=LinearUnit(), squash_cell_input=False),
    ],
)
def test_gradient_matches_finite_differences_on_first_step(overrides):
    cfg = small_network_config(initial_weight_range=(-1.0, 1.0), **overrides)
    network = RecurrentNetwork(cfg)
    for block in network.blocks:
        zero_peepholes(block)
    x = random_sequence(1, cfg.input_features, seed=3)[0]
    parameters = network.get_parameters()

    def run(p):
        network.set_parameters(p)
        network.reset()
        return network(x).output

    network.set_parameters(parameters)
    network.reset()
    analytic = network(x, compute_derivatives=True).parameter_derivative

    numeric = finite_difference(run, parameters, range(network.parameter_count))
    assert torch.allclose(analytic, numeric, rtol=1e-4, atol=1e-8)


def test_readout_factor_scales_only_readout_columns():
    x = torch.tensor([0.3, -0.8], dtype=DTYPE)
    plain = RecurrentNetwork(small_network_config())
    scaled = RecurrentNetwork(small_network_config(output_weights_local_gradient_factor=0.25))
    a = plain(x, compute_derivatives=True).parameter_derivative
    b = scaled(x, compute_derivatives=True).parameter_derivative
    split = 2 * plain.cfg.block_parameter_count
    assert torch.allclose(a[:, :split], b[:, :split])
    assert torch.allclose(0.25 * a[:, split:], b[:, split:])


def test_reset_is_idempotent(network):
    for x in random_sequence(6, 2, seed=4):
        network(x, compute_derivatives=True)
    network.reset()
    once = {name: buffer.clone() for name, buffer in network.named_buffers()}
    network.reset()
    twice = dict(network.named_buffers())
    assert once.keys() == twice.keys()
    for name, buffer in twice.items():
        assert torch.equal(buffer, once[name])
        assert torch.count_nonzero(buffer) == 0


def test_reset_restarts_the_sequence(network):
    sequence = random_sequence(5, 2, seed=8)
    first = [network(x).output for x in sequence]
    network.reset()
    second = [network(x).output for x in sequence]
    for a, b in zip(first, second):
        assert torch.equal(a, b)
