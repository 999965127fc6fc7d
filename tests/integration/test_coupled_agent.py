import pytest
import torch

from sdr.const import DEVICE, DTYPE
from sdr.exceptions import InvalidConfigurationError
from sdr.hyperparameters import CoupledAgentConfig
from sdr.paradigms import CoupledAgent
from sdr.records import RecordField
from sdr.task import (
    ConditioningExperiment,
    FlexibleSignalRepresentation,
    ObservableState,
    PredictionMonitor,
    run_episode,
)


def conditioning(seed=0):
    return ConditioningExperiment(generator=torch.Generator(device=DEVICE).manual_seed(seed))


@pytest.fixture
def agent():
    return CoupledAgent(CoupledAgentConfig(seed=3))


def test_task_representation_width_must_match():
    cfg = CoupledAgentConfig(cs_signal=True, us_signal=True)
    with pytest.raises(InvalidConfigurationError):
        CoupledAgent(cfg, FlexibleSignalRepresentation(cs=True))


def test_cortex_learning_rate_follows_dopamine(agent):
    summary = run_episode(agent, conditioning(), max_steps=120)
    for result in summary.results:
        expected = agent.cfg.predictor_lr * (1.0 + abs(result.dopamine))
        assert result.cortex.learning_rate == pytest.approx(expected)
    assert any(result.dopamine != 0.0 for result in summary.results)


def test_critic_sees_task_signals_and_previous_cortex_state(agent):
    agent.new_episode(ObservableState())
    first = agent.request_action(ObservableState(stimulus=1.0))
    expected = torch.zeros(1 + agent.cfg.cortex_state_features, dtype=DTYPE)
    expected[0] = 1.0
    assert torch.equal(first.basal_ganglia.stimulus, expected)

    second = agent.request_action(ObservableState(reward=1.0))
    assert second.basal_ganglia.stimulus[0] == 0.0
    assert torch.equal(second.basal_ganglia.stimulus[1:], first.cortex_state)


def test_cortex_state_is_bounded_output_and_cell_states(agent):
    summary = run_episode(agent, conditioning(1), max_steps=60)
    for result in summary.results:
        raw = torch.cat([result.cortex.output, result.cortex.network.internal_states])
        assert torch.equal(result.cortex_state, raw.clamp(0.0, 1.0))
    assert torch.equal(agent.cortex_state, summary.results[-1].cortex_state)


def test_reward_reaches_critic_through_observation(agent):
    agent.new_episode(ObservableState())
    agent.request_action(ObservableState(stimulus=1.0))
    agent.return_reward(ObservableState(reward=1.0), 123.0)
    result = agent.request_action(ObservableState(reward=1.0))
    assert result.basal_ganglia.reward == 1.0


def test_new_episode_clears_every_component(agent):
    run_episode(agent, conditioning(2), max_steps=40)
    agent.new_episode(ObservableState())
    assert torch.count_nonzero(agent.cortex_state) == 0
    assert torch.count_nonzero(agent.network.previous_block_outputs) == 0
    assert torch.count_nonzero(agent.cortex.previous_derivative) == 0
    assert agent.basal_ganglia.first_step


def test_record_nests_cortex(agent):
    agent.new_episode(ObservableState())
    record = agent.request_action(ObservableState(stimulus=1.0)).to_record()
    assert RecordField.DOPAMINE in record
    cortex = record.children["cortex"]
    assert RecordField.SUM_SQUARED_ERROR in cortex
    assert RecordField.LSTM_INTERNAL_STATES in cortex
    assert "cortex" in record.to_dict()


def test_same_seed_reproduces_the_run():
    def run(seed):
        agent = CoupledAgent(CoupledAgentConfig(seed=seed))
        summary = run_episode(agent, conditioning(4), max_steps=80)
        return agent.network.get_parameters(), [r.dopamine for r in summary.results]

    params_a, dopamine_a = run(9)
    params_b, dopamine_b = run(9)
    params_c, _ = run(10)
    assert torch.equal(params_a, params_b)
    assert dopamine_a == dopamine_b
    assert not torch.equal(params_a, params_c)


def test_learns_to_predict_reward_on_conditioning():
    agent = CoupledAgent(CoupledAgentConfig(seed=1))
    monitor = PredictionMonitor(threshold=0.5, window=300)
    summary = run_episode(agent, conditioning(5), max_steps=3000)
    for result in summary.results:
        monitor.update(result)
    assert monitor.step == len(summary.results)
    errors = torch.stack([r.cortex.sum_squared_error for r in summary.results])
    assert torch.isfinite(errors).all()
    assert errors[-500:].mean() < errors[:100].mean()
