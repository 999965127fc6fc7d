import torch

from sdr.const import DEVICE
from sdr.hyperparameters import CoupledAgentConfig
from sdr.paradigms import CoupledAgent
from sdr.task import ConditioningExperiment, ProbeExperiment, run_episode


def assert_bounded(agent):
    for block in agent.network.blocks:
        assert torch.all(block.input_trace.abs() <= 1.0)
        assert torch.all(block.cell_trace.abs() <= 1.0)
        assert torch.isfinite(block.state).all()
        assert torch.isfinite(block.cell_state_derivative).all()


def test_traces_stay_bounded_over_long_conditioning_run():
    agent = CoupledAgent(CoupledAgentConfig(trace_decay=0.99, seed=2))
    experiment = ConditioningExperiment(
        generator=torch.Generator(device=DEVICE).manual_seed(2)
    )
    summary = run_episode(agent, experiment, max_steps=2000)
    assert summary.steps == 2000
    assert_bounded(agent)
    assert torch.all((agent.cortex_state >= 0.0) & (agent.cortex_state <= 1.0))


def test_traces_without_sign_reset_stay_bounded():
    agent = CoupledAgent(
        CoupledAgentConfig(trace_decay=1.0, reset_traces_on_sign_flip=False, seed=4)
    )
    experiment = ProbeExperiment(
        max_trials=30, generator=torch.Generator(device=DEVICE).manual_seed(4)
    )
    summary = run_episode(agent, experiment, max_steps=5000)
    assert experiment.is_final
    assert summary.steps < 5000
    assert_bounded(agent)
