import torch

from sdr.const import DTYPE
from sdr.traces import sign_agreement, update_trace


def t(*values):
    return torch.tensor(values, dtype=DTYPE)


def test_sign_agreement_cases():
    a = t(1.0, -1.0, 2.0, -2.0, 0.0, 0.0, 0.0, 3.0, -3.0)
    b = t(-1.0, 1.0, 2.0, -2.0, 0.0, -1.0, 1.0, 0.0, 0.0)
    expected = t(0.0, 0.0, 1.0, -1.0, 1.0, -1.0, 1.0, 1.0, -1.0)
    assert torch.equal(sign_agreement(a, b), expected)


def test_zero_never_triggers_reset():
    trace = t(0.5, -0.5)
    value = t(0.0, 0.0)
    updated = update_trace(trace, value, decay=0.5, reset_on_sign_flip=True)
    assert torch.allclose(updated, t(0.25, -0.25))


def test_opposite_sign_resets_to_clipped_value():
    trace = t(0.9, -0.9, 0.9)
    value = t(-3.0, 0.2, 0.1)
    updated = update_trace(trace, value, decay=0.8, reset_on_sign_flip=True)
    assert torch.allclose(updated, t(-1.0, 0.2, 0.82))


def test_without_reset_opposite_sign_decays():
    trace = t(0.9)
    value = t(-0.2)
    updated = update_trace(trace, value, decay=0.5, reset_on_sign_flip=False)
    assert torch.allclose(updated, t(0.25))


def test_reference_overrides_trace_sign():
    trace = t(0.5, 0.5)
    value = t(0.3, 0.3)
    reference = t(-1.0, 1.0)
    updated = update_trace(trace, value, 0.5, True, reference=reference)
    assert torch.allclose(updated, t(0.3, 0.55))


def test_constant_input_approaches_but_never_exceeds_one():
    trace = torch.zeros(3, dtype=DTYPE)
    value = t(0.05, 0.5, 5.0)
    previous = trace.clone()
    for _ in range(500):
        trace = update_trace(trace, value, decay=0.9)
        assert torch.all(trace <= 1.0) and torch.all(trace >= -1.0)
        assert torch.all(trace >= previous)
        previous = trace
    assert torch.allclose(trace, t(0.5, 1.0, 1.0))


def test_alternating_input_stays_bounded():
    trace = torch.zeros(4, dtype=DTYPE)
    for step in range(200):
        sign = 1.0 if step % 3 else -1.0
        trace = update_trace(trace, t(2.0, -0.7, 0.4, 0.0) * sign, decay=1.0)
        assert trace.abs().max().item() <= 1.0
