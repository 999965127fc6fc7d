"""
Bounded eligibility traces.

A trace is a decaying running sum of a signal, clipped elementwise to
[-1, 1] after every update. Optionally, a trace whose new input has the
opposite sign of a reference value is restarted from the input instead
of decayed.
"""

from typing import Optional

import torch
from torch import Tensor

from .util import _bound


def sign_agreement(a: Tensor, b: Tensor) -> Tensor:
    """
    Elementwise joint sign of two tensors.

    Returns 0 where a * b < 0, -1 where either value is negative (and the
    product is not), and 1 otherwise.

    Notes
    -----
    Zero counts as agreeing with its partner, but the result is -1 when
    the partner is negative and 1 when it is positive. A reset therefore
    only happens for strictly opposite signs.
    """
    ones = torch.ones_like(a)
    negative = (a < 0) | (b < 0)
    signs = torch.where(negative, -ones, ones)
    return torch.where(a * b < 0, torch.zeros_like(a), signs)


def update_trace(
    trace: Tensor,
    value: Tensor,
    decay: float,
    reset_on_sign_flip: bool = True,
    reference: Optional[Tensor] = None,
) -> Tensor:
    """
    Decay a trace and add a new value, clipping to [-1, 1].

    Parameters
    ----------
    trace : Tensor [N]
        Current trace.
    value : Tensor [N]
        New signal.
    decay : float
        Per-step decay factor (lambda).
    reset_on_sign_flip : bool
        If True, elements where `value` and `reference` have strictly
        opposite signs restart at clip(value).
    reference : Tensor [N], optional
        Tensor whose sign is compared with `value`. Defaults to `trace`.

    Returns
    -------
    Tensor [N]
        Updated trace, every element within [-1, 1].
    """
    decayed = _bound(trace * decay + value)
    if not reset_on_sign_flip:
        return decayed
    if reference is None:
        reference = trace
    flipped = sign_agreement(value, reference) == 0
    return torch.where(flipped, _bound(value), decayed)
