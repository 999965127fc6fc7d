"""
Global constants for the stimulus-delay-reward simulation.

This module defines device configuration, numerical precision and the
input magnitude beyond which activation derivatives are clipped to zero.
"""

import torch

DEVICE = "cpu"
DTYPE = torch.float64
DERIVATIVE_CLIP = 25.0
