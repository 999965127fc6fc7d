from .readout import Readout
from .value import Critic
from .policy import WinnerTakeAllPolicy

__all__ = [
    "Readout",
    "Critic",
    "WinnerTakeAllPolicy",
]
