from .predictive_learning import OnlinePredictiveLearner
from .actor_critic import ActorCriticAgent
from .coupled import CoupledAgent

__all__ = [
    "OnlinePredictiveLearner",
    "ActorCriticAgent",
    "CoupledAgent",
]
