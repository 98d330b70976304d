"""
Reinforcement learning components for arena_evo.

Per-agent experience buffers, generalized advantage estimation and the
trainer that turns a filled buffer into a network update.
"""

from .experience import Experience, ExperienceBuffer
from .trainer import PerAgentTrainer, TrainReport

__all__ = ["Experience", "ExperienceBuffer", "PerAgentTrainer", "TrainReport"]
