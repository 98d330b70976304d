# arena_evo/agent/__init__.py
from __future__ import annotations

from .actions import ActionVector
from .base import BrainKind, PolicyBrain
from .brain import FeedforwardBrain
from .factory import build_brain
from .policy import AgentPolicy
from .recurrent_brain import RecurrentBrain

__all__ = ["ActionVector", "AgentPolicy", "BrainKind", "FeedforwardBrain",
           "PolicyBrain", "RecurrentBrain", "build_brain"]
