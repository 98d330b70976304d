# arena_evo/agent/factory.py
from __future__ import annotations
from typing import Any, Optional

from .. import config
from .base import BrainKind, PolicyBrain
from .brain import FeedforwardBrain
from .recurrent_brain import RecurrentBrain


def build_brain(kind: "BrainKind | str | None" = None,
                seed: Optional[int] = None,
                initialize: bool = True,
                **overrides: Any) -> PolicyBrain:
    """
    Construct the configured brain variant. Unknown keyword overrides raise
    TypeError from the variant constructor, so typos do not pass silently.
    """
    k = BrainKind.parse(kind if kind is not None else getattr(config, "BRAIN_KIND", "recurrent"))
    if k is BrainKind.FEEDFORWARD:
        brain: PolicyBrain = FeedforwardBrain(seed=seed, **overrides)
    else:
        brain = RecurrentBrain(seed=seed, **overrides)
    if initialize:
        brain.initialize()
    return brain
