# arena_evo/agent/actions.py
from __future__ import annotations
from dataclasses import dataclass, astuple
from typing import List, Optional

import torch

from .. import config

# Output axis layout shared by both brains:
#   0 look_delta   [-1, 1]
#   1 shoot        thresholded to {0, 1}
#   2 forward      [0, 1]
#   3 strafe_left  [-1, 1]
#   4 strafe_right [-1, 1]
ACTION_AXES = ("look_delta", "shoot", "forward", "strafe_left", "strafe_right")
NUM_AXES = len(ACTION_AXES)


def _clamp(v: float, lo: float, hi: float) -> float:
    return lo if v < lo else hi if v > hi else v


@dataclass(frozen=True)
class ActionVector:
    look_delta: float = 0.0
    shoot: float = 0.0
    forward: float = 0.0
    strafe_left: float = 0.0
    strafe_right: float = 0.0

    @property
    def wants_to_shoot(self) -> bool:
        return self.shoot >= 0.5

    def to_list(self) -> List[float]:
        return [float(v) for v in astuple(self)]

    def as_tensor(self) -> torch.Tensor:
        return torch.tensor(self.to_list(), dtype=config.TORCH_DTYPE)

    @classmethod
    def from_output(cls, output: torch.Tensor,
                    shoot_threshold: Optional[float] = None) -> "ActionVector":
        """Map a raw (possibly noisy) network output onto the bounded action ranges."""
        thr = float(getattr(config, "SHOOT_THRESHOLD", 0.1) if shoot_threshold is None else shoot_threshold)
        o = [float(v) for v in output.reshape(-1).tolist()]
        if len(o) < NUM_AXES:
            o = o + [0.0] * (NUM_AXES - len(o))
        return cls(
            look_delta=_clamp(o[0], -1.0, 1.0),
            shoot=1.0 if o[1] > thr else 0.0,
            forward=_clamp(o[2], 0.0, 1.0),
            strafe_left=_clamp(o[3], -1.0, 1.0),
            strafe_right=_clamp(o[4], -1.0, 1.0),
        )

    @classmethod
    def random(cls, generator: torch.Generator, shoot_prob: float = 0.3) -> "ActionVector":
        u = torch.rand(NUM_AXES, generator=generator).tolist()
        return cls(
            look_delta=u[0] * 2.0 - 1.0,
            shoot=1.0 if u[1] < shoot_prob else 0.0,
            forward=u[2],
            strafe_left=u[3] * 2.0 - 1.0,
            strafe_right=u[4] * 2.0 - 1.0,
        )
