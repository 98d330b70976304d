# arena_evo/rl/experience.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Iterator, List

import torch

from ..agent.base import VectorLike, to_vector


@dataclass
class Experience:
    state: torch.Tensor
    action: torch.Tensor
    reward: float
    next_state: torch.Tensor
    done: bool
    value: float = 0.0
    advantage: float = 0.0
    ret: float = 0.0

    @classmethod
    def make(cls, state: VectorLike, action: VectorLike, reward: float,
             next_state: VectorLike, done: bool, value: float = 0.0) -> "Experience":
        """Owned float32 copies of every vector so later env mutation can't leak in."""
        return cls(
            state=to_vector(state).clone(),
            action=to_vector(action).clone(),
            reward=float(reward),
            next_state=to_vector(next_state).clone(),
            done=bool(done),
            value=float(value),
        )


class ExperienceBuffer:
    """Ordered per-agent transition list; oldest first."""

    def __init__(self) -> None:
        self._items: List[Experience] = []

    def append(self, exp: Experience) -> None:
        self._items.append(exp)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Experience]:
        return iter(self._items)

    def __getitem__(self, k: int) -> Experience:
        return self._items[k]

    @property
    def items(self) -> List[Experience]:
        return self._items

    def clear(self) -> None:
        self._items = []

    def trim(self, trim_at: int, trim_count: int) -> int:
        """Drop the oldest `trim_count` entries once longer than `trim_at`. Returns how many went."""
        if len(self._items) <= trim_at:
            return 0
        n = min(int(trim_count), len(self._items))
        del self._items[:n]
        return n
