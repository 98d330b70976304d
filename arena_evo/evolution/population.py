# arena_evo/evolution/population.py
from __future__ import annotations
from typing import Iterator, List, Optional

from .. import config
from ..agent.base import BrainKind, PolicyBrain
from ..agent.factory import build_brain
from ..agent.policy import AgentPolicy


class Population:
    """
    Fixed-size, index-addressed set of agent bindings.

    Slot i always talks to simulated agent i; only the brain inside a slot is
    swapped at generation boundaries. Lineage tracks which slot each brain was
    cloned from (None for founders and surviving elites).
    """

    def __init__(self, policies: List[AgentPolicy]) -> None:
        if not policies:
            raise ValueError("population must contain at least one agent")
        self._policies = list(policies)
        self.generations: List[int] = [0] * len(self._policies)
        self.parents: List[Optional[int]] = [None] * len(self._policies)

    @classmethod
    def build(cls, size: Optional[int] = None, kind: "BrainKind | str | None" = None,
              seed: Optional[int] = None, **brain_overrides) -> "Population":
        n = int(size if size is not None else getattr(config, "POPULATION_SIZE", 8))
        if n <= 0:
            raise ValueError("population size must be positive")
        base = int(seed if seed is not None else getattr(config, "SEED", 0))
        policies = [
            AgentPolicy(i, build_brain(kind, seed=base + i, **brain_overrides))
            for i in range(n)
        ]
        return cls(policies)

    def __len__(self) -> int:
        return len(self._policies)

    def __iter__(self) -> Iterator[AgentPolicy]:
        return iter(self._policies)

    def __getitem__(self, i: int) -> AgentPolicy:
        return self._policies[i]

    @property
    def policies(self) -> List[AgentPolicy]:
        return self._policies

    def brains(self) -> List[PolicyBrain]:
        return [p.brain for p in self._policies]

    def replace_brain(self, i: int, brain: PolicyBrain, parent: Optional[int], generation: int) -> None:
        self._policies[i].replace_brain(brain)
        self.parents[i] = parent
        self.generations[i] = int(generation)

    def reset_memories(self) -> None:
        for p in self._policies:
            p.brain.reset_memory()
