# arena_evo/evolution/fitness.py
from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import Dict, Iterable, List, Optional

from .. import config
from ..utils.logger import logger

_log = logger.bind(component="evolution")


@dataclass
class AgentFitness:
    agent_index: int
    fitness: float = 0.0
    total_reward: float = 0.0
    kills: int = 0
    survival_time: float = 0.0
    is_elite: bool = False

    def reset(self) -> None:
        self.fitness = 0.0
        self.total_reward = 0.0
        self.kills = 0
        self.survival_time = 0.0
        self.is_elite = False

    def as_dict(self) -> Dict[str, object]:
        return asdict(self)


def _clamp(v: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, v))


def composite_fitness(total_reward: float,
                      survival_time: float,
                      generation_duration: float,
                      agent_index: Optional[int] = None) -> float:
    """
    Blend of normalized reward and survival share, floored at -1.

      r = clamp(total / scale, -1, 1), with heavy losses softened to >= outlier_floor
      s = clamp(survival / duration, 0, 1)
      f = max(wR * r + wS * s, -1)
    """
    scale = float(getattr(config, "FITNESS_REWARD_SCALE", 400.0))
    w_r = float(getattr(config, "FITNESS_REWARD_WEIGHT", 0.8))
    w_s = float(getattr(config, "FITNESS_SURVIVAL_WEIGHT", 0.2))
    outlier = float(getattr(config, "FITNESS_OUTLIER_REWARD", -100.0))
    floor = float(getattr(config, "FITNESS_OUTLIER_FLOOR", -0.8))
    anomaly = float(getattr(config, "FITNESS_ANOMALY_REWARD", 10000.0))

    total = float(total_reward)
    if abs(total) > anomaly:
        _log.warning(f"fitness anomaly: agent {agent_index} total_reward={total:.1f}")

    r = total / scale
    if total < outlier:
        r = max(r, floor)
    r = _clamp(r, -1.0, 1.0)
    s = _clamp(float(survival_time) / float(generation_duration), 0.0, 1.0) if generation_duration > 0 else 0.0
    return max(w_r * r + w_s * s, -1.0)


def rank(table: Iterable[AgentFitness]) -> List[AgentFitness]:
    """Best first; ties keep the lower agent index first."""
    return sorted(table, key=lambda a: (-a.fitness, a.agent_index))


def elite_count(population_size: int, elite_percentage: float) -> int:
    """
    Number of elites kept per generation: round(N * pct), floored at 1 and capped at N.

    The floor means a small population (N=2 at 0.25 gives round(0.5) = 0) still has a
    parent to clone from instead of reinitializing every agent. round() is banker's
    rounding: 2.5 -> 2, 1.5 -> 2.
    """
    return min(population_size, max(1, int(round(population_size * elite_percentage))))
