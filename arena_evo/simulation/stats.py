# arena_evo/simulation/stats.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Optional
import time

import numpy as np


@dataclass
class GenerationSummary:
    generation: int
    avg_fitness: float
    best_fitness: float
    evolved: bool


class TrainingStats:
    """
    Run-scoped counters for the training loop: ticks, deaths, train updates and
    a short per-generation history. Rows feed the CSV writer.
    """
    def __init__(self) -> None:
        self.tick = 0
        self.episodes = 0
        self.deaths = 0
        self.train_updates = 0
        self.train_samples = 0
        self._losses: List[float] = []
        self._rewards: List[float] = []
        self.generations: List[GenerationSummary] = []
        self._t0 = time.perf_counter()

    # ---- timing ----
    @property
    def elapsed_seconds(self) -> float:
        return time.perf_counter() - self._t0

    def on_tick_advanced(self, step_rewards: Optional[List[float]] = None) -> None:
        self.tick += 1
        if step_rewards:
            self._rewards.append(float(np.sum(step_rewards)))

    # ---- wiring ----
    def add_deaths(self, count: int) -> None:
        self.deaths += int(count)

    def add_train(self, samples: int, loss: Optional[float]) -> None:
        self.train_updates += 1
        self.train_samples += int(samples)
        if loss is not None:
            self._losses.append(float(loss))

    def add_generation(self, generation: int, avg_fitness: float, best_fitness: float, evolved: bool) -> None:
        self.generations.append(GenerationSummary(int(generation), float(avg_fitness),
                                                  float(best_fitness), bool(evolved)))
        self.episodes += 1

    @property
    def best_avg_fitness(self) -> float:
        return max((g.avg_fitness for g in self.generations), default=0.0)

    # ---- rows ----
    def as_row(self) -> Dict[str, float]:
        return {
            "tick": float(self.tick),
            "elapsed_s": float(self.elapsed_seconds),
            "episodes": float(self.episodes),
            "deaths": float(self.deaths),
            "train_updates": float(self.train_updates),
            "train_samples": float(self.train_samples),
            "mean_loss": float(np.mean(self._losses)) if self._losses else 0.0,
            "mean_tick_reward": float(np.mean(self._rewards)) if self._rewards else 0.0,
            "best_avg_fitness": float(self.best_avg_fitness),
        }

    def drain(self) -> Dict[str, float]:
        """Row for the window since the previous drain; rolling buffers restart."""
        row = self.as_row()
        self._losses = []
        self._rewards = []
        return row
