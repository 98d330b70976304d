# arena_evo/evolution/controller.py
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
import random
from typing import Any, Dict, List, Optional

from .. import config
from ..errors import PersistenceError
from ..utils.logger import logger
from ..utils.persistence import CheckpointWriter, timestamp_dir
from ..utils.sanitize import runtime_sanity_check
from .fitness import AgentFitness, composite_fitness, elite_count, rank
from .population import Population


class GenerationPhase(str, Enum):
    IDLE = "idle"
    ACCUMULATING = "accumulating"
    EVALUATING = "evaluating"
    EVOLVING = "evolving"
    SKIPPING = "skipping"
    RESET = "reset"


@dataclass
class GenerationReport:
    generation: int
    trigger: str
    average_fitness: float
    evolved: bool
    ranking: List[AgentFitness] = field(default_factory=list)
    parents: Dict[int, int] = field(default_factory=dict)

    @property
    def best_fitness(self) -> float:
        return self.ranking[0].fitness if self.ranking else 0.0

    def as_row(self) -> Dict[str, Any]:
        return {
            "generation": float(self.generation),
            "trigger": self.trigger,
            "avg_fitness": float(self.average_fitness),
            "best_fitness": float(self.best_fitness),
            "best_agent": float(self.ranking[0].agent_index) if self.ranking else -1.0,
            "total_reward": float(sum(a.total_reward for a in self.ranking)),
            "kills": float(sum(a.kills for a in self.ranking)),
            "evolved": float(self.evolved),
            "replaced": float(len(self.parents)),
        }


class EvolutionController:
    """
    Generation state machine over a fixed population.

      IDLE -> ACCUMULATING -> EVALUATING -> (EVOLVING | SKIPPING) -> RESET -> IDLE

    A generation ends when its duration elapses, the episode ends, no agent has
    earned a meaningful reward for `reward_timeout` seconds, or on demand.
    Elites are kept as-is and copied into every other slot; there is no
    weight perturbation (`mutation_rate` is carried but unused).
    """

    def __init__(self,
                 population: Population,
                 environment,
                 trainer=None,
                 writer: Optional[CheckpointWriter] = None,
                 save_dir: Optional[str] = None,
                 seed: Optional[int] = None,
                 **overrides: Any) -> None:
        self.population = population
        self.env = environment
        self.trainer = trainer
        self.writer = writer if writer is not None else CheckpointWriter()

        g = lambda key, name, default: overrides.pop(key, getattr(config, name, default))
        self.ga_enabled          = bool(g("ga_enabled", "GA_ENABLED", True))
        self.generation_duration = float(g("generation_duration", "GENERATION_DURATION", 10.0))
        self.success_threshold   = float(g("success_threshold", "SUCCESS_THRESHOLD", 0.1))
        self.mutation_rate       = float(g("mutation_rate", "MUTATION_RATE", 0.1))
        self.elite_percentage    = float(g("elite_percentage", "ELITE_PERCENTAGE", 0.2))
        self.auto_save_enabled   = bool(g("auto_save_enabled", "AUTO_SAVE_ENABLED", True))
        self.auto_save_interval  = float(g("auto_save_interval", "AUTO_SAVE_INTERVAL", 3600.0))
        self.reward_timeout      = float(g("reward_timeout", "REWARD_TIMEOUT", 5.0))
        self.reward_epsilon      = float(g("reward_epsilon", "REWARD_EPSILON", 0.1))
        self.reset_memory        = bool(g("reset_memory", "RESET_MEMORY_ON_DEATH", True))
        if overrides:
            raise TypeError(f"unknown controller options: {sorted(overrides)}")
        if self.generation_duration <= 0.0:
            raise ValueError("generation_duration must be positive")
        if not (0.0 < self.elite_percentage <= 1.0):
            raise ValueError("elite_percentage must be in (0, 1]")

        self.save_dir = Path(save_dir or self.writer.run_dir or getattr(config, "SAVE_DIR", "saved_models"))
        self.rng = random.Random(int(seed if seed is not None else getattr(config, "SEED", 0)))

        self.phase = GenerationPhase.IDLE
        self.current_generation = 0
        self.elapsed = 0.0
        self.since_auto_save = 0.0
        self.since_reward = 0.0
        self.fitness: List[AgentFitness] = [AgentFitness(i) for i in range(len(population))]
        self.history: List[Dict[str, Any]] = []
        self.last_report: Optional[GenerationReport] = None
        self.log = logger.bind(component="evolution")

    # ---- per-tick ----
    def update(self, dt: float) -> Optional[GenerationReport]:
        """Advance timers and per-agent survival; evaluate if a boundary was crossed."""
        dt = float(dt)
        if self.phase is GenerationPhase.IDLE:
            self.phase = GenerationPhase.ACCUMULATING
        self.elapsed += dt

        self.since_auto_save += dt
        if self.auto_save_enabled and self.since_auto_save >= self.auto_save_interval:
            self.since_auto_save = 0.0
            self.auto_save_all()

        rewarded = False
        for i, f in enumerate(self.fitness):
            if self.env.is_agent_alive(i):
                f.survival_time += dt
            if abs(float(self.env.get_last_step_reward(i))) > self.reward_epsilon:
                rewarded = True
        self.since_reward = 0.0 if rewarded else self.since_reward + dt

        if self.reward_timeout > 0.0 and self.since_reward >= self.reward_timeout:
            self.log.info(f"no reward for {self.since_reward:.1f}s, ending generation {self.current_generation}")
            return self.evaluate_generation("reward_timeout")
        if self.elapsed >= self.generation_duration:
            return self.evaluate_generation("duration")
        return None

    def signal_episode_end(self) -> Optional[GenerationReport]:
        return self.evaluate_generation("episode_end")

    def force_evolution(self) -> Optional[GenerationReport]:
        return self.evaluate_generation("forced")

    # ---- getters ----
    def average_fitness(self) -> float:
        if not self.fitness:
            return 0.0
        return sum(f.fitness for f in self.fitness) / len(self.fitness)

    def generation_progress(self) -> float:
        return min(1.0, self.elapsed / self.generation_duration)

    # ---- generation boundary ----
    def _score(self) -> None:
        for i, f in enumerate(self.fitness):
            f.total_reward = float(self.env.get_reward(i))
            f.kills = int(self.env.get_kill_count(i))
            f.fitness = composite_fitness(f.total_reward, f.survival_time, self.generation_duration, i)
            f.is_elite = False

    def evaluate_generation(self, trigger: str = "forced") -> Optional[GenerationReport]:
        if self.phase in (GenerationPhase.EVALUATING, GenerationPhase.EVOLVING,
                          GenerationPhase.SKIPPING, GenerationPhase.RESET):
            return None
        self.phase = GenerationPhase.EVALUATING
        gen = self.current_generation

        self._score()
        avg = self.average_fitness()
        ranking = rank(self.fitness)

        bad = runtime_sanity_check(self.population)
        if bad:
            self.log.warning(f"non-finite weights in agents {bad}")

        parents: Dict[int, int] = {}
        evolve = self.ga_enabled and avg < self.success_threshold
        if evolve:
            self.phase = GenerationPhase.EVOLVING
            parents = self._evolve(ranking, gen)
        else:
            self.phase = GenerationPhase.SKIPPING

        report = GenerationReport(
            generation=gen, trigger=trigger, average_fitness=avg, evolved=evolve,
            ranking=[AgentFitness(**a.as_dict()) for a in ranking], parents=parents,
        )
        self.log.info(
            f"gen {gen} [{trigger}] avg={avg:.3f} best={report.best_fitness:.3f} "
            f"{'evolved ' + str(len(parents)) + ' slots' if evolve else 'kept population'}"
        )
        row = report.as_row()
        self.history.append(row)
        self.writer.write_generation(row)
        self.last_report = report

        self._reset()
        return report

    def _evolve(self, ranking: List[AgentFitness], gen: int) -> Dict[int, int]:
        n = len(self.population)
        k = elite_count(n, self.elite_percentage)
        elites = ranking[:k]
        for e in elites:
            e.is_elite = True
            doc = self.population[e.agent_index].brain.to_document()
            self.writer.save_document(self.save_dir / f"elite_agent_{e.agent_index}_gen_{gen}.json", doc)

        elite_ids = {e.agent_index for e in elites}
        parents: Dict[int, int] = {}
        for i in range(n):
            if i in elite_ids:
                continue
            parent = self.rng.choice(elites).agent_index
            child = self.population[parent].brain.clone(seed=self.rng.randrange(2 ** 31))
            self.population.replace_brain(i, child, parent=parent, generation=gen + 1)
            if self.trainer is not None:
                self.trainer.clear(i)
            parents[i] = parent
        return parents

    def _reset(self) -> None:
        self.phase = GenerationPhase.RESET
        for f in self.fitness:
            f.reset()
        if self.reset_memory:
            self.population.reset_memories()
        if self.trainer is not None:
            self.trainer.clear_all()
        self.env.reset()
        self.env.reset_cumulative_rewards()
        self.env.reset_timeout_status()

        self.current_generation += 1
        self.elapsed = 0.0
        self.since_reward = 0.0
        self.phase = GenerationPhase.IDLE

    # ---- checkpoints ----
    def auto_save_all(self) -> Optional[Path]:
        """Write every brain plus generation stats into a fresh timestamped folder."""
        try:
            folder = timestamp_dir(self.save_dir, prefix="autosave")
        except PersistenceError as e:
            self.log.bind(component="checkpoint").error(f"auto-save skipped: {e}")
            return None
        docs = [(folder / f"agent_{i}.json", p.brain.to_document()) for i, p in enumerate(self.population)]
        docs.append((folder / "generation_stats.json", {
            "generation": self.current_generation,
            "average_fitness": self.average_fitness(),
            "fitness": [f.as_dict() for f in self.fitness],
            "history": list(self.history),
        }))
        self.writer.save_many(docs)
        self.log.bind(component="checkpoint").info(f"auto-saved {len(self.population)} agents to {folder}")
        return folder

    def force_save(self) -> Optional[Path]:
        return self.auto_save_all()
