# arena_evo/engine/tick.py
from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional

from .. import config
from ..agent.ensemble import ensemble_act
from ..evolution.controller import EvolutionController, GenerationReport
from ..evolution.population import Population
from ..rl.experience import Experience
from ..rl.trainer import PerAgentTrainer
from ..simulation.stats import TrainingStats
from ..utils.logger import logger
from .environment import Environment, observation_matrix

LOG_EVERY_TICKS = 500


@dataclass
class TickMetrics:
    tick: int = 0
    alive: int = 0
    deaths: int = 0
    trained: int = 0
    reward: float = 0.0
    generation_ended: bool = False


class TrainingLoop:
    """
    Fixed-rate driver wiring the arena to the agents.

    One tick:
      - read observations, let every living agent act (all actions before any training)
      - apply actions and step the arena by dt = 1 / target_tps
      - record one transition per acting agent; done = episode over or died this tick
      - advance the evolution controller; an early finish (episode over or at most
        one survivor) ends the generation
    """
    def __init__(self,
                 environment: Environment,
                 population: Population,
                 trainer: PerAgentTrainer,
                 controller: EvolutionController,
                 stats: Optional[TrainingStats] = None,
                 target_tps: Optional[float] = None,
                 max_workers: Optional[int] = None) -> None:
        self.env = environment
        self.population = population
        self.trainer = trainer
        self.controller = controller
        self.stats = stats if stats is not None else TrainingStats()
        tps = float(target_tps if target_tps is not None else getattr(config, "TARGET_TPS", 50))
        if tps <= 0.0:
            raise ValueError("target_tps must be positive")
        self.dt = 1.0 / tps
        self.max_workers = max_workers
        self.running = False
        self.last_report: Optional[GenerationReport] = None
        self.log = logger.bind(component="loop")

    def run_tick(self) -> TickMetrics:
        n = len(self.population)
        metrics = TickMetrics(tick=self.stats.tick + 1)

        obs = observation_matrix(self.env.get_current_state(), n)
        acting = [i for i in range(n) if self.env.is_agent_alive(i)]
        policies = [self.population[i] for i in acting]

        actions = ensemble_act(policies, obs[acting], self.max_workers)
        values = [p.value(obs[i]) for p, i in zip(policies, acting)]
        for a, i in zip(actions, acting):
            self.env.apply_action(a, i)

        self.env.step(self.dt)
        next_obs = observation_matrix(self.env.get_current_state(), n)
        finished = bool(self.env.is_episode_finished())

        rewards: List[float] = []
        for k, i in enumerate(acting):
            policy = self.population[i]
            r = float(self.env.get_last_step_reward(i))
            died = not self.env.is_agent_alive(i)
            rewards.append(r)
            policy.add_reward(r)
            policy.stats.time_alive += self.dt

            exp = Experience.make(obs[i], actions[k].to_list(), r, next_obs[i], finished or died, value=values[k])
            report = self.trainer.record(i, exp)
            if report is not None:
                metrics.trained += 1
                self.stats.add_train(report.samples, report.loss)
            if died:
                metrics.deaths += 1
                policy.on_episode_end()

        self.stats.add_deaths(metrics.deaths)
        self.stats.on_tick_advanced(rewards)
        metrics.reward = float(sum(rewards))
        metrics.alive = int(self.env.get_alive_agent_count())

        gen = self.controller.update(self.dt)
        if gen is None and (finished or (n > 1 and metrics.alive <= 1)):
            gen = self.controller.signal_episode_end()
        if gen is not None:
            metrics.generation_ended = True
            self.last_report = gen
            self.stats.add_generation(gen.generation, gen.average_fitness, gen.best_fitness, gen.evolved)

        if self.stats.tick % LOG_EVERY_TICKS == 0:
            row = self.stats.drain()
            self.log.info(
                f"tick {self.stats.tick} gen {self.controller.current_generation} "
                f"alive={metrics.alive} updates={int(row['train_updates'])} "
                f"mean_loss={row['mean_loss']:.4f} progress={self.controller.generation_progress():.0%}"
            )
        return metrics

    def run(self, max_ticks: Optional[int] = None) -> TrainingStats:
        """Tick until `max_ticks` (forever when None) or Ctrl+C."""
        self.running = True
        self.log.info(f"training loop started, dt={self.dt:.4f}s, agents={len(self.population)}")
        try:
            while self.running and (max_ticks is None or self.stats.tick < max_ticks):
                self.run_tick()
        except KeyboardInterrupt:
            self.log.warning("interrupted, stopping training loop")
        finally:
            self.running = False
        return self.stats

    def stop(self) -> None:
        self.running = False


def build_training(environment: Environment,
                   writer=None,
                   run_dir: Optional[str] = None,
                   background: bool = True) -> TrainingLoop:
    """
    Wire a population, trainer, controller and loop from the current config.
    Starts `writer` (a CheckpointWriter) with the config snapshot when given.
    """
    log = logger.bind(component="loop")
    log.info(config.summary_str())
    if writer is not None and writer.run_dir is None:
        writer.start(config.config_snapshot(), run_dir=run_dir, background=background)
    population = Population.build()
    trainer = PerAgentTrainer(population)
    controller = EvolutionController(population, environment, trainer=trainer, writer=writer)
    return TrainingLoop(environment, population, trainer, controller)
