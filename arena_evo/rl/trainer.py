# arena_evo/rl/trainer.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

import torch

from .. import config
from ..agent.base import BrainKind, PolicyBrain
from ..agent.brain import FeedforwardBrain
from ..agent.recurrent_brain import RecurrentBrain
from ..utils.logger import logger
from .advantage import compute_gae, normalize_advantages
from .experience import Experience, ExperienceBuffer


@dataclass
class TrainReport:
    agent: int
    kind: str
    samples: int
    mean_advantage: Optional[float] = None
    loss: Optional[float] = None


class PerAgentTrainer:
    """
    Minimal per-agent trainer:
      - one ExperienceBuffer per agent index
      - training fires when a transition is terminal or the buffer reaches batch_size
      - feedforward: advantage-weighted target + manual backward, critic regressed to returns
      - recurrent: replay-driven train_on_batch, buffer trimmed instead of cleared
    """

    def __init__(self, population: Sequence, **overrides) -> None:
        self.population = population

        # Hyperparams (overridable per instance)
        self.lr         = float(overrides.pop("learning_rate", getattr(config, "LEARNING_RATE", 0.001)))
        self.gamma      = float(overrides.pop("gamma", getattr(config, "GAMMA", 0.99)))
        self.lam        = float(overrides.pop("gae_lambda", getattr(config, "GAE_LAMBDA", 0.95)))
        self.batch_size = int(overrides.pop("batch_size", getattr(config, "BATCH_SIZE", 32)))
        self.mix        = float(overrides.pop("advantage_mix", getattr(config, "ADVANTAGE_MIX", 0.1)))
        self.trim_at    = int(overrides.pop("trim_at", getattr(config, "EXPERIENCE_TRIM_AT", 500)))
        self.trim_count = int(overrides.pop("trim_count", getattr(config, "EXPERIENCE_TRIM_COUNT", 100)))
        if overrides:
            raise TypeError(f"unknown trainer options: {sorted(overrides)}")
        if self.batch_size <= 0:
            raise ValueError("batch_size must be positive")

        self._buf: Dict[int, ExperienceBuffer] = {}
        self.updates = 0
        self.log = logger.bind(component="trainer")

    def _get_buf(self, i: int) -> ExperienceBuffer:
        if i not in self._buf:
            self._buf[i] = ExperienceBuffer()
        return self._buf[i]

    def buffer(self, i: int) -> ExperienceBuffer:
        return self._get_buf(i)

    def _brain(self, i: int) -> PolicyBrain:
        return self.population[i].brain

    # ---- recording ----
    def record(self, i: int, exp: Experience) -> Optional[TrainReport]:
        """Append one transition for agent `i`; train if it closes a window."""
        buf = self._get_buf(i)
        buf.append(exp)
        brain = self._brain(i)
        if brain.kind is BrainKind.RECURRENT:
            brain.store_experience(exp.state, exp.action, exp.reward, exp.done)
        if exp.done or len(buf) >= self.batch_size:
            return self.train_agent(i)
        return None

    # ---- training ----
    def train_agent(self, i: int) -> Optional[TrainReport]:
        buf = self._get_buf(i)
        if len(buf) == 0:
            return None
        brain = self._brain(i)
        if brain.kind is BrainKind.FEEDFORWARD:
            return self._train_feedforward(i, brain, buf)
        return self._train_recurrent(i, brain, buf)

    def _advantages(self, brain: PolicyBrain, buf: ExperienceBuffer):
        items = buf.items
        last = items[-1]
        last_value = 0.0
        if not last.done and getattr(brain, "use_value_network", False):
            last_value = brain.forward_value(last.next_state)
        adv, ret = compute_gae(
            [e.reward for e in items], [e.value for e in items], [e.done for e in items],
            self.gamma, self.lam, last_value,
        )
        norm = normalize_advantages(adv)
        for e, a, g in zip(items, norm.tolist(), ret.tolist()):
            e.advantage, e.ret = a, g
        return adv, norm

    @torch.no_grad()
    def _train_feedforward(self, i: int, brain: FeedforwardBrain, buf: ExperienceBuffer) -> TrainReport:
        adv, _ = self._advantages(brain, buf)
        losses = []
        for e in buf:
            y = brain.forward(e.state)
            target = torch.clamp(y + self.mix * e.advantage * (e.action - y), -1.0, 1.0)
            loss = brain.backward(e.state, target, self.lr)
            if loss is not None:
                losses.append(loss)
            if brain.use_value_network:
                brain.train_value(e.state, e.ret, self.lr)
        n = len(buf)
        buf.clear()
        self.updates += 1
        return TrainReport(
            agent=i, kind=brain.kind.value, samples=n,
            mean_advantage=float(adv.mean()),
            loss=(sum(losses) / len(losses)) if losses else None,
        )

    def _train_recurrent(self, i: int, brain: RecurrentBrain, buf: ExperienceBuffer) -> Optional[TrainReport]:
        # replay samples its own sequences; advantages are not needed here
        n = brain.train_on_batch(self.batch_size)
        dropped = buf.trim(self.trim_at, self.trim_count)
        if dropped:
            self.log.bind(agent=i).debug(f"trimmed {dropped} old transitions")
        if not n:
            return None
        self.updates += 1
        return TrainReport(agent=i, kind=brain.kind.value, samples=n)

    # ---- lifecycle ----
    def clear(self, i: int) -> None:
        self._buf.pop(i, None)

    def clear_all(self) -> None:
        self._buf.clear()

    def pending(self) -> Dict[int, int]:
        return {i: len(b) for i, b in self._buf.items() if len(b)}
