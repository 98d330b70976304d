# arena_evo/agent/policy.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

import torch

from .. import config
from .actions import ActionVector
from .base import PolicyBrain, VectorLike


@dataclass
class PolicyStats:
    total_reward: float = 0.0
    episodes: int = 0
    time_alive: float = 0.0
    actions_taken: int = 0

    def reset(self) -> None:
        self.total_reward = 0.0
        self.episodes = 0
        self.time_alive = 0.0
        self.actions_taken = 0


class AgentPolicy:
    """
    Binds one simulated agent (by index) to its brain.

    Owns the exploration stream: noise and random actions are drawn from a
    per-agent generator so two agents never share a random sequence.
    """

    def __init__(self,
                 index: int,
                 brain: PolicyBrain,
                 exploration_noise: Optional[float] = None,
                 random_actions: Optional[bool] = None,
                 random_shoot_prob: Optional[float] = None,
                 shoot_threshold: Optional[float] = None,
                 seed: Optional[int] = None) -> None:
        self.index = int(index)
        self.brain = brain
        self.exploration_noise = float(getattr(config, "EXPLORATION_NOISE", 0.1)
                                       if exploration_noise is None else exploration_noise)
        self.random_actions = bool(getattr(config, "RANDOM_ACTIONS", False)
                                   if random_actions is None else random_actions)
        self.random_shoot_prob = float(getattr(config, "RANDOM_SHOOT_PROB", 0.0)
                                       if random_shoot_prob is None else random_shoot_prob)
        self.shoot_threshold = float(getattr(config, "SHOOT_THRESHOLD", 0.1)
                                     if shoot_threshold is None else shoot_threshold)
        if self.exploration_noise < 0.0:
            raise ValueError("exploration_noise must be >= 0")

        self.generator = torch.Generator(device=config.TORCH_DEVICE)
        self.generator.manual_seed(int(seed) if seed is not None else brain.seed + 7919 * (self.index + 1))
        self.stats = PolicyStats()
        self.last_output: Optional[torch.Tensor] = None

    @property
    def kind(self):
        return self.brain.kind

    @torch.no_grad()
    def act(self, obs: VectorLike) -> ActionVector:
        self.stats.actions_taken += 1
        if self.random_actions:
            self.last_output = None
            return ActionVector.random(self.generator)

        out = self.brain.forward(obs)
        if self.exploration_noise > 0.0:
            u = torch.rand(out.shape, generator=self.generator, dtype=out.dtype)
            out = out + (u * 2.0 - 1.0) * self.exploration_noise
        self.last_output = out

        action = ActionVector.from_output(out, self.shoot_threshold)
        if self.random_shoot_prob > 0.0 and not action.wants_to_shoot:
            roll = float(torch.rand((), generator=self.generator))
            if roll < self.random_shoot_prob:
                action = ActionVector(action.look_delta, 1.0, action.forward,
                                      action.strafe_left, action.strafe_right)
        return action

    def value(self, obs: VectorLike) -> float:
        return self.brain.forward_value(obs)

    def add_reward(self, reward: float) -> None:
        self.stats.total_reward += float(reward)

    def on_episode_end(self) -> None:
        self.stats.episodes += 1
        if getattr(self.brain, "reset_memory_on_death", False):
            self.brain.reset_memory()

    def replace_brain(self, brain: PolicyBrain) -> None:
        """Swap in a new brain; exploration stats start over."""
        self.brain = brain
        self.stats.reset()
        self.last_output = None

    def __repr__(self) -> str:
        return f"AgentPolicy(index={self.index}, kind={self.brain.kind.value})"
