"""
Shared fixtures: a scripted arena that satisfies the Environment protocol.
"""

from typing import Dict, List, Optional

import numpy as np
import pytest

OBS_DIM = 6
ACT_DIM = 5


class FakeArena:
    """
    Deterministic stand-in for the simulated world.

    - `step_rewards[i]` is paid to agent i on every step while alive
    - `deaths` maps tick number -> agent indices that die on that step
    - `finish_at` ends the episode on that tick (None = never)
    """

    def __init__(self, n_agents: int, obs_dim: int = OBS_DIM, step_rewards: Optional[List[float]] = None,
                 deaths: Optional[Dict[int, List[int]]] = None, finish_at: Optional[int] = None,
                 shared_obs: bool = False) -> None:
        self.n = n_agents
        self.obs_dim = obs_dim
        self.step_rewards = list(step_rewards) if step_rewards is not None else [0.0] * n_agents
        self.deaths = deaths or {}
        self.finish_at = finish_at
        self.shared_obs = shared_obs

        self.ticks = 0
        self.alive = [True] * n_agents
        self.cumulative = [0.0] * n_agents
        self.last = [0.0] * n_agents
        self.kills = [0] * n_agents
        self.applied: List[tuple] = []
        self.reset_calls = 0
        self.cumulative_resets = 0
        self.timeout_resets = 0

    # ---- protocol ----
    def step(self, dt: float) -> None:
        self.ticks += 1
        for i in range(self.n):
            self.last[i] = self.step_rewards[i] if self.alive[i] else 0.0
            self.cumulative[i] += self.last[i]
        for i in self.deaths.get(self.ticks, []):
            self.alive[i] = False

    def reset(self) -> None:
        self.reset_calls += 1
        self.ticks = 0
        self.alive = [True] * self.n
        self.last = [0.0] * self.n

    def apply_action(self, action, agent_index: int) -> None:
        self.applied.append((agent_index, action))

    def get_current_state(self):
        if self.shared_obs:
            return np.linspace(0.0, 1.0, self.obs_dim, dtype=np.float32)
        base = np.linspace(0.0, 1.0, self.obs_dim, dtype=np.float32)
        return np.stack([base * (i + 1) / self.n for i in range(self.n)])

    def is_agent_alive(self, agent_index: int) -> bool:
        return self.alive[agent_index]

    def get_alive_agent_count(self) -> int:
        return sum(self.alive)

    def get_reward(self, agent_index: int) -> float:
        return self.cumulative[agent_index]

    def get_last_step_reward(self, agent_index: int) -> float:
        return self.last[agent_index]

    def get_kill_count(self, agent_index: int) -> int:
        return self.kills[agent_index]

    def is_episode_finished(self) -> bool:
        return self.finish_at is not None and self.ticks >= self.finish_at

    def reset_cumulative_rewards(self) -> None:
        self.cumulative_resets += 1
        self.cumulative = [0.0] * self.n
        self.kills = [0] * self.n

    def reset_timeout_status(self) -> None:
        self.timeout_resets += 1


@pytest.fixture
def arena():
    return FakeArena(4, step_rewards=[1.0, 0.5, 0.0, -0.5])


@pytest.fixture
def ff_kwargs():
    return dict(input_size=OBS_DIM, hidden_sizes=(8, 6), output_size=ACT_DIM)


@pytest.fixture
def rnn_kwargs():
    return dict(input_size=OBS_DIM, hidden_size=8, output_size=ACT_DIM, dropout_rate=0.0,
                sequence_length=4, replay_capacity=64)


@pytest.fixture
def make_arena():
    return FakeArena
