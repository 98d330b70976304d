# arena_evo/engine/environment.py
from __future__ import annotations
from typing import Any, Protocol, runtime_checkable

import numpy as np

from ..agent.actions import ActionVector


@runtime_checkable
class Environment(Protocol):
    """
    The simulated arena as seen from the training side.

    Physics, ray casting, spawning and life/death all live behind this seam.
    `get_current_state` returns either one shared observation vector or an
    (N, obs_dim) matrix with one row per agent.
    """

    def step(self, dt: float) -> None: ...

    def reset(self) -> None: ...

    def apply_action(self, action: ActionVector, agent_index: int) -> None: ...

    def get_current_state(self) -> Any: ...

    def is_agent_alive(self, agent_index: int) -> bool: ...

    def get_alive_agent_count(self) -> int: ...

    def get_reward(self, agent_index: int) -> float: ...

    def get_last_step_reward(self, agent_index: int) -> float: ...

    def get_kill_count(self, agent_index: int) -> int: ...

    def is_episode_finished(self) -> bool: ...

    def reset_cumulative_rewards(self) -> None: ...

    def reset_timeout_status(self) -> None: ...


def observation_matrix(state: Any, n_agents: int) -> np.ndarray:
    """
    Normalize an environment state to (n_agents, obs_dim) float32.
    A shared 1-D vector is broadcast to every agent.
    """
    arr = np.asarray(state, dtype=np.float32)
    if arr.ndim == 1:
        return np.broadcast_to(arr, (n_agents, arr.shape[0])).copy()
    if arr.ndim == 2 and arr.shape[0] == n_agents:
        return arr
    raise ValueError(f"state shape {arr.shape} does not fit {n_agents} agents")
