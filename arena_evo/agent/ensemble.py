# arena_evo/agent/ensemble.py
from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor
from typing import Any, List, Optional, Sequence

import numpy as np
import torch

from .. import config
from .actions import ActionVector
from .policy import AgentPolicy


def observation_for(observations: Any, i: int) -> Any:
    """
    Row `i` of a per-agent (N, F) matrix, or the shared 1-D vector itself.
    """
    if isinstance(observations, torch.Tensor):
        return observations[i] if observations.dim() == 2 else observations
    arr = np.asarray(observations, dtype=np.float32)
    return arr[i] if arr.ndim == 2 else arr


@torch.no_grad()
def ensemble_act(policies: Sequence[AgentPolicy],
                 observations: Any,
                 max_workers: Optional[int] = None) -> List[ActionVector]:
    """
    Select one action per policy for this tick.

    Contract:
      - output is aligned with `policies` ordering
      - every action is produced before the caller trains anything
      - brains are independent, so forwards may run in a thread pool
    """
    K = len(policies)
    if K == 0:
        return []
    workers = int(getattr(config, "FORWARD_WORKERS", 1) if max_workers is None else max_workers)

    def _one(i: int) -> ActionVector:
        return policies[i].act(observation_for(observations, i))

    if workers <= 1 or K == 1:
        return [_one(i) for i in range(K)]
    with ThreadPoolExecutor(max_workers=min(workers, K)) as pool:
        return list(pool.map(_one, range(K)))
