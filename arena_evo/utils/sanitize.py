# arena_evo/utils/sanitize.py
from __future__ import annotations
import math
from typing import Dict, Iterable, List

import torch


def all_finite(values: Iterable[float]) -> bool:
    return all(math.isfinite(float(v)) for v in values)


def non_finite_params(params: Dict[str, torch.Tensor]) -> List[str]:
    """Names of parameter tensors holding NaN/inf."""
    return [name for name, t in params.items() if not torch.isfinite(t).all()]


def runtime_sanity_check(population) -> List[int]:
    """
    Call this occasionally in long runs to catch corruption early.
    Returns the indices of agents whose weights went non-finite.
    """
    bad: List[int] = []
    for i, policy in enumerate(population):
        if non_finite_params(policy.brain.parameters()):
            bad.append(i)
    return bad
