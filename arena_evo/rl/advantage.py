# arena_evo/rl/advantage.py
from __future__ import annotations
from typing import Sequence, Tuple

import torch

from .. import config


def _as_tensor(xs: Sequence[float] | torch.Tensor) -> torch.Tensor:
    if isinstance(xs, torch.Tensor):
        return xs.detach().to(dtype=config.TORCH_DTYPE).reshape(-1)
    return torch.tensor([float(v) for v in xs], dtype=config.TORCH_DTYPE)


@torch.no_grad()
def compute_gae(rewards: Sequence[float] | torch.Tensor,
                values: Sequence[float] | torch.Tensor,
                dones: Sequence[bool] | torch.Tensor,
                gamma: float,
                lam: float,
                last_value: float = 0.0) -> Tuple[torch.Tensor, torch.Tensor]:
    """
    rewards, values, dones: shape (T,)
    returns: (advantages, returns), both (T,)

    Backward pass:
      G_t = r_t + gamma * G_{t+1}                  (G reset to r_t at a done step)
      d_t = r_t + gamma * V_{t+1} - V_t
      A_t = d_t + gamma * lam * A_{t+1}
    At a done step V_{t+1} and A_{t+1} are masked to 0. The step after the last
    one is `last_value` (0 when the episode ended or no critic is available).
    """
    r = _as_tensor(rewards)
    v = _as_tensor(values)
    d = torch.as_tensor(dones, dtype=torch.bool).reshape(-1) if not isinstance(dones, torch.Tensor) \
        else dones.detach().to(torch.bool).reshape(-1)
    T = r.numel()
    if v.numel() != T or d.numel() != T:
        raise ValueError(f"length mismatch: rewards={T} values={v.numel()} dones={d.numel()}")

    adv = torch.zeros(T, dtype=config.TORCH_DTYPE)
    ret = torch.zeros(T, dtype=config.TORCH_DTYPE)
    next_value = float(last_value)
    next_adv = 0.0
    next_ret = float(last_value)

    for t in reversed(range(T)):
        mask = 0.0 if bool(d[t]) else 1.0
        rt = float(r[t])
        delta = rt + gamma * next_value * mask - float(v[t])
        a = delta + gamma * lam * mask * next_adv
        g = rt + gamma * next_ret * mask
        adv[t] = a
        ret[t] = g
        next_value, next_adv, next_ret = float(v[t]), a, g
    return adv, ret


@torch.no_grad()
def normalize_advantages(adv: torch.Tensor, eps: float | None = None) -> torch.Tensor:
    """(A - mean) / sqrt(population variance + eps). A single element maps to 0."""
    if adv.numel() == 0:
        return adv.clone()
    e = float(getattr(config, "ADV_EPS", 1e-8) if eps is None else eps)
    mean = adv.mean()
    var = ((adv - mean) ** 2).mean()
    return (adv - mean) / torch.sqrt(var + e)
