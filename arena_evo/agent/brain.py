# arena_evo/agent/brain.py
from __future__ import annotations
import math
from typing import Any, Dict, Optional, Sequence, Tuple

import torch

from .. import config
from .base import BrainKind, PolicyBrain, VectorLike


class FeedforwardBrain(PolicyBrain):
    """
    Per-agent actor-critic with hand-written gradients.

    Actor : obs -> ReLU(h1) -> ReLU(h2) -> tanh(out)      (bounded continuous actions)
    Critic: obs -> ReLU(h1) -> ReLU(h2) -> linear(1)      (separate weights, optional)

    Weights are stored (fan_in, fan_out) so a layer is `x @ W + b`; documents
    flatten them row-major in that orientation.
    """
    kind = BrainKind.FEEDFORWARD

    def __init__(self,
                 input_size: Optional[int] = None,
                 hidden_sizes: Optional[Sequence[int]] = None,
                 output_size: Optional[int] = None,
                 use_value_network: Optional[bool] = None,
                 seed: Optional[int] = None) -> None:
        hidden = tuple(hidden_sizes) if hidden_sizes is not None else (
            int(getattr(config, "FF_HIDDEN1", 128)), int(getattr(config, "FF_HIDDEN2", 64)))
        if len(hidden) != 2:
            raise ValueError(f"feedforward brain needs exactly two hidden sizes, got {list(hidden)}")
        super().__init__(
            input_size if input_size is not None else int(getattr(config, "OBS_DIM", 38)),
            hidden,
            output_size if output_size is not None else int(getattr(config, "ACTION_DIM", 5)),
            seed=seed,
        )
        self.use_value_network = bool(getattr(config, "USE_VALUE_NETWORK", True)
                                      if use_value_network is None else use_value_network)
        self._actor: Dict[str, torch.Tensor] = {}
        self._critic: Optional[Dict[str, torch.Tensor]] = None

    # -------- Init: uniform(-1, 1) * sqrt(2 / fan_in), zero biases --------
    def _xavier(self, rows: int, cols: int) -> torch.Tensor:
        scale = math.sqrt(2.0 / rows)
        u = torch.rand((rows, cols), generator=self.generator, dtype=config.TORCH_DTYPE)
        return (u * 2.0 - 1.0) * scale

    def _stack(self, out_dim: int) -> Dict[str, torch.Tensor]:
        h1, h2 = self.hidden_sizes
        return {
            "w_in_h1":  self._xavier(self.input_size, h1),
            "b_h1":     torch.zeros(h1, dtype=config.TORCH_DTYPE),
            "w_h1_h2":  self._xavier(h1, h2),
            "b_h2":     torch.zeros(h2, dtype=config.TORCH_DTYPE),
            "w_h2_out": self._xavier(h2, out_dim),
            "b_out":    torch.zeros(out_dim, dtype=config.TORCH_DTYPE),
        }

    def _init_params(self) -> None:
        self._actor = self._stack(self.output_size)
        self._critic = self._stack(1) if self.use_value_network else None

    def parameters(self) -> Dict[str, torch.Tensor]:
        self._ensure_init()
        return self._actor

    def critic_parameters(self) -> Optional[Dict[str, torch.Tensor]]:
        self._ensure_init()
        return self._critic

    def hyperparameters(self) -> Dict[str, Any]:
        return {"use_value_network": self.use_value_network}

    # -------- passes --------
    @staticmethod
    def _pass(p: Dict[str, torch.Tensor], x: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        h1 = torch.relu(x @ p["w_in_h1"] + p["b_h1"])
        h2 = torch.relu(h1 @ p["w_h1_h2"] + p["b_h2"])
        z = h2 @ p["w_h2_out"] + p["b_out"]
        return h1, h2, z

    @torch.no_grad()
    def forward(self, x: VectorLike) -> torch.Tensor:
        """Returns (output_size,) actions in [-1, 1]; zeros on a size mismatch."""
        self._ensure_init()
        v = self._checked(x, self.input_size, "input")
        if v is None:
            return torch.zeros(self.output_size, dtype=config.TORCH_DTYPE)
        _, _, z = self._pass(self._actor, v)
        return torch.tanh(z)

    @torch.no_grad()
    def forward_value(self, x: VectorLike) -> float:
        """Unbounded state-value estimate; 0.0 when the critic is disabled."""
        self._ensure_init()
        if self._critic is None:
            return self._value_disabled()
        v = self._checked(x, self.input_size, "value input")
        if v is None:
            return 0.0
        _, _, z = self._pass(self._critic, v)
        return float(z[0])

    # -------- manual gradient steps --------
    @staticmethod
    def _descend(p: Dict[str, torch.Tensor], x: torch.Tensor, h1: torch.Tensor, h2: torch.Tensor,
                 d_out: torch.Tensor, lr: float) -> None:
        # All deltas come from the pre-update weights, then every layer moves at once.
        d_h2 = (p["w_h2_out"] @ d_out) * (h2 > 0).to(h2.dtype)
        d_h1 = (p["w_h1_h2"] @ d_h2) * (h1 > 0).to(h1.dtype)

        p["w_h2_out"].add_(torch.outer(h2, d_out), alpha=lr)
        p["b_out"].add_(d_out, alpha=lr)
        p["w_h1_h2"].add_(torch.outer(h1, d_h2), alpha=lr)
        p["b_h2"].add_(d_h2, alpha=lr)
        p["w_in_h1"].add_(torch.outer(x, d_h1), alpha=lr)
        p["b_h1"].add_(d_h1, alpha=lr)

    @torch.no_grad()
    def backward(self, x: VectorLike, target: VectorLike, learning_rate: float) -> Optional[float]:
        """
        One in-place gradient step pulling forward(x) toward `target`.

        The forward pass is re-run on `x` so cached activations always belong to
        this input. Error is `target - output`; the tanh derivative scales it at
        the output and ReLU masks gate it through both hidden layers.
        Returns the pre-step loss 0.5 * ||target - output||^2, or None if skipped.
        """
        self._ensure_init()
        t = self._checked(target, self.output_size, "target")
        v = self._checked(x, self.input_size, "input")
        if t is None or v is None:
            return None
        h1, h2, z = self._pass(self._actor, v)
        y = torch.tanh(z)
        err = t - y
        self._descend(self._actor, v, h1, h2, err * (1.0 - y * y), float(learning_rate))
        return float(0.5 * (err * err).sum())

    @torch.no_grad()
    def train_value(self, x: VectorLike, target: float, learning_rate: float) -> Optional[float]:
        """Regress the critic toward a return target. Returns the pre-step squared error / 2."""
        self._ensure_init()
        if self._critic is None:
            return None
        v = self._checked(x, self.input_size, "value input")
        if v is None:
            return None
        h1, h2, z = self._pass(self._critic, v)
        err = float(target) - z
        self._descend(self._critic, v, h1, h2, err, float(learning_rate))
        return float(0.5 * err[0] * err[0])

    def reset_memory(self) -> None:
        pass

    def clone(self, seed: Optional[int] = None) -> "FeedforwardBrain":
        """Same shape and settings, copied weights, no shared tensors."""
        self._ensure_init()
        twin = FeedforwardBrain(
            input_size=self.input_size,
            hidden_sizes=self.hidden_sizes,
            output_size=self.output_size,
            use_value_network=self.use_value_network,
            seed=self.seed if seed is None else seed,
        )
        twin._actor = {k: t.clone() for k, t in self._actor.items()}
        twin._critic = {k: t.clone() for k, t in self._critic.items()} if self._critic is not None else None
        twin.is_initialized = True
        return twin
