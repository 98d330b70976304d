# arena_evo/agent/recurrent_brain.py
from __future__ import annotations
from collections import deque
from dataclasses import dataclass
import math
from typing import Any, Deque, Dict, Optional

import torch

from .. import config
from .base import BrainKind, PolicyBrain, VectorLike

SHOOT_AXIS = 1          # sigmoid head; every other axis is tanh
VALUE_SCALE = 0.1       # value = clamp(VALUE_SCALE * sum(h), -1, 1)
LOG_EVERY_TRAIN_STEPS = 100

# Gate order inside the shared bias vector
_GATES = ("input", "forget", "candidate", "output")


@dataclass
class _Memory:
    cell: torch.Tensor
    hidden: torch.Tensor
    history: Deque[torch.Tensor]


@dataclass
class _Transition:
    state: torch.Tensor
    action: torch.Tensor
    reward: float
    done: bool


class RecurrentBrain(PolicyBrain):
    """
    Single-cell LSTM-style policy that keeps memory between ticks.

    Each forward concatenates [obs, h_prev], computes the four gates, updates
    c = clamp(f*c + i*g) and h = o*tanh(c), then projects h to the action head.

    Replay training nudges only the hidden->output projection, scaled by reward
    (no backprop through time). Dropout masks hidden units during replay only,
    so acting is deterministic for given weights and memory.
    """
    kind = BrainKind.RECURRENT

    def __init__(self,
                 input_size: Optional[int] = None,
                 hidden_size: Optional[int] = None,
                 output_size: Optional[int] = None,
                 sequence_length: Optional[int] = None,
                 learning_rate: Optional[float] = None,
                 dropout_rate: Optional[float] = None,
                 cell_clip: Optional[float] = None,
                 replay_capacity: Optional[int] = None,
                 reset_memory_on_death: Optional[bool] = None,
                 use_value_network: bool = True,
                 training: Optional[bool] = None,
                 seed: Optional[int] = None) -> None:
        super().__init__(
            input_size if input_size is not None else int(getattr(config, "OBS_DIM", 38)),
            (hidden_size if hidden_size is not None else int(getattr(config, "HIDDEN_SIZE", 64)),),
            output_size if output_size is not None else int(getattr(config, "ACTION_DIM", 5)),
            seed=seed,
        )
        self.hidden_size = self.hidden_sizes[0]
        self.sequence_length = int(sequence_length if sequence_length is not None
                                   else getattr(config, "SEQUENCE_LENGTH", 10))
        self.learning_rate = float(learning_rate if learning_rate is not None
                                   else getattr(config, "LEARNING_RATE", 0.001))
        self.dropout_rate = float(dropout_rate if dropout_rate is not None
                                  else getattr(config, "DROPOUT_RATE", 0.1))
        self.cell_clip = float(cell_clip if cell_clip is not None else getattr(config, "CELL_CLIP", 1.0))
        self.replay_capacity = int(replay_capacity if replay_capacity is not None
                                   else getattr(config, "REPLAY_CAPACITY", 2000))
        self.reset_memory_on_death = bool(getattr(config, "RESET_MEMORY_ON_DEATH", True)
                                          if reset_memory_on_death is None else reset_memory_on_death)
        self.use_value_network = bool(use_value_network)
        self.training = bool(getattr(config, "RECURRENT_TRAINING", True) if training is None else training)
        if self.sequence_length <= 0 or self.replay_capacity <= 0:
            raise ValueError("sequence_length and replay_capacity must be positive")
        if not (0.0 <= self.dropout_rate < 1.0):
            raise ValueError("dropout_rate must be in [0, 1)")

        self._p: Dict[str, torch.Tensor] = {}
        self.cell = torch.zeros(self.hidden_size, dtype=config.TORCH_DTYPE)
        self.hidden = torch.zeros(self.hidden_size, dtype=config.TORCH_DTYPE)
        self.history: Deque[torch.Tensor] = deque(maxlen=self.sequence_length)
        self.replay: Deque[_Transition] = deque(maxlen=self.replay_capacity)
        self.training_steps = 0

    # -------- Init: gaussian * sqrt(2 / (fan_in + fan_out)), forget bias = 1 --------
    def _gaussian(self, rows: int, cols: int, scale: float) -> torch.Tensor:
        return torch.randn((rows, cols), generator=self.generator, dtype=config.TORCH_DTYPE) * scale

    def _init_params(self) -> None:
        H = self.hidden_size
        concat = self.input_size + H
        gate_scale = math.sqrt(2.0 / (self.input_size + H))
        out_scale = math.sqrt(2.0 / (H + self.output_size))

        self._p = {f"w_{g}": self._gaussian(concat, H, gate_scale) for g in _GATES}
        self._p["w_hidden_out"] = self._gaussian(H, self.output_size, out_scale)
        biases = torch.zeros(4 * H + self.output_size, dtype=config.TORCH_DTYPE)
        biases[H:2 * H] = 1.0
        self._p["biases"] = biases

    def parameters(self) -> Dict[str, torch.Tensor]:
        self._ensure_init()
        return self._p

    def hyperparameters(self) -> Dict[str, Any]:
        return {
            "sequence_length": self.sequence_length,
            "learning_rate": self.learning_rate,
            "dropout_rate": self.dropout_rate,
            "cell_clip": self.cell_clip,
            "replay_capacity": self.replay_capacity,
            "reset_memory_on_death": self.reset_memory_on_death,
        }

    def _bias(self, k: int) -> torch.Tensor:
        H = self.hidden_size
        return self._p["biases"][k * H:(k + 1) * H]

    @property
    def _out_bias(self) -> torch.Tensor:
        return self._p["biases"][4 * self.hidden_size:]

    # -------- cell --------
    def _step_cell(self, x: torch.Tensor, dropout: bool = False) -> None:
        z = torch.cat([x, self.hidden])
        i = torch.sigmoid(z @ self._p["w_input"] + self._bias(0))
        f = torch.sigmoid(z @ self._p["w_forget"] + self._bias(1))
        g = torch.tanh(z @ self._p["w_candidate"] + self._bias(2))
        o = torch.sigmoid(z @ self._p["w_output"] + self._bias(3))

        self.cell = torch.clamp(f * self.cell + i * g, -self.cell_clip, self.cell_clip)
        h = o * torch.tanh(self.cell)
        if dropout and self.dropout_rate > 0.0:
            keep = torch.rand(self.hidden_size, generator=self.generator) >= self.dropout_rate
            h = h * keep.to(h.dtype)
        self.hidden = h

    def _head(self) -> torch.Tensor:
        z = self.hidden @ self._p["w_hidden_out"] + self._out_bias
        out = torch.tanh(z)
        if self.output_size > SHOOT_AXIS:
            out[SHOOT_AXIS] = torch.sigmoid(z[SHOOT_AXIS])
        return out

    @torch.no_grad()
    def forward(self, x: VectorLike) -> torch.Tensor:
        """Advance memory by one observation and return the action head output."""
        self._ensure_init()
        v = self._checked(x, self.input_size, "input")
        if v is None:
            return torch.zeros(self.output_size, dtype=config.TORCH_DTYPE)
        return self._advance(v, dropout=False)

    def _advance(self, v: torch.Tensor, dropout: bool) -> torch.Tensor:
        self.history.append(v.clone())
        self._step_cell(v, dropout)
        return self._head()

    @torch.no_grad()
    def forward_value(self, x: VectorLike) -> float:
        """
        Bounded value read from the memory left by the latest forward().
        Does not advance memory; `x` is only shape-checked.
        """
        self._ensure_init()
        if not self.use_value_network:
            return self._value_disabled()
        if self._checked(x, self.input_size, "value input") is None:
            return 0.0
        return float(torch.clamp(self.hidden.sum() * VALUE_SCALE, -1.0, 1.0))

    def reset_memory(self) -> None:
        self.cell.zero_()
        self.hidden.zero_()
        self.history.clear()

    def _snapshot(self) -> _Memory:
        return _Memory(self.cell.clone(), self.hidden.clone(), deque(self.history, maxlen=self.sequence_length))

    def _restore(self, m: _Memory) -> None:
        self.cell, self.hidden, self.history = m.cell, m.hidden, m.history

    # -------- replay --------
    def store_experience(self, state: VectorLike, action: VectorLike, reward: float, done: bool) -> None:
        if not self.training:
            return
        s = self._checked(state, self.input_size, "replay state")
        a = self._checked(action, self.output_size, "replay action")
        if s is None or a is None:
            return
        self.replay.append(_Transition(s.clone(), a.clone(), float(reward), bool(done)))
        if done and self.reset_memory_on_death:
            self.reset_memory()

    @torch.no_grad()
    def train_on_batch(self, batch_size: Optional[int] = None) -> int:
        """
        Reward-scaled nudge of the output projection on `batch_size` random replay
        samples. Returns the number of samples applied (0 when skipped).
        """
        n = int(batch_size if batch_size is not None else getattr(config, "BATCH_SIZE", 32))
        if not self.training or n <= 0 or len(self.replay) < n:
            return 0
        self._ensure_init()
        self.training_steps += 1

        live = self._snapshot()
        try:
            picks = torch.randint(len(self.replay), (n,), generator=self.generator).tolist()
            for k in picks:
                tr = self.replay[k]
                predicted = self._advance(tr.state, dropout=True)
                step = self.learning_rate * tr.reward
                err = tr.action - predicted
                self._p["w_hidden_out"].add_(torch.outer(self.hidden, err), alpha=step)
                self._out_bias.add_(err, alpha=step)
        finally:
            self._restore(live)

        if self.training_steps % LOG_EVERY_TRAIN_STEPS == 0:
            self.log.debug(f"recurrent training step {self.training_steps}, replay={len(self.replay)}")
        return n

    # -------- diagnostics --------
    def memory_stats(self) -> Dict[str, float]:
        h = self.hidden.abs()
        c = self.cell.abs()
        return {
            "hidden_avg": float(h.mean()),
            "hidden_max": float(h.max()),
            "cell_avg": float(c.mean()),
            "cell_max": float(c.max()),
            "history": float(len(self.history)),
            "history_cap": float(self.sequence_length),
            "replay": float(len(self.replay)),
            "training_steps": float(self.training_steps),
        }

    def clone(self, seed: Optional[int] = None) -> "RecurrentBrain":
        """Copied weights and settings; fresh memory and an empty replay buffer."""
        self._ensure_init()
        twin = RecurrentBrain(
            input_size=self.input_size,
            hidden_size=self.hidden_size,
            output_size=self.output_size,
            sequence_length=self.sequence_length,
            learning_rate=self.learning_rate,
            dropout_rate=self.dropout_rate,
            cell_clip=self.cell_clip,
            replay_capacity=self.replay_capacity,
            reset_memory_on_death=self.reset_memory_on_death,
            use_value_network=self.use_value_network,
            training=self.training,
            seed=self.seed if seed is None else seed,
        )
        twin._p = {k: t.clone() for k, t in self._p.items()}
        twin.is_initialized = True
        return twin
