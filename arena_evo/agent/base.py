# arena_evo/agent/base.py
from __future__ import annotations
from abc import ABC, abstractmethod
from collections import Counter
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import torch

from .. import config
from ..errors import ArenaEvoError, PersistenceError, SchemaMismatchError, ShapeMismatchError
from ..utils.logger import logger
from ..utils.persistence import atomic_json_dump, read_json
from ..utils.sanitize import all_finite

DOC_FORMAT = "arena_evo.brain"
DOC_VERSION = 1

VectorLike = Any  # list / tuple / np.ndarray / torch.Tensor


class BrainKind(str, Enum):
    FEEDFORWARD = "feedforward"
    RECURRENT = "recurrent"

    @classmethod
    def parse(cls, value: "BrainKind | str") -> "BrainKind":
        if isinstance(value, BrainKind):
            return value
        v = str(value).strip().lower()
        aliases = {"ff": cls.FEEDFORWARD, "simple": cls.FEEDFORWARD, "mlp": cls.FEEDFORWARD,
                   "lstm": cls.RECURRENT, "rnn": cls.RECURRENT}
        if v in aliases:
            return aliases[v]
        try:
            return cls(v)
        except ValueError:
            raise ValueError(f"unknown brain kind {value!r}; expected 'feedforward' or 'recurrent'") from None


def to_vector(x: VectorLike) -> torch.Tensor:
    """Read-only float32 1-D view of an observation/target."""
    if isinstance(x, torch.Tensor):
        t = x.detach()
    else:
        t = torch.from_numpy(np.asarray(x, dtype=np.float32))
    return t.to(dtype=config.TORCH_DTYPE).reshape(-1)


class PolicyBrain(ABC):
    """
    Capability set shared by both network variants:
    forward / forward_value / reset_memory / clone / save / load.

    Training entry points differ per kind (feedforward: backward, recurrent:
    store_experience + train_on_batch); callers dispatch on `kind`.

    Routine faults (wrong vector length, disabled critic) never raise: the brain
    records them on `last_error` / `error_counts`, logs, and returns a zero result.
    """
    kind: BrainKind

    def __init__(self, input_size: int, hidden_sizes: Sequence[int], output_size: int,
                 seed: Optional[int] = None) -> None:
        if int(input_size) <= 0 or int(output_size) <= 0 or any(int(h) <= 0 for h in hidden_sizes):
            raise ValueError(
                f"invalid architecture in={input_size} hidden={list(hidden_sizes)} out={output_size}"
            )
        self.input_size = int(input_size)
        self.hidden_sizes: Tuple[int, ...] = tuple(int(h) for h in hidden_sizes)
        self.output_size = int(output_size)
        self.seed = int(seed) if seed is not None else int(getattr(config, "SEED", 0))
        self.generator = torch.Generator(device=config.TORCH_DEVICE)
        self.generator.manual_seed(self.seed)

        self.is_initialized = False
        self.last_error: Optional[ArenaEvoError] = None
        self.error_counts: Counter = Counter()
        self._warned_no_critic = False
        self.log = logger.bind(component="brain")

    # ------------------------------------------------------------------ lifecycle
    def initialize(self) -> None:
        if self.is_initialized:
            return
        self._init_params()
        self.is_initialized = True

    def _ensure_init(self) -> None:
        if not self.is_initialized:
            self.initialize()

    @abstractmethod
    def _init_params(self) -> None: ...

    @abstractmethod
    def forward(self, x: VectorLike) -> torch.Tensor: ...

    @abstractmethod
    def forward_value(self, x: VectorLike) -> float: ...

    @abstractmethod
    def reset_memory(self) -> None: ...

    @abstractmethod
    def clone(self, seed: Optional[int] = None) -> "PolicyBrain": ...

    @abstractmethod
    def parameters(self) -> Dict[str, torch.Tensor]:
        """Actor parameters by name (live tensors)."""

    def critic_parameters(self) -> Optional[Dict[str, torch.Tensor]]:
        return None

    @abstractmethod
    def hyperparameters(self) -> Dict[str, Any]: ...

    # ------------------------------------------------------------------ errors
    def _signal(self, err: ArenaEvoError, level: str = "error") -> None:
        self.last_error = err
        self.error_counts[type(err).__name__] += 1
        getattr(self.log, level)(str(err))

    def _value_disabled(self) -> float:
        self.error_counts["ValueNetworkDisabled"] += 1
        if not self._warned_no_critic:
            self._warned_no_critic = True
            self.last_error = ArenaEvoError("value network disabled")
            self.log.warning("value network disabled; forward_value returns 0.0")
        return 0.0

    def _checked(self, x: VectorLike, expected: int, what: str) -> Optional[torch.Tensor]:
        v = to_vector(x)
        if v.numel() != expected:
            self._signal(ShapeMismatchError(what, expected, v.numel()))
            return None
        return v

    # ------------------------------------------------------------------ shape / documents
    def shape(self) -> Dict[str, Any]:
        return {
            "input_size": self.input_size,
            "hidden_sizes": list(self.hidden_sizes),
            "output_size": self.output_size,
        }

    @staticmethod
    def _flatten(params: Dict[str, torch.Tensor]) -> Dict[str, List[float]]:
        # row-major: (rows=fan_in, cols=fan_out)
        return {name: t.contiguous().view(-1).tolist() for name, t in params.items()}

    @staticmethod
    def _unflatten(doc_params: Any, live: Dict[str, torch.Tensor], where: str) -> Dict[str, torch.Tensor]:
        if not isinstance(doc_params, dict):
            raise PersistenceError(f"'{where}' must be an object")
        out: Dict[str, torch.Tensor] = {}
        for name, ref in live.items():
            flat = doc_params.get(name)
            if not isinstance(flat, list):
                raise PersistenceError(f"missing array '{where}.{name}'")
            if len(flat) != ref.numel():
                raise SchemaMismatchError(
                    f"'{where}.{name}' has {len(flat)} values, expected {ref.numel()}"
                )
            try:
                finite = all_finite(flat)
                t = torch.tensor(flat, dtype=ref.dtype).view_as(ref)
            except (TypeError, ValueError) as e:
                raise PersistenceError(f"'{where}.{name}' is not a flat list of numbers: {e}") from e
            if not finite:
                raise PersistenceError(f"'{where}.{name}' contains non-finite values")
            out[name] = t
        return out

    def to_document(self) -> Dict[str, Any]:
        self._ensure_init()
        critic = self.critic_parameters()
        return {
            "format": DOC_FORMAT,
            "version": DOC_VERSION,
            "kind": self.kind.value,
            "shape": self.shape(),
            "params": self._flatten(self.parameters()),
            "critic": self._flatten(critic) if critic is not None else None,
            "hyper": self.hyperparameters(),
        }

    def load_document(self, doc: Dict[str, Any]) -> None:
        """
        Validate everything first, then swap tensors in. On any error the live
        weights are left exactly as they were.
        """
        self._ensure_init()
        if not isinstance(doc, dict):
            raise PersistenceError(f"weight document must be an object, got {type(doc).__name__}")
        if doc.get("format") != DOC_FORMAT:
            raise PersistenceError(f"unknown document format {doc.get('format')!r}")
        if doc.get("kind") != self.kind.value:
            raise SchemaMismatchError(f"document kind {doc.get('kind')!r} != {self.kind.value!r}")
        declared = doc.get("shape")
        if declared != self.shape():
            raise SchemaMismatchError(f"document shape {declared} != network shape {self.shape()}")

        actor = self._unflatten(doc.get("params"), self.parameters(), "params")
        critic = None
        live_critic = self.critic_parameters()
        if live_critic is not None:
            if doc.get("critic") is None:
                raise SchemaMismatchError("network has a value head but document has no 'critic'")
            critic = self._unflatten(doc.get("critic"), live_critic, "critic")

        self._assign(actor, critic)

    def _assign(self, actor: Dict[str, torch.Tensor], critic: Optional[Dict[str, torch.Tensor]]) -> None:
        with torch.no_grad():
            for name, t in self.parameters().items():
                t.copy_(actor[name])
            live_critic = self.critic_parameters()
            if live_critic is not None and critic is not None:
                for name, t in live_critic.items():
                    t.copy_(critic[name])

    def save_weights(self, path) -> None:
        atomic_json_dump(self.to_document(), path)
        self.log.debug(f"saved {self.kind.value} weights to {path}")

    def load_weights(self, path) -> None:
        self.load_document(read_json(path))
        self.log.debug(f"loaded {self.kind.value} weights from {path}")

    def __repr__(self) -> str:
        return (f"{type(self).__name__}(in={self.input_size}, hidden={list(self.hidden_sizes)}, "
                f"out={self.output_size}, seed={self.seed})")
