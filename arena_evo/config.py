# arena_evo/config.py
from __future__ import annotations
import os
import torch

# ================================================================
# Utility: env parsing
# ================================================================

def _env_bool(key: str, default: bool) -> bool:
    v = os.getenv(key)
    if v is None:
        return default
    v = v.strip().lower()
    return v not in {"0", "false", "no", "off", ""}


def _env_float(key: str, default: float) -> float:
    try:
        return float(os.getenv(key, str(default)))
    except ValueError:
        return float(default)


def _env_int(key: str, default: int) -> int:
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return int(default)


def _env_str(key: str, default: str) -> str:
    v = os.getenv(key)
    return default if v is None or not v.strip() else v.strip()

# ================================================================
# Device / Precision
# ================================================================
# Weights are small and updated one sample at a time; CPU float32 only.
TORCH_DEVICE: torch.device = torch.device("cpu")
TORCH_DTYPE: torch.dtype = torch.float32

SEED = _env_int("AEV_SEED", 0)

# ================================================================
# Observation / Action shape
# ================================================================
NUM_RAYS = _env_int("AEV_NUM_RAYS", 32)
POSE_FEATURES = 6  # self x/y/heading + nearest enemy x/y/heading
OBS_DIM = _env_int("AEV_OBS_DIM", NUM_RAYS + POSE_FEATURES)
ACTION_DIM = _env_int("AEV_ACTION_DIM", 5)

# ================================================================
# Brains
# ================================================================
BRAIN_KIND = _env_str("AEV_BRAIN_KIND", "recurrent")  # "recurrent" | "feedforward"

# Feedforward actor-critic
FF_HIDDEN1        = _env_int("AEV_FF_HIDDEN1", 128)
FF_HIDDEN2        = _env_int("AEV_FF_HIDDEN2", 64)
USE_VALUE_NETWORK = _env_bool("AEV_USE_VALUE_NET", True)

# Recurrent memory network
HIDDEN_SIZE           = _env_int("AEV_HIDDEN_SIZE", 64)
SEQUENCE_LENGTH       = _env_int("AEV_SEQ_LEN", 10)
RESET_MEMORY_ON_DEATH = _env_bool("AEV_RESET_MEM_ON_DEATH", True)
DROPOUT_RATE          = _env_float("AEV_DROPOUT", 0.1)
CELL_CLIP             = _env_float("AEV_CELL_CLIP", 1.0)
REPLAY_CAPACITY       = _env_int("AEV_REPLAY_CAP", 2000)
RECURRENT_TRAINING    = _env_bool("AEV_RECURRENT_TRAINING", True)

# ================================================================
# Policy gradient / GAE
# ================================================================
LEARNING_RATE = _env_float("AEV_LR", 0.001)
GAMMA         = _env_float("AEV_GAMMA", 0.99)
GAE_LAMBDA    = _env_float("AEV_GAE_LAMBDA", 0.95)
BATCH_SIZE    = _env_int("AEV_BATCH_SIZE", 32)
ADVANTAGE_MIX = _env_float("AEV_ADV_MIX", 0.1)   # how far a target moves toward the taken action
ADV_EPS       = 1e-8

# Recurrent agents keep a rolling buffer instead of clearing it
EXPERIENCE_TRIM_AT    = _env_int("AEV_TRIM_AT", 500)
EXPERIENCE_TRIM_COUNT = _env_int("AEV_TRIM_COUNT", 100)

# ================================================================
# Exploration / Actions
# ================================================================
EXPLORATION_NOISE = _env_float("AEV_EXPLORATION_NOISE", 0.1)
SHOOT_THRESHOLD   = _env_float("AEV_SHOOT_THRESHOLD", 0.1)
RANDOM_ACTIONS    = _env_bool("AEV_RANDOM_ACTIONS", False)
RANDOM_SHOOT_PROB = _env_float("AEV_RANDOM_SHOOT_PROB", 0.0)  # chance to override shoot with a coin flip

# ================================================================
# Evolution
# ================================================================
GA_ENABLED          = _env_bool("AEV_GA_ENABLED", True)
POPULATION_SIZE     = _env_int("AEV_POPULATION", 8)
GENERATION_DURATION = _env_float("AEV_GEN_DURATION", 10.0)     # seconds of simulated time
SUCCESS_THRESHOLD   = _env_float("AEV_SUCCESS_THRESHOLD", 0.1)
MUTATION_RATE       = _env_float("AEV_MUTATION_RATE", 0.1)     # reserved, clones are not perturbed
ELITE_PERCENTAGE    = _env_float("AEV_ELITE_PCT", 0.2)
REWARD_TIMEOUT      = _env_float("AEV_REWARD_TIMEOUT", 5.0)    # 0 disables
REWARD_EPSILON      = _env_float("AEV_REWARD_EPS", 0.1)

# Fitness shaping
FITNESS_REWARD_WEIGHT   = _env_float("AEV_FIT_W_REWARD", 0.8)
FITNESS_SURVIVAL_WEIGHT = _env_float("AEV_FIT_W_SURVIVAL", 0.2)
FITNESS_REWARD_SCALE    = _env_float("AEV_FIT_REWARD_SCALE", 400.0)
FITNESS_OUTLIER_REWARD  = _env_float("AEV_FIT_OUTLIER", -100.0)
FITNESS_OUTLIER_FLOOR   = _env_float("AEV_FIT_OUTLIER_FLOOR", -0.8)
FITNESS_ANOMALY_REWARD  = _env_float("AEV_FIT_ANOMALY", 10_000.0)

# ================================================================
# Checkpoints
# ================================================================
SAVE_DIR           = _env_str("AEV_SAVE_DIR", "saved_models")
AUTO_SAVE_ENABLED  = _env_bool("AEV_AUTOSAVE", True)
AUTO_SAVE_INTERVAL = _env_float("AEV_AUTOSAVE_INTERVAL", 3600.0)
WRITER_QUEUE_SIZE  = _env_int("AEV_WRITER_QUEUE", 256)

# ================================================================
# Runtime
# ================================================================
TARGET_TPS      = _env_int("AEV_TARGET_TPS", 50)
FORWARD_WORKERS = _env_int("AEV_FORWARD_WORKERS", 1)
LOG_LEVEL       = _env_str("AEV_LOG_LEVEL", "INFO")

# ================================================================
# Summary / Snapshot helpers
# ================================================================
def summary_str() -> str:
    return (
        f"[arena_evo] "
        f"brain={BRAIN_KIND} "
        f"obs={OBS_DIM} acts={ACTION_DIM} "
        f"pop={POPULATION_SIZE} gen={GENERATION_DURATION:g}s "
        f"elite={ELITE_PERCENTAGE:g} lr={LEARNING_RATE:g}"
    )


def config_snapshot() -> dict:
    """Light, serializable snapshot of current config for run metadata."""
    return {
        "summary": summary_str(),
        "SEED": SEED,
        "OBS_DIM": OBS_DIM,
        "ACTION_DIM": ACTION_DIM,
        "BRAIN": {
            "KIND": BRAIN_KIND,
            "FF_HIDDEN": [FF_HIDDEN1, FF_HIDDEN2],
            "USE_VALUE_NETWORK": USE_VALUE_NETWORK,
            "HIDDEN_SIZE": HIDDEN_SIZE,
            "SEQUENCE_LENGTH": SEQUENCE_LENGTH,
            "RESET_MEMORY_ON_DEATH": RESET_MEMORY_ON_DEATH,
            "DROPOUT": DROPOUT_RATE,
        },
        "PG": {
            "LR": LEARNING_RATE,
            "GAMMA": GAMMA,
            "LAMBDA": GAE_LAMBDA,
            "BATCH": BATCH_SIZE,
            "ADV_MIX": ADVANTAGE_MIX,
        },
        "GA": {
            "ENABLED": GA_ENABLED,
            "POPULATION": POPULATION_SIZE,
            "GEN_DURATION": GENERATION_DURATION,
            "SUCCESS_THRESHOLD": SUCCESS_THRESHOLD,
            "MUTATION_RATE": MUTATION_RATE,
            "ELITE_PCT": ELITE_PERCENTAGE,
            "REWARD_TIMEOUT": REWARD_TIMEOUT,
        },
        "SAVE": {
            "DIR": SAVE_DIR,
            "AUTO": AUTO_SAVE_ENABLED,
            "INTERVAL": AUTO_SAVE_INTERVAL,
        },
    }
