import logging
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from .difficulty import DifficultyConfig

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


@dataclass(frozen=True)
class Settings:
    """
    Startup configuration for the simulator service.
    """
    difficulty: DifficultyConfig = field(default_factory=DifficultyConfig)
    chain_count: int = 3
    chain_length: int = 5
    log_level: str = "INFO"


def _int(env: Mapping[str, str], name: str, default: Optional[int]) -> Optional[int]:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Read settings from environment variables (or the given mapping).
    Out-of-range values raise ValueError.
    """
    if env is None:
        env = os.environ

    major = _int(env, "DIFFICULTY_MAJOR", 4)
    minor = _int(env, "DIFFICULTY_MINOR", 15)
    max_nonce = _int(env, "MAXIMUM_NONCE", None)
    chain_count = _int(env, "CHAIN_COUNT", 3)
    chain_length = _int(env, "CHAIN_LENGTH", 5)

    if major < 0:
        raise ValueError("DIFFICULTY_MAJOR must be >= 0")
    if not 0 <= minor <= 15:
        raise ValueError("DIFFICULTY_MINOR must be between 0 and 15")
    if max_nonce is not None and max_nonce < 0:
        raise ValueError("MAXIMUM_NONCE must be >= 0")
    if chain_count < 1 or chain_length < 1:
        raise ValueError("CHAIN_COUNT and CHAIN_LENGTH must be >= 1")

    return Settings(
        difficulty=DifficultyConfig(major_zeros=major, minor_max=minor, max_nonce=max_nonce),
        chain_count=chain_count,
        chain_length=chain_length,
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
    )


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)
