from dataclasses import dataclass
from typing import NamedTuple, Optional

# Every difficulty starts with 8x padding on top of the expected search space.
BASE_ATTEMPTS = 8

# Each required hex zero makes a match 16x less likely.
HEX_RADIX = 16


@dataclass(frozen=True)
class DifficultyConfig:
    """
    Difficulty knobs, built once at startup.

    - major_zeros: number of "0" hex characters a valid hash must start with.
      More zeros = more difficult = more time to mine.
    - minor_max: highest value (0-15) of the hex digit right after the zeros.
      15 allows any digit (easiest), 7 forces the next bit to 0,
      0 is equivalent to one more major zero.
    - max_nonce: optional override of the derived attempt budget.
    """
    major_zeros: int = 4
    minor_max: int = 15
    max_nonce: Optional[int] = None


class Difficulty(NamedTuple):
    pattern: str
    pattern_length: int
    attempt_budget: int


def minor_scale(minor_max: int) -> int:
    """
    Extra budget multiplier for the minor difficulty.
    Each zero bit forced by minor_max doubles the expected work.
    """
    if minor_max == 0:
        return 16  # 0000 requires 4 more 0 bits
    if minor_max == 1:
        return 8   # 0001 requires 3 more 0 bits
    if minor_max <= 3:
        return 4   # 0011 requires 2 more 0 bits
    if minor_max <= 7:
        return 2   # 0111 requires 1 more 0 bit
    return 1


def compute_difficulty(major_zeros: int, minor_max: int) -> Difficulty:
    """
    Build the target pattern and the attempt budget.

    major_zeros=4, minor_max=15 yields pattern "0000f" and a budget of
    8 * 16^4 = 524288 attempts.
    """
    pattern = ""
    attempt_budget = BASE_ATTEMPTS
    for _ in range(major_zeros):
        pattern += "0"
        attempt_budget *= HEX_RADIX

    pattern += format(minor_max, "x")
    attempt_budget *= minor_scale(minor_max)

    return Difficulty(
        pattern=pattern,
        pattern_length=len(pattern),
        attempt_budget=attempt_budget,
    )


def difficulty_from_config(config: DifficultyConfig) -> Difficulty:
    difficulty = compute_difficulty(config.major_zeros, config.minor_max)
    if config.max_nonce is not None:
        difficulty = difficulty._replace(attempt_budget=config.max_nonce)
    return difficulty
