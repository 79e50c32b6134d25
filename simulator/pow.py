import hashlib
import logging
import time
from dataclasses import dataclass
from typing import Optional

from .difficulty import Difficulty

log = logging.getLogger(__name__)


def block_text(number: int, nonce: int, data: str, previous_hash: str) -> str:
    """
    Build the text that gets hashed for a block.
    Block number, nonce, data and previous hash are concatenated with no separator.
    """
    return f"{number}{nonce}{data}{previous_hash}"


def sha256_hex(text: str) -> str:
    """
    Compute SHA-256 over the UTF-8 text and return the lowercase hex digest.
    """
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def is_valid(hash_hex: str, pattern: str, pattern_length: int) -> bool:
    """
    Proof-of-Work check: the first `pattern_length` characters of the hash
    must be <= the pattern as strings.

    This is a string compare, not a numeric one. For equal-length lowercase hex
    strings the two orders agree, and accepted nonces depend on this exact rule.
    """
    return hash_hex[:pattern_length] <= pattern


@dataclass(frozen=True)
class MineOutcome:
    """
    Result of a single mining scan.
    `nonce` is None when the attempt budget ran out.
    """
    success: bool
    nonce: Optional[int]
    attempts: int
    block_hash: str
    elapsed_ms: float


def mine(block, difficulty: Difficulty) -> MineOutcome:
    """
    Scan nonces 0..attempt_budget (inclusive) until the block hash meets the difficulty.

    The block's nonce is left at the winning value, or at the last attempted
    value when the budget is exhausted. Data and previous hash are not touched.
    """
    start = time.time()
    attempts = 0
    bh = block.block_hash

    for nonce in range(difficulty.attempt_budget + 1):
        # The nonce is the only value the miner changes.
        block.nonce = nonce
        bh = block.block_hash
        attempts += 1

        if is_valid(bh, difficulty.pattern, difficulty.pattern_length):
            elapsed_ms = (time.time() - start) * 1000
            log.info(
                "mined block %s/%s nonce=%d hash=%s... attempts=%d time=%.1fms",
                block.chain, block.number, nonce, bh[:16], attempts, elapsed_ms,
            )
            return MineOutcome(
                success=True,
                nonce=nonce,
                attempts=attempts,
                block_hash=bh,
                elapsed_ms=elapsed_ms,
            )

    elapsed_ms = (time.time() - start) * 1000
    log.warning(
        "gave up mining block %s/%s after %d attempts (pattern=%s)",
        block.chain, block.number, attempts, difficulty.pattern,
    )
    return MineOutcome(
        success=False,
        nonce=None,
        attempts=attempts,
        block_hash=bh,
        elapsed_ms=elapsed_ms,
    )
