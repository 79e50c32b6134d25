from pydantic import BaseModel, Field
from typing import Optional, List


class DifficultyView(BaseModel):
    """
    Difficulty currently enforced by the simulator.

    A block is valid when the first `pattern_length` characters of its hash
    are <= `pattern` (string compare).
    """
    major_zeros: int
    minor_max: int
    pattern: str
    pattern_length: int

    # Mining gives up after nonces 0..attempt_budget.
    attempt_budget: int


class BlockView(BaseModel):
    """
    Public representation of a block for the dashboard.
    """
    chain: int
    number: int
    data: str
    nonce: int
    previous_hash: str
    block_hash: str

    # Rendered state: hash meets the difficulty.
    valid: bool

    # previous_hash matches the current hash of the preceding block.
    linked: bool


class ChainView(BaseModel):
    """
    Chain snapshot. `valid` is the end-to-end check (all hashes and all links).
    """
    chain: int
    valid: bool
    blocks: List[BlockView]


class BlockEdit(BaseModel):
    """
    User edit of a block. Fields left out are not changed.
    """
    data: Optional[str] = None
    nonce: Optional[int] = Field(None, ge=0)


class MineResult(BaseModel):
    """
    Response to a mining request.
    """
    success: bool
    nonce: Optional[int] = None
    attempts: int
    block_hash: str
    elapsed_ms: float
    chain: ChainView


class HashView(BaseModel):
    text: str
    digest: str


class Metrics(BaseModel):
    """
    Runtime counters exposed by the simulator.
    """
    mined_total: int
    exhausted_total: int
    attempts_total: int

    # Observer-side counters.
    hash_updates: int
    invalidations: int
    uptime_ms: int
