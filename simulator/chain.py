import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .difficulty import Difficulty
from .pow import MineOutcome, block_text, is_valid, mine as mine_block, sha256_hex

log = logging.getLogger(__name__)

# Observer signature: listener(event, block) with event in {"hash", "state"}.
Listener = Callable[[str, "Block"], None]


@dataclass
class Block:
    """
    One block of a chain, addressed by (chain, number).

    The hash is never stored: it is derived from number, nonce, data and
    previous_hash on every read. `valid` is the last rendered validity state,
    refreshed by Ledger.update_state.
    """
    chain: int
    number: int
    data: str = ""
    previous_hash: str = ""
    nonce: int = 0
    valid: bool = False

    @property
    def block_hash(self) -> str:
        return sha256_hex(block_text(self.number, self.nonce, self.data, self.previous_hash))


class Chain:
    """
    Ordered blocks 1..length linked through previous_hash.
    """

    def __init__(self, index: int, length: int = 5, data: str = ""):
        self.index = index
        self.blocks: List[Block] = [
            Block(chain=index, number=n, data=data) for n in range(1, length + 1)
        ]

    def __len__(self) -> int:
        return len(self.blocks)

    def block(self, number: int) -> Block:
        """
        Return block `number` (1-based). Raises KeyError when out of range.
        """
        if not 1 <= number <= len(self.blocks):
            raise KeyError(f"block {number} not in chain {self.index}")
        return self.blocks[number - 1]

    def previous(self, block: Block) -> Optional[Block]:
        if block.number == 1:
            return None
        return self.blocks[block.number - 2]

    def is_linked(self, block: Block) -> bool:
        """
        True when the block points at the current hash of its predecessor.
        The first block has nothing to point at.
        """
        prev = self.previous(block)
        return prev is None or block.previous_hash == prev.block_hash

    def is_valid(self, difficulty: Difficulty) -> bool:
        """
        End-to-end check: every hash meets the difficulty and every link matches.
        """
        for b in self.blocks:
            if not is_valid(b.block_hash, difficulty.pattern, difficulty.pattern_length):
                return False
            if not self.is_linked(b):
                return False
        return True


class Ledger:
    """
    In-memory session state: a set of peer chains holding copies of the same blocks.

    All mutations go through this class so observers (renderers, counters)
    see every hash and state change. Each public action holds the lock until
    it completes, so actions never interleave.
    """

    def __init__(
        self,
        difficulty: Difficulty,
        chain_count: int = 3,
        chain_length: int = 5,
        initial_data: str = "",
        listeners: Optional[List[Listener]] = None,
    ):
        self.difficulty = difficulty
        self.chain_count = chain_count
        self.chain_length = chain_length
        self.initial_data = initial_data
        self.chains: Dict[int, Chain] = {}
        # Listeners passed here also see the initial propagation.
        self._listeners: List[Listener] = list(listeners or [])
        self._lock = threading.RLock()

        # Metrics / counters
        self.mined_total = 0
        self.exhausted_total = 0
        self.attempts_total = 0
        self.start_time_ms = int(time.time() * 1000)

        self.reset()

    @property
    def lock(self) -> threading.RLock:
        """
        Lock held by every action. Hold it while reading several fields that
        must come from the same state (e.g. building a snapshot).
        """
        return self._lock

    def reset(self) -> None:
        """
        Rebuild every chain with nonce 0 and fill in the previous-hash links.
        """
        with self._lock:
            self.chains = {
                i: Chain(i, self.chain_length, self.initial_data)
                for i in range(1, self.chain_count + 1)
            }
            for i in self.chains:
                self.propagate(i, 1)

    # ---------------------------
    # Lookup
    # ---------------------------

    def chain(self, index: int) -> Chain:
        if index not in self.chains:
            raise KeyError(f"chain {index} does not exist")
        return self.chains[index]

    def block(self, chain: int, number: int) -> Block:
        return self.chain(chain).block(number)

    # ---------------------------
    # Observers
    # ---------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener for "hash" and "state" events.
        Returns a callable that removes it again.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: str, block: Block) -> None:
        for listener in list(self._listeners):
            listener(event, block)

    # ---------------------------
    # Outward operations
    # ---------------------------

    def update_state(self, block: Block) -> bool:
        """
        Evaluate the difficulty predicate on the current hash and store it as
        the block's rendered state.
        """
        with self._lock:
            d = self.difficulty
            block.valid = is_valid(block.block_hash, d.pattern, d.pattern_length)
            self._notify("state", block)
            return block.valid

    def update_hash(self, block: Block) -> str:
        """
        Publish the block's recomputed hash, then refresh its state.
        """
        with self._lock:
            bh = block.block_hash
            self._notify("hash", block)
            self.update_state(block)
            return bh

    def propagate(self, chain: int, start: int) -> None:
        """
        Cascade from block `start` to the end of the chain: copy each
        predecessor's hash into previous_hash and re-derive the block hash.
        No nonce search happens here.
        """
        with self._lock:
            c = self.chain(chain)
            log.debug("propagating chain %d from block %d", chain, start)
            for b in c.blocks[start - 1:]:
                prev = c.previous(b)
                if prev is not None:
                    b.previous_hash = prev.block_hash
                self.update_hash(b)

    def mine(self, block: Block, propagate_chain: bool = True) -> MineOutcome:
        """
        Search a nonce for `block`.

        On success the downstream chain is re-derived (chain mode) or only this
        block goes through update_hash. The scan changed its nonce, so observers
        get a "hash" event before the "state" one. Running out of attempts is
        not an error: the block keeps its last attempted nonce and is rendered
        invalid.
        """
        with self._lock:
            outcome = mine_block(block, self.difficulty)
            self.attempts_total += outcome.attempts

            if not outcome.success:
                self.exhausted_total += 1
                self.update_hash(block)
                return outcome

            self.mined_total += 1
            if propagate_chain:
                self.propagate(block.chain, block.number)
            else:
                self.update_hash(block)
            return outcome

    def edit(
        self,
        block: Block,
        data: Optional[str] = None,
        nonce: Optional[int] = None,
        propagate: bool = False,
    ) -> Block:
        """
        Apply a user edit to data and/or nonce, then recompute.
        With `propagate` the change cascades down the chain, otherwise only
        this block is re-hashed and downstream links go stale.
        """
        with self._lock:
            if data is not None:
                block.data = data
            if nonce is not None:
                block.nonce = nonce
            log.debug("edited block %d/%d (propagate=%s)", block.chain, block.number, propagate)

            if propagate:
                self.propagate(block.chain, block.number)
            else:
                self.update_hash(block)
            return block

    def uptime_ms(self) -> int:
        return int(time.time() * 1000) - self.start_time_ms
