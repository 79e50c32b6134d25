import logging
from typing import Dict, List, Optional, Tuple

from fastapi import FastAPI, HTTPException

from .chain import Block, Chain, Ledger
from .config import Settings, load_settings, setup_logging
from .difficulty import difficulty_from_config
from .models import (
    BlockEdit,
    BlockView,
    ChainView,
    DifficultyView,
    HashView,
    Metrics,
    MineResult,
)
from .pow import sha256_hex

log = logging.getLogger(__name__)


class EventCounter:
    """
    Ledger observer counting hash updates and valid -> invalid transitions.
    """

    def __init__(self):
        self.hash_updates = 0
        self.invalidations = 0
        self._last_state: Dict[Tuple[int, int], bool] = {}

    def __call__(self, event: str, block: Block) -> None:
        if event == "hash":
            self.hash_updates += 1
            return
        key = (block.chain, block.number)
        if self._last_state.get(key) and not block.valid:
            self.invalidations += 1
            log.debug("block %d/%d became invalid", block.chain, block.number)
        self._last_state[key] = block.valid


def block_view(chain: Chain, block: Block) -> BlockView:
    return BlockView(
        chain=block.chain,
        number=block.number,
        data=block.data,
        nonce=block.nonce,
        previous_hash=block.previous_hash,
        block_hash=block.block_hash,
        valid=block.valid,
        linked=chain.is_linked(block),
    )


def chain_view(ledger: Ledger, index: int) -> ChainView:
    """
    Snapshot of one chain, taken under the ledger lock so a running mine or
    cascade is never seen half done.
    """
    with ledger.lock:
        c = ledger.chain(index)
        return ChainView(
            chain=index,
            valid=c.is_valid(ledger.difficulty),
            blocks=[block_view(c, b) for b in c.blocks],
        )


def chains_view(ledger: Ledger) -> List[ChainView]:
    with ledger.lock:
        return [chain_view(ledger, i) for i in sorted(ledger.chains)]


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the simulator service around a fresh in-memory ledger.
    """
    if settings is None:
        settings = load_settings()

    difficulty = difficulty_from_config(settings.difficulty)
    counter = EventCounter()
    ledger = Ledger(
        difficulty,
        chain_count=settings.chain_count,
        chain_length=settings.chain_length,
        listeners=[counter],
    )

    log.info(
        "difficulty pattern=%s budget=%d chains=%d x %d blocks",
        difficulty.pattern, difficulty.attempt_budget,
        settings.chain_count, settings.chain_length,
    )

    app = FastAPI(title="Proof-of-Work Mining Demo - Simulator", version="0.1.0")
    app.state.ledger = ledger
    app.state.counter = counter

    def lookup(chain: int, number: int) -> Block:
        try:
            return ledger.block(chain, number)
        except KeyError as e:
            raise HTTPException(status_code=404, detail=str(e.args[0]))

    def lookup_chain(chain: int) -> ChainView:
        try:
            return chain_view(ledger, chain)
        except KeyError as e:
            raise HTTPException(status_code=404, detail=str(e.args[0]))

    @app.get("/difficulty", response_model=DifficultyView)
    def get_difficulty() -> DifficultyView:
        return DifficultyView(
            major_zeros=settings.difficulty.major_zeros,
            minor_max=settings.difficulty.minor_max,
            pattern=difficulty.pattern,
            pattern_length=difficulty.pattern_length,
            attempt_budget=difficulty.attempt_budget,
        )

    @app.get("/chains", response_model=List[ChainView])
    def get_chains() -> List[ChainView]:
        return chains_view(ledger)

    @app.get("/chains/{chain}", response_model=ChainView)
    def get_chain(chain: int) -> ChainView:
        return lookup_chain(chain)

    @app.get("/chains/{chain}/blocks/{number}", response_model=BlockView)
    def get_block(chain: int, number: int) -> BlockView:
        b = lookup(chain, number)
        with ledger.lock:
            return block_view(ledger.chain(chain), b)

    @app.patch("/chains/{chain}/blocks/{number}", response_model=ChainView)
    def edit_block(chain: int, number: int, edit: BlockEdit, propagate: bool = True) -> ChainView:
        """
        Change data and/or nonce. With `propagate` the downstream blocks are
        re-linked, otherwise only this block is re-hashed.
        """
        b = lookup(chain, number)
        with ledger.lock:
            ledger.edit(b, data=edit.data, nonce=edit.nonce, propagate=propagate)
            return chain_view(ledger, chain)

    @app.post("/chains/{chain}/blocks/{number}/mine", response_model=MineResult)
    def mine_block(chain: int, number: int, propagate: bool = True) -> MineResult:
        """
        Search a nonce for the block. Running out of attempts is reported as
        success=False, not as an HTTP error.
        """
        b = lookup(chain, number)
        with ledger.lock:
            outcome = ledger.mine(b, propagate_chain=propagate)
            view = chain_view(ledger, chain)
        return MineResult(
            success=outcome.success,
            nonce=outcome.nonce,
            attempts=outcome.attempts,
            block_hash=outcome.block_hash,
            elapsed_ms=outcome.elapsed_ms,
            chain=view,
        )

    @app.get("/hash", response_model=HashView)
    def get_hash(text: str = "") -> HashView:
        return HashView(text=text, digest=sha256_hex(text))

    @app.get("/metrics", response_model=Metrics)
    def get_metrics() -> Metrics:
        with ledger.lock:
            return Metrics(
                mined_total=ledger.mined_total,
                exhausted_total=ledger.exhausted_total,
                attempts_total=ledger.attempts_total,
                hash_updates=counter.hash_updates,
                invalidations=counter.invalidations,
                uptime_ms=ledger.uptime_ms(),
            )

    @app.post("/reset", response_model=List[ChainView])
    def reset() -> List[ChainView]:
        with ledger.lock:
            ledger.reset()
            log.info("session reset")
            return chains_view(ledger)

    return app


_app: Optional[FastAPI] = None


def __getattr__(name: str):
    """
    Build the module-level `app` on first access, so `uvicorn simulator.app:app`
    works while importing this module (or running it with -m) builds nothing.
    """
    global _app
    if name == "app":
        if _app is None:
            _app = create_app()
        return _app
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


if __name__ == "__main__":
    import uvicorn

    # Run the simulator locally, then start the dashboard.
    _settings = load_settings()
    setup_logging(_settings.log_level)
    uvicorn.run(create_app(_settings), host="127.0.0.1", port=8000)
