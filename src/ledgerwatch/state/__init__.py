"""Chain state snapshot."""

from ledgerwatch.state.chain_state import ChainState

__all__ = ["ChainState"]
