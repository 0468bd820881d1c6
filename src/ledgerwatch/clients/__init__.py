"""Remote data clients."""

from ledgerwatch.clients.chain import ChainDataClient

__all__ = ["ChainDataClient"]
