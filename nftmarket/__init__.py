"""
NFT Marketplace

Escrow marketplace ledger for ERC-721 tokens: listings with a fixed
listing fee, atomic sales, seller withdrawals and fee accounting, served
over HTTP.
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
