"""
NFT Marketplace - API Module

FastAPI application exposing the marketplace ledger over HTTP.
"""

from .app import create_app, run_server

__all__ = ["create_app", "run_server"]
