"""
NFT Marketplace - Monitoring Module

Structured logging setup and request log context.
"""

from .logging import (
    LoggingContextMiddleware,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
)

__all__ = [
    "LoggingContextMiddleware",
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
]
