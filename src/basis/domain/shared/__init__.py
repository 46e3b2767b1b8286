"""Shared domain utilities.

This package is domain-accessible and should not depend on application code.
"""

from .authenticated_map_protocol import AuthenticatedMapVerifier
from .settlement_client_protocol import SettlementClientProtocol

__all__ = [
    "AuthenticatedMapVerifier",
    "SettlementClientProtocol",
]
