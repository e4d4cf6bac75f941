"""
ingestion/rpc package

Ledger RPC boundary and endpoint failover.
"""
from .ledger import BlockhashAnchor, LedgerClient, SimulationResult, SolanaLedgerClient
from .failover import ConnectionSelector, EndpointConfig, NoHealthyEndpointError

__all__ = [
    'BlockhashAnchor',
    'LedgerClient',
    'SimulationResult',
    'SolanaLedgerClient',
    'ConnectionSelector',
    'EndpointConfig',
    'NoHealthyEndpointError',
]
