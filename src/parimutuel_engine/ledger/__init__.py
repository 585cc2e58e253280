"""
Ledger Layer - Everything that talks to, or speaks the format of, the ledger.

This module provides:
    - LedgerClient / SignerHandle / NetworkSelector: Collaborator interfaces
    - SolanaRpcClient: aiohttp JSON-RPC implementation of LedgerClient
    - KeypairSigner: Local keypair implementation of SignerHandle
    - Operation / OperationBatch / MarketInstructions: Instruction encoding
    - TokenAccount / TokenBalance: Token program account layouts
    - Cluster / resolve_cluster: Network identity

Usage:
    async with SolanaRpcClient(endpoint) as ledger:
        balance = await fetch_token_balance(ledger, ata)
"""

from .accounts import (
    MINT_ACCOUNT_SIZE,
    TOKEN_ACCOUNT_SIZE,
    AccountLayoutError,
    MintInfo,
    TokenAccount,
    TokenBalance,
    account_exists,
    fetch_mint_supply,
    fetch_token_balance,
)
from .instructions import (
    AccountRef,
    MarketInstructions,
    Operation,
    OperationBatch,
    OperationKind,
    account_discriminator,
    anchor_discriminator,
    close_account,
    create_associated_account,
    native_transfer,
    sync_native,
)
from .interfaces import (
    AccountInfo,
    LedgerClient,
    NetworkSelector,
    SignerHandle,
    SimulationResult,
    TransactionStatus,
)
from .network import (
    DEFAULT_CLUSTER,
    DEFAULT_ENDPOINTS,
    Cluster,
    StaticNetworkSelector,
    infer_cluster_from_rpc_url,
    parse_cluster,
    resolve_cluster,
)
from .rpc_client import (
    ConfirmationTimeoutError,
    RateLimitError,
    RpcError,
    RpcTimeoutError,
    RpcTransportError,
    SolanaRpcClient,
)
from .signer import KeypairSigner

__all__ = [
    # Interfaces
    "LedgerClient",
    "SignerHandle",
    "NetworkSelector",
    "AccountInfo",
    "SimulationResult",
    "TransactionStatus",
    # RPC
    "SolanaRpcClient",
    "RpcError",
    "RateLimitError",
    "RpcTransportError",
    "RpcTimeoutError",
    "ConfirmationTimeoutError",
    # Signer
    "KeypairSigner",
    # Instructions
    "AccountRef",
    "Operation",
    "OperationBatch",
    "OperationKind",
    "MarketInstructions",
    "anchor_discriminator",
    "account_discriminator",
    "create_associated_account",
    "native_transfer",
    "sync_native",
    "close_account",
    # Accounts
    "TOKEN_ACCOUNT_SIZE",
    "MINT_ACCOUNT_SIZE",
    "AccountLayoutError",
    "TokenAccount",
    "MintInfo",
    "TokenBalance",
    "fetch_token_balance",
    "fetch_mint_supply",
    "account_exists",
    # Network
    "Cluster",
    "DEFAULT_CLUSTER",
    "DEFAULT_ENDPOINTS",
    "StaticNetworkSelector",
    "parse_cluster",
    "infer_cluster_from_rpc_url",
    "resolve_cluster",
]
