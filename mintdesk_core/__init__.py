"""
MintDesk Core Package
=====================
Token lifecycle and key-custody primitives for a wallet-connected token manager.

Provides:
- Mint authority keypairs and a durable KeyVault
- TokenRegistry with write-through persistence (SQLite default)
- TokenLifecycleManager: create, mint, transfer, add existing tokens
- BalanceReconciler and HistoryReconstructor over a LedgerGateway
"""
