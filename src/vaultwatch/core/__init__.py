"""Core domain package for vaultwatch.

Core contains the registry store, the synchronizer, and the change feed
without any ledger client or transport code, keeping the balance logic
portable across adapters.
"""
