"""VaultKeep - shared vaults for sensitive items with release policies.

Vaults hold passwords, notes, links, documents and crypto-wallet secrets.
Access is governed by a per-vault release policy, member privileges and
per-item visibility grants. Sensitive fields are encrypted with a key
derived on the server for each vault.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
