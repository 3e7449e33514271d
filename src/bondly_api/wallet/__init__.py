"""Custody wallets and wallet binding."""

from bondly_api.wallet.custody import CustodyWallet, CustodyWalletManager, normalize_secret
from bondly_api.wallet.service import BindResult, WalletInfo, WalletService, checksum_address

__all__ = [
    "BindResult",
    "CustodyWallet",
    "CustodyWalletManager",
    "WalletInfo",
    "WalletService",
    "checksum_address",
    "normalize_secret",
]
