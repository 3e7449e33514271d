"""Bondly API - email OTP login, custody wallets and BOND token airdrops."""

__version__ = "0.1.0"
