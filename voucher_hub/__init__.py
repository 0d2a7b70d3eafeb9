"""Voucher hub: prepaid digital goods ordering against upstream providers."""

__version__ = "0.1.0"
