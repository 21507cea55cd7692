"""Merchant ledger and jewellery (ghaat) subledger for small bullion traders."""

__version__ = "0.1.0"
