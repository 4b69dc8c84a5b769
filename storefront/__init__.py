"""Storefront catalog and cart backend."""

__version__ = "1.0.0"
