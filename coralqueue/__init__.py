"""Durable notification dispatch queue for the coral storefront."""

__version__ = "1.0.0"
