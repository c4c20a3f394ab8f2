"""Storefront API: catalog, cart, checkout, payments and shipment tracking."""

__version__ = "0.1.0"
