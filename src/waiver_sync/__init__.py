"""
waiver-sync: Smartwaiver to Shopify customer synchronizer.

Reads signed waivers from Smartwaiver (scheduled poll, webhook queue, or
webhook push), resolves or creates the matching Shopify customer, and
enriches the customer with tags, a note, date of birth and marketing consent.
"""

__version__ = "0.1.0"
