"""
cors-relay: GET-only forwarding proxy that adds a wildcard CORS header.
"""

__version__ = "0.1.0"
