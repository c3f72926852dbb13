"""
Async client for the Chain Key Finance deposit and order-book services.
"""

__version__ = "0.1.0"
