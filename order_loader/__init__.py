"""
Order Loader - adaptive batch insertion of order rows into invoice tables.
"""

__version__ = "1.0.0"
