"""
Tillpoint: point-of-sale checkout, stock ledger and barcode pool service.
"""

__version__ = "1.0.0"
