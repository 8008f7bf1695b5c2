"""
Garment design pipeline service.
"""

__version__ = "0.1.0"
