"""
Trellis - progress tracking for projects built from a reusable task catalog.
"""

__version__ = "0.1.0"
