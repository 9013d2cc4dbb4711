"""EcoPoints backend package.

Having this file ensures the 'ecopoints' directory is recognized as a standard
Python package during test discovery and when running under Poetry.
"""

__version__ = "1.0.0"

__all__: list[str] = ["__version__"]
