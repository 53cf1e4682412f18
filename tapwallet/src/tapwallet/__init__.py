"""
tapwallet - Command-line Taproot wallet built on tapcore.
"""

__version__ = "0.1.0"
