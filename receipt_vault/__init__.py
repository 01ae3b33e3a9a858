"""
Receipt Vault - receipt recognition engine

Turns uploaded receipt images into structured, quality-scored receipt data.
"""
__version__ = "0.1.0"
