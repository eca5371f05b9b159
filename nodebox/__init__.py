"""
nodebox - Lifecycle manager for blockchain nodes in system tests.
"""

__version__ = "0.1.0"
