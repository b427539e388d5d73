"""
TenderAlert - tender discovery and procurement collaboration backend.
"""

__version__ = '1.0.0'
