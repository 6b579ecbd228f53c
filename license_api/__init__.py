"""
License API - recurring crypto subscription billing for time-limited licenses
"""

__version__ = "0.1.0"
