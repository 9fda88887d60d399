"""
SuperRay TUI - Xray proxy client with a terminal dashboard
"""

__version__ = "1.0.0"
