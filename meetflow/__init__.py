"""
meetflow - meeting lifecycle pipeline
"""

__version__ = "1.0.0"
