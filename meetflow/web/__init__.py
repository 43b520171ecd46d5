"""
HTTP surface
"""
