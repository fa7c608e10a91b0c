"""
Configuration for usage-index.
"""
