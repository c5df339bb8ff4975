"""
Shared utilities (logging setup).
"""
