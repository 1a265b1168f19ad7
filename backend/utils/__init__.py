"""
Shared utilities: logging and error types
"""
