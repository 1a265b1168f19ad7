"""
Configuration package
"""
