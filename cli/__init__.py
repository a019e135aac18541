"""
cli - Command line entry points
"""
