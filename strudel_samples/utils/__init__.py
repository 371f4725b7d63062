"""
Small helpers shared across layers: hashing, paths and display formatting.
"""
