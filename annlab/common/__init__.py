"""
Shared helpers: parameter arena and input validation.
"""
