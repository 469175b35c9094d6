"""
Form submission scheduler test suite.
"""
