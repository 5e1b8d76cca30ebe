"""
Utility modules for provider-router.

    - timeit.py: Timing context manager
"""
