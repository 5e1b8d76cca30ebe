"""
Core infrastructure for provider-router.

    - config.py: Settings loading, defaults and validation
    - errors.py: Error codes and the RouterError hierarchy
    - logging/: Structured logging with numeric levels
    - metrics.py: Prometheus metrics collection
    - storage.py: Blob stores and the cooperative storage lock
"""
