"""
Provider Catalog, Adapters and Keys.

    - catalog.py: Static provider ids, labels, aliases and tiers
    - registry.py: Adapter kinds and factories
    - keys.py: Per-provider API key storage and resolution
    - adapters/: Thin per-vendor HTTP adapters
"""
