"""
provider-router Services Layer.

Orchestrates routing, budget, cache and speech behind one context object.
It sits between the API/CLI layer and the routing/provider layers.

Components:
    - context.py: RouterContext (request surface) and SpeechOutcome

RouterContext handles:
    - Hydrating usage, cache and active provider from the blob store
    - Provider-aware summary caching
    - Chunked speech synthesis and transcription with flat charges
    - Persisting usage under the storage lock
"""
from .context import RouterContext, SpeechOutcome

__all__ = [
    "RouterContext",
    "SpeechOutcome",
]
