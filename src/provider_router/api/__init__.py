"""
FastAPI REST API Layer for provider-router.

    - routes.py: Summary, speech, usage, provider and key endpoints
    - schemas.py: Request/response Pydantic models
    - dependencies.py: FastAPI dependency injection
"""
