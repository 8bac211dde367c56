"""
NutriScan Backend — Application Package Initializer
===================================================

What: Marks the `nutriscan` directory as a Python package.
Why:  Enables module imports like `from nutriscan.config import settings`.
Who:  Used implicitly by Python's import system and explicitly by Alembic, pytest, and uvicorn.

Architecture Note:
    The backend follows a layered layout:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │         Services (Orchestration)    │  ← scan pipeline, OFF client, audit log
    ├─────────────────────────────────────┤
    │        Imaging (Core Pipeline)      │  ← load → normalize → luminance → decode
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘

    The imaging package is synchronous and knows nothing about HTTP or the
    database; it can be exercised directly from tests with in-memory images.
"""

__version__ = "1.0.0"
