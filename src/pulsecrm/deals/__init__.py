"""Deal management module -- pipelines, stages, deals and their stage history.

Provides SQLAlchemy models, Pydantic schemas, the capability-aware query
helpers, and DealService for tenant-scoped CRUD.
"""
