from .db import build_engine, build_session_factory, build_uow_factory, create_schema
from .store import SQLAlchemyBlobStore
from .uow import SQLAlchemyUnitOfWork

__all__ = [
    "build_engine",
    "build_session_factory",
    "build_uow_factory",
    "create_schema",
    "SQLAlchemyBlobStore",
    "SQLAlchemyUnitOfWork",
]
