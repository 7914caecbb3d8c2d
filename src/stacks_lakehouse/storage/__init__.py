"""Storage layer - Database schemas and repositories."""

from stacks_lakehouse.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
    session_scope,
)
from stacks_lakehouse.storage.models import Base, ContractModel, PipelineRunModel, TokenModel
from stacks_lakehouse.storage.repos import (
    ContractDTO,
    ContractRepository,
    ContractStatus,
    PipelineRunDTO,
    PipelineRunRepository,
    RawEventRepository,
    StagingRepository,
    TokenDTO,
    TokenRepository,
    TokenStatus,
    WriteDisposition,
)

__all__ = [
    "Base",
    "ContractDTO",
    "ContractModel",
    "ContractRepository",
    "ContractStatus",
    "DatabaseManager",
    "PipelineRunDTO",
    "PipelineRunModel",
    "PipelineRunRepository",
    "RawEventRepository",
    "StagingRepository",
    "TokenDTO",
    "TokenModel",
    "TokenRepository",
    "TokenStatus",
    "WriteDisposition",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
    "session_scope",
]
