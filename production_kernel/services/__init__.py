"""Services for the production kernel (write side)."""

from production_kernel.services.authorization import Actor, Authorizer, Role, RoleAuthorizer
from production_kernel.services.draft_editor import DraftEditor, OutputDraft
from production_kernel.services.lifecycle_service import EntryLifecycle
from production_kernel.services.numbering_service import IdentifierNumbering
from production_kernel.services.output_materializer import OutputMaterializer
from production_kernel.services.rollback_coordinator import RollbackCoordinator, RollbackReport
from production_kernel.services.sql_store import SqlProductionStore
from production_kernel.services.store import ProductionStore
from production_kernel.services.validation_service import (
    RevertResult,
    RevertStatus,
    ValidationResult,
    ValidationService,
    ValidationStatus,
)

__all__ = [
    "Actor",
    "Authorizer",
    "DraftEditor",
    "EntryLifecycle",
    "IdentifierNumbering",
    "OutputDraft",
    "OutputMaterializer",
    "ProductionStore",
    "RevertResult",
    "RevertStatus",
    "Role",
    "RoleAuthorizer",
    "RollbackCoordinator",
    "RollbackReport",
    "SqlProductionStore",
    "ValidationResult",
    "ValidationService",
    "ValidationStatus",
]
