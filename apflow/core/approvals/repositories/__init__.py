"""Approval engine repositories."""
from .setup_repo import SetupRepository
from .plan_repo import PlanRepository
from .step_repo import StepRepository
from .audit_repo import AuditRepository
from .invoice_repo import InvoiceRepository

__all__ = [
    'SetupRepository', 'PlanRepository', 'StepRepository',
    'AuditRepository', 'InvoiceRepository',
]
