"""Commission and compliance stores."""

from commission_engine.stores.base import (
    CommissionFilter,
    CommissionStore,
    ComplianceStore,
    bounded,
)
from commission_engine.stores.memory import InMemoryCommissionStore, InMemoryComplianceStore
from commission_engine.stores.sql import SqlCommissionStore, SqlComplianceStore

__all__ = [
    "CommissionFilter",
    "CommissionStore",
    "ComplianceStore",
    "InMemoryCommissionStore",
    "InMemoryComplianceStore",
    "SqlCommissionStore",
    "SqlComplianceStore",
    "bounded",
]
