"""Domain models for the production kernel."""

from production_kernel.models.consumption import StockConsumption
from production_kernel.models.entry import (
    ProductionEntry,
    ProductionInput,
    ProductionOutput,
)
from production_kernel.models.process import Process
from production_kernel.models.stock_unit import PackageAttributesMixin, StockUnit

__all__ = [
    "PackageAttributesMixin",
    "Process",
    "ProductionEntry",
    "ProductionInput",
    "ProductionOutput",
    "StockConsumption",
    "StockUnit",
]
