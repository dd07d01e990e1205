"""
ProductionConfig schema.

Typed, frozen view of a production configuration set.  YAML is parsed into
these types by the loader; services receive a ProductionConfig through their
constructor and never read files themselves.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class QuantityPolicy:
    """Precision of stored volumes and of yield percentages."""

    volume_places: int = 9
    percent_places: int = 4

    def __post_init__(self) -> None:
        if not 0 <= self.volume_places <= 9:
            raise ValueError("volume_places must be between 0 and 9")
        if not 0 <= self.percent_places <= 9:
            raise ValueError("percent_places must be between 0 and 9")


@dataclass(frozen=True)
class IdentifierPolicy:
    """Shape of package identifiers: ``{prefix}-{code}-{number:0width}``."""

    prefix: str = "N"
    width: int = 4
    max_number: int = 9999
    inherit_code_processes: tuple[str, ...] = ("sorting",)

    def __post_init__(self) -> None:
        if not self.prefix:
            raise ValueError("identifier prefix must not be empty")
        if self.max_number < 1 or len(str(self.max_number)) > self.width:
            raise ValueError(
                f"max_number {self.max_number} does not fit width {self.width}"
            )


@dataclass(frozen=True)
class OutputPolicy:
    """Attributes every staged output needs before it can become stock."""

    required_attributes: tuple[str, ...] = (
        "product",
        "species",
        "humidity",
        "product_type",
        "processing",
        "certification",
        "quality",
    )


@dataclass(frozen=True)
class RollbackPolicy:
    """Retry budget for each corrective write issued during rollback."""

    max_attempts: int = 3
    backoff_seconds: float = 0.05

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("rollback max_attempts must be at least 1")
        if self.backoff_seconds < 0:
            raise ValueError("rollback backoff_seconds must not be negative")


@dataclass(frozen=True)
class ReadPolicy:
    """Parallelism for independent reads during validation."""

    fanout_workers: int = 4

    def __post_init__(self) -> None:
        if self.fanout_workers < 1:
            raise ValueError("fanout_workers must be at least 1")


# ---------------------------------------------------------------------------
# Configuration set
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProductionConfig:
    """A complete configuration set with its identity."""

    config_id: str = "default"
    version: int = 1
    quantities: QuantityPolicy = field(default_factory=QuantityPolicy)
    identifiers: IdentifierPolicy = field(default_factory=IdentifierPolicy)
    outputs: OutputPolicy = field(default_factory=OutputPolicy)
    rollback: RollbackPolicy = field(default_factory=RollbackPolicy)
    reads: ReadPolicy = field(default_factory=ReadPolicy)
    checksum: str = ""
