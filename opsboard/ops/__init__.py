"""Dependency probes and the ops status aggregator."""

from opsboard.ops.aggregator import (
    ConfigurationError,
    DependencyStatus,
    OpsStatusAggregator,
    OpsStatusReport,
    SelfFacts,
)
from opsboard.ops.probe import CheckOutcome, CheckResult, ProbeContext, ServiceCheckConfig, run_probe

__all__ = [
    "CheckOutcome",
    "CheckResult",
    "ConfigurationError",
    "DependencyStatus",
    "OpsStatusAggregator",
    "OpsStatusReport",
    "ProbeContext",
    "SelfFacts",
    "ServiceCheckConfig",
    "run_probe",
]
