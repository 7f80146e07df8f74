"""Config module exports."""

from impactscope.config.loader import load_config
from impactscope.config.models import (
    AnalyzerConfig,
    DiscoveryConfig,
    ExportConfig,
    ImpactScopeConfig,
    LoggingConfig,
    ScanConfig,
)

__all__ = [
    "load_config",
    "AnalyzerConfig",
    "DiscoveryConfig",
    "ExportConfig",
    "ImpactScopeConfig",
    "LoggingConfig",
    "ScanConfig",
]
