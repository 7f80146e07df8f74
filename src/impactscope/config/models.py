"""Pydantic configuration models with env var support.

Configuration Hierarchy (highest to lowest precedence):
1. Direct kwargs to load_config()
2. Environment variables (IMPACTSCOPE__SECTION__KEY)
3. Repo YAML (<repo>/.impactscope.yaml)
4. Global YAML (~/.config/impactscope/config.yaml)
5. Built-in defaults (this file)

Environment Variable Format:
    IMPACTSCOPE__<SECTION>__<KEY>=<VALUE>

Examples:
    IMPACTSCOPE__LOGGING__LEVEL=DEBUG
    IMPACTSCOPE__SCAN__MAX_WORKERS=4
    IMPACTSCOPE__ANALYZER__FACTS_DIR=/tmp/facts
"""

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def _default_workers() -> int:
    # I/O-bound scan: small cap regardless of core count
    return min(8, os.cpu_count() or 1)


class LogOutputConfig(BaseModel):
    """Single logging output configuration."""

    format: Literal["json", "console"] = "console"
    destination: str = "stderr"  # stderr, stdout, or absolute file path
    level: LogLevel | None = None  # Inherits from parent if None

    @field_validator("destination")
    @classmethod
    def validate_destination(cls, v: str) -> str:
        if v in ("stderr", "stdout"):
            return v
        path = Path(v).expanduser()
        if not path.is_absolute():
            raise ValueError(f"File destination must be absolute path: {v}")
        return str(path)


class LoggingConfig(BaseModel):
    """Logging configuration.

    Env vars:
        IMPACTSCOPE__LOGGING__LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    level: LogLevel = Field(
        default="INFO",
        description="Root log level. DEBUG logs every classified edge.",
    )
    outputs: list[LogOutputConfig] = Field(default_factory=lambda: [LogOutputConfig()])


class ScanConfig(BaseModel):
    """Candidate universe and parallel scan configuration.

    Env vars:
        IMPACTSCOPE__SCAN__SERVICES_DIR: Directory holding per-service sources
        IMPACTSCOPE__SCAN__MAX_WORKERS: Parallel file readers
    """

    services_dir: str = Field(
        default="internal/services",
        description="Repo-relative directory that holds one sub-directory per service.",
    )
    file_glob: str = Field(
        default="*_test.go",
        description="Glob selecting candidate files inside services_dir.",
    )
    service_marker: str = Field(
        default="services",
        description="Path segment whose successor names the owning service.",
    )
    test_prefixes: list[str] = Field(
        default_factory=lambda: ["Test", "testAcc"],
        description="Function name prefixes that mark test functions.",
    )
    max_workers: int = Field(
        default_factory=_default_workers,
        description="Worker threads for the initial scan (I/O bound).",
    )
    max_file_size_kb: int = Field(
        default=2048,
        description="Files larger than this are skipped and reported as partial failures.",
    )

    @field_validator("max_workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"max_workers must be >= 1, got {v}")
        return v

    @field_validator("services_dir")
    @classmethod
    def validate_services_dir(cls, v: str) -> str:
        if Path(v).is_absolute():
            raise ValueError(f"services_dir must be repo-relative: {v}")
        return v.strip("/")


class AnalyzerConfig(BaseModel):
    """External fact provider configuration.

    When facts_dir is set, pre-extracted fact files are read from it instead of
    running the analyzer command.

    Env vars:
        IMPACTSCOPE__ANALYZER__FACTS_DIR: Directory of pre-extracted facts
        IMPACTSCOPE__ANALYZER__TIMEOUT_SEC: Per-file analyzer timeout
    """

    command: list[str] = Field(
        default_factory=lambda: ["ast-analyzer"],
        description="Analyzer executable and leading arguments. "
        "-file, -reporoot and -resourcename are appended per file.",
    )
    timeout_sec: float = Field(
        default=30.0,
        description="Per-file analyzer timeout. A timeout counts as a partial failure.",
    )
    facts_dir: str | None = Field(
        default=None,
        description="Read <facts_dir>/<relative path>.json instead of running the analyzer.",
    )


class DiscoveryConfig(BaseModel):
    """Closure and sequential expansion configuration."""

    expand_sequential_scope: bool = Field(
        default=False,
        description="Pull files that define sequentially referenced tests into scope. "
        "When false, such targets are recorded as external stubs.",
    )


class ExportConfig(BaseModel):
    """Export configuration."""

    output_dir: str = Field(
        default="impactscope-out",
        description="Default export directory (one sub-directory per resource).",
    )


class ImpactScopeConfig(BaseModel):
    """Root configuration."""

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    scan: ScanConfig = Field(default_factory=ScanConfig)
    analyzer: AnalyzerConfig = Field(default_factory=AnalyzerConfig)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    export: ExportConfig = Field(default_factory=ExportConfig)
