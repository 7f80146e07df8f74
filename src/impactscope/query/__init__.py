"""Query views and export/import."""

from impactscope.query.engine import ImpactedTest, QueryEngine, View
from impactscope.query.export import (
    MANIFEST_NAME,
    SCHEMA_VERSION,
    ExportManifest,
    ImportedGraph,
    export_store,
    import_store,
    read_manifest,
)

__all__ = [
    "ImpactedTest",
    "QueryEngine",
    "View",
    "MANIFEST_NAME",
    "SCHEMA_VERSION",
    "ExportManifest",
    "ImportedGraph",
    "export_store",
    "import_store",
    "read_manifest",
]
