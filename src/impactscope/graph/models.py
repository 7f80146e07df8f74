"""SQLModel definitions for the test-impact graph.

Single source of truth for all table schemas and for the reference-type
enumeration shared by the three classification dimensions.

Every entity row carries ``resource_id`` (the run's Resource). Rows are
append-only; the fields listed in ``__reclassifiable__`` are the only ones the
refinement pass may update in place.

External/stub rows (``is_external=True``) stand in for functions that could not
be located in the scanned scope. They carry ``line=STUB_LINE`` and
``body=EXTERNAL_MARKER`` so that exported tables keep a self-describing
placeholder.
"""

from enum import Enum, IntEnum
from typing import Any, ClassVar

from sqlmodel import Field, SQLModel

REFERENCE_TYPE_VERSION = 1
"""Bumped whenever ReferenceType members or ids change."""

STUB_LINE = 0
EXTERNAL_MARKER = "EXTERNAL_REFERENCE"


# ============================================================================
# ENUMS
# ============================================================================


class Dimension(str, Enum):
    """Classification dimension a reference type belongs to."""

    RESOLUTION = "resolution"
    VISIBILITY = "visibility"
    SERVICE_IMPACT = "service_impact"


class ReferenceType(IntEnum):
    """Closed, versioned enumeration for the three classification dimensions.

    EXTERNAL is shared by resolution and visibility: an unresolved edge never
    gets a guessed visibility.
    """

    SAME_FUNCTION = 1  # callee embedded in the caller's own body
    SAME_FILE = 2
    CROSS_FILE = 3
    EXTERNAL = 4  # not located in the scanned scope
    PRIVATE = 11
    PUBLIC = 12
    SAME_SERVICE = 21
    CROSS_SERVICE = 22

    @property
    def dimensions(self) -> frozenset[Dimension]:
        return _DIMENSIONS[self]

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]


_DIMENSIONS: dict[ReferenceType, frozenset[Dimension]] = {
    ReferenceType.SAME_FUNCTION: frozenset({Dimension.RESOLUTION}),
    ReferenceType.SAME_FILE: frozenset({Dimension.RESOLUTION}),
    ReferenceType.CROSS_FILE: frozenset({Dimension.RESOLUTION}),
    ReferenceType.EXTERNAL: frozenset({Dimension.RESOLUTION, Dimension.VISIBILITY}),
    ReferenceType.PRIVATE: frozenset({Dimension.VISIBILITY}),
    ReferenceType.PUBLIC: frozenset({Dimension.VISIBILITY}),
    ReferenceType.SAME_SERVICE: frozenset({Dimension.SERVICE_IMPACT}),
    ReferenceType.CROSS_SERVICE: frozenset({Dimension.SERVICE_IMPACT}),
}

_DESCRIPTIONS: dict[ReferenceType, str] = {
    ReferenceType.SAME_FUNCTION: "Target is embedded in the caller's body",
    ReferenceType.SAME_FILE: "Target is another function in the caller's file",
    ReferenceType.CROSS_FILE: "Target is defined in another scanned file",
    ReferenceType.EXTERNAL: "Target is outside the scanned scope",
    ReferenceType.PRIVATE: "Lowercase identifier or anonymous closure",
    ReferenceType.PUBLIC: "Uppercase identifier",
    ReferenceType.SAME_SERVICE: "Both endpoints belong to the same service",
    ReferenceType.CROSS_SERVICE: "Endpoints belong to different services",
}

RESOLUTION_TYPES = frozenset(t for t in ReferenceType if Dimension.RESOLUTION in t.dimensions)
VISIBILITY_TYPES = frozenset(t for t in ReferenceType if Dimension.VISIBILITY in t.dimensions)
SERVICE_IMPACT_TYPES = frozenset(
    t for t in ReferenceType if Dimension.SERVICE_IMPACT in t.dimensions
)


class OccurrenceKind(str, Enum):
    """How the target literal appears in rendered configuration."""

    BLOCK = "block"  # resource "azurerm_x" "test" { ... }
    ATTRIBUTE = "attribute"  # azurerm_x.test.name


# ============================================================================
# TABLES
# ============================================================================


class ReferenceTypeRecord(SQLModel, table=True):
    """Exported copy of the ReferenceType enumeration."""

    __tablename__ = "reference_types"
    __natural_key__: ClassVar[tuple[str, ...]] = ("id",)
    __reclassifiable__: ClassVar[frozenset[str]] = frozenset()

    id: int | None = Field(default=None, primary_key=True)
    name: str
    dimension: str  # comma-separated Dimension values
    description: str


class Resource(SQLModel, table=True):
    """The identifier under analysis. Root of one run."""

    __tablename__ = "resources"
    __natural_key__: ClassVar[tuple[str, ...]] = ("identifier",)
    __reclassifiable__: ClassVar[frozenset[str]] = frozenset()

    id: int | None = Field(default=None, primary_key=True)
    identifier: str = Field(index=True)


class Service(SQLModel, table=True):
    """Ownership grouping inferred from file location."""

    __tablename__ = "services"
    __natural_key__: ClassVar[tuple[str, ...]] = ("name",)
    __reclassifiable__: ClassVar[frozenset[str]] = frozenset()

    id: int | None = Field(default=None, primary_key=True)
    resource_id: int = Field(foreign_key="resources.id", index=True)
    name: str = Field(index=True)


class SourceFile(SQLModel, table=True):
    """Scanned file (repo-relative POSIX path)."""

    __tablename__ = "source_files"
    __natural_key__: ClassVar[tuple[str, ...]] = ("path",)
    __reclassifiable__: ClassVar[frozenset[str]] = frozenset()

    id: int | None = Field(default=None, primary_key=True)
    resource_id: int = Field(foreign_key="resources.id", index=True)
    service_id: int = Field(foreign_key="services.id", index=True)
    path: str = Field(index=True)


class Struct(SQLModel, table=True):
    """Configuration-owning type; owns template and test methods.

    ``file_id`` is null for a struct known only as the receiver of an External stub.
    """

    __tablename__ = "structs"
    __natural_key__: ClassVar[tuple[str, ...]] = ("name",)
    __reclassifiable__: ClassVar[frozenset[str]] = frozenset()

    id: int | None = Field(default=None, primary_key=True)
    resource_id: int = Field(foreign_key="resources.id", index=True)
    file_id: int | None = Field(default=None, foreign_key="source_files.id", index=True)
    name: str = Field(index=True)


class TemplateFunction(SQLModel, table=True):
    """Function producing a configuration artifact."""

    __tablename__ = "template_functions"
    __natural_key__: ClassVar[tuple[str, ...]] = ("is_external", "file_id", "struct_id", "name")
    __reclassifiable__: ClassVar[frozenset[str]] = frozenset()

    id: int | None = Field(default=None, primary_key=True)
    resource_id: int = Field(foreign_key="resources.id", index=True)
    file_id: int | None = Field(default=None, foreign_key="source_files.id", index=True)
    struct_id: int | None = Field(default=None, foreign_key="structs.id", index=True)
    name: str = Field(index=True)
    line: int
    produces_artifact: bool = True
    is_anonymous: bool = False
    is_external: bool = False
    visibility_type_id: int = Field(foreign_key="reference_types.id")
    body: str | None = None
    location_hint: str | None = None


class TestFunction(SQLModel, table=True):
    """Function that exercises a resource, directly or through templates."""

    __test__ = False
    __tablename__ = "test_functions"
    __natural_key__: ClassVar[tuple[str, ...]] = ("is_external", "file_id", "name")
    __reclassifiable__: ClassVar[frozenset[str]] = frozenset({"sequential_parent_id"})

    id: int | None = Field(default=None, primary_key=True)
    resource_id: int = Field(foreign_key="resources.id", index=True)
    file_id: int | None = Field(default=None, foreign_key="source_files.id", index=True)
    struct_id: int | None = Field(default=None, foreign_key="structs.id", index=True)
    name: str = Field(index=True)
    line: int
    prefix: str = ""
    visibility_type_id: int = Field(foreign_key="reference_types.id")
    is_sequential_entry: bool = False
    sequential_parent_id: int | None = Field(
        default=None, foreign_key="test_functions.id", index=True
    )
    is_external: bool = False
    body: str | None = None
    location_hint: str | None = None


_EDGE_FIELDS = frozenset(
    {"resolution_type_id", "visibility_type_id", "service_impact_type_id", "ambiguous"}
)


class Step(SQLModel, table=True):
    """One configuration invocation inside a test function."""

    __tablename__ = "steps"
    __natural_key__: ClassVar[tuple[str, ...]] = ("test_function_id", "step_index")
    __reclassifiable__: ClassVar[frozenset[str]] = _EDGE_FIELDS | {"template_function_id"}

    id: int | None = Field(default=None, primary_key=True)
    resource_id: int = Field(foreign_key="resources.id", index=True)
    test_function_id: int = Field(foreign_key="test_functions.id", index=True)
    step_index: int
    line: int
    target_name: str
    target_struct: str | None = None
    template_function_id: int | None = Field(
        default=None, foreign_key="template_functions.id", index=True
    )
    resolution_type_id: int = Field(foreign_key="reference_types.id")
    visibility_type_id: int = Field(foreign_key="reference_types.id")
    service_impact_type_id: int | None = Field(default=None, foreign_key="reference_types.id")
    ambiguous: bool = False


class TemplateCall(SQLModel, table=True):
    """Template-to-template edge; target is null when unresolved."""

    __tablename__ = "template_calls"
    __natural_key__: ClassVar[tuple[str, ...] | None] = None
    __reclassifiable__: ClassVar[frozenset[str]] = _EDGE_FIELDS | {"target_function_id"}

    id: int | None = Field(default=None, primary_key=True)
    resource_id: int = Field(foreign_key="resources.id", index=True)
    source_function_id: int = Field(foreign_key="template_functions.id", index=True)
    target_name: str
    target_struct: str | None = None
    target_function_id: int | None = Field(
        default=None, foreign_key="template_functions.id", index=True
    )
    line: int
    resolution_type_id: int = Field(foreign_key="reference_types.id")
    visibility_type_id: int = Field(foreign_key="reference_types.id")
    service_impact_type_id: int | None = Field(default=None, foreign_key="reference_types.id")
    ambiguous: bool = False


class SequentialLink(SQLModel, table=True):
    """Orchestrator test invoking another test by reference (group/key entry)."""

    __tablename__ = "sequential_links"
    __natural_key__: ClassVar[tuple[str, ...]] = (
        "entry_function_id",
        "group",
        "key",
        "target_name",
    )
    __reclassifiable__: ClassVar[frozenset[str]] = _EDGE_FIELDS | {"target_function_id"}

    id: int | None = Field(default=None, primary_key=True)
    resource_id: int = Field(foreign_key="resources.id", index=True)
    entry_function_id: int = Field(foreign_key="test_functions.id", index=True)
    target_function_id: int | None = Field(
        default=None, foreign_key="test_functions.id", index=True
    )
    target_name: str
    group: str
    key: str = ""
    line: int
    resolution_type_id: int = Field(foreign_key="reference_types.id")
    visibility_type_id: int = Field(foreign_key="reference_types.id")
    service_impact_type_id: int | None = Field(default=None, foreign_key="reference_types.id")
    ambiguous: bool = False


class DirectReference(SQLModel, table=True):
    """Occurrence of the target literal in a template's rendered output."""

    __tablename__ = "direct_references"
    __natural_key__: ClassVar[tuple[str, ...] | None] = None
    __reclassifiable__: ClassVar[frozenset[str]] = frozenset()

    id: int | None = Field(default=None, primary_key=True)
    resource_id: int = Field(foreign_key="resources.id", index=True)
    template_function_id: int = Field(foreign_key="template_functions.id", index=True)
    occurrence_kind: str  # OccurrenceKind value
    context: str = ""
    context_line: int = 0


# FK-safe creation/export order.
TABLES: tuple[type[SQLModel], ...] = (
    ReferenceTypeRecord,
    Resource,
    Service,
    SourceFile,
    Struct,
    TemplateFunction,
    TestFunction,
    Step,
    TemplateCall,
    SequentialLink,
    DirectReference,
)


def natural_key(row: SQLModel) -> tuple[Any, ...] | None:
    """Natural key of a row, or None for tables without one."""
    fields = getattr(type(row), "__natural_key__", None)
    if not fields:
        return None
    return tuple(getattr(row, name) for name in fields)


def reference_type_rows() -> list[ReferenceTypeRecord]:
    """Fixed rows mirroring the ReferenceType enumeration."""
    return [
        ReferenceTypeRecord(
            id=member.value,
            name=member.name,
            dimension=",".join(sorted(d.value for d in member.dimensions)),
            description=member.description,
        )
        for member in ReferenceType
    ]
