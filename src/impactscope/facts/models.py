"""Typed structural facts for one source file.

Produced by a FactProvider and consumed exactly once by ingestion. Nothing
downstream re-reads source text.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class _Fact(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class FunctionFact(_Fact):
    """A function declaration."""

    name: str
    struct: str | None = None
    line: int = 0
    produces_artifact: bool = False
    is_test: bool = False


class CallFact(_Fact):
    """A call edge.

    kind:
        step: a test step invoking a configuration template (``index`` is the
            step's position, 1-based)
        template: a template calling another template
        sequential: an orchestrator referencing a test inside a grouped/keyed
            collection (``group``/``key`` label the entry)
    """

    kind: Literal["step", "template", "sequential"]
    caller: str
    caller_struct: str | None = None
    callee: str
    callee_struct: str | None = None
    line: int = 0
    index: int | None = None
    embedded: bool = False
    anonymous: bool = False
    group: str | None = None
    key: str | None = None


class LiteralFact(_Fact):
    """An occurrence of the target identifier in a template's rendered output."""

    function: str
    struct: str | None = None
    identifier: str
    kind: Literal["block", "attribute"]
    context: str = ""
    context_line: int = 0


class Declaration(_Fact):
    """Lightweight declaration used to build the candidate universe index."""

    name: str
    struct: str | None = None
    line: int = 0


class FileFacts(_Fact):
    """All facts for one file. Empty lists mean an opaque leaf."""

    path: str
    functions: list[FunctionFact] = Field(default_factory=list)
    calls: list[CallFact] = Field(default_factory=list)
    literals: list[LiteralFact] = Field(default_factory=list)

    @classmethod
    def empty(cls, path: str) -> "FileFacts":
        return cls(path=path)

    @property
    def is_empty(self) -> bool:
        return not (self.functions or self.calls or self.literals)

    def calls_of(self, kind: str) -> list[CallFact]:
        return [c for c in self.calls if c.kind == kind]
