"""Fact providers: the boundary to the external structural analyzer.

Two adapters are provided:
- JsonFactProvider: reads pre-extracted ``<facts_dir>/<path>.json`` files
- AnalyzerCommandProvider: runs the Go AST analyzer per file and maps its output

Providers raise FactError for a single file's failure; the scanner records it
as a partial failure and treats the file as an opaque leaf.
"""

from __future__ import annotations

import json
import re
import subprocess
from pathlib import Path
from typing import Any, Protocol

import structlog
from pydantic import ValidationError

from impactscope.core.errors import FactError
from impactscope.facts.models import CallFact, Declaration, FileFacts, FunctionFact, LiteralFact

logger = structlog.get_logger()

# func Name(  |  func (r Recv) Name(  |  func (r *Recv) Name(
_GO_FUNC_RE = re.compile(
    r"^func\s+(?:\(\s*(?:\w+\s+)?\*?(?P<recv>\w+)(?:\[[^\]]*\])?\s*\)\s*)?(?P<name>\w+)\s*[\[(]",
    re.MULTILINE,
)

_OCCURRENCE_KINDS = {
    "RESOURCE_BLOCK": "block",
    "ATTRIBUTE_REFERENCE": "attribute",
}


def scan_declarations(source: str) -> list[Declaration]:
    """Go function headers in ``source``, in file order."""
    decls = []
    for match in _GO_FUNC_RE.finditer(source):
        line = source.count("\n", 0, match.start()) + 1
        decls.append(Declaration(name=match.group("name"), struct=match.group("recv"), line=line))
    return decls


class FactProvider(Protocol):
    """Turns one source file into typed facts.

    Paths are repo-relative POSIX strings; ``source`` is the file's text as
    read by the scanner.
    """

    def declarations(self, path: str, source: str) -> list[Declaration]:
        """Declared functions, for the candidate universe index.

        Called for every candidate file, so it should be cheap.
        """
        ...

    def extract(self, path: str, source: str, target: str) -> FileFacts:
        """Full facts for a file; literals are limited to ``target``.

        Raises:
            FactError: Facts are unavailable or malformed.
        """
        ...


class JsonFactProvider:
    """Reads facts written ahead of time in the FileFacts schema.

    A missing fact file yields empty facts (opaque leaf), not an error.
    """

    def __init__(self, facts_dir: Path) -> None:
        self.facts_dir = facts_dir
        self._cache: dict[str, FileFacts | None] = {}

    def _fact_path(self, path: str) -> Path:
        return self.facts_dir / f"{path}.json"

    def _load(self, path: str) -> FileFacts | None:
        if path in self._cache:
            return self._cache[path]
        fact_path = self._fact_path(path)
        if not fact_path.exists():
            facts = None
        else:
            try:
                raw = fact_path.read_text(encoding="utf-8")
            except UnicodeDecodeError as e:
                raise FactError.malformed(path, f"not UTF-8: {e.reason}") from e
            except OSError as e:
                raise FactError.read_failed(str(fact_path), str(e)) from e
            try:
                facts = FileFacts.model_validate_json(raw).model_copy(update={"path": path})
            except ValidationError as e:
                raise FactError.malformed(path, f"{e.error_count()} validation errors") from e
        self._cache[path] = facts
        return facts

    def declarations(self, path: str, source: str) -> list[Declaration]:
        facts = self._load(path)
        if facts is None:
            return scan_declarations(source)
        return [Declaration(name=f.name, struct=f.struct, line=f.line) for f in facts.functions]

    def extract(self, path: str, source: str, target: str) -> FileFacts:  # noqa: ARG002
        facts = self._load(path)
        if facts is None:
            return FileFacts.empty(path)
        literals = [lit for lit in facts.literals if lit.identifier == target]
        return facts.model_copy(update={"literals": literals})


class AnalyzerCommandProvider:
    """Runs the external Go AST analyzer once per file.

    The analyzer is invoked as ``<command> -file <abs> -reporoot <root>
    -resourcename <target>`` and prints one JSON document on stdout.
    """

    def __init__(self, command: list[str], repo_root: Path, timeout: float = 30.0) -> None:
        self.command = list(command)
        self.repo_root = repo_root
        self.timeout = timeout

    def declarations(self, path: str, source: str) -> list[Declaration]:  # noqa: ARG002
        return scan_declarations(source)

    def extract(self, path: str, source: str, target: str) -> FileFacts:  # noqa: ARG002
        cmd = [
            *self.command,
            "-file",
            str(self.repo_root / path),
            "-reporoot",
            str(self.repo_root),
            "-resourcename",
            target,
        ]
        try:
            result = subprocess.run(
                cmd,
                cwd=self.repo_root,
                capture_output=True,
                encoding="utf-8",
                timeout=self.timeout,
            )
        except UnicodeDecodeError as e:
            raise FactError.malformed(path, f"output is not UTF-8: {e.reason}") from e
        except subprocess.TimeoutExpired as e:
            raise FactError.extraction_failed(path, f"timed out after {self.timeout}s") from e
        except OSError as e:
            raise FactError.extraction_failed(path, str(e)) from e

        if result.returncode != 0:
            reason = result.stderr.strip() or f"exit status {result.returncode}"
            raise FactError.extraction_failed(path, reason)

        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise FactError.malformed(path, f"invalid JSON: {e.msg}") from e
        if not isinstance(data, dict):
            raise FactError.malformed(path, "top level must be an object")

        try:
            return map_analyzer_output(path, data, target)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise FactError.malformed(path, str(e)) from e


def map_analyzer_output(path: str, data: dict[str, Any], target: str) -> FileFacts:
    """Map the analyzer's JSON document onto FileFacts."""
    steps = data.get("test_steps") or []
    template_calls = data.get("template_calls") or []
    sequential = data.get("sequential_references") or []
    direct = data.get("direct_resource_references") or []

    # Names used as configuration builders anywhere in this file
    template_names: set[str] = set()
    for step in steps:
        if step.get("config_method"):
            template_names.add(step["config_method"])
    for call in template_calls:
        template_names.add(call["source_function"])
        if call.get("target_method"):
            template_names.add(call["target_method"])
    for ref in direct:
        template_names.add(ref["template_function"])

    functions = []
    for fn in data.get("functions") or []:
        name = fn["FunctionName"]
        is_test = bool(fn.get("IsTestFunc"))
        functions.append(
            FunctionFact(
                name=name,
                struct=fn.get("ReceiverType") or None,
                line=int(fn.get("Line") or 0),
                is_test=is_test,
                produces_artifact=not is_test and name in template_names,
            )
        )

    calls = []
    for step in steps:
        expr = step.get("config_expr") or ""
        method = step.get("config_method") or ""
        variable = step.get("config_variable") or ""
        anonymous = expr.lstrip().startswith("func(")
        if not method and not variable and not anonymous:
            continue
        calls.append(
            CallFact(
                kind="step",
                caller=step["source_function"],
                caller_struct=step.get("source_struct") or None,
                callee=method or variable,
                callee_struct=step.get("config_struct") or None,
                line=int(step.get("source_line") or 0),
                index=int(step["step_index"]) if step.get("step_index") is not None else None,
                # Config: config (local variable) or Config: func() {...}
                embedded=anonymous or not method,
                anonymous=anonymous,
            )
        )
    for call in template_calls:
        if not call.get("target_method"):
            continue
        calls.append(
            CallFact(
                kind="template",
                caller=call["source_function"],
                callee=call["target_method"],
                callee_struct=call.get("target_struct") or None,
                line=int(call.get("source_line") or 0),
            )
        )
    for ref in sequential:
        calls.append(
            CallFact(
                kind="sequential",
                caller=ref["entry_point_function"],
                callee=ref["referenced_function"],
                line=int(ref.get("entry_point_line") or 0),
                group=ref.get("sequential_group") or "",
                key=ref.get("sequential_key") or "",
            )
        )

    literals = []
    for ref in direct:
        if ref.get("resource_name") != target:
            continue
        kind = _OCCURRENCE_KINDS.get(ref.get("reference_type", ""))
        if kind is None:
            logger.debug("unknown_reference_type", path=path, value=ref.get("reference_type"))
            continue
        literals.append(
            LiteralFact(
                function=ref["template_function"],
                identifier=target,
                kind=kind,  # type: ignore[arg-type]
                context=ref.get("context") or "",
                context_line=int(ref.get("context_line") or 0),
            )
        )

    return FileFacts(path=path, functions=functions, calls=calls, literals=literals)
