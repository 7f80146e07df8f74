"""Fake repository builder shared by the test suite.

Writes a service tree plus pre-extracted fact files for JsonFactProvider.
"""

import json
from pathlib import Path
from typing import Any

from impactscope.config.models import ImpactScopeConfig
from impactscope.discovery.context import RunContext
from impactscope.discovery.pipeline import DiscoveryResult, build_provider, run_discovery
from impactscope.discovery.universe import CandidateUniverse
from impactscope.graph.models import Resource
from impactscope.graph.store import RelationalStore

TARGET = "azurerm_resource_group"
SERVICES_DIR = "internal/services"


class FakeRepo:
    """Repository layout ``internal/services/<service>/<file>`` plus a facts dir.

    Source text is generated from the declared functions; it contains the
    target literal only when the file has literal facts (or ``literal=True``),
    which is what the scan matches on.
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        self.facts_dir = root / ".facts"
        (root / SERVICES_DIR).mkdir(parents=True)
        self.facts_dir.mkdir()

    # Fact builders ---------------------------------------------------------

    @staticmethod
    def fn(
        name: str,
        struct: str | None = None,
        line: int = 1,
        *,
        template: bool = False,
        test: bool = False,
    ) -> dict[str, Any]:
        return {
            "name": name,
            "struct": struct,
            "line": line,
            "produces_artifact": template,
            "is_test": test,
        }

    @staticmethod
    def step(
        caller: str,
        callee: str,
        *,
        struct: str | None = None,
        index: int | None = None,
        line: int = 10,
        embedded: bool = False,
        anonymous: bool = False,
    ) -> dict[str, Any]:
        return {
            "kind": "step",
            "caller": caller,
            "callee": callee,
            "callee_struct": struct,
            "index": index,
            "line": line,
            "embedded": embedded,
            "anonymous": anonymous,
        }

    @staticmethod
    def tcall(
        caller: str,
        callee: str,
        *,
        struct: str | None = None,
        caller_struct: str | None = None,
        line: int = 20,
    ) -> dict[str, Any]:
        return {
            "kind": "template",
            "caller": caller,
            "caller_struct": caller_struct,
            "callee": callee,
            "callee_struct": struct,
            "line": line,
        }

    @staticmethod
    def seq(caller: str, callee: str, group: str, key: str, line: int = 30) -> dict[str, Any]:
        return {
            "kind": "sequential",
            "caller": caller,
            "callee": callee,
            "group": group,
            "key": key,
            "line": line,
        }

    @staticmethod
    def lit(
        function: str,
        struct: str | None = None,
        kind: str = "block",
        identifier: str = TARGET,
    ) -> dict[str, Any]:
        return {
            "function": function,
            "struct": struct,
            "identifier": identifier,
            "kind": kind,
            "context": f'resource "{identifier}" "test" {{',
            "context_line": 2,
        }

    # Files -----------------------------------------------------------------

    def add_file(
        self,
        service: str,
        name: str,
        *,
        functions: list[dict[str, Any]] | None = None,
        calls: list[dict[str, Any]] | None = None,
        literals: list[dict[str, Any]] | None = None,
        literal: bool = False,
        facts: bool = True,
        raw_facts: str | None = None,
    ) -> str:
        """Write a source file and its facts; returns the repo-relative path."""
        path = f"{SERVICES_DIR}/{service}/{name}"
        functions = functions or []
        lines = [f"package {service}", ""]
        for f in functions:
            recv = f"(r {f['struct']}) " if f.get("struct") else ""
            lines.append(f"func {recv}{f['name']}() {{}}")
        if literals or literal:
            lines.append(f'// resource "{TARGET}" "test" {{}}')
        source = self.root / path
        source.parent.mkdir(parents=True, exist_ok=True)
        source.write_text("\n".join(lines) + "\n")

        if raw_facts is not None or facts:
            fact_file = self.facts_dir / f"{path}.json"
            fact_file.parent.mkdir(parents=True, exist_ok=True)
            if raw_facts is not None:
                fact_file.write_text(raw_facts)
            else:
                document = {
                    "path": path,
                    "functions": functions,
                    "calls": calls or [],
                    "literals": literals or [],
                }
                fact_file.write_text(json.dumps(document))
        return path

    # Runs ------------------------------------------------------------------

    def config(self, **sections: dict[str, Any]) -> ImpactScopeConfig:
        data: dict[str, Any] = {
            "scan": {"max_workers": 4},
            "analyzer": {"facts_dir": str(self.facts_dir)},
        }
        for section, values in sections.items():
            data[section] = {**data.get(section, {}), **values}
        return ImpactScopeConfig.model_validate(data)

    def run(self, target: str = TARGET, **sections: dict[str, Any]) -> DiscoveryResult:
        return run_discovery(target, self.root, self.config(**sections))

    def context(self, target: str = TARGET, **sections: dict[str, Any]) -> RunContext:
        """Run context with the Resource row created, for driving components directly."""
        config = self.config(**sections)
        root = self.root.resolve()
        store = RelationalStore()
        ctx = RunContext(
            config=config,
            repo_root=root,
            target=target,
            store=store,
            provider=build_provider(config, root),
            universe=CandidateUniverse(config.scan.service_marker),
        )
        ctx.resource_id = store.get_or_create(
            Resource, (target,), lambda: Resource(identifier=target)
        )
        return ctx
