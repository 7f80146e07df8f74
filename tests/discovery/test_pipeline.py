"""End-to-end tests for discovery/pipeline.py."""

from __future__ import annotations

from typing import Any

import pytest
from repo_builder import TARGET, FakeRepo

from impactscope.core.errors import MissingInputError
from impactscope.core.logging import get_run_id
from impactscope.discovery.pipeline import (
    DiscoveryOutcome,
    DiscoveryResult,
    build_provider,
    run_discovery,
)
from impactscope.facts.provider import AnalyzerCommandProvider, JsonFactProvider
from impactscope.graph.integrity import IntegrityChecker
from impactscope.graph.models import (
    DirectReference,
    ReferenceType,
    Resource,
    SequentialLink,
    SourceFile,
    Step,
    TemplateCall,
    TemplateFunction,
    TestFunction,
)

HELPERS = "internal/services/resource/helpers_test.go"


def _edges(result: DiscoveryResult) -> list[tuple[Any, ...]]:
    """Edge tags keyed by names, independent of row ids."""
    store = result.store
    rows: list[tuple[Any, ...]] = []
    for step in store.query(Step):
        rows.append(
            (
                "step",
                step.target_name,
                step.step_index,
                step.resolution_type_id,
                step.visibility_type_id,
                step.service_impact_type_id,
            )
        )
    for call in store.query(TemplateCall):
        rows.append(
            (
                "call",
                call.target_name,
                call.line,
                call.resolution_type_id,
                call.visibility_type_id,
                call.service_impact_type_id,
            )
        )
    return sorted(rows, key=repr)


class TestScenarios:
    def test_given_same_file_step_when_discovered_then_same_file_private_same_service(
        self, scenario_a: FakeRepo
    ) -> None:
        # When
        result = scenario_a.run()

        # Then
        assert result.outcome is DiscoveryOutcome.FOUND
        assert result.found
        store = result.store
        (resource,) = store.query(Resource).all()
        assert resource.identifier == TARGET

        (test,) = store.query(TestFunction).all()
        assert test.name == "TestX"
        assert test.visibility_type_id == int(ReferenceType.PUBLIC)

        (step,) = store.query(Step).all()
        assert step.step_index == 1
        assert step.resolution_type_id == int(ReferenceType.SAME_FILE)
        assert step.visibility_type_id == int(ReferenceType.PRIVATE)
        assert step.service_impact_type_id == int(ReferenceType.SAME_SERVICE)
        template = store.get(TemplateFunction, step.template_function_id)  # type: ignore[arg-type]
        assert template is not None and template.name == "basic"

        assert store.count(DirectReference) == 1
        assert result.diagnostics.files_in_scope == 1
        assert result.diagnostics.failures == []

    def test_given_sequential_target_elsewhere_when_discovered_then_external_stub(
        self, scenario_b: FakeRepo
    ) -> None:
        result = scenario_b.run()

        link = result.store.query(SequentialLink).first()
        assert link is not None
        assert link.resolution_type_id == int(ReferenceType.EXTERNAL)
        stub = result.store.get(TestFunction, link.target_function_id)  # type: ignore[arg-type]
        assert stub is not None
        assert stub.is_external and stub.location_hint == HELPERS
        assert result.store.lookup(SourceFile, (HELPERS,)) is None

    def test_given_expand_scope_when_discovered_then_sequential_file_ingested(
        self, scenario_b: FakeRepo
    ) -> None:
        # When
        result = scenario_b.run(discovery={"expand_sequential_scope": True})

        # Then
        assert result.sequential is not None and result.sequential.files_added == 1
        assert result.store.lookup(SourceFile, (HELPERS,)) is not None
        link = result.store.query(SequentialLink).first()
        assert link is not None
        assert link.resolution_type_id == int(ReferenceType.CROSS_FILE)
        assert link.service_impact_type_id == int(ReferenceType.SAME_SERVICE)
        tests = {t.name: t for t in result.store.query(TestFunction)}
        assert tests["testHelper"].sequential_parent_id == tests["TestSeq"].id

    def test_given_cross_service_template_calls_when_discovered_then_closure_pulls_both(
        self, scenario_c: FakeRepo
    ) -> None:
        # When
        result = scenario_c.run()

        # Then
        assert result.closure is not None
        assert sorted(result.closure.added) == [
            "internal/services/compute/helpers_test.go",
            "internal/services/network/shared_test.go",
        ]
        assert result.diagnostics.files_in_scope == 3
        impacts = {
            c.target_name: c.service_impact_type_id for c in result.store.query(TemplateCall)
        }
        assert impacts == {
            "sharedTemplate": int(ReferenceType.CROSS_SERVICE),
            "localHelper": int(ReferenceType.SAME_SERVICE),
        }
        assert IntegrityChecker(result.store).verify().passed


class TestOutcomes:
    def test_given_no_literal_when_discovered_then_not_found_and_no_rows(
        self, fake_repo: FakeRepo
    ) -> None:
        # Given
        fake_repo.add_file("network", "a_test.go", functions=[fake_repo.fn("TestAccA", test=True)])

        # When
        result = fake_repo.run()

        # Then
        assert result.outcome is DiscoveryOutcome.NOT_FOUND
        assert not result.found
        assert result.store.count(Resource) == 0
        assert result.diagnostics.files_scanned == 1
        assert result.closure is None

    def test_given_other_target_when_discovered_then_not_found(
        self, scenario_a: FakeRepo
    ) -> None:
        result = scenario_a.run(target="azurerm_storage_account")

        assert result.outcome is DiscoveryOutcome.NOT_FOUND

    def test_given_missing_root_when_discovered_then_missing_input(
        self, fake_repo: FakeRepo
    ) -> None:
        config = fake_repo.config()

        with pytest.raises(MissingInputError) as exc_info:
            run_discovery(TARGET, fake_repo.root / "nope", config)

        assert exc_info.value.error_name == "INPUT_ROOT_NOT_FOUND"

    def test_given_missing_services_dir_when_discovered_then_missing_input(
        self, fake_repo: FakeRepo
    ) -> None:
        config = fake_repo.config(scan={"services_dir": "pkg/services"})

        with pytest.raises(MissingInputError) as exc_info:
            run_discovery(TARGET, fake_repo.root, config)

        assert exc_info.value.error_name == "INPUT_SUBTREE_NOT_FOUND"

    def test_given_run_when_discovered_then_run_id_bound(self, scenario_a: FakeRepo) -> None:
        result = scenario_a.run()

        assert result.run_id
        assert get_run_id() == result.run_id


class TestPartialFailure:
    def test_given_malformed_facts_for_one_file_when_discovered_then_run_completes(
        self, scenario_a: FakeRepo
    ) -> None:
        # Given
        bad = scenario_a.add_file("network", "bad_test.go", literal=True, raw_facts="[1, 2")

        # When
        result = scenario_a.run()

        # Then
        assert result.found
        failures = [(f.path, f.code) for f in result.diagnostics.failures]
        assert failures == [(bad, "FACT_MALFORMED")]
        # The opaque leaf is still in scope but contributes no functions
        file_id = result.store.lookup(SourceFile, (bad,))
        assert file_id is not None
        assert result.store.query(TemplateFunction, TemplateFunction.file_id == file_id).all() == []
        assert result.store.count(Step) == 1
        assert IntegrityChecker(result.store).verify().passed

    def test_given_non_utf8_facts_for_one_file_when_discovered_then_run_completes(
        self, scenario_a: FakeRepo
    ) -> None:
        # Given
        bad = scenario_a.add_file("network", "latin1_test.go", literal=True, facts=False)
        (scenario_a.facts_dir / f"{bad}.json").parent.mkdir(parents=True, exist_ok=True)
        (scenario_a.facts_dir / f"{bad}.json").write_bytes(
            b'{"path": "x", "functions": [{"name": "caf\xe9"}]}'
        )

        # When
        result = scenario_a.run()

        # Then
        assert result.found
        failures = [(f.path, f.code) for f in result.diagnostics.failures]
        assert failures == [(bad, "FACT_MALFORMED")]
        assert result.store.lookup(SourceFile, (bad,)) is not None

    def test_given_missing_fact_file_when_discovered_then_opaque_leaf(
        self, scenario_a: FakeRepo
    ) -> None:
        missing = scenario_a.add_file("network", "nofacts_test.go", literal=True, facts=False)

        result = scenario_a.run()

        assert result.found
        assert result.diagnostics.failures == []
        assert result.store.lookup(SourceFile, (missing,)) is not None
        assert result.diagnostics.files_in_scope == 2


class TestAmbiguity:
    def test_given_two_definitions_when_discovered_then_tie_break_and_diagnostic(
        self, fake_repo: FakeRepo
    ) -> None:
        # Given
        repo = fake_repo
        repo.add_file(
            "network",
            "a_test.go",
            functions=[repo.fn("cfg", template=True)],
            calls=[repo.tcall("cfg", "helper")],
            literals=[repo.lit("cfg")],
        )
        chosen = repo.add_file(
            "compute", "x_test.go", functions=[repo.fn("helper", line=3, template=True)]
        )
        other = repo.add_file(
            "storage", "y_test.go", functions=[repo.fn("helper", line=3, template=True)]
        )

        # When
        result = repo.run()

        # Then
        (call,) = result.store.query(TemplateCall).all()
        assert call.ambiguous
        target = result.store.get(TemplateFunction, call.target_function_id)  # type: ignore[arg-type]
        assert target is not None
        source_file = result.store.get(SourceFile, target.file_id)  # type: ignore[arg-type]
        assert source_file is not None and source_file.path == chosen
        assert result.store.lookup(SourceFile, (other,)) is None

        (entry,) = result.diagnostics.ambiguous
        assert entry.name == "helper"
        assert entry.chosen == chosen
        assert entry.candidates == (chosen, other)


class TestDeterminism:
    def test_given_different_worker_counts_when_discovered_then_same_graph(
        self, scenario_c: FakeRepo
    ) -> None:
        """Row counts and edge tags do not depend on scan concurrency."""
        # Given
        for i in range(6):
            scenario_c.add_file(
                "compute",
                f"extra{i}_test.go",
                functions=[
                    scenario_c.fn(f"TestAccExtra{i}", test=True),
                    scenario_c.fn(f"cfg{i}", template=True),
                ],
                calls=[
                    scenario_c.step(f"TestAccExtra{i}", f"cfg{i}", index=1),
                    scenario_c.tcall(f"cfg{i}", "sharedTemplate"),
                ],
                literals=[scenario_c.lit(f"cfg{i}")],
            )

        # When
        single = scenario_c.run(scan={"max_workers": 1})
        parallel = scenario_c.run(scan={"max_workers": 8})

        # Then
        assert single.store.row_counts() == parallel.store.row_counts()
        assert _edges(single) == _edges(parallel)


class TestBuildProvider:
    def test_facts_dir_selects_json_provider(self, fake_repo: FakeRepo) -> None:
        provider = build_provider(fake_repo.config(), fake_repo.root)

        assert isinstance(provider, JsonFactProvider)

    def test_relative_facts_dir_resolves_against_repo(self, fake_repo: FakeRepo) -> None:
        provider = build_provider(
            fake_repo.config(analyzer={"facts_dir": ".facts"}), fake_repo.root
        )

        assert isinstance(provider, JsonFactProvider)
        assert provider.facts_dir == fake_repo.root / ".facts"

    def test_no_facts_dir_selects_analyzer_command(self, fake_repo: FakeRepo) -> None:
        provider = build_provider(fake_repo.config(analyzer={"facts_dir": None}), fake_repo.root)

        assert isinstance(provider, AnalyzerCommandProvider)
