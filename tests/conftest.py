"""Root conftest.py for test configuration.

Ensures local src/ directory takes priority over any installed packages.
"""

import sys
from pathlib import Path

import pytest

# Insert local src directory at the beginning of sys.path
# This ensures that the local impactscope package is used, not any installed one
_src_dir = Path(__file__).parent.parent / "src"
if str(_src_dir) not in sys.path:
    sys.path.insert(0, str(_src_dir))

# Force reimport of impactscope modules if already imported
for module_name in list(sys.modules.keys()):
    if module_name.startswith("impactscope"):
        del sys.modules[module_name]

from impactscope.core.logging import clear_run_id  # noqa: E402
from impactscope.graph.models import Resource  # noqa: E402
from impactscope.graph.store import RelationalStore  # noqa: E402
from repo_builder import TARGET, FakeRepo  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_run_id() -> None:
    clear_run_id()


@pytest.fixture
def store() -> RelationalStore:
    """Fresh store holding only the seeded reference types."""
    return RelationalStore()


@pytest.fixture
def resource_id(store: RelationalStore) -> int:
    return store.get_or_create(Resource, (TARGET,), lambda: Resource(identifier=TARGET))


@pytest.fixture
def fake_repo(tmp_path: Path) -> FakeRepo:
    """Empty fake repository rooted in tmp_path."""
    return FakeRepo(tmp_path / "repo")


@pytest.fixture
def scenario_a(fake_repo: FakeRepo) -> FakeRepo:
    """One file: struct S with template ``basic`` holding the literal; TestX steps into it."""
    repo = fake_repo
    repo.add_file(
        "resource",
        "resource_group_test.go",
        functions=[
            repo.fn("TestX", line=5, test=True),
            repo.fn("basic", "S", line=20, template=True),
        ],
        calls=[repo.step("TestX", "basic", struct="S", index=1, line=8)],
        literals=[repo.lit("basic", "S")],
    )
    return repo


@pytest.fixture
def scenario_b(fake_repo: FakeRepo) -> FakeRepo:
    """Orchestrator in a matched file registers ``testHelper``, defined in an unmatched file."""
    repo = fake_repo
    repo.add_file(
        "resource",
        "resource_group_test.go",
        functions=[
            repo.fn("TestSeq", line=5, test=True),
            repo.fn("basic", "S", line=20, template=True),
        ],
        calls=[repo.seq("TestSeq", "testHelper", "group", "key", line=9)],
        literals=[repo.lit("basic", "S")],
    )
    repo.add_file(
        "resource",
        "helpers_test.go",
        functions=[repo.fn("testHelper", line=3)],
    )
    return repo


@pytest.fixture
def scenario_c(fake_repo: FakeRepo) -> FakeRepo:
    """compute template calls one template in network and one in another compute file."""
    repo = fake_repo
    repo.add_file(
        "compute",
        "virtual_machine_test.go",
        functions=[
            repo.fn("TestB", line=5, test=True),
            repo.fn("config", "VmResource", line=20, template=True),
        ],
        calls=[
            repo.step("TestB", "config", struct="VmResource", index=1, line=8),
            repo.tcall("config", "sharedTemplate", caller_struct="VmResource", line=22),
            repo.tcall("config", "localHelper", caller_struct="VmResource", line=23),
        ],
        literals=[repo.lit("config", "VmResource")],
    )
    repo.add_file(
        "network",
        "shared_test.go",
        functions=[repo.fn("sharedTemplate", line=4, template=True)],
    )
    repo.add_file(
        "compute",
        "helpers_test.go",
        functions=[repo.fn("localHelper", line=4, template=True)],
    )
    return repo
