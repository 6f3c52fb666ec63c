"""
Tests for the diff engine — package classification, document ordering,
protection filtering and orphan pruning.
"""

from sapphire.adapters.mock import MockPackageBackend
from sapphire.core.engine.diff import (
    PRUNE_DOCUMENT,
    build_plan,
    diff,
    diff_manifest,
    order_documents,
)
from sapphire.core.engine.observed import ObservedState
from sapphire.core.engine.protection import protection_predicate
from sapphire.core.errors import DependencyCycleError, PlanningError
from sapphire.core.models import (
    NetworkFragment,
    OperationKind,
    PackageKind,
    PackageManifest,
    PackageState,
    SystemFragment,
)


def _manifest(name: str, **data) -> PackageManifest:
    return PackageManifest.model_validate({"name": name, **data})


def _installed(mock_host, *states: PackageState) -> None:
    mock_host.packages = MockPackageBackend(installed=states)


def _formula(name: str, version: str = "1.0.0", **kw) -> PackageState:
    return PackageState(name=name, kind=PackageKind.FORMULA, version=version, **kw)


# ── Package classification ──────────────────────────────────────────


class TestDiffManifest:
    def test_missing_package_installs(self, mock_host):
        doc = _manifest("dev-tools", formulas=[{"name": "git"}])
        ops = diff_manifest(doc, ObservedState(mock_host))
        assert len(ops) == 1
        assert ops[0].kind == OperationKind.INSTALL
        assert ops[0].target == "formula git"
        assert ops[0].desired["name"] == "git"
        assert ops[0].document == "dev-tools"

    def test_installed_package_satisfied(self, mock_host):
        _installed(mock_host, _formula("git", "2.44.0"))
        doc = _manifest("dev-tools", formulas=[{"name": "git"}])
        assert diff_manifest(doc, ObservedState(mock_host)) == []

    def test_formula_and_cask_never_merge(self, mock_host):
        _installed(mock_host, PackageState(name="docker", kind=PackageKind.CASK, version="4.0"))
        doc = _manifest("tools", formulas=[{"name": "docker"}], casks=[{"name": "docker"}])
        ops = diff_manifest(doc, ObservedState(mock_host))
        assert [op.target for op in ops] == ["formula docker"]

    def test_taps_then_formulas_then_casks(self, mock_host):
        doc = _manifest(
            "tools",
            casks=[{"name": "firefox"}],
            formulas=[{"name": "git"}],
            taps=["homebrew/cask-fonts"],
        )
        ops = diff_manifest(doc, ObservedState(mock_host))
        assert [op.kind for op in ops] == [
            OperationKind.ADD_TAP,
            OperationKind.INSTALL,
            OperationKind.INSTALL,
        ]
        assert [op.target for op in ops] == [
            "tap homebrew/cask-fonts",
            "formula git",
            "cask firefox",
        ]

    def test_unmet_constraint_upgrades(self, mock_host):
        _installed(mock_host, _formula("git", "2.30.1"))
        doc = _manifest("tools", formulas=[{"name": "git", "version": ">=2.40"}])
        ops = diff_manifest(doc, ObservedState(mock_host))
        assert [op.kind for op in ops] == [OperationKind.UPGRADE]
        assert ops[0].previous == {"version": "2.30.1"}

    def test_latest_state_upgrades_outdated(self, mock_host):
        _installed(mock_host, _formula("node", "20.0.0", outdated=True))
        doc = _manifest("tools", formulas=[{"name": "node", "state": "latest"}])
        ops = diff_manifest(doc, ObservedState(mock_host))
        assert [op.kind for op in ops] == [OperationKind.UPGRADE]

    def test_present_state_ignores_outdated(self, mock_host):
        _installed(mock_host, _formula("node", "20.0.0", outdated=True))
        doc = _manifest("tools", formulas=[{"name": "node"}])
        assert diff_manifest(doc, ObservedState(mock_host)) == []

    def test_absent_installed_removes(self, mock_host):
        _installed(mock_host, _formula("wget", "1.21"))
        doc = _manifest("tools", formulas=[{"name": "wget", "state": "absent"}])
        ops = diff_manifest(doc, ObservedState(mock_host))
        assert [op.kind for op in ops] == [OperationKind.REMOVE]
        assert ops[0].previous == {"version": "1.21"}

    def test_absent_not_installed_is_noop(self, mock_host):
        doc = _manifest("tools", formulas=[{"name": "wget", "state": "absent"}])
        assert diff_manifest(doc, ObservedState(mock_host)) == []

    def test_installed_tap_skipped(self, mock_host):
        _installed(mock_host, PackageState(name="a/b", kind=PackageKind.TAP))
        doc = _manifest("tools", taps=["a/b"])
        assert diff_manifest(doc, ObservedState(mock_host)) == []


# ── Document ordering ───────────────────────────────────────────────


class TestOrderDocuments:
    def test_manifests_first(self):
        net = NetworkFragment(name="net")
        tools = _manifest("tools")
        ordered, errors = order_documents([net, tools])
        assert [d.name for d in ordered] == ["tools", "net"]
        assert errors == []

    def test_dependencies_respected(self):
        dock = SystemFragment(name="dock", depends_on=["net"])
        net = NetworkFragment(name="net")
        ordered, errors = order_documents([dock, net])
        assert [d.name for d in ordered] == ["net", "dock"]
        assert errors == []

    def test_stable_when_independent(self):
        docs = [NetworkFragment(name=n) for n in ("c", "a", "b")]
        ordered, _ = order_documents(docs)
        assert [d.name for d in ordered] == ["c", "a", "b"]

    def test_cycle_reported(self):
        a = NetworkFragment(name="a", depends_on=["b"])
        b = NetworkFragment(name="b", depends_on=["a"])
        c = NetworkFragment(name="c")
        ordered, errors = order_documents([a, b, c])
        assert [d.name for d in ordered] == ["c"]
        assert {e.document for e in errors} == {"a", "b"}
        assert all(isinstance(e, DependencyCycleError) for e in errors)

    def test_missing_dependency_drops_transitively(self):
        a = NetworkFragment(name="a", depends_on=["ghost"])
        b = SystemFragment(name="b", depends_on=["a"])
        ordered, errors = order_documents([a, b])
        assert ordered == []
        assert {e.document for e in errors} == {"a", "b"}
        assert all(isinstance(e, PlanningError) for e in errors)


# ── Single document plan ────────────────────────────────────────────


class TestDiff:
    def test_ids_numbered_per_document(self, mock_host, registry):
        doc = _manifest("dev", formulas=[{"name": "git"}, {"name": "jq"}])
        plan = diff(doc, ObservedState(mock_host), registry)
        assert [op.id for op in plan.operations] == ["dev#1", "dev#2"]

    def test_unregistered_provider_drops_document(self, mock_host, registry):
        registry.unregister("network")
        doc = NetworkFragment(name="net", dns=[{"service": "Wi-Fi", "servers": ["1.1.1.1"]}])
        plan = diff(doc, ObservedState(mock_host), registry)
        assert plan.is_empty
        assert [e.kind for e in plan.errors] == ["UnregisteredProviderError"]
        assert plan.errors[0].document == "net"

    def test_entry_error_drops_only_that_entry(self, mock_host, registry):
        doc = SystemFragment.model_validate({
            "name": "prefs",
            "preferences": [
                {"domain": "com.apple.dock", "key": "autohide", "type": "bool", "value": True},
                {"domain": "com.apple.dock", "key": "blob", "type": "data", "value": "AAAA"},
            ],
        })
        plan = diff(doc, ObservedState(mock_host), registry)
        assert [op.target for op in plan.operations] == ["com.apple.dock.autohide=true"]
        assert [e.kind for e in plan.errors] == ["TypeMismatchError"]
        assert plan.errors[0].document == "prefs"


# ── Batch plan ──────────────────────────────────────────────────────


class TestBuildPlan:
    def test_idempotent_after_apply(self, mock_host, registry):
        doc = _manifest("dev-tools", formulas=[{"name": "git"}])
        first = build_plan([doc], ObservedState(mock_host), registry)
        assert len(first) == 1

        mock_host.packages.install(PackageKind.FORMULA, "git")
        second = build_plan([doc], ObservedState(mock_host), registry)
        assert second.is_empty

    def test_dependencies_recorded(self, mock_host, registry):
        tools = _manifest("tools")
        net = NetworkFragment(name="net", depends_on=["tools"])
        plan = build_plan([net, tools], ObservedState(mock_host), registry)
        assert plan.documents == ["tools", "net"]
        assert plan.dependencies == {"tools": [], "net": ["tools"]}

    def test_to_dict(self, mock_host, registry):
        doc = _manifest("dev", formulas=[{"name": "git"}])
        data = build_plan([doc], ObservedState(mock_host), registry).to_dict()
        assert data["documents"] == ["dev"]
        assert data["operations"][0]["kind"] == "install"
        assert "previous" not in data["operations"][0]
        assert data["errors"] == []


# ── Protection ──────────────────────────────────────────────────────


class TestProtection:
    def test_protected_removal_dropped(self, mock_host, registry):
        _installed(mock_host, _formula("openssl"))
        base = _manifest(
            "base",
            metadata={"protected": True},
            formulas=[{"name": "openssl", "state": "absent"}],
        )
        plan = build_plan([base], ObservedState(mock_host), registry)
        assert plan.is_empty
        assert [op.target for op in plan.dropped] == ["formula openssl"]
        assert plan.dropped[0].note == "protected"

    def test_protected_entry_guarded_from_other_manifest(self, mock_host, registry):
        _installed(mock_host, _formula("openssl", "3.0.0"))
        base = _manifest("base", metadata={"protected": True}, formulas=[{"name": "openssl"}])
        mine = _manifest("mine", formulas=[{"name": "openssl", "state": "absent"}])
        plan = build_plan([base, mine], ObservedState(mock_host), registry)
        assert plan.is_empty
        assert [op.document for op in plan.dropped] == ["mine"]

    def test_protected_install_kept(self, mock_host, registry):
        base = _manifest("base", metadata={"protected": True}, formulas=[{"name": "openssl"}])
        plan = build_plan([base], ObservedState(mock_host), registry)
        assert [op.kind for op in plan.operations] == [OperationKind.INSTALL]

    def test_override_keeps_everything(self, mock_host, registry):
        _installed(mock_host, _formula("openssl"))
        base = _manifest(
            "base",
            metadata={"protected": True},
            formulas=[{"name": "openssl", "state": "absent"}],
        )
        plan = build_plan([base], ObservedState(mock_host), registry, override_protected=True)
        assert [op.kind for op in plan.operations] == [OperationKind.REMOVE]
        assert plan.dropped == []

    def test_protected_by_configured_name(self, mock_host, registry):
        _installed(mock_host, _formula("openssl"))
        corp = _manifest("corp", formulas=[{"name": "openssl", "state": "absent"}])
        plan = build_plan(
            [corp], ObservedState(mock_host), registry,
            protection=protection_predicate(["corp"]),
        )
        assert plan.is_empty
        assert len(plan.dropped) == 1


# ── Prune ───────────────────────────────────────────────────────────


class TestPrune:
    def test_off_by_default(self, mock_host, registry):
        _installed(mock_host, _formula("stray"))
        plan = build_plan([_manifest("tools")], ObservedState(mock_host), registry)
        assert plan.is_empty

    def test_orphan_removed(self, mock_host, registry):
        _installed(mock_host, _formula("git"), _formula("stray"))
        tools = _manifest("tools", formulas=[{"name": "git"}])
        plan = build_plan([tools], ObservedState(mock_host), registry, prune=True)
        assert [op.target for op in plan.operations] == ["formula stray"]
        assert plan.operations[0].document == PRUNE_DOCUMENT
        assert plan.operations[0].id == f"{PRUNE_DOCUMENT}#1"
        assert plan.dependencies[PRUNE_DOCUMENT] == ["tools"]

    def test_dependencies_never_pruned(self, mock_host, registry):
        _installed(mock_host, _formula("libyaml", dependency=True))
        plan = build_plan([_manifest("tools")], ObservedState(mock_host), registry, prune=True)
        assert plan.is_empty
        assert PRUNE_DOCUMENT not in plan.documents

    def test_declared_absent_not_pruned_twice(self, mock_host, registry):
        _installed(mock_host, _formula("wget"))
        tools = _manifest("tools", formulas=[{"name": "wget", "state": "absent"}])
        plan = build_plan([tools], ObservedState(mock_host), registry, prune=True)
        assert [op.document for op in plan.operations] == ["tools"]
