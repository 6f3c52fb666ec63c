"""
Tests for the built-in providers — packages, dotfiles, system
preferences, network and containers — against the mock host.
"""

from pathlib import Path

import pytest

from sapphire.core.engine.observed import ObservedState
from sapphire.core.errors import PlanningError, RollbackError, SapphireError, UnregisteredProviderError
from sapphire.core.models import (
    ContainersFragment,
    DotfilesFragment,
    NetworkFragment,
    OperationKind,
    PackageKind,
    PackageManifest,
    SystemFragment,
)
from sapphire.core.providers.registry import ProviderRegistry, default_registry
from sapphire.core.providers.system import coerce, values_equal


def _plan(registry: ProviderRegistry, mock_host, document, errors=None):
    provider = registry.resolve_document(document)
    return provider, provider.plan(document, ObservedState(mock_host), errors=errors)


# ── Registry ────────────────────────────────────────────────────────


class TestProviderRegistry:
    def test_builtins_registered(self, registry):
        assert registry.list_providers() == [
            "packages", "dotfiles", "system", "network", "containers", "custom",
        ]

    def test_unknown_type_names_known_ones(self, make_context):
        registry = ProviderRegistry()
        registry.register(default_registry(make_context()).resolve("system"))
        with pytest.raises(UnregisteredProviderError, match=r"'printers' \(known: system\)"):
            registry.resolve("printers")


# ── Packages ────────────────────────────────────────────────────────


class TestPackagesProvider:
    def test_install_apply_verify(self, mock_host, registry):
        doc = PackageManifest(name="dev", formulas=[{"name": "git"}])
        provider, ops = _plan(registry, mock_host, doc)
        receipt = provider.apply(ops[0])
        assert receipt.ok
        assert provider.verify(ops[0])
        assert mock_host.packages.is_installed(PackageKind.FORMULA, "git")

    def test_transient_failure_retried(self, mock_host, registry):
        mock_host.packages.set_failure("install", "git", transient=True, times=2)
        doc = PackageManifest(name="dev", formulas=[{"name": "git"}])
        provider, ops = _plan(registry, mock_host, doc)
        receipt = provider.apply(ops[0])
        assert receipt.ok
        assert receipt.metadata["attempts"] == 3

    def test_deterministic_failure_not_retried(self, mock_host, registry):
        mock_host.packages.set_failure("install", "nope", error="No available formula")
        doc = PackageManifest(name="dev", formulas=[{"name": "nope"}])
        provider, ops = _plan(registry, mock_host, doc)
        receipt = provider.apply(ops[0])
        assert receipt.failed
        assert receipt.error_kind == "DeterministicApplyError"
        assert mock_host.packages.failures.count("install") == 1

    def test_install_rollback_removes(self, mock_host, registry):
        doc = PackageManifest(name="dev", casks=[{"name": "firefox"}])
        provider, ops = _plan(registry, mock_host, doc)
        provider.apply(ops[0])
        assert provider.rollback(ops[0]).ok
        assert not mock_host.packages.is_installed(PackageKind.CASK, "firefox")

    def test_remove_rollback_reinstalls(self, mock_host, registry):
        mock_host.packages.install(PackageKind.FORMULA, "wget")
        doc = PackageManifest(name="dev", formulas=[{"name": "wget", "state": "absent"}])
        provider, ops = _plan(registry, mock_host, doc)
        provider.apply(ops[0])
        assert provider.verify(ops[0])
        provider.rollback(ops[0])
        assert mock_host.packages.is_installed(PackageKind.FORMULA, "wget")

    def test_upgrade_rollback_irreversible(self, mock_host, registry):
        mock_host.packages.install(PackageKind.FORMULA, "node")
        mock_host.packages.versions["node"] = "2.1.0"
        doc = PackageManifest(name="dev", formulas=[{"name": "node", "version": ">=2.0"}])
        provider, ops = _plan(registry, mock_host, doc)
        assert ops[0].kind == OperationKind.UPGRADE
        provider.apply(ops[0])
        with pytest.raises(RollbackError, match="1.0.0"):
            provider.rollback(ops[0])

    def test_verify_requires_constraint(self, mock_host, registry):
        doc = PackageManifest(name="dev", formulas=[{"name": "git", "version": ">=2.0"}])
        provider, ops = _plan(registry, mock_host, doc)
        assert provider.apply(ops[0]).ok
        assert not provider.verify(ops[0])

        mock_host.packages.versions["git"] = "2.44.0"
        provider.apply(ops[0])
        assert provider.verify(ops[0])

    def test_verify_upgrade_still_short(self, mock_host, registry):
        mock_host.packages.install(PackageKind.FORMULA, "node")
        doc = PackageManifest(name="dev", formulas=[{"name": "node", "version": ">=2.0"}])
        provider, ops = _plan(registry, mock_host, doc)
        assert provider.apply(ops[0]).ok
        assert not provider.verify(ops[0])


# ── Dotfiles ────────────────────────────────────────────────────────


@pytest.fixture
def dotfiles_dir(tmp_path: Path) -> Path:
    """Fragment directory holding source files, plus a home for targets."""
    src = tmp_path / "dotfiles"
    src.mkdir()
    (src / "zshrc").write_text("export EDITOR=vim\n")
    (src / "gitconfig").write_text("[user]\n  name = me\n")
    (src / "vimrc").write_text("set number\n")
    nvim = src / "nvim"
    nvim.mkdir()
    (nvim / "init.lua").write_text("vim.o.number = true\n")
    (tmp_path / "home").mkdir()
    return src


def _dotfiles(src: Path, files=(), directories=()) -> DotfilesFragment:
    return DotfilesFragment(
        name="shell",
        source_path=str(src / "shell.yml"),
        files=list(files),
        directories=list(directories),
    )


class TestDotfilesProvider:
    def test_missing_target_writes(self, mock_host, registry, dotfiles_dir, tmp_path):
        target = tmp_path / "home" / ".zshrc"
        doc = _dotfiles(dotfiles_dir, files=[{"source": "zshrc", "target": str(target)}])
        provider, ops = _plan(registry, mock_host, doc)
        assert [op.kind for op in ops] == [OperationKind.WRITE_FILE]

        assert provider.apply(ops[0]).ok
        assert provider.verify(ops[0])
        assert target.read_text() == "export EDITOR=vim\n"

        _, again = _plan(registry, mock_host, doc)
        assert again == []

    def test_partial_convergence(self, mock_host, registry, dotfiles_dir, tmp_path):
        home = tmp_path / "home"
        (home / ".gitconfig").write_text((dotfiles_dir / "gitconfig").read_text())
        doc = _dotfiles(dotfiles_dir, files=[
            {"source": "zshrc", "target": str(home / ".zshrc")},
            {"source": "gitconfig", "target": str(home / ".gitconfig")},
            {"source": "vimrc", "target": str(home / ".vimrc")},
        ])
        _, ops = _plan(registry, mock_host, doc)
        assert [op.target for op in ops] == [str(home / ".zshrc"), str(home / ".vimrc")]

    def test_missing_source_drops_entry(self, mock_host, registry, dotfiles_dir, tmp_path):
        home = tmp_path / "home"
        doc = _dotfiles(dotfiles_dir, files=[
            {"source": "missing", "target": str(home / ".missing")},
            {"source": "vimrc", "target": str(home / ".vimrc")},
        ])
        errors: list[SapphireError] = []
        _, ops = _plan(registry, mock_host, doc, errors=errors)
        assert [op.target for op in ops] == [str(home / ".vimrc")]
        assert [e.kind for e in errors] == ["SourceMissingError"]

    def test_mode_applied(self, mock_host, registry, dotfiles_dir, tmp_path):
        target = tmp_path / "home" / ".zshrc"
        doc = _dotfiles(dotfiles_dir, files=[
            {"source": "zshrc", "target": str(target), "mode": "0600"},
        ])
        provider, ops = _plan(registry, mock_host, doc)
        provider.apply(ops[0])
        assert target.stat().st_mode & 0o777 == 0o600
        assert provider.verify(ops[0])

        target.chmod(0o644)
        _, again = _plan(registry, mock_host, doc)
        assert [op.kind for op in again] == [OperationKind.WRITE_FILE]

    def test_link(self, mock_host, registry, dotfiles_dir, tmp_path):
        target = tmp_path / "home" / ".vimrc"
        doc = _dotfiles(dotfiles_dir, files=[
            {"source": "vimrc", "target": str(target), "link": True},
        ])
        provider, ops = _plan(registry, mock_host, doc)
        assert ops[0].kind == OperationKind.LINK_FILE
        provider.apply(ops[0])
        assert target.is_symlink()
        assert target.resolve() == (dotfiles_dir / "vimrc").resolve()
        assert provider.verify(ops[0])

        _, again = _plan(registry, mock_host, doc)
        assert again == []

    def test_directory(self, mock_host, registry, dotfiles_dir, tmp_path):
        target = tmp_path / "home" / ".config" / "nvim"
        doc = _dotfiles(dotfiles_dir, directories=[{"source": "nvim", "target": str(target)}])
        provider, ops = _plan(registry, mock_host, doc)
        assert ops[0].kind == OperationKind.WRITE_DIRECTORY
        provider.apply(ops[0])
        assert (target / "init.lua").read_text() == "vim.o.number = true\n"

        _, again = _plan(registry, mock_host, doc)
        assert again == []

    def test_directory_source_must_be_directory(self, mock_host, registry, dotfiles_dir, tmp_path):
        doc = _dotfiles(dotfiles_dir, directories=[
            {"source": "zshrc", "target": str(tmp_path / "home" / "x")},
        ])
        errors: list[SapphireError] = []
        _, ops = _plan(registry, mock_host, doc, errors=errors)
        assert ops == []
        assert errors[0].kind == "SourceMissingError"

    def test_rollback_restores_snapshot(self, mock_host, registry, dotfiles_dir, tmp_path):
        target = tmp_path / "home" / ".zshrc"
        target.write_text("old\n")
        doc = _dotfiles(dotfiles_dir, files=[{"source": "zshrc", "target": str(target)}])
        provider, ops = _plan(registry, mock_host, doc)
        provider.apply(ops[0])
        assert target.read_text() == "export EDITOR=vim\n"

        assert provider.rollback(ops[0]).ok
        assert target.read_text() == "old\n"

    def test_rollback_removes_new_file(self, mock_host, registry, dotfiles_dir, tmp_path):
        target = tmp_path / "home" / ".vimrc"
        doc = _dotfiles(dotfiles_dir, files=[{"source": "vimrc", "target": str(target)}])
        provider, ops = _plan(registry, mock_host, doc)
        provider.apply(ops[0])
        provider.rollback(ops[0])
        assert not target.exists()

    def test_backup_created_and_restored(self, mock_host, make_context, dotfiles_dir, tmp_path):
        context = make_context()
        registry = default_registry(context)
        target = tmp_path / "home" / ".zshrc"
        target.write_text("mine\n")
        doc = _dotfiles(dotfiles_dir, files=[
            {"source": "zshrc", "target": str(target), "backup": True},
        ])
        provider, ops = _plan(registry, mock_host, doc)
        provider.apply(ops[0])

        records = context.backups.records(original=str(target))
        assert len(records) == 1
        assert ops[0].previous == {"existed": True, "backup_id": records[0].id}
        assert Path(records[0].saved_copy).read_text() == "mine\n"

        provider.rollback(ops[0])
        assert target.read_text() == "mine\n"

    def test_backup_retention_prunes_after_write(self, mock_host, make_context, dotfiles_dir, tmp_path):
        context = make_context(backup_retention=1)
        registry = default_registry(context)
        target = tmp_path / "home" / ".zshrc"
        target.write_text("v1\n")
        context.backups.create(target)
        target.write_text("v2\n")
        context.backups.create(target)
        target.write_text("v3\n")

        doc = _dotfiles(dotfiles_dir, files=[
            {"source": "zshrc", "target": str(target), "backup": True},
        ])
        provider, ops = _plan(registry, mock_host, doc)
        assert [op.kind for op in ops] == [OperationKind.WRITE_FILE, OperationKind.PRUNE_BACKUPS]

        for op in ops:
            assert provider.apply(op).ok

        records = context.backups.records(original=str(target))
        assert [r.id for r in records] == [ops[0].previous["backup_id"]]
        assert Path(records[0].saved_copy).read_text() == "v3\n"

    def test_no_prune_without_existing_target(self, mock_host, make_context, dotfiles_dir, tmp_path):
        registry = default_registry(make_context(backup_retention=1))
        doc = _dotfiles(dotfiles_dir, files=[
            {"source": "zshrc", "target": str(tmp_path / "home" / ".zshrc"), "backup": True},
        ])
        _, ops = _plan(registry, mock_host, doc)
        assert [op.kind for op in ops] == [OperationKind.WRITE_FILE]


# ── System preferences ──────────────────────────────────────────────


def _prefs(*settings) -> SystemFragment:
    return SystemFragment.model_validate({"name": "dock", "preferences": list(settings)})


_AUTOHIDE = {"domain": "com.apple.dock", "key": "autohide", "type": "bool", "value": True}


class TestSystemProvider:
    def test_dock_autohide(self, mock_host, registry):
        mock_host.preferences.values[("com.apple.dock", "autohide")] = "0"
        provider, ops = _plan(registry, mock_host, _prefs(_AUTOHIDE))
        assert [op.target for op in ops] == ["com.apple.dock.autohide=true"]

        provider.apply(ops[0])
        assert provider.verify(ops[0])
        assert mock_host.preferences.values[("com.apple.dock", "autohide")] is True

        _, again = _plan(registry, mock_host, _prefs(_AUTOHIDE))
        assert again == []

    def test_raw_one_equals_true(self, mock_host, registry):
        mock_host.preferences.values[("com.apple.dock", "autohide")] = "1"
        _, ops = _plan(registry, mock_host, _prefs(_AUTOHIDE))
        assert ops == []

    def test_rollback_restores_previous(self, mock_host, registry):
        mock_host.preferences.values[("com.apple.dock", "autohide")] = "0"
        provider, ops = _plan(registry, mock_host, _prefs(_AUTOHIDE))
        provider.apply(ops[0])
        provider.rollback(ops[0])
        assert mock_host.preferences.values[("com.apple.dock", "autohide")] is False

    def test_rollback_deletes_new_key(self, mock_host, registry):
        provider, ops = _plan(registry, mock_host, _prefs(_AUTOHIDE))
        provider.apply(ops[0])
        provider.rollback(ops[0])
        assert ("com.apple.dock", "autohide") not in mock_host.preferences.values

    def test_rollback_failure_raises(self, mock_host, registry):
        provider, ops = _plan(registry, mock_host, _prefs(_AUTOHIDE))
        provider.apply(ops[0])
        mock_host.preferences.set_failure("delete", "com.apple.dock.autohide")
        with pytest.raises(RollbackError):
            provider.rollback(ops[0])

    def test_unsupported_type(self, mock_host, registry):
        doc = _prefs({"domain": "d", "key": "k", "type": "data", "value": "AA"})
        provider = registry.resolve_document(doc)
        with pytest.raises(PlanningError) as exc:
            provider.plan(doc, ObservedState(mock_host))
        assert exc.value.kind == "TypeMismatchError"

    def test_float_compare(self, mock_host, registry):
        mock_host.preferences.values[("com.apple.dock", "tilesize")] = "48.0"
        doc = _prefs({"domain": "com.apple.dock", "key": "tilesize", "type": "float", "value": 48})
        _, ops = _plan(registry, mock_host, doc)
        assert ops == []

    def test_coerce(self):
        assert coerce("YES", "bool") is True
        assert coerce(0, "bool") is False
        assert coerce(" 42 ", "int") == 42
        assert coerce(3, "string") == "3"
        with pytest.raises(ValueError):
            coerce("maybe", "bool")

    def test_values_equal_unreadable(self):
        assert not values_equal("abc", 3, "int")
        assert not values_equal(None, "x", "string")


# ── Network ─────────────────────────────────────────────────────────


class TestNetworkProvider:
    def test_in_sync(self, mock_host, registry):
        mock_host.network.dns["Wi-Fi"] = ["1.1.1.1"]
        doc = NetworkFragment(name="net", dns=[{"service": "Wi-Fi", "servers": ["1.1.1.1"]}])
        _, ops = _plan(registry, mock_host, doc)
        assert ops == []

    def test_apply_and_rollback(self, mock_host, registry):
        mock_host.network.dns["Wi-Fi"] = ["8.8.8.8"]
        doc = NetworkFragment(
            name="net", dns=[{"service": "Wi-Fi", "servers": ["1.1.1.1", "1.0.0.1"]}]
        )
        provider, ops = _plan(registry, mock_host, doc)
        assert ops[0].kind == OperationKind.SET_DNS

        provider.apply(ops[0])
        assert provider.verify(ops[0])
        assert mock_host.network.dns["Wi-Fi"] == ["1.1.1.1", "1.0.0.1"]

        provider.rollback(ops[0])
        assert mock_host.network.dns["Wi-Fi"] == ["8.8.8.8"]


# ── Containers ──────────────────────────────────────────────────────


class TestContainersProvider:
    def test_present_image_skipped(self, mock_host, registry):
        mock_host.containers.images.add("postgres:16")
        doc = ContainersFragment(name="dev", images=[{"name": "postgres", "tag": "16"}])
        _, ops = _plan(registry, mock_host, doc)
        assert ops == []

    def test_pull_and_rollback(self, mock_host, registry):
        doc = ContainersFragment(name="dev", images=[{"name": "redis"}])
        provider, ops = _plan(registry, mock_host, doc)
        assert ops[0].target == "image redis:latest"

        provider.apply(ops[0])
        assert provider.verify(ops[0])
        provider.rollback(ops[0])
        assert "redis:latest" not in mock_host.containers.images

    def test_unavailable_backend_drops_document(self, mock_host, registry, monkeypatch):
        monkeypatch.setattr(mock_host.containers, "is_available", lambda: False)
        doc = ContainersFragment(name="dev", images=[{"name": "redis"}])
        with pytest.raises(PlanningError, match="not available"):
            registry.resolve_document(doc)
