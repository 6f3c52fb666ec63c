"""
Document store — reads manifest and fragment YAML into typed models.

A file with a ``type`` key is a fragment; a file with package keys
(``metadata``, ``formulas``, ``casks``, ``taps``) is a manifest. The
document name is the file stem unless the file sets ``name``.

Loading is pure. The only write path is ``record_installed``, the
explicit "record installed package" operation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

import yaml
from pydantic import ValidationError as PydanticValidationError

from sapphire.core.engine.protection import ProtectionPredicate, is_protected
from sapphire.core.errors import (
    ProtectedManifestError,
    SapphireError,
    SchemaError,
    UnknownTypeError,
)
from sapphire.core.models import (
    FRAGMENT_ADAPTER,
    Document,
    FragmentType,
    PackageKind,
    PackageManifest,
)
from sapphire.core.models.manifest import CaskSpec, FormulaSpec, TapSpec
from sapphire.core.persistence.state_file import atomic_write_text

logger = logging.getLogger(__name__)

MANIFEST_KEYS = frozenset({"metadata", "formulas", "casks", "taps"})
DOCUMENT_SUFFIXES = (".yml", ".yaml")


def _format_errors(error: PydanticValidationError) -> str:
    parts = []
    for item in error.errors():
        loc = ".".join(str(p) for p in item.get("loc", ()))
        parts.append(f"{loc}: {item.get('msg', '')}" if loc else item.get("msg", ""))
    return "; ".join(parts)


def _read_mapping(path: Path) -> dict[str, Any]:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SchemaError(f"Cannot read {path}: {e}", target=str(path)) from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise SchemaError(f"Invalid YAML in {path}: {e}", target=str(path)) from e

    if not isinstance(data, dict):
        raise SchemaError(
            f"Expected a YAML mapping in {path}, got {type(data).__name__}",
            target=str(path),
        )
    return data


def parse_document(data: dict[str, Any], path: Path) -> Document:
    """Validate an already-parsed mapping as a manifest or fragment.

    Raises:
        UnknownTypeError: ``type`` is not a known fragment type.
        SchemaError: Anything else wrong with the document.
    """
    data = dict(data)
    data.setdefault("name", path.stem)
    data["source_path"] = str(path)

    if "type" in data:
        declared = data["type"]
        if declared not in {t.value for t in FragmentType}:
            raise UnknownTypeError(
                f"{path}: unknown fragment type {declared!r}",
                target=str(path),
                cause=str(declared),
            )
        meta = data.get("metadata")
        if "protected" in data or (isinstance(meta, dict) and "protected" in meta):
            raise SchemaError(
                f"{path}: 'protected' is only allowed on manifests",
                target=str(path),
            )
        try:
            return FRAGMENT_ADAPTER.validate_python(data)
        except PydanticValidationError as e:
            raise SchemaError(f"{path}: {_format_errors(e)}", target=str(path)) from e

    if MANIFEST_KEYS & data.keys():
        try:
            return PackageManifest.model_validate(data)
        except PydanticValidationError as e:
            raise SchemaError(f"{path}: {_format_errors(e)}", target=str(path)) from e

    raise SchemaError(
        f"{path}: neither a fragment (no 'type') nor a manifest "
        f"(none of {', '.join(sorted(MANIFEST_KEYS))})",
        target=str(path),
    )


def load(path: Path) -> Document:
    """Load and validate one document.

    Raises:
        ValidationError: SchemaError or UnknownTypeError.
    """
    logger.debug("Loading document %s", path)
    return parse_document(_read_mapping(path), path)


@dataclass
class LoadResult:
    """Documents that loaded, and one error per document that did not."""

    documents: list[Document] = field(default_factory=list)
    errors: list[SapphireError] = field(default_factory=list)

    @property
    def manifests(self) -> list[PackageManifest]:
        return [d for d in self.documents if isinstance(d, PackageManifest)]


def discover(paths: Iterable[Path]) -> list[Path]:
    """Expand directories into their YAML files (sorted, non-recursive)."""
    found: list[Path] = []
    for path in paths:
        if path.is_dir():
            found.extend(
                sorted(p for p in path.iterdir() if p.is_file() and p.suffix in DOCUMENT_SUFFIXES)
            )
        else:
            found.append(path)
    return found


def load_all(paths: Iterable[Path]) -> LoadResult:
    """Load every document; a bad document never aborts the batch."""
    result = LoadResult()
    seen: dict[str, Path] = {}

    for path in discover(paths):
        try:
            document = load(path)
        except SapphireError as e:
            logger.warning("Skipping %s: %s", path, e)
            result.errors.append(e)
            continue

        if document.name in seen:
            result.errors.append(
                SchemaError(
                    f"{path}: duplicate document name {document.name!r} "
                    f"(already loaded from {seen[document.name]})",
                    target=str(path),
                )
            )
            continue

        seen[document.name] = path
        result.documents.append(document)

    logger.info("Loaded %d documents (%d rejected)", len(result.documents), len(result.errors))
    return result


# ── Record installed package ────────────────────────────────────────


def record_installed(
    path: Path,
    kind: PackageKind | str,
    name: str,
    version: str = "latest",
    *,
    override: bool = False,
    protected: ProtectionPredicate | None = None,
) -> PackageManifest:
    """Add or update a package entry in a manifest file on disk.

    Args:
        path: Manifest file.
        kind: tap, formula or cask.
        name: Package name.
        version: Version constraint to record.
        override: Explicit administrator override for protected manifests.
        protected: Protection predicate (default: the metadata flag).

    Returns:
        The updated manifest.

    Raises:
        ProtectedManifestError: The manifest is protected and ``override`` is not set.
        SchemaError: The file is not a valid manifest.
    """
    kind = PackageKind(kind)
    document = load(path)
    if not isinstance(document, PackageManifest):
        raise SchemaError(f"{path} is a fragment, not a manifest", target=str(path))

    predicate = protected or (lambda m: is_protected(m.metadata))
    if predicate(document) and not override:
        raise ProtectedManifestError(
            f"Manifest {document.name!r} is protected; use the override to modify it",
            target=str(path),
        )

    if kind == PackageKind.TAP:
        if name not in document.declared(PackageKind.TAP):
            document.taps.append(TapSpec(name=name))
    else:
        specs = document.formulas if kind == PackageKind.FORMULA else document.casks
        existing = next((s for s in specs if s.name == name), None)
        if existing is not None:
            existing.version_constraint = version
        else:
            spec_cls = FormulaSpec if kind == PackageKind.FORMULA else CaskSpec
            specs.append(spec_cls(name=name, version_constraint=version))

    content = yaml.safe_dump(document.to_file_dict(), sort_keys=False, default_flow_style=False)
    atomic_write_text(path, content, prefix=f".{path.stem}_")
    logger.info("Recorded %s %s (%s) in %s", kind, name, version, path)
    return document
