"""
Package manifest model — desired taps, formulas and casks.

Loaded from a manifest YAML file. The file on disk is the durable
source of truth; this model lives for one reconciliation run.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any, ClassVar, Iterator

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class PackageKind(StrEnum):
    """Package namespaces. Formulas and casks never merge."""

    TAP = "tap"
    FORMULA = "formula"
    CASK = "cask"


class DesiredState(StrEnum):
    """What the manifest wants for a package."""

    PRESENT = "present"
    ABSENT = "absent"      # explicit removal request
    LATEST = "latest"      # upgrade whenever outdated


class ManifestScope(StrEnum):
    SYSTEM = "system"
    USER = "user"


class PackageSpec(BaseModel):
    """A formula or cask entry."""

    model_config = ConfigDict(populate_by_name=True)

    kind: ClassVar[PackageKind]

    name: str = Field(min_length=1)
    version_constraint: str = Field(default="latest", alias="version")
    options: list[str] = Field(default_factory=list)
    state: DesiredState = DesiredState.PRESENT

    @field_validator("version_constraint", mode="before")
    @classmethod
    def _coerce_version(cls, value: Any) -> Any:
        # YAML reads `version: 2.4` as a float
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        if value is None:
            return "latest"
        return value


class FormulaSpec(PackageSpec):
    kind: ClassVar[PackageKind] = PackageKind.FORMULA


class CaskSpec(PackageSpec):
    kind: ClassVar[PackageKind] = PackageKind.CASK


class TapSpec(BaseModel):
    name: str = Field(min_length=1)


class ManifestMetadata(BaseModel):
    """Manifest header. Scope defaults from the protected flag."""

    description: str = ""
    protected: bool = False
    version: str = ""
    scope: ManifestScope | None = None

    @model_validator(mode="after")
    def _resolve_scope(self) -> ManifestMetadata:
        if self.scope is None:
            self.scope = ManifestScope.SYSTEM if self.protected else ManifestScope.USER
        elif self.scope == ManifestScope.USER and self.protected:
            raise ValueError("user manifests are always mutable; 'protected' requires scope 'system'")
        return self


class PackageManifest(BaseModel):
    """Root manifest document."""

    document_type: ClassVar[str] = "manifest"

    name: str = ""
    source_path: str | None = None
    depends_on: list[str] = Field(default_factory=list)

    metadata: ManifestMetadata = Field(default_factory=ManifestMetadata)
    taps: list[TapSpec] = Field(default_factory=list)
    formulas: list[FormulaSpec] = Field(default_factory=list)
    casks: list[CaskSpec] = Field(default_factory=list)

    @field_validator("taps", mode="before")
    @classmethod
    def _taps_from_strings(cls, value: Any) -> Any:
        # Taps may be written as a plain list of names
        if isinstance(value, list):
            return [{"name": v} if isinstance(v, str) else v for v in value]
        return value

    @property
    def scope(self) -> ManifestScope:
        return self.metadata.scope or ManifestScope.USER

    def packages(self) -> Iterator[PackageSpec]:
        """Formulas then casks, in declaration order."""
        yield from self.formulas
        yield from self.casks

    def declared(self, kind: PackageKind) -> set[str]:
        """Names declared (in any state) for a namespace."""
        if kind == PackageKind.TAP:
            return {t.name for t in self.taps}
        specs = self.formulas if kind == PackageKind.FORMULA else self.casks
        return {s.name for s in specs}

    def to_file_dict(self) -> dict[str, Any]:
        """Serializable form matching the manifest file layout."""
        meta = self.metadata.model_dump(mode="json", exclude_defaults=True)
        data: dict[str, Any] = {"metadata": meta}
        if self.taps:
            data["taps"] = [t.name for t in self.taps]
        for key, specs in (("formulas", self.formulas), ("casks", self.casks)):
            if specs:
                data[key] = [
                    s.model_dump(mode="json", by_alias=True, exclude_defaults=True)
                    for s in specs
                ]
        if self.depends_on:
            data["depends_on"] = list(self.depends_on)
        return data
