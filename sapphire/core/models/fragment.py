"""
Fragment models — non-package configuration units.

A fragment declares its ``type`` and exactly one payload shape for
that type. Payload keys from another type are rejected, so a
dotfiles fragment can never carry preferences.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Any, ClassVar, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator


class FragmentType(StrEnum):
    DOTFILES = "dotfiles"
    SYSTEM = "system"
    NETWORK = "network"
    CONTAINERS = "containers"
    CUSTOM = "custom"


# value_type names the system provider knows how to read and write
PREFERENCE_TYPES = ("bool", "int", "float", "string")

_TYPE_ALIASES = {
    "boolean": "bool",
    "integer": "int",
    "real": "float",
    "str": "string",
}


# ── Payload entries ─────────────────────────────────────────────────


class FileMapping(BaseModel):
    """Source file (relative to the fragment) → target path on the host."""

    model_config = ConfigDict(extra="forbid")

    source: str = Field(min_length=1)
    target: str = Field(min_length=1)
    backup: bool = False
    mode: str | None = None     # octal, e.g. "0644"
    link: bool = False          # symlink instead of copy

    @field_validator("mode", mode="before")
    @classmethod
    def _check_mode(cls, value: Any) -> Any:
        if value is None:
            return None
        text = str(value)
        try:
            int(text, 8)
        except ValueError:
            raise ValueError(f"mode must be an octal string, got {value!r}") from None
        return text

    @property
    def file_mode(self) -> int | None:
        return int(self.mode, 8) if self.mode else None


class DirectoryMapping(FileMapping):
    """Whole directory tree mapping."""


class PreferenceSetting(BaseModel):
    """A ``defaults`` domain/key/value triplet."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    domain: str = Field(min_length=1)
    key: str = Field(min_length=1)
    value_type: str = Field(alias="type")
    value: Any

    @model_validator(mode="before")
    @classmethod
    def _accept_value_type_key(cls, data: Any) -> Any:
        if isinstance(data, dict) and "value_type" in data and "type" not in data:
            data = dict(data)
            data["type"] = data.pop("value_type")
        return data

    @field_validator("value_type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> Any:
        if isinstance(value, str):
            lowered = value.strip().lower()
            return _TYPE_ALIASES.get(lowered, lowered)
        return value

    @model_validator(mode="after")
    def _check_value(self) -> PreferenceSetting:
        # Unknown value types are left for the provider to reject
        vt, value = self.value_type, self.value
        if vt == "bool" and not isinstance(value, bool):
            raise ValueError(f"{self.address}: expected bool value, got {value!r}")
        if vt == "int" and (isinstance(value, bool) or not isinstance(value, int)):
            raise ValueError(f"{self.address}: expected int value, got {value!r}")
        if vt == "float":
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{self.address}: expected float value, got {value!r}")
            self.value = float(value)
        if vt == "string" and not isinstance(value, str):
            raise ValueError(f"{self.address}: expected string value, got {value!r}")
        return self

    @property
    def address(self) -> str:
        return f"{self.domain}.{self.key}"


class DnsSetting(BaseModel):
    model_config = ConfigDict(extra="forbid")

    service: str = Field(min_length=1)   # network service, e.g. "Wi-Fi"
    servers: list[str] = Field(default_factory=list)


class ImageSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    tag: str = "latest"

    @property
    def reference(self) -> str:
        return f"{self.name}:{self.tag}"


Scalar = Union[bool, int, float, str]


# ── Fragments ───────────────────────────────────────────────────────


class FragmentBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    document_type: ClassVar[str] = "fragment"

    name: str = ""
    source_path: str | None = None
    description: str = ""
    depends_on: list[str] = Field(default_factory=list)

    @property
    def fragment_type(self) -> FragmentType:
        return FragmentType(getattr(self, "type"))


class DotfilesFragment(FragmentBase):
    type: Literal["dotfiles"] = "dotfiles"
    files: list[FileMapping] = Field(default_factory=list)
    directories: list[DirectoryMapping] = Field(default_factory=list)


class SystemFragment(FragmentBase):
    type: Literal["system"] = "system"
    preferences: list[PreferenceSetting] = Field(default_factory=list)


class NetworkFragment(FragmentBase):
    type: Literal["network"] = "network"
    dns: list[DnsSetting] = Field(default_factory=list)


class ContainersFragment(FragmentBase):
    type: Literal["containers"] = "containers"
    images: list[ImageSpec] = Field(default_factory=list)


class CustomFragment(FragmentBase):
    type: Literal["custom"] = "custom"
    script_path: str = Field(min_length=1)
    parameters: dict[str, Scalar] = Field(default_factory=dict)


Fragment = Annotated[
    Union[
        DotfilesFragment,
        SystemFragment,
        NetworkFragment,
        ContainersFragment,
        CustomFragment,
    ],
    Field(discriminator="type"),
]

FRAGMENT_ADAPTER: TypeAdapter[Fragment] = TypeAdapter(Fragment)
