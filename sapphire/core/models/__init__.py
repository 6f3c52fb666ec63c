"""
Domain models — Pydantic types for the reconciliation engine.

All models are re-exported here for convenient access:

    from sapphire.core.models import PackageManifest, ReconciliationOperation, Receipt
"""

from typing import Union

from sapphire.core.models.backup import BackupRecord
from sapphire.core.models.fragment import (
    FRAGMENT_ADAPTER,
    ContainersFragment,
    CustomFragment,
    DirectoryMapping,
    DnsSetting,
    DotfilesFragment,
    FileMapping,
    Fragment,
    FragmentType,
    ImageSpec,
    NetworkFragment,
    PreferenceSetting,
    SystemFragment,
)
from sapphire.core.models.manifest import (
    CaskSpec,
    DesiredState,
    FormulaSpec,
    ManifestMetadata,
    ManifestScope,
    PackageKind,
    PackageManifest,
    PackageSpec,
    TapSpec,
)
from sapphire.core.models.operation import (
    OperationKind,
    OperationStatus,
    ReconciliationOperation,
)
from sapphire.core.models.policy import ReconcilePolicy
from sapphire.core.models.receipt import Receipt
from sapphire.core.models.state import HostState, PackageState, RunRecord

Document = Union[
    PackageManifest,
    DotfilesFragment,
    SystemFragment,
    NetworkFragment,
    ContainersFragment,
    CustomFragment,
]

__all__ = [
    "FRAGMENT_ADAPTER",
    # backup.py
    "BackupRecord",
    "CaskSpec",
    "ContainersFragment",
    "CustomFragment",
    "DesiredState",
    "DirectoryMapping",
    "DnsSetting",
    "Document",
    "DotfilesFragment",
    "FileMapping",
    "FormulaSpec",
    # fragment.py
    "Fragment",
    "FragmentType",
    "HostState",
    "ImageSpec",
    "ManifestMetadata",
    "ManifestScope",
    "NetworkFragment",
    # operation.py
    "OperationKind",
    "OperationStatus",
    "PackageKind",
    # manifest.py
    "PackageManifest",
    "PackageSpec",
    # state.py
    "PackageState",
    "PreferenceSetting",
    # receipt.py
    "Receipt",
    # policy.py
    "ReconcilePolicy",
    "ReconciliationOperation",
    "RunRecord",
    "SystemFragment",
    "TapSpec",
]
