"""
Containers provider — container images that must be present locally.

Rollback removes only images this run pulled.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Sequence

from sapphire.core.errors import PlanningError
from sapphire.core.models.fragment import ContainersFragment, ImageSpec
from sapphire.core.models.operation import OperationKind, ReconciliationOperation
from sapphire.core.models.receipt import Receipt
from sapphire.core.providers.base import Provider, make_operation

if TYPE_CHECKING:
    from sapphire.core.engine.observed import ObservedState

logger = logging.getLogger(__name__)


class ContainersProvider(Provider):
    type_tag = "containers"

    def check(self, document: ContainersFragment) -> None:
        if document.images and not self.host.containers.is_available():
            raise PlanningError(
                f"{self.host.containers.name} is not available",
                target=self.host.containers.name,
                document=document.name,
            )

    def entries(self, document: ContainersFragment) -> Sequence[ImageSpec]:
        return document.images

    def plan_entry(
        self, document: ContainersFragment, entry: ImageSpec, observed: ObservedState
    ) -> list[ReconciliationOperation]:
        if entry.reference in observed.images():
            return []
        return [
            make_operation(
                OperationKind.PULL_IMAGE, self.type_tag, document.name,
                f"image {entry.reference}",
                desired={"reference": entry.reference},
            )
        ]

    def apply(self, operation: ReconciliationOperation) -> Receipt:
        reference = operation.desired["reference"]
        operation.previous = {"pulled": True}
        receipt = self.context.with_retry(
            lambda: self.host.containers.pull_image(reference), f"pull {reference}"
        )
        receipt.operation_id = operation.id
        return receipt

    def verify(self, operation: ReconciliationOperation) -> bool:
        return operation.desired["reference"] in self.host.containers.list_images()

    def rollback(self, operation: ReconciliationOperation) -> Receipt:
        reference = operation.desired["reference"]
        if not operation.previous.get("pulled"):
            return Receipt.skip(source=self.type_tag, operation_id=operation.id, reason="not pulled by this run")
        logger.info("Removing image %s pulled by this run", reference)
        receipt = self.host.containers.remove_image(reference)
        receipt.operation_id = operation.id
        return receipt
