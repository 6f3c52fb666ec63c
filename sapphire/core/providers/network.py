"""Network provider — DNS servers per network service."""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

from sapphire.core.models.fragment import DnsSetting, NetworkFragment
from sapphire.core.models.operation import OperationKind, ReconciliationOperation
from sapphire.core.models.receipt import Receipt
from sapphire.core.providers.base import Provider, make_operation

if TYPE_CHECKING:
    from sapphire.core.engine.observed import ObservedState


class NetworkProvider(Provider):
    type_tag = "network"

    def entries(self, document: NetworkFragment) -> Sequence[DnsSetting]:
        return document.dns

    def plan_entry(
        self, document: NetworkFragment, entry: DnsSetting, observed: ObservedState
    ) -> list[ReconciliationOperation]:
        if observed.dns_servers(entry.service) == entry.servers:
            return []
        servers = ", ".join(entry.servers) or "(none)"
        return [
            make_operation(
                OperationKind.SET_DNS, self.type_tag, document.name,
                f"dns {entry.service} → {servers}",
                desired={"service": entry.service, "servers": list(entry.servers)},
            )
        ]

    def apply(self, operation: ReconciliationOperation) -> Receipt:
        service = operation.desired["service"]
        operation.previous = {"servers": self.host.network.read_dns_servers(service)}
        receipt = self.host.network.write_dns_servers(service, operation.desired["servers"])
        receipt.operation_id = operation.id
        return receipt

    def verify(self, operation: ReconciliationOperation) -> bool:
        current = self.host.network.read_dns_servers(operation.desired["service"])
        return current == operation.desired["servers"]

    def rollback(self, operation: ReconciliationOperation) -> Receipt:
        receipt = self.host.network.write_dns_servers(
            operation.desired["service"], operation.previous.get("servers", [])
        )
        receipt.operation_id = operation.id
        return receipt
