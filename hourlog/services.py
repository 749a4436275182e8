from __future__ import annotations

from dataclasses import dataclass

from hourlog.admin import AdminConsole
from hourlog.catalog import CatalogStore
from hourlog.config import ListNames
from hourlog.entries import TimeEntryRecorder
from hourlog.liststore import BaseListGateway
from hourlog.utilization import UtilizationCalculator


@dataclass(frozen=True)
class Services:
    gateway: BaseListGateway
    catalog: CatalogStore
    recorder: TimeEntryRecorder
    admin: AdminConsole
    calculator: UtilizationCalculator


def build_services(gateway: BaseListGateway, lists: ListNames) -> Services:
    catalog = CatalogStore(gateway, lists)
    return Services(
        gateway=gateway,
        catalog=catalog,
        recorder=TimeEntryRecorder(gateway, catalog),
        admin=AdminConsole(gateway, catalog),
        calculator=UtilizationCalculator(catalog),
    )
