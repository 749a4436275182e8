from __future__ import annotations

import pytest

from hourlog.catalog import CatalogStore
from hourlog.config import ListNames
from hourlog.liststore import MemoryListGateway, StorageError


SEED = {
    "Clients": [
        {"Title": "Acme Corp", "ClientCode": "ACME", "ClientDescription": "Manufacturing"},
        {"Title": "Globex", "ClientCode": "GLBX", "ClientDescription": "Logistics"},
    ],
    "Projects": [
        {"Title": "Website", "ProjectDescription": "Marketing site", "ClientCode": "ACME", "Billable": True},
        {"Title": "Internal", "ProjectDescription": "Overhead", "ClientCode": "ACME", "Billable": False},
        {"Title": "Routing", "ProjectDescription": "Route planner", "ClientCode": "GLBX", "Billable": True},
    ],
    "Activities": [
        {"Title": "Development", "ActivityDescription": "Coding", "ProjectName": "Website", "Billable": True},
        {"Title": "Meetings", "ActivityDescription": "Status calls", "ProjectName": "Website", "Billable": False},
        {"Title": "Training", "ActivityDescription": "Learning", "ProjectName": "Internal"},
        {"Title": "Analysis", "ActivityDescription": "Requirements", "ProjectName": "Routing", "Billable": True},
    ],
    "UserClientAccess": [
        {"Title": "alice@example.com", "ClientCode": "ACME", "Team": "Onshore", "AllocationPercent": 100},
        {"Title": "bob@example.com", "ClientCode": "ACME", "Team": "Offshore", "AllocationPercent": 50},
        {"Title": "bob@example.com", "ClientCode": "GLBX", "Team": "Offshore", "AllocationPercent": 50},
    ],
}


class RecordingGateway(MemoryListGateway):
    """Memory gateway that records write calls and can fail chosen deletes or all reads."""

    def __init__(self) -> None:
        super().__init__()
        self.calls: list[tuple[str, str, str]] = []
        self.fail_deletes: set[str] = set()
        self.fail_reads = False

    def list_items(self, list_name):
        if self.fail_reads:
            raise StorageError(f"HTTP 503: read of {list_name} failed")
        return super().list_items(list_name)

    def create_item(self, list_name, fields):
        item = super().create_item(list_name, fields)
        self.calls.append(("create", list_name, item["id"]))
        return item

    def update_item(self, list_name, item_id, fields):
        self.calls.append(("update", list_name, str(item_id)))
        return super().update_item(list_name, item_id, fields)

    def delete_item(self, list_name, item_id):
        if str(item_id) in self.fail_deletes:
            raise StorageError(f"HTTP 503: delete of {list_name}/{item_id} failed")
        self.calls.append(("delete", list_name, str(item_id)))
        super().delete_item(list_name, item_id)


@pytest.fixture()
def gateway() -> RecordingGateway:
    gw = RecordingGateway()
    gw.seed(SEED)
    gw.calls.clear()
    return gw


@pytest.fixture()
def catalog(gateway: RecordingGateway) -> CatalogStore:
    store = CatalogStore(gateway, ListNames())
    store.load()
    return store
