"""Test status reduction and the sync result envelope."""
import pytest

from core.integrations.errors import ErrorCategory
from sync.results import EntityResult, SyncMode, SyncResult
from sync.status import IntegrationStatus, can_transition, reduce_status


@pytest.mark.parametrize("categories,sessionless,expected", [
    ([], False, IntegrationStatus.CONNECTED),
    (["UNKNOWN"], False, IntegrationStatus.ERROR),
    (["AUTH"], False, IntegrationStatus.RECONNECT_REQUIRED),
    (["AUTH"], True, IntegrationStatus.ERROR),
    (["AUTH", "PERMISSION"], False, IntegrationStatus.BLOCKED),
    ([ErrorCategory.RATE_LIMIT, ErrorCategory.TIMEOUT], False, IntegrationStatus.ERROR),
])
def test_reduce_status(categories, sessionless, expected):
    assert reduce_status(categories, sessionless=sessionless) == expected


def test_every_transition_is_allowed():
    for current in IntegrationStatus:
        for target in IntegrationStatus:
            assert can_transition(current, target)
    assert can_transition(None, "connected")


def test_modes():
    assert SyncMode.FULL.syncs_plants and SyncMode.FULL.syncs_metrics
    assert SyncMode.PLANTS.syncs_plants and not SyncMode.PLANTS.syncs_metrics
    assert not SyncMode.DISCOVER.syncs_plants and not SyncMode.DISCOVER.syncs_metrics


def test_sync_result_collects_failures():
    result = SyncResult(provider="solis_cloud", mode=SyncMode.FULL)
    assert result.record(EntityResult.ok("Plant 1"))
    assert not result.record(EntityResult.fail("Metrics 2", Exception("Rate limit exceeded"), "solis_cloud"))

    assert result.errors == ["Metrics 2: Rate limit exceeded"]
    assert result.error_categories == ["RATE_LIMIT"]
    data = result.to_dict()
    assert data["mode"] == "full"
    assert "discovered_plants" not in data
