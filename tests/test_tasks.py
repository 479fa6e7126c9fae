import pytest

from urbanplan import services, tasks
from urbanplan.errors import TransactionConflict


def test_refresh_task_rebuilds_summary(zone):
    services.create_point_of_interest("Hospital", zone_id=zone.id, category="Hospital")

    assert tasks.refresh_coverage_summary() == 1

    rows = services.get_coverage_summary()
    assert rows[0].hospitals == 1


def test_refresh_task_surfaces_conflict_when_called_directly(monkeypatch):
    def conflicted():
        raise TransactionConflict("database is locked")

    monkeypatch.setattr(services, "refresh_coverage_summary", conflicted)

    with pytest.raises(TransactionConflict):
        tasks.refresh_coverage_summary()
