from urbanplan import services
from urbanplan.coverage import coverage_summary


def _as_dicts(rows):
    return [
        {
            "zone": row.zone_id,
            "parks": row.parks,
            "schools": row.schools,
            "hospitals": row.hospitals,
        }
        for row in rows
    ]


def test_summary_is_empty_before_first_refresh(zone):
    assert services.get_coverage_summary() == []


def test_refresh_counts_categories_per_zone(zone):
    services.create_point_of_interest("Park 1", zone_id=zone.id, category="Park")
    services.create_point_of_interest("Park 2", zone_id=zone.id, category="Park")
    services.create_point_of_interest("School", zone_id=zone.id, category="School")
    services.create_point_of_interest("Kiosk", zone_id=zone.id, category="Other")

    assert services.refresh_coverage_summary() == 1

    rows = services.get_coverage_summary()
    assert _as_dicts(rows) == [{"zone": zone.id, "parks": 2, "schools": 1, "hospitals": 0}]
    assert rows[0].zone_name == "Centro"
    assert rows[0].refreshed_at is not None


def test_zone_without_points_reports_zero_counts(zone):
    empty = services.create_zone("Vacant")
    services.create_point_of_interest("Clinic", zone_id=zone.id, category="Hospital")

    services.refresh_coverage_summary()

    assert _as_dicts(services.get_coverage_summary()) == [
        {"zone": zone.id, "parks": 0, "schools": 0, "hospitals": 1},
        {"zone": empty.id, "parks": 0, "schools": 0, "hospitals": 0},
    ]


def test_summary_stays_stale_until_refreshed(zone):
    services.refresh_coverage_summary()
    services.create_point_of_interest("New park", zone_id=zone.id, category="Park")
    services.create_zone("Later")

    stale = _as_dicts(services.get_coverage_summary())
    assert stale == [{"zone": zone.id, "parks": 0, "schools": 0, "hospitals": 0}]

    assert services.refresh_coverage_summary() == 2
    fresh = _as_dicts(services.get_coverage_summary())
    assert fresh[0] == {"zone": zone.id, "parks": 1, "schools": 0, "hospitals": 0}
    assert len(fresh) == 2


def test_deleted_zone_leaves_summary_on_refresh(zone):
    services.refresh_coverage_summary()
    services.delete_zone(zone.id)

    assert len(services.get_coverage_summary()) == 1
    services.refresh_coverage_summary()
    assert services.get_coverage_summary() == []


def test_compute_reads_live_data_without_touching_cache(session_local, zone):
    services.create_point_of_interest("School", zone_id=zone.id, category="School")
    session = session_local()
    try:
        live = coverage_summary.compute(session)
        cached = coverage_summary.rows(session)
    finally:
        session.close()

    assert live == [
        {"zone_id": zone.id, "zone_name": "Centro", "parks": 0, "schools": 1, "hospitals": 0}
    ]
    assert cached == []
