import uuid


def _create_zone(client, name="Centro", zone_type="Residential"):
    resp = client.post("/zones", json={"name": name, "zone_type": zone_type, "area_km2": 3.5})
    assert resp.status_code == 201
    return resp.json()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_register_user_hides_password_hash(client):
    email = f"planner_{uuid.uuid4().hex}@city.example"
    resp = client.post(
        "/users", json={"name": "Planner", "email": email, "password": "secret"}
    )
    assert resp.status_code == 201
    data = resp.json()
    assert data["role"] == "planner"
    assert "password" not in data and "password_hash" not in data

    resp = client.get(f"/users/{data['id']}")
    assert resp.status_code == 200
    assert resp.json()["email"] == email


def test_zone_crud(client):
    zone = _create_zone(client)
    assert zone["zone_type"] == "Residential"
    assert zone["area_km2"] == 3.5

    resp = client.patch(f"/zones/{zone['id']}", json={"zone_type": "Mixed"})
    assert resp.status_code == 200
    assert resp.json()["zone_type"] == "Mixed"

    listing = client.get("/zones", params={"zone_type": "Mixed"}).json()
    assert listing["total"] == 1

    assert client.delete(f"/zones/{zone['id']}").status_code == 204
    assert client.get(f"/zones/{zone['id']}").status_code == 404


def test_unknown_zone_type_is_rejected(client):
    resp = client.post("/zones", json={"name": "X", "zone_type": "Rural"})
    assert resp.status_code == 422


def test_project_with_reversed_dates_returns_422(client):
    zone = _create_zone(client)
    resp = client.post(
        "/projects",
        json={
            "name": "Park renewal",
            "start_date": "2026-05-01",
            "end_date": "2026-04-01",
            "zone_id": zone["id"],
        },
    )
    assert resp.status_code == 422
    assert "cannot precede" in resp.json()["detail"]
    assert client.get("/projects").json()["total"] == 0


def test_project_for_missing_zone_returns_400(client):
    resp = client.post("/projects", json={"name": "Orphan", "zone_id": 404})
    assert resp.status_code == 400


def test_project_lifecycle(client):
    zone = _create_zone(client)
    resp = client.post(
        "/projects",
        json={
            "name": "Bike lanes",
            "start_date": "2026-01-01",
            "end_date": "2026-06-30",
            "status": "Planned",
            "zone_id": zone["id"],
        },
    )
    assert resp.status_code == 201
    project = resp.json()

    resp = client.patch(f"/projects/{project['id']}", json={"status": "InProgress"})
    assert resp.json()["status"] == "InProgress"

    resp = client.get("/projects", params={"status": "InProgress"})
    assert resp.json()["total"] == 1

    client.delete(f"/zones/{zone['id']}")
    assert client.get(f"/projects/{project['id']}").json()["zone_id"] is None


def test_growth_simulation_endpoint(client):
    zone = _create_zone(client)
    resp = client.post(
        "/demographics", json={"zone_id": zone["id"], "year": 2024, "population": 50}
    )
    record = resp.json()

    resp = client.post(
        f"/zones/{zone['id']}/growth-simulations", json={"new_housing_units": 2}
    )
    assert resp.json() == {"zone_id": zone["id"], "records_updated": 1}
    assert client.get(f"/demographics/{record['id']}").json()["population"] == 56

    resp = client.post(
        f"/zones/{zone['id']}/growth-simulations", json={"new_housing_units": -100}
    )
    assert resp.status_code == 400
    assert client.get(f"/demographics/{record['id']}").json()["population"] == 56


def test_coverage_summary_endpoints(client):
    zone = _create_zone(client)
    for name, category in [("P1", "Park"), ("P2", "Park"), ("S1", "School")]:
        resp = client.post(
            "/points-of-interest",
            json={"name": name, "zone_id": zone["id"], "category": category},
        )
        assert resp.status_code == 201

    assert client.get("/coverage-summary").json() == []

    resp = client.post("/coverage-summary/refresh")
    assert resp.json() == {"zones": 1}

    rows = client.get("/coverage-summary").json()
    assert len(rows) == 1
    row = rows[0]
    assert (row["zone_id"], row["parks"], row["schools"], row["hospitals"]) == (
        zone["id"],
        2,
        1,
        0,
    )


def test_oversized_area_returns_400(client):
    resp = client.post("/zones", json={"name": "X", "zone_type": "Mixed", "area_km2": 1e20})
    assert resp.status_code == 400
    assert client.get("/zones").json()["total"] == 0


def test_oversized_growth_returns_400(client):
    zone = _create_zone(client)
    resp = client.post(
        f"/zones/{zone['id']}/growth-simulations",
        json={"new_housing_units": 10 ** 20},
    )
    assert resp.status_code == 400


def test_unknown_project_status_is_rejected(client):
    resp = client.post("/projects", json={"name": "Depot", "status": "Cancelled"})
    assert resp.status_code == 422
