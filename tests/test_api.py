"""HTTP layer: routing, error mapping, actor propagation."""

import pytest
from fastapi.testclient import TestClient

from config.database import get_db
from main import app
from modules.pricing.component_service import component_service
from modules.pricing.resolver import resolver
from modules.pricing.service import update_metal_price


@pytest.fixture
def client(session_factory):
    """App bound to the test database. The lifespan (scheduler, seeding) is not started."""
    resolver.invalidate()
    seed = session_factory()
    try:
        component_service.seed_system_components(seed)
        update_metal_price(seed, "GOLD_22K", 6000, "setup")
        seed.commit()
    finally:
        seed.close()

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
    resolver.invalidate()


@pytest.fixture
def ring_setup(client):
    """Rings (GOLD_22K) with [metal_cost, wastage 5%, making 200] and one 10 g ring."""
    client.post("/api/pricing/components", json={
        "key": "wastage", "name": "Wastage", "calculation_type": "PERCENTAGE",
        "percentage_of": "metalCost", "default_value": "5",
    })
    client.post("/api/pricing/components", json={
        "key": "making", "name": "Making Charge", "calculation_type": "FIXED", "default_value": "200",
    })
    node = client.post("/api/catalog/subcategories", json={"name": "Rings", "metal_type": "GOLD_22K"}).json()
    node_id = node["subcategory"]["id"]
    config = client.post(f"/api/pricing/subcategories/{node_id}/config", json={"components": [
        {"component_key": "metal_cost"}, {"component_key": "wastage"}, {"component_key": "making"},
    ]}).json()
    product = client.post("/api/catalog/products", json={
        "name": "Solitaire", "sku": "RNG-001", "subcategory_id": node_id,
        "gross_weight": "12", "net_weight": "10",
    }).json()
    return {
        "node_id": node_id,
        "config_id": config["config"]["id"],
        "product_id": product["product"]["id"],
    }


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_calculate_product(client, ring_setup):
    resp = client.post(f"/api/catalog/products/{ring_setup['product_id']}/calculate")

    assert resp.status_code == 200
    breakdown = resp.json()["breakdown"]
    assert breakdown["subtotal"] == "63200.00"
    assert [c["value"] for c in breakdown["components"]] == ["60000.00", "3000.00", "200.00"]


def test_config_detail_and_version(client, ring_setup):
    config_id = ring_setup["config_id"]
    client.patch(f"/api/pricing/configs/{config_id}/components/making", json={"value": "300"})

    body = client.get(f"/api/pricing/configs/{config_id}").json()

    assert body["config"]["version"] == 2
    assert body["config"]["affected_product_count"] == 1
    assert body["problems"] == []


def test_freeze_records_actor(client, ring_setup):
    config_id = ring_setup["config_id"]
    resp = client.post(
        f"/api/pricing/configs/{config_id}/components/wastage/freeze",
        json={"reason": "Festival offer"},
        headers={"X-Actor": "merch@store"},
    )

    assert resp.status_code == 200
    assert resp.json()["frozen_value"] == "2850.00"
    history = client.get(f"/api/pricing/configs/{config_id}/freeze-history").json()["history"]
    assert history[0]["actor"] == "merch@store"


def test_missing_actor_header_defaults_to_system(client, ring_setup):
    config_id = ring_setup["config_id"]
    client.post(f"/api/pricing/configs/{config_id}/components/making/freeze", json={"reason": "Fixed fee"})

    history = client.get(f"/api/pricing/configs/{config_id}/freeze-history").json()["history"]
    assert history[0]["actor"] == "system"


def test_business_errors_map_to_status_codes(client, ring_setup):
    config_id = ring_setup["config_id"]

    resp = client.post(f"/api/pricing/configs/{config_id}/components/wastage/freeze", json={"reason": " "})
    assert resp.status_code == 400
    assert resp.json() == {
        "success": False,
        "error": "A reason is required to freeze a pricing component.",
        "code": "FreezeReasonRequiredError",
    }

    resp = client.post(f"/api/pricing/configs/{config_id}/components/wastage/unfreeze")
    assert resp.status_code == 400
    assert resp.json()["code"] == "AlreadyUnfrozenError"

    resp = client.get("/api/pricing/configs/9999")
    assert resp.status_code == 404

    resp = client.post(f"/api/pricing/subcategories/{ring_setup['node_id']}/config", json={})
    assert resp.status_code == 409


def test_recalculation_flow(client, ring_setup):
    config_id = ring_setup["config_id"]

    preview = client.post("/api/recalculation/preview", json={"config_id": config_id}).json()
    assert preview["affected_count"] == 1
    assert preview["sample_before_after"][0]["after"] == "63200.00"

    result = client.post("/api/recalculation/execute", json={"config_id": config_id}, headers={"X-Actor": "ops"}).json()
    assert result["status"] == "COMPLETED"

    job = client.get(f"/api/recalculation/jobs/{result['job_id']}").json()["job"]
    assert job["triggered_by"] == "ops"
    assert job["progress"]["succeeded"] == 1

    jobs = client.get("/api/recalculation/jobs", params={"status": "COMPLETED"}).json()["jobs"]
    assert [j["id"] for j in jobs] == [result["job_id"]]

    resp = client.post(f"/api/recalculation/jobs/{result['job_id']}/retry")
    assert resp.status_code == 409


def test_target_needs_exactly_one_scope(client):
    assert client.post("/api/recalculation/execute", json={}).status_code == 422
    assert client.post("/api/recalculation/execute", json={"config_id": 1, "metal_type": "GOLD_22K"}).status_code == 422


def test_metal_price_update_with_recalculation(client, ring_setup):
    resp = client.put("/api/pricing/metal-prices/GOLD_22K?recalculate=true", json={"price_per_gram": "6500"})

    assert resp.status_code == 200
    assert resp.json()["recalculation"]["updated"] == 1
    pricing = client.get(f"/api/catalog/products/{ring_setup['product_id']}/pricing").json()["pricing"]
    assert pricing["calculated_price"] == "68450.00"
    assert pricing["current_metal_rate"] == "6500.00"

    history = client.get("/api/pricing/metal-prices/GOLD_22K/history").json()["history"]
    assert history[0]["change_percent"] == "8.33"


def test_subcategory_reports_inherited_pricing(client, ring_setup):
    child = client.post("/api/catalog/subcategories", json={"name": "Bands", "parent_id": ring_setup["node_id"]}).json()

    body = client.get(f"/api/catalog/subcategories/{child['subcategory']['id']}").json()

    assert body["subcategory"]["metal_type"] == "GOLD_22K"
    assert body["ancestors"][0]["id"] == ring_setup["node_id"]
    assert body["pricing"] == {
        "config_id": ring_setup["config_id"],
        "source_subcategory_id": ring_setup["node_id"],
        "inherited": True,
    }
