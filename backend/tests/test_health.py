"""Basic health check and routing tests."""


def test_health_check(client):
    """Test that the health endpoint returns ok."""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_routers_registered(client):
    """Lot, reconciliation and preference routes are all mounted."""
    paths = client.get("/openapi.json").json()["paths"]
    assert "/api/lots/tracking-method" in paths
    assert "/api/accounts/{account}/lots/{symbol}/dispose" in paths
    assert "/api/reconciliation/reconcile" in paths
    assert "/api/preferences/{key}" in paths
