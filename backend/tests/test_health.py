from fastapi.testclient import TestClient


def _get_client() -> TestClient:
    from plan_lifecycle.main import app

    return TestClient(app)


def test_health_endpoint_returns_ok() -> None:
    client = _get_client()
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_request_id_generated_and_returned() -> None:
    client = _get_client()
    response = client.get("/health")

    assert response.headers.get("X-Request-Id")


def test_request_id_echoed_on_validation_error() -> None:
    client = _get_client()
    req_id = "plan-request-123"
    response = client.get("/plans", headers={"X-Request-Id": req_id})

    assert response.status_code == 422
    assert response.headers.get("X-Request-Id") == req_id
