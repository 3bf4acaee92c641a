import logging

import pytest
from fastapi.testclient import TestClient
from sailsetu.main import app

client = TestClient(app)


def test_404_not_found():
    response = client.get("/non-existent-route")
    assert response.status_code == 404
    data = response.json()
    assert "error" in data
    assert "code" in data
    assert data["code"] == "HTTP_ERROR"


def test_validation_error_structure():
    # Temporary route with a typed body
    from pydantic import BaseModel

    class Item(BaseModel):
        name: str
        price: int

    @app.post("/test-validation")
    def create_item(item: Item):
        return item

    response = client.post("/test-validation", json={"name": "foo", "price": "invalid"})
    assert response.status_code == 422
    data = response.json()
    assert data["code"] == "VALIDATION_ERROR"
    assert "details" in data
    assert len(data["details"]) > 0


def test_custom_exception():
    from sailsetu.core.exceptions import FeatureNotFoundError

    @app.get("/test-custom-error")
    def trigger_custom_error():
        raise FeatureNotFoundError(message="Feature 'x' not found")

    response = client.get("/test-custom-error")
    assert response.status_code == 404
    data = response.json()
    assert data["code"] == "NOT_FOUND"
    assert data["error"] == "Feature 'x' not found"


def test_workflow_launch_error_maps_to_bad_gateway():
    from sailsetu.core.exceptions import WorkflowLaunchError

    @app.get("/test-launch-error")
    def trigger_launch_error():
        raise WorkflowLaunchError("SailPoint Error 500: boom", details={"status_code": 500})

    response = client.get("/test-launch-error")
    assert response.status_code == 502
    data = response.json()
    assert data["code"] == "WORKFLOW_LAUNCH_FAILED"
    assert data["details"] == {"status_code": 500}


def test_unhandled_exception_is_wrapped():
    @app.get("/test-unhandled")
    def trigger_unhandled():
        raise RuntimeError("kaboom")

    safe_client = TestClient(app, raise_server_exceptions=False)
    response = safe_client.get("/test-unhandled")
    assert response.status_code == 500
    assert response.json()["code"] == "INTERNAL_ERROR"


def test_unhandled_exception_logs_chat_context(caplog):
    from sailsetu.core.logging import LogContext

    @app.get("/test-unhandled-in-chat")
    def trigger_in_chat():
        with LogContext(channel="whatsapp", user_id="15550001@c.us"):
            with LogContext(step="InFeature(leaver-cleanup)"):
                raise RuntimeError("lookup exploded")

    safe_client = TestClient(app, raise_server_exceptions=False)
    with caplog.at_level(logging.ERROR, logger="sailsetu"):
        response = safe_client.get("/test-unhandled-in-chat")

    assert response.status_code == 500
    record = next(r for r in caplog.records if "lookup exploded" in r.getMessage())
    assert record.channel == "whatsapp"
    assert record.user_id == "15550001@c.us"
    assert record.step == "InFeature(leaver-cleanup)"


def test_log_context_is_attached_to_escaping_exception():
    from sailsetu.core.logging import LogContext, exception_log_context

    with pytest.raises(ValueError) as info:
        with LogContext(channel="telegram", user_id="42"):
            raise ValueError("bad row")

    assert exception_log_context(info.value) == {"channel": "telegram", "user_id": "42"}
    assert exception_log_context(RuntimeError("elsewhere")) == {}
