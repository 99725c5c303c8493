from fastapi.testclient import TestClient

from returnsdesk.core.errors import Conflict, InvalidInput, NotFound, PreconditionFailed, Unauthorized
from returnsdesk.main import app

client = TestClient(app)


def test_http_error_shape():
    res = client.get("/api/v1/does-not-exist")
    assert res.status_code == 404
    body = res.json()
    assert set(body.keys()) == {"detail", "code"}
    assert body["detail"] == "Not Found"
    assert body["code"] is None


def test_missing_token_is_401():
    res = client.get("/api/v1/orders/return-requests")
    assert res.status_code == 401
    assert res.json()["detail"] == "Not authenticated"


def test_invalid_token_is_401():
    res = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-token"})
    assert res.status_code == 401
    assert res.json()["detail"] == "Invalid token"


def test_validation_error_shape():
    res = client.post("/api/v1/auth/login", json={"email": "x"})
    assert res.status_code == 422
    body = res.json()
    assert body["code"] == "validation_error"
    assert isinstance(body["detail"], list)


def test_error_taxonomy_statuses_and_codes():
    expected = {
        InvalidInput: (400, "invalid_input"),
        Unauthorized: (403, "unauthorized"),
        NotFound: (404, "not_found"),
        Conflict: (409, "conflict"),
        PreconditionFailed: (412, "precondition_failed"),
    }
    for error_cls, (status_code, code) in expected.items():
        exc = error_cls("boom")
        assert exc.status_code == status_code
        assert exc.code == code
        assert exc.message == "boom"
