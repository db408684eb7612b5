"""
Tests for the response envelope and exception handlers.
"""

from fastapi.testclient import TestClient

from conftest import image_file


def test_health(client):
    response = client.get("/api/v1/")
    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "statusCode": 200,
        "data": {},
        "message": "Recipe Share API is running",
    }


def test_unknown_route(client):
    response = client.get("/api/v1/nothing/here")
    assert response.status_code == 404
    body = response.json()
    assert body["success"] is False
    assert body["statusCode"] == 404


def test_method_not_allowed(client):
    response = client.put("/api/v1/users/login")
    assert response.status_code == 405
    assert response.json()["statusCode"] == 405


def test_request_validation_is_400(client):
    response = client.get("/api/v1/recipes/recipeLimit", params={"page": "abc"})
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["message"].startswith("query.page")


def test_unexpected_error_is_500(app, media_store):
    media_store.upload_error = RuntimeError("disk on fire")

    with TestClient(app, raise_server_exceptions=False) as client:
        response = client.post(
            "/api/v1/users/register",
            data={"fullName": "Chef", "email": "chef@cookmail.com", "username": "chef", "password": "pw"},
            files={"avatar": image_file()},
        )

    assert response.status_code == 500
    assert response.json() == {
        "success": False,
        "statusCode": 500,
        "message": "Internal server error",
    }
