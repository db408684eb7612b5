"""
End-to-end tests for the /recipes routes.
"""

import json

import pytest

from conftest import publish_recipe as publish


class TestPublish:

    def test_publish(self, client, make_user, media_store):
        user, headers, _ = make_user("chef")

        response = publish(client, headers)

        assert response.status_code == 200
        recipe = response.json()["data"]
        assert recipe["title"] == "Pasta al limone"
        assert recipe["mediaFile"] == media_store.uploaded[-1]
        assert recipe["ingredients"] == ["pasta", "lemon", "butter"]
        assert recipe["prepTime"] == 10
        assert recipe["likesCount"] == 0
        assert recipe["owner"]["id"] == user["id"]
        assert recipe["owner"]["username"] == "chef"

    def test_publish_json_list_fields(self, client, make_user):
        _, headers, _ = make_user("chef")

        response = publish(client, headers, ingredients=json.dumps(["rice", "saffron"]), steps=json.dumps(["stir"]))

        assert response.status_code == 200
        assert response.json()["data"]["ingredients"] == ["rice", "saffron"]
        assert response.json()["data"]["steps"] == ["stir"]

    def test_invalid_category(self, client, make_user, media_store):
        _, headers, _ = make_user("chef")
        uploads_before = len(media_store.uploaded)

        response = publish(client, headers, category="BRUNCH")

        assert response.status_code == 400
        assert response.json()["message"] == "Invalid recipe category"
        assert len(media_store.uploaded) == uploads_before

    def test_invalid_difficulty_skips_upload(self, client, make_user, media_store):
        _, headers, _ = make_user("chef")
        uploads_before = len(media_store.uploaded)

        response = publish(client, headers, difficulty="impossible")

        assert response.status_code == 400
        assert response.json()["message"].startswith("difficulty")
        assert len(media_store.uploaded) == uploads_before

    def test_missing_title(self, client, make_user):
        _, headers, _ = make_user("chef")
        response = publish(client, headers, title="  ")
        assert response.status_code == 400

    def test_missing_media(self, client, make_user):
        _, headers, _ = make_user("chef")
        response = client.post(
            "/api/v1/recipes/publish",
            data={
                "title": "Soup",
                "description": "Warm",
                "category": "SOUPS & SALADS",
                "difficulty": "easy",
                "prepTime": "5",
                "cookTime": "30",
            },
            headers=headers,
        )
        assert response.status_code == 400
        assert response.json()["message"] == "Media file is required"

    def test_requires_auth(self, client):
        assert publish(client, {}).status_code == 401


class TestListing:

    def test_all_recipes_search(self, client, make_user):
        _, headers, _ = make_user("chef")
        publish(client, headers, title="Lemon pasta")
        publish(client, headers, title="Beef stew", description="Slow cooked")

        response = client.get("/api/v1/recipes/", params={"query": "lemon"}, headers=headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["totalRecipes"] == 1
        assert [r["title"] for r in data["recipes"]] == ["Lemon pasta"]

    def test_search_is_literal(self, client, make_user):
        _, headers, _ = make_user("chef")
        publish(client, headers, title="Lemon pasta")

        response = client.get("/api/v1/recipes/", params={"query": ".*"}, headers=headers)

        assert response.json()["data"]["totalRecipes"] == 0

    def test_recipe_limit_paging(self, client, make_user):
        _, headers, _ = make_user("chef")
        for name in ["A", "B", "C"]:
            publish(client, headers, title=f"Dish {name}")

        response = client.get(
            "/api/v1/recipes/recipeLimit",
            params={"page": 2, "limit": 2, "sortBy": "title", "sortType": "asc"},
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["totalRecipes"] == 3
        assert data["totalPages"] == 2
        assert data["currentPage"] == 2
        assert [r["title"] for r in data["recipes"]] == ["Dish C"]

    def test_recipe_limit_unknown_sort(self, client):
        response = client.get("/api/v1/recipes/recipeLimit", params={"sortBy": "password"})
        assert response.status_code == 400

    def test_bad_paging(self, client):
        response = client.get("/api/v1/recipes/recipeLimit", params={"page": 0})
        assert response.status_code == 400


class TestSingleRecipe:

    def test_get_by_id(self, client, make_user):
        _, headers, _ = make_user("chef")
        recipe_id = publish(client, headers).json()["data"]["id"]

        response = client.get(f"/api/v1/recipes/{recipe_id}")

        assert response.status_code == 200
        assert response.json()["data"]["id"] == recipe_id

    def test_get_unknown(self, client):
        response = client.get("/api/v1/recipes/missing")
        assert response.status_code == 404
        assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_delete_by_owner(self, client, db, make_user, media_store):
        _, headers, _ = make_user("chef")
        recipe = publish(client, headers).json()["data"]
        client.post(f"/api/v1/likes/toggle/recipe/{recipe['id']}", headers=headers)

        response = client.delete(f"/api/v1/recipes/{recipe['id']}", headers=headers)

        assert response.status_code == 200
        assert recipe["mediaFile"] in media_store.deleted
        assert await db.recipes.count_documents({"id": recipe["id"]}) == 0
        assert await db.likes.count_documents({"recipe": recipe["id"]}) == 0

    def test_delete_survives_media_failure(self, client, make_user, media_store):
        _, headers, _ = make_user("chef")
        recipe_id = publish(client, headers).json()["data"]["id"]
        media_store.fail_delete = True

        response = client.delete(f"/api/v1/recipes/{recipe_id}", headers=headers)

        assert response.status_code == 200
        assert client.get(f"/api/v1/recipes/{recipe_id}").status_code == 404

    def test_delete_by_stranger(self, client, make_user):
        _, owner_headers, _ = make_user("chef")
        _, stranger_headers, _ = make_user("stranger")
        recipe_id = publish(client, owner_headers).json()["data"]["id"]

        response = client.delete(f"/api/v1/recipes/{recipe_id}", headers=stranger_headers)

        assert response.status_code == 403
        assert client.get(f"/api/v1/recipes/{recipe_id}").status_code == 200

    def test_profile_lists_recipes(self, client, make_user):
        _, headers, _ = make_user("chef")
        publish(client, headers, title="First")
        publish(client, headers, title="Second")

        recipes = client.get("/api/v1/users/profile/chef").json()["data"]["recipes"]

        assert {r["title"] for r in recipes} == {"First", "Second"}
