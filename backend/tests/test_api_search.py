"""API tests for /api/search."""
from __future__ import annotations

import os
from unittest.mock import patch

import pytest
from jose import jwt

from saveit.config import get_settings
from saveit.models.bookmark import BookmarkStatus
from saveit.services.embedding import EmbeddingError
from saveit.services.search import SearchTimeoutError
from conftest import OTHER_USER, add_bookmark, make_id, make_token

SAME = [1.0, 0.0, 0.0]


class TestSearchEndpoint:
    def test_default_browse(self, client, session):
        add_bookmark(session, 1)
        add_bookmark(session, 2, status=BookmarkStatus.PROCESSING)
        add_bookmark(session, 3, user_id=OTHER_USER)

        resp = client.get("/api/search")
        assert resp.status_code == 200
        data = resp.json()
        assert [b["id"] for b in data["bookmarks"]] == [make_id(2), make_id(1)]
        assert data["has_more"] is False
        assert data["next_cursor"] is None
        assert data["from_cache"] is False
        assert data["query_time"] >= 0

    def test_browse_pagination(self, client, session):
        for n in range(1, 6):
            add_bookmark(session, n)

        first = client.get("/api/search", params={"limit": 2}).json()
        assert first["has_more"] is True
        second = client.get(
            "/api/search", params={"limit": 2, "cursor": first["next_cursor"]}
        ).json()
        assert [b["id"] for b in second["bookmarks"]] == [make_id(3), make_id(2)]

    def test_default_limit_comes_from_settings(self, client, session):
        default_limit = get_settings().search_default_limit
        for n in range(1, default_limit + 2):
            add_bookmark(session, n, tags=["x"])

        data = client.get("/api/search", params={"tags": "x"}).json()
        assert len(data["bookmarks"]) == default_limit
        assert data["has_more"] is True
        assert data["total_count"] == default_limit + 1

    def test_tag_search(self, client, session, mock_embedding_service):
        add_bookmark(session, 1, tags=["python", "web"])
        add_bookmark(session, 2, tags=["python"])
        add_bookmark(session, 3, tags=["go"])

        resp = client.get("/api/search", params=[("tags", "python"), ("tags", "web")])
        assert resp.status_code == 200
        data = resp.json()
        assert [b["id"] for b in data["bookmarks"]] == [make_id(1), make_id(2)]
        first = data["bookmarks"][0]
        assert first["match_type"] == "tag"
        assert sorted(first["matched_tags"]) == ["python", "web"]
        assert {t["name"] for t in first["tags"]} == {"python", "web"}
        assert data["total_count"] == 2
        mock_embedding_service.embed.assert_not_called()

    def test_vector_search(self, client, session):
        add_bookmark(session, 1, title_embedding=SAME, summary_embedding=SAME)
        resp = client.get("/api/search", params={"q": "something similar"})
        assert resp.status_code == 200
        (bookmark,) = resp.json()["bookmarks"]
        assert bookmark["id"] == make_id(1)
        assert bookmark["match_type"] == "vector"
        assert bookmark["score"] == pytest.approx(100.0)

    def test_metadata_transcript_is_stripped(self, client, session):
        add_bookmark(
            session, 1, tags=["video"],
            metadata_json={"transcript": "long text", "channel": "PyCon"},
        )
        resp = client.get("/api/search", params={"tags": "video"})
        assert resp.json()["bookmarks"][0]["metadata"] == {"channel": "PyCon"}

    def test_repeat_is_served_from_cache(self, client, session):
        add_bookmark(session, 1, tags=["python"])
        first = client.get("/api/search", params={"tags": "python"}).json()
        second = client.get("/api/search", params={"tags": "python"}).json()
        assert first["from_cache"] is False
        assert second["from_cache"] is True
        assert second["bookmarks"] == first["bookmarks"]

    def test_users_are_isolated(self, client, session):
        add_bookmark(session, 1, tags=["python"])
        add_bookmark(session, 2, tags=["python"], user_id=OTHER_USER)

        resp = client.get(
            "/api/search",
            params={"tags": "python"},
            headers={"Authorization": f"Bearer {make_token(OTHER_USER)}"},
        )
        assert [b["id"] for b in resp.json()["bookmarks"]] == [make_id(2)]


class TestSearchValidation:
    @pytest.mark.parametrize(
        "params",
        [
            {"types": "NOT_A_TYPE"},
            {"special_filters": "FAVORITE"},
            {"cursor": "not-an-id"},
            {"limit": 0},
            {"limit": 101},
            {"matching_distance": -0.1},
            {"matching_distance": 2.5},
            {"q": "x" * 501},
        ],
    )
    def test_invalid_parameters(self, client, params, mock_embedding_service):
        resp = client.get("/api/search", params=params)
        assert resp.status_code == 422
        mock_embedding_service.embed.assert_not_called()

    def test_embedding_unavailable(self, client, session, mock_embedding_service):
        mock_embedding_service.embed.side_effect = EmbeddingError("ollama down")
        add_bookmark(session, 1, summary_embedding=SAME)

        resp = client.get("/api/search", params={"q": "anything"})
        assert resp.status_code == 503

    def test_embedding_unavailable_with_tags_degrades(self, client, session, mock_embedding_service):
        mock_embedding_service.embed.side_effect = EmbeddingError("ollama down")
        add_bookmark(session, 1, tags=["python"])

        resp = client.get("/api/search", params={"q": "anything", "tags": "python"})
        assert resp.status_code == 200
        assert [b["id"] for b in resp.json()["bookmarks"]] == [make_id(1)]

    def test_timeout(self, client):
        with patch(
            "saveit.routers.search.SearchService.search",
            side_effect=SearchTimeoutError("Search did not complete within 10.0s"),
        ):
            resp = client.get("/api/search", params={"q": "slow"})
        assert resp.status_code == 504


class TestSearchAuth:
    def test_missing_token(self, client_no_auth):
        resp = client_no_auth.get("/api/search")
        assert resp.status_code in (401, 403)

    def test_invalid_token(self, client_no_auth):
        resp = client_no_auth.get(
            "/api/search", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert resp.status_code == 401

    def test_token_without_subject(self, client_no_auth):
        token = jwt.encode({"foo": "bar"}, os.environ["JWT_SECRET"], algorithm="HS256")
        resp = client_no_auth.get(
            "/api/search", headers={"Authorization": f"Bearer {token}"}
        )
        assert resp.status_code == 401


class TestCacheStats:
    def test_stats(self, client, session):
        add_bookmark(session, 1, tags=["python"])
        client.get("/api/search", params={"tags": "python"})
        client.get("/api/search", params={"q": "hello"})

        resp = client.get("/api/search/cache/stats")
        assert resp.status_code == 200
        data = resp.json()
        assert data["search_entries"] == 2
        assert data["search_expired_entries"] == 0
        assert data["embedding_entries"] == 1
