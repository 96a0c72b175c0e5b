"""API tests for bookmark mutations and the search cache invalidation they trigger."""
from __future__ import annotations

from sqlmodel import select

from saveit.models.bookmark import Bookmark, BookmarkOpen, BookmarkStatus
from saveit.models.tag import BookmarkTag, Tag
from conftest import OTHER_USER, TEST_USER, add_bookmark, make_id


def _cached_search(client, **params) -> dict:
    """Run a search twice so the second answer must come from the cache."""
    client.get("/api/search", params=params)
    data = client.get("/api/search", params=params).json()
    assert data["from_cache"] is True
    return data


class TestCreateBookmark:
    def test_create_with_tags(self, client, session):
        resp = client.post(
            "/api/bookmarks",
            json={
                "url": " https://github.com/fastapi/fastapi ",
                "title": "FastAPI",
                "status": "READY",
                "type": "PAGE",
                "tags": ["Python", "web", "python", " "],
            },
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["url"] == "https://github.com/fastapi/fastapi"
        assert data["tags"] == ["python", "web"]
        assert data["status"] == "READY"

        tags = session.exec(select(Tag).where(Tag.user_id == TEST_USER)).all()
        assert sorted(t.name for t in tags) == ["python", "web"]

    def test_reuses_existing_tags(self, client, session):
        client.post("/api/bookmarks", json={"url": "https://a.com", "tags": ["python"]})
        client.post("/api/bookmarks", json={"url": "https://b.com", "tags": ["python"]})
        assert len(session.exec(select(Tag)).all()) == 1

    def test_invalidates_cached_searches(self, client):
        before = _cached_search(client)
        assert before["bookmarks"] == []

        client.post("/api/bookmarks", json={"url": "https://example.com"})
        after = client.get("/api/search").json()
        assert after["from_cache"] is False
        assert len(after["bookmarks"]) == 1


class TestUpdateBookmark:
    def test_update_fields(self, client, session):
        add_bookmark(session, 1, tags=["x"])
        resp = client.patch(f"/api/bookmarks/{make_id(1)}", json={"starred": True, "title": "New"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["starred"] is True
        assert data["title"] == "New"
        assert data["tags"] == ["x"]

    def test_star_invalidates_filtered_search(self, client, session):
        add_bookmark(session, 1, tags=["x"])
        before = _cached_search(client, tags="x", special_filters="STAR")
        assert before["bookmarks"] == []

        client.patch(f"/api/bookmarks/{make_id(1)}", json={"starred": True})
        after = client.get("/api/search", params={"tags": "x", "special_filters": "STAR"}).json()
        assert after["from_cache"] is False
        assert [b["id"] for b in after["bookmarks"]] == [make_id(1)]

    def test_status_change_makes_bookmark_searchable(self, client, session):
        add_bookmark(session, 1, tags=["x"], status=BookmarkStatus.PROCESSING)
        assert _cached_search(client, tags="x")["bookmarks"] == []

        client.patch(f"/api/bookmarks/{make_id(1)}", json={"status": "READY"})
        after = client.get("/api/search", params={"tags": "x"}).json()
        assert [b["id"] for b in after["bookmarks"]] == [make_id(1)]

    def test_other_users_bookmark_is_not_found(self, client, session):
        add_bookmark(session, 1, user_id=OTHER_USER)
        resp = client.patch(f"/api/bookmarks/{make_id(1)}", json={"starred": True})
        assert resp.status_code == 404

    def test_invalid_status(self, client, session):
        add_bookmark(session, 1)
        resp = client.patch(f"/api/bookmarks/{make_id(1)}", json={"status": "DONE"})
        assert resp.status_code == 422


class TestDeleteBookmark:
    def test_delete_removes_links(self, client, session):
        add_bookmark(session, 1, tags=["x"], opens=2)
        _cached_search(client, tags="x")

        resp = client.delete(f"/api/bookmarks/{make_id(1)}")
        assert resp.status_code == 204

        session.expire_all()
        assert session.get(Bookmark, make_id(1)) is None
        assert session.exec(select(BookmarkTag)).all() == []
        assert session.exec(select(BookmarkOpen)).all() == []

        after = client.get("/api/search", params={"tags": "x"}).json()
        assert after["from_cache"] is False
        assert after["bookmarks"] == []

    def test_delete_missing(self, client):
        assert client.delete(f"/api/bookmarks/{make_id(42)}").status_code == 404


class TestBookmarkTags:
    def test_add_tags(self, client, session):
        add_bookmark(session, 1)
        assert _cached_search(client, tags="new")["bookmarks"] == []

        resp = client.post(f"/api/bookmarks/{make_id(1)}/tags", json={"names": ["New", "other"]})
        assert resp.status_code == 200
        assert resp.json()["tags"] == ["new", "other"]

        after = client.get("/api/search", params={"tags": "new"}).json()
        assert after["from_cache"] is False
        assert [b["id"] for b in after["bookmarks"]] == [make_id(1)]

    def test_add_existing_tag_keeps_cache(self, client, session):
        add_bookmark(session, 1, tags=["x"])
        _cached_search(client, tags="x")

        client.post(f"/api/bookmarks/{make_id(1)}/tags", json={"names": ["x"]})
        assert client.get("/api/search", params={"tags": "x"}).json()["from_cache"] is True

    def test_remove_tag(self, client, session):
        add_bookmark(session, 1, tags=["x", "y"])
        _cached_search(client, tags="x")

        resp = client.delete(f"/api/bookmarks/{make_id(1)}/tags/X")
        assert resp.status_code == 204

        after = client.get("/api/search", params={"tags": "x"}).json()
        assert after["from_cache"] is False
        assert after["bookmarks"] == []

    def test_remove_unknown_tag(self, client, session):
        add_bookmark(session, 1, tags=["x"])
        add_bookmark(session, 2, tags=["y"])
        assert client.delete(f"/api/bookmarks/{make_id(1)}/tags/nope").status_code == 404
        assert client.delete(f"/api/bookmarks/{make_id(1)}/tags/y").status_code == 404


class TestTrackOpen:
    def test_open_counts(self, client, session):
        add_bookmark(session, 1)
        first = client.post(f"/api/bookmarks/{make_id(1)}/open")
        second = client.post(f"/api/bookmarks/{make_id(1)}/open")
        assert first.status_code == 201
        assert first.json()["open_count"] == 1
        assert second.json()["open_count"] == 2

    def test_open_does_not_invalidate(self, client, session):
        add_bookmark(session, 1, tags=["x"])
        _cached_search(client, tags="x")

        client.post(f"/api/bookmarks/{make_id(1)}/open")
        assert client.get("/api/search", params={"tags": "x"}).json()["from_cache"] is True

    def test_open_unknown_bookmark(self, client):
        assert client.post(f"/api/bookmarks/{make_id(9)}/open").status_code == 404


def test_mutations_require_auth(client_no_auth):
    resp = client_no_auth.post("/api/bookmarks", json={"url": "https://example.com"})
    assert resp.status_code in (401, 403)
