"""
Comment endpoints: replies, author-only edits and soft delete.
"""
from bson import ObjectId

from conftest import BOB


def add_comment(client, auth, slug="hello-world", identity=BOB, **body):
    body.setdefault("content", "Nice post")
    return client.post(f"/api/posts/{slug}/comments", headers=auth(identity), json=body)


class TestAddComment:

    def test_create_comment(self, client, auth, create_post):
        create_post()
        r = add_comment(client, auth, content="<b>Great</b> <img src=x onerror=alert(1)>")
        assert r.status_code == 201
        comment = r.json()
        assert comment["content"].startswith("<b>Great</b>")
        assert "onerror" not in comment["content"]
        assert comment["author"]["username"] == "bob"
        assert comment["parent_comment"] is None
        assert comment["is_deleted"] is False

    def test_draft_post_not_found(self, client, auth, create_post):
        create_post(status="draft")
        r = add_comment(client, auth)
        assert r.status_code == 404
        assert r.json()["error"]["message"] == "Post not found"

    def test_reply(self, client, auth, create_post):
        create_post()
        parent = add_comment(client, auth).json()
        reply = add_comment(client, auth, parent_comment_id=parent["id"]).json()
        assert reply["parent_comment"] == parent["id"]

    def test_reply_to_reply_joins_thread(self, client, auth, create_post):
        create_post()
        root = add_comment(client, auth).json()
        reply = add_comment(client, auth, parent_comment_id=root["id"]).json()
        nested = add_comment(client, auth, parent_comment_id=reply["id"]).json()
        assert nested["parent_comment"] == root["id"]

    def test_unknown_parent(self, client, auth, create_post):
        create_post()
        r = add_comment(client, auth, parent_comment_id=str(ObjectId()))
        assert r.status_code == 404
        assert r.json()["error"]["message"] == "Parent comment not found"

    def test_invalid_parent_id(self, client, auth, create_post):
        create_post()
        assert add_comment(client, auth, parent_comment_id="not-an-id").status_code == 400

    def test_content_length(self, client, auth, create_post):
        create_post()
        assert add_comment(client, auth, content="   ").status_code == 400
        assert add_comment(client, auth, content="x" * 2001).status_code == 400

    def test_requires_authentication(self, client, create_post):
        create_post()
        r = client.post("/api/posts/hello-world/comments", json={"content": "hi"})
        assert r.status_code == 401


class TestListComments:

    def test_lists_top_level_comments(self, client, auth, create_post):
        create_post()
        root = add_comment(client, auth, content="root").json()
        add_comment(client, auth, content="reply", parent_comment_id=root["id"])
        body = client.get("/api/posts/hello-world/comments").json()
        assert [c["content"] for c in body["comments"]] == ["root"]
        assert body["total"] == 1
        assert body["limit"] == 20

    def test_draft_post_not_found(self, client, create_post):
        create_post(status="draft")
        assert client.get("/api/posts/hello-world/comments").status_code == 404


class TestUpdateComment:

    def test_author_can_edit(self, client, auth, create_post):
        create_post()
        comment = add_comment(client, auth).json()
        r = client.put(f"/api/comments/{comment['id']}", headers=auth(BOB), json={"content": "Edited"})
        assert r.status_code == 200
        assert r.json()["content"] == "Edited"
        assert r.json()["is_edited"] is True

    def test_other_user_forbidden(self, client, auth, create_post):
        create_post()
        comment = add_comment(client, auth).json()
        r = client.put(f"/api/comments/{comment['id']}", headers=auth(), json={"content": "Mine now"})
        assert r.status_code == 403
        assert r.json()["error"]["message"] == "You can only edit your own comments"

    def test_content_empty_after_sanitizing(self, client, auth, create_post, db):
        create_post()
        comment = add_comment(client, auth).json()
        r = client.put(f"/api/comments/{comment['id']}", headers=auth(BOB), json={"content": "<script></script>"})
        assert r.status_code == 400
        assert r.json()["error"]["code"] == "VALIDATION_ERROR"
        assert db["comment"].find_one({"_id": ObjectId(comment["id"])})["content"] == "Nice post"

    def test_invalid_id(self, client, auth):
        r = client.put("/api/comments/123", headers=auth(), json={"content": "x"})
        assert r.status_code == 400


class TestDeleteComment:

    def test_soft_delete(self, client, auth, create_post, db):
        create_post()
        comment = add_comment(client, auth).json()
        r = client.delete(f"/api/comments/{comment['id']}", headers=auth(BOB))
        assert r.status_code == 204

        stored = db["comment"].find_one({"_id": ObjectId(comment["id"])})
        assert stored["is_deleted"] is True
        assert stored["content"] == "[deleted]"
        assert client.get("/api/posts/hello-world/comments").json()["comments"] == []

    def test_deleted_comment_is_gone(self, client, auth, create_post):
        create_post()
        comment = add_comment(client, auth).json()
        client.delete(f"/api/comments/{comment['id']}", headers=auth(BOB))
        assert client.delete(f"/api/comments/{comment['id']}", headers=auth(BOB)).status_code == 404
        assert client.put(f"/api/comments/{comment['id']}", headers=auth(BOB),
                          json={"content": "back"}).status_code == 404

    def test_other_user_forbidden(self, client, auth, create_post, db):
        create_post()
        comment = add_comment(client, auth).json()
        assert client.delete(f"/api/comments/{comment['id']}", headers=auth()).status_code == 403
        assert db["comment"].find_one({"_id": ObjectId(comment["id"])})["is_deleted"] is False

    def test_cannot_reply_to_deleted(self, client, auth, create_post):
        create_post()
        comment = add_comment(client, auth).json()
        client.delete(f"/api/comments/{comment['id']}", headers=auth(BOB))
        assert add_comment(client, auth, parent_comment_id=comment["id"]).status_code == 404
