import pytest
from bson import ObjectId
from pymongo.errors import AutoReconnect

import engagement
from errors import NotFound, ServerError


class _BrokenWrites:
    """Collection proxy whose single-document writes fail."""

    def __init__(self, collection):
        self._collection = collection

    def update_one(self, *args, **kwargs):
        raise AutoReconnect("store unavailable")

    def find_one_and_update(self, *args, **kwargs):
        raise AutoReconnect("store unavailable")

    def __getattr__(self, name):
        return getattr(self._collection, name)


class _UserWritesFail:
    """Database proxy whose ``user`` collection rejects writes."""

    def __init__(self, db):
        self._db = db

    def __getitem__(self, name):
        if name == "user":
            return _BrokenWrites(self._db[name])
        return self._db[name]


def test_like_then_unlike_scenario(client, alice, bob, upload):
    video = upload(alice[1], isPublic="true")

    first = client.post(f"/api/videos/{video['id']}/like", headers=bob[1])
    second = client.post(f"/api/videos/{video['id']}/like", headers=bob[1])

    assert first.status_code == 200
    assert first.json() == {"message": "Video liked", "likeCount": 1, "isLiked": True}
    assert second.json() == {"message": "Video unliked", "likeCount": 0, "isLiked": False}


def test_like_updates_both_sides(client, db, alice, bob, upload):
    video_id = upload(alice[1])["id"]

    client.post(f"/api/videos/{video_id}/like", headers=bob[1])

    assert db["video"].find_one({"_id": ObjectId(video_id)})["likes"] == [bob[0]]
    assert db["user"].find_one({"_id": ObjectId(bob[0])})["likes"] == [video_id]

    client.post(f"/api/videos/{video_id}/like", headers=bob[1])

    assert db["video"].find_one({"_id": ObjectId(video_id)})["likes"] == []
    assert db["user"].find_one({"_id": ObjectId(bob[0])})["likes"] == []


def test_double_toggle_restores_original_state(db, alice, bob, seed_videos):
    video_id = seed_videos(alice[0], 1, likes=[alice[0]])[0]

    engagement.toggle_like(db, video_id, bob[0])
    result = engagement.toggle_like(db, video_id, bob[0])

    assert result.like_count == 1
    assert result.is_liked is False
    assert db["video"].find_one({"_id": ObjectId(video_id)})["likes"] == [alice[0]]


def test_like_requires_auth(client, alice, upload):
    video_id = upload(alice[1])["id"]

    r = client.post(f"/api/videos/{video_id}/like")

    assert r.status_code == 401


@pytest.mark.parametrize("video_id", [str(ObjectId()), "not-an-id"])
def test_like_unknown_video(client, bob, video_id):
    r = client.post(f"/api/videos/{video_id}/like", headers=bob[1])

    assert r.status_code == 404
    assert r.json() == {"message": "Video not found"}


def test_toggle_membership_on_missing_document(db):
    doc, present = engagement.toggle_membership(db["video"], {"_id": ObjectId()}, "likes", "u1")

    assert doc is None
    assert present is False


def test_failed_user_write_reverts_video_like(db, alice, bob, seed_videos):
    video_id = seed_videos(alice[0], 1)[0]

    with pytest.raises(ServerError):
        engagement.toggle_like(_UserWritesFail(db), video_id, bob[0])

    assert db["video"].find_one({"_id": ObjectId(video_id)})["likes"] == []
    assert db["user"].find_one({"_id": ObjectId(bob[0])})["likes"] == []


def test_failed_user_write_reverts_video_unlike(db, alice, bob, seed_videos):
    video_id = seed_videos(alice[0], 1, likes=[bob[0]])[0]

    with pytest.raises(ServerError):
        engagement.toggle_like(_UserWritesFail(db), video_id, bob[0])

    assert db["video"].find_one({"_id": ObjectId(video_id)})["likes"] == [bob[0]]


def test_comment_like_toggle(client, alice, bob, upload):
    video_id = upload(alice[1])["id"]
    comment = client.post(f"/api/videos/{video_id}/comments", json={"content": "nice"}, headers=alice[1]).json()

    first = client.post(f"/api/comments/{comment['id']}/like", headers=bob[1]).json()
    second = client.post(f"/api/comments/{comment['id']}/like", headers=bob[1]).json()

    assert first == {"message": "Comment liked", "likeCount": 1, "isLiked": True}
    assert second == {"message": "Comment unliked", "likeCount": 0, "isLiked": False}


def test_deleted_comment_cannot_be_liked(db, alice, bob, client, upload):
    video_id = upload(alice[1])["id"]
    comment = client.post(f"/api/videos/{video_id}/comments", json={"content": "bye"}, headers=alice[1]).json()
    client.delete(f"/api/comments/{comment['id']}", headers=alice[1])

    with pytest.raises(NotFound):
        engagement.toggle_comment_like(db, comment["id"], bob[0])


# -------------------- Follows --------------------

def test_follow_and_unfollow(client, db, alice, bob):
    followed = client.post(f"/api/users/{alice[0]}/follow", headers=bob[1])

    assert followed.status_code == 200
    assert followed.json() == {"message": "User followed", "followerCount": 1, "isFollowing": True}
    assert db["user"].find_one({"_id": ObjectId(bob[0])})["following"] == [alice[0]]
    assert db["user"].find_one({"_id": ObjectId(alice[0])})["followers"] == [bob[0]]

    unfollowed = client.delete(f"/api/users/{alice[0]}/follow", headers=bob[1])

    assert unfollowed.json() == {"message": "User unfollowed", "followerCount": 0, "isFollowing": False}
    assert db["user"].find_one({"_id": ObjectId(bob[0])})["following"] == []
    assert db["user"].find_one({"_id": ObjectId(alice[0])})["followers"] == []


def test_follow_twice_is_rejected(client, alice, bob):
    client.post(f"/api/users/{alice[0]}/follow", headers=bob[1])

    r = client.post(f"/api/users/{alice[0]}/follow", headers=bob[1])

    assert r.status_code == 400
    assert r.json()["message"] == "Already following this user"


def test_unfollow_without_following_is_rejected(client, alice, bob):
    r = client.delete(f"/api/users/{alice[0]}/follow", headers=bob[1])

    assert r.status_code == 400


def test_cannot_follow_self(client, alice):
    r = client.post(f"/api/users/{alice[0]}/follow", headers=alice[1])

    assert r.status_code == 400
    assert r.json()["message"] == "You cannot follow yourself"


def test_follow_unknown_user(client, bob):
    r = client.post(f"/api/users/{ObjectId()}/follow", headers=bob[1])

    assert r.status_code == 404


def test_failed_follower_write_reverts_following(db, alice, bob):
    with pytest.raises(ServerError):
        engagement.follow(_UserWritesFailAfterFirst(db), bob[0], alice[0])

    assert db["user"].find_one({"_id": ObjectId(bob[0])})["following"] == []
    assert db["user"].find_one({"_id": ObjectId(alice[0])})["followers"] == []


class _UserWritesFailAfterFirst:
    """Lets the first ``update_one`` on users through, then fails ``find_one_and_update``."""

    def __init__(self, db):
        self._db = db

    def __getitem__(self, name):
        collection = self._db[name]
        if name != "user":
            return collection
        return _FailingFindAndModify(collection)


class _FailingFindAndModify(_BrokenWrites):
    def update_one(self, *args, **kwargs):
        return self._collection.update_one(*args, **kwargs)
