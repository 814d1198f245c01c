from marketplace import models
from marketplace.notifications import ADMIN_ROOM, Notifier, create_notification, dispatch, notify, room_for


class BrokenNotifier(Notifier):
    def emit(self, room, event, payload):
        raise ConnectionError("broker down")


def test_rooms():
    assert room_for("abc") == "user-abc"
    assert room_for(None) == ADMIN_ROOM


def test_notify_persists_then_pushes(db, factory, notifier):
    user = factory.user()

    n = notify(db, notifier, user_id=user.id, type="promo", title="Hi", message="Hello", data={"k": 1})

    assert db.get(models.Notification, n.id) is not None
    room, event, payload = notifier.sent[0]
    assert (room, event) == (f"user-{user.id}", "notification")
    assert payload["data"] == {"k": 1}


def test_dispatch_swallows_push_errors(db, factory):
    user = factory.user()
    n = create_notification(db, user_id=user.id, type="t", title="t", message="m")
    db.commit()

    dispatch(BrokenNotifier(), [n])

    assert db.query(models.Notification).count() == 1


def test_read_side_is_scoped(client, db, factory, auth):
    alice, bob = factory.user(), factory.user()
    admin = factory.user("admin")
    mine = create_notification(db, user_id=alice.id, type="t", title="t", message="for alice")
    create_notification(db, user_id=None, type="t", title="t", message="for admins")
    db.commit()

    assert [n["message"] for n in client.get("/api/notifications", headers=auth(alice)).json()] == ["for alice"]
    assert [n["message"] for n in client.get("/api/notifications", headers=auth(admin)).json()] == ["for admins"]
    assert client.patch(f"/api/notifications/{mine.id}/read", headers=auth(bob)).status_code == 404

    read = client.patch(f"/api/notifications/{mine.id}/read", headers=auth(alice)).json()
    assert read["isRead"] is True
    assert client.delete(f"/api/notifications/{mine.id}", headers=auth(alice)).status_code == 204
    assert client.get("/api/notifications", headers=auth(alice)).json() == []
