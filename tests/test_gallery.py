"""Tests for course image galleries against the local blob store."""
import io

import pytest
from PIL import Image
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import generate_password_hash

from app.golfpoi import create_app
from app.golfpoi.audit import event_metadata
from app.golfpoi.db import session_scope
from app.golfpoi.errors import ExternalServiceFailure, NotFound, ValidationError
from app.golfpoi.models import AuditEvent, Base, User
from app.golfpoi.modules.categories.models import Category
from app.golfpoi.modules.courses.gallery import attach_image, detach_image, materialize, reconcile_gallery
from app.golfpoi.modules.courses.models import Course, CourseImage
from app.golfpoi.modules.courses.service import delete_course, get_course_detail
from app.golfpoi.storage import LocalStorage, StorageError

USER_ID = 1
COURSE_ID = 7


class BrokenStorage(LocalStorage):
    def put_bytes(self, key, data, *, content_type=None, metadata=None):
        raise StorageError("store is down")

    def delete(self, key):
        raise StorageError("store is down")


def _png(width=6, height=4) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), "green").save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_ROOT", str(tmp_path / "storage"))
    monkeypatch.delenv("WEATHER_API_KEY", raising=False)

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        s.add_all(
            [
                User(id=USER_ID, email="user@example.com", password_hash=generate_password_hash("pw")),
                Category(id=1, province="Leinster", valid_counties=["Dublin"]),
                Course(id=COURSE_ID, name="Links End", description="Seaside 18", category_id=1),
            ]
        )
    return app


@pytest.fixture()
def store(app):
    return app.extensions["image_store"]


def _csrf(client):
    with client.session_transaction() as sess:
        sess.setdefault("csrf_token", "test-csrf")
        return {"X-CSRF-Token": sess["csrf_token"]}


def test_attach_stores_image_and_appends_reference(app, store):
    with session_scope(app) as s:
        course = attach_image(s, store, USER_ID, COURSE_ID, _png(), filename="front nine.png")
        ids = course.related_images
        assert len(ids) == 1
        assert ids[0].startswith(f"courses/{COURSE_ID}/") and ids[0].endswith(".png")

    obj = store.head(ids[0])
    assert obj is not None
    assert obj.content_type == "image/png"
    assert obj.metadata["width"] == "6"
    assert obj.metadata["height"] == "4"
    assert obj.metadata["filename"] == "front_nine.png"


def test_attach_then_detach_restores_previous_list(app, store):
    with session_scope(app) as s:
        before = attach_image(s, store, USER_ID, COURSE_ID, _png()).related_images

    with session_scope(app) as s:
        new_id = [i for i in attach_image(s, store, USER_ID, COURSE_ID, _png(8, 8)).related_images if i not in before][0]

    with session_scope(app) as s:
        after = detach_image(s, store, USER_ID, COURSE_ID, new_id).related_images
        assert after == before

    assert store.head(new_id) is None


def test_images_keep_insertion_order(app, store):
    with session_scope(app) as s:
        for w in (1, 2, 3):
            attach_image(s, store, USER_ID, COURSE_ID, _png(w, 1))

    with session_scope(app) as s:
        course = s.get(Course, COURSE_ID)
        gallery = materialize(store, course.related_images, course_id=COURSE_ID)
        assert [g.width for g in gallery] == [1, 2, 3]
        assert all(g.course_id == COURSE_ID for g in gallery)
        assert all(g.url.startswith("/images/courses/") for g in gallery)


def test_empty_upload_is_a_noop(app, store):
    with session_scope(app) as s:
        course = attach_image(s, store, USER_ID, COURSE_ID, b"")
        assert course.related_images == []
        course = attach_image(s, store, USER_ID, COURSE_ID, None)
        assert course.related_images == []

    with session_scope(app) as s:
        assert s.query(AuditEvent).count() == 0


def test_non_image_upload_is_rejected(app, store):
    with session_scope(app) as s:
        with pytest.raises(ValidationError) as exc:
            attach_image(s, store, USER_ID, COURSE_ID, b"definitely not a picture")
        assert "imagefile" in exc.value.fields
        assert s.get(Course, COURSE_ID).related_images == []


def test_oversized_upload_is_rejected(app, store):
    with session_scope(app) as s:
        with pytest.raises(ValidationError):
            attach_image(s, store, USER_ID, COURSE_ID, _png(), max_bytes=10)


def test_attach_to_missing_course_is_not_found(app, store):
    with session_scope(app) as s:
        with pytest.raises(NotFound):
            attach_image(s, store, USER_ID, 999, _png())


def test_store_failure_on_upload_leaves_list_unchanged(app, tmp_path):
    broken = BrokenStorage(root=tmp_path / "storage")
    with session_scope(app) as s:
        with pytest.raises(ExternalServiceFailure):
            attach_image(s, broken, USER_ID, COURSE_ID, _png())

    with session_scope(app) as s:
        assert s.query(CourseImage).count() == 0


def test_store_failure_on_delete_keeps_reference(app, store, tmp_path):
    with session_scope(app) as s:
        image_id = attach_image(s, store, USER_ID, COURSE_ID, _png()).related_images[0]

    with session_scope(app) as s:
        with pytest.raises(ExternalServiceFailure):
            detach_image(s, BrokenStorage(root=tmp_path / "storage"), USER_ID, COURSE_ID, image_id)

    with session_scope(app) as s:
        assert s.get(Course, COURSE_ID).related_images == [image_id]
    assert store.head(image_id) is not None


def test_detach_unknown_image_is_not_found(app, store):
    with session_scope(app) as s:
        with pytest.raises(NotFound):
            detach_image(s, store, USER_ID, COURSE_ID, "courses/7/nope.png")


def test_materialize_empty_or_absent_list(store):
    assert materialize(store, []) == []
    assert materialize(store, None) == []


def test_gallery_view_prunes_stale_references(app, store):
    with session_scope(app) as s:
        ids = [attach_image(s, store, USER_ID, COURSE_ID, _png(w, 2)).related_images[-1] for w in (2, 3)]

    # Removed behind the catalog's back.
    store.delete(ids[0])

    with session_scope(app) as s:
        gallery = reconcile_gallery(s, store, s.get(Course, COURSE_ID))
        assert [g.image_id for g in gallery] == [ids[1]]

    with session_scope(app) as s:
        assert s.get(Course, COURSE_ID).related_images == [ids[1]]


def test_detail_view_carries_gallery(app, store):
    with session_scope(app) as s:
        attach_image(s, store, USER_ID, COURSE_ID, _png(5, 5))

    with session_scope(app) as s:
        detail = get_course_detail(s, store, COURSE_ID)
        assert len(detail["gallery"]) == 1
        assert detail["gallery"][0]["width"] == 5
        assert detail["gallery"][0]["course_id"] == COURSE_ID


def test_deleting_a_course_leaves_images_in_store(app, store):
    with session_scope(app) as s:
        image_id = attach_image(s, store, USER_ID, COURSE_ID, _png()).related_images[0]

    with session_scope(app) as s:
        delete_course(s, USER_ID, COURSE_ID)

    with session_scope(app) as s:
        assert s.query(CourseImage).count() == 0
        event = s.query(AuditEvent).filter(AuditEvent.action == "course.delete").one()
        assert event_metadata(event)["orphaned_images"] == [image_id]
    assert store.head(image_id) is not None


def test_upload_and_delete_routes(app, store):
    client = app.test_client()
    client.post("/auth/login", data={"email": "user@example.com", "password": "pw"})

    r = client.post(
        f"/courses/{COURSE_ID}/images",
        data={"imagefile": (io.BytesIO(_png()), "green.png")},
        content_type="multipart/form-data",
        headers=_csrf(client),
    )
    assert r.status_code == 302
    assert r.headers["Location"].endswith(f"/courses/{COURSE_ID}")

    detail = client.get(f"/courses/{COURSE_ID}").json
    assert len(detail["gallery"]) == 1
    image = detail["gallery"][0]

    r = client.get(image["url"])
    assert r.status_code == 200
    assert r.mimetype == "image/png"
    assert r.data == _png()

    r = client.post(f"/courses/{COURSE_ID}/images/{image['image_id']}/delete", headers=_csrf(client))
    assert r.status_code == 302
    assert client.get(f"/courses/{COURSE_ID}").json["gallery"] == []


def test_upload_route_with_empty_file_is_a_noop(app):
    client = app.test_client()
    client.post("/auth/login", data={"email": "user@example.com", "password": "pw"})
    r = client.post(
        f"/courses/{COURSE_ID}/images",
        data={"imagefile": (io.BytesIO(b""), "empty.png")},
        content_type="multipart/form-data",
        headers=_csrf(client),
    )
    assert r.status_code == 302
    assert client.get(f"/courses/{COURSE_ID}").json["related_images"] == []


def test_failed_row_insert_leaves_blob_and_logs_orphan(app, store, monkeypatch, caplog):
    def refuse_flush(*args, **kwargs):
        raise SQLAlchemyError("insert failed")

    with caplog.at_level("ERROR", logger="app.golfpoi.modules.courses.gallery"):
        with pytest.raises(SQLAlchemyError):
            with session_scope(app) as s:
                monkeypatch.setattr(s, "flush", refuse_flush)
                attach_image(s, store, USER_ID, COURSE_ID, _png())

    blobs = [p for p in store.root.rglob("*.png")]
    assert len(blobs) == 1
    assert "orphaned" in caplog.text
    assert any(r.levelname == "ERROR" and blobs[0].name in r.getMessage() for r in caplog.records)

    with session_scope(app) as s:
        assert s.query(CourseImage).count() == 0


def test_image_route_refuses_metadata_sidecars(app, store):
    with session_scope(app) as s:
        image_id = attach_image(s, store, USER_ID, COURSE_ID, _png(), filename="secret-name.png").related_images[0]

    client = app.test_client()
    assert client.get(f"/images/{image_id}").status_code == 200
    r = client.get(f"/images/{image_id}.meta.json")
    assert r.status_code == 404
    assert b"secret-name" not in r.data
    assert store.head(f"{image_id}.meta.json") is None


class EscapedKeyStorage(LocalStorage):
    def head(self, key):
        return super().head("../" + key)


def test_keys_outside_the_store_are_refused(app, store):
    with pytest.raises(StorageError):
        store.head("../outside.png")

    app.extensions["image_store"] = EscapedKeyStorage(root=store.root)
    assert app.test_client().get("/images/outside.png").status_code == 404


def test_corrupt_sidecar_is_a_store_failure(app, store):
    with session_scope(app) as s:
        image_id = attach_image(s, store, USER_ID, COURSE_ID, _png()).related_images[0]
    (store.root / f"{image_id}.meta.json").write_text("{not json", encoding="utf-8")

    with pytest.raises(StorageError):
        store.head(image_id)
    with pytest.raises(ExternalServiceFailure):
        materialize(store, [image_id], course_id=COURSE_ID)

    client = app.test_client()
    client.post("/auth/login", data={"email": "user@example.com", "password": "pw"})
    r = client.get(f"/courses/{COURSE_ID}")
    assert r.status_code == 502
    assert r.json["error"] == "external_service_failure"
