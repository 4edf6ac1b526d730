import pytest

from fieldsync.models import Mission, Photo, PropertyCollection, QueueStatus
from fieldsync.services.capture import CaptureService
from fieldsync.services.mutations import decode_mutation


@pytest.fixture()
def capture(store):
    return CaptureService(store)


def _only_item(store):
    items = store.list_queue_items()
    assert len(items) == 1
    return items[0]


def test_save_collection_writes_entity_and_queue_row(capture, store):
    saved = capture.save_collection(
        PropertyCollection(form_responses={"area_m2": 120}, latitude=-23.55, longitude=-46.63, collected_by="agent-1")
    )

    stored = store.get("property_collection", saved.id)
    assert stored.version == 1
    assert stored.sync_status == "pending"

    item = _only_item(store)
    assert item.type == "create_collection"
    assert item.reference_id == saved.id
    assert item.status == QueueStatus.PENDING
    mutation = decode_mutation(item.type, item.reference_id, item.payload)
    assert mutation.form_responses == {"area_m2": 120}
    assert mutation.collected_by == "agent-1"


def test_update_collection_bumps_version_and_merges_form(capture, store):
    saved = capture.save_collection(
        PropertyCollection(form_responses={"area_m2": 120, "floors": 1}, latitude=0.0, longitude=0.0)
    )

    updated = capture.update_collection(saved.id, {"form_responses": {"floors": 2}, "accuracy": 3.5})

    assert updated.version == 2
    stored = store.get("property_collection", saved.id)
    assert stored.form_responses == {"area_m2": 120, "floors": 2}
    assert stored.accuracy == 3.5
    latest = store.list_queue_items()[-1]
    assert latest.type == "update_collection"
    assert latest.payload["version"] == 2
    assert latest.payload["changes"] == {"form_responses": {"floors": 2}, "accuracy": 3.5}


def test_update_collection_rejects_identity_fields(capture):
    saved = capture.save_collection(PropertyCollection(latitude=0.0, longitude=0.0))
    with pytest.raises(ValueError):
        capture.update_collection(saved.id, {"collected_by": "someone-else"})


def test_update_missing_collection(capture):
    with pytest.raises(KeyError):
        capture.update_collection("missing", {"accuracy": 1.0})


def test_delete_collection_queues_newer_version(capture, store):
    saved = capture.save_collection(PropertyCollection(latitude=0.0, longitude=0.0))
    assert capture.delete_collection(saved.id) is True

    assert store.get("property_collection", saved.id) is None
    latest = store.list_queue_items()[-1]
    assert latest.type == "delete_collection"
    assert latest.payload["version"] == 2


def test_delete_missing_collection_queues_nothing(capture, store):
    assert capture.delete_collection("missing") is False
    assert store.list_queue_items() == []


def test_delete_photo_removes_row_and_queues_delete(capture, store):
    photo = capture.save_photo(Photo(filename="back.jpg", local_path="/data/back.jpg", photo_type="back"))

    assert capture.delete_photo(photo.id) is True

    assert store.get("photo", photo.id) is None
    assert [i.type for i in store.list_queue_items()] == ["upload_photo", "delete_photo"]


def test_delete_unknown_photo_queues_nothing(capture, store):
    """A delete for a photo that was never stored must not reach the authority."""
    assert capture.delete_photo("p404") is False
    assert store.list_queue_items() == []


def test_save_photo_queues_upload(capture, store):
    photo = capture.save_photo(Photo(filename="facade.jpg", local_path="/data/facade.jpg", photo_type="facade"))
    item = _only_item(store)
    assert item.type == "upload_photo"
    assert item.reference_id == photo.id
    assert item.payload["local_path"] == "/data/facade.jpg"


def test_update_mission_status(capture, store):
    store.cache_missions([Mission(id="m1", assigned_to="agent-1")])

    mission = capture.update_mission_status("m1", "completed", notes="Owner absent, photos only")

    assert mission.status == "completed"
    assert store.get("mission", "m1").sync_status == "pending"
    item = _only_item(store)
    assert item.payload == {"status": "completed", "notes": "Owner absent, photos only"}


def test_update_mission_status_validates(capture, store):
    store.cache_missions([Mission(id="m1")])
    with pytest.raises(ValueError):
        capture.update_mission_status("m1", "archived")
    with pytest.raises(KeyError):
        capture.update_mission_status("m2", "completed")
