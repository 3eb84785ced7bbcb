import logging
import os
from datetime import datetime, timedelta, timezone

import pytest

from artqueue.errors import AppError
from artqueue.models.deviation import Deviation, DeviationFile
from artqueue.models.sale_queue import SaleQueueItem
from artqueue.services import deviations, storage

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def _upload(client, headers, deviation_id, name="sketch.png", content=PNG_BYTES):
    return client.post(
        f"/deviations/{deviation_id}/files",
        files={"file": (name, content, "image/png")},
        headers=headers,
    )


def _hours_from_now(hours: float) -> str:
    return (datetime.utcnow() + timedelta(hours=hours)).isoformat()


def _add_file(db_session, deviation, name="sketch.png", sort_order=0) -> DeviationFile:
    item = DeviationFile(
        deviation_id=deviation.id,
        storage_key=f"deviations/{deviation.user_id}/{deviation.id}/{name}",
        original_filename=name,
        mime_type="image/png",
        size=len(PNG_BYTES),
        checksum="0" * 64,
        sort_order=sort_order,
    )
    db_session.add(item)
    db_session.commit()
    return item


def test_create_and_get(client, headers):
    res = client.post("/deviations", json={"title": " Sunset ", "description": "Oil"}, headers=headers)

    assert res.status_code == 201
    created = res.json()["deviation"]
    assert created["title"] == "Sunset"
    assert created["status"] == "draft"
    assert created["files"] == []

    fetched = client.get(f"/deviations/{created['id']}", headers=headers).json()["deviation"]
    assert fetched["id"] == created["id"]


def test_title_length_limit(client, headers):
    assert client.post("/deviations", json={"title": "x" * 51}, headers=headers).status_code == 400


def test_list_filters_by_status(client, headers, user, other_user, make_deviation):
    make_deviation(user, status="draft")
    make_deviation(user)
    make_deviation(other_user)

    res = client.get("/deviations", params={"status": "published"}, headers=headers).json()

    assert res["total"] == 1
    assert res["deviations"][0]["status"] == "published"
    assert client.get("/deviations", params={"status": "lost"}, headers=headers).status_code == 400


def test_upload_stores_file_and_sets_thumbnail(client, headers, user, make_deviation):
    deviation = make_deviation(user, status="draft")

    res = _upload(client, headers, deviation.id)

    assert res.status_code == 201
    stored = res.json()["file"]
    assert stored["mimeType"] == "image/png"
    assert stored["size"] == len(PNG_BYTES)
    assert stored["url"].startswith("/storage/deviations/")
    thumbnail = client.get(f"/deviations/{deviation.id}", headers=headers).json()["deviation"]["thumbnailUrl"]
    assert thumbnail == stored["url"]


def test_upload_rejects_unknown_extension(client, headers, user, make_deviation):
    deviation = make_deviation(user, status="draft")

    res = _upload(client, headers, deviation.id, name="notes.txt", content=b"hello")

    assert res.status_code == 400


def test_delete_removes_rows_and_files(client, headers, db_session, user, make_deviation):
    deviation_id = make_deviation(user, status="draft").id
    _upload(client, headers, deviation_id)
    db_session.expire_all()
    storage_key = db_session.query(DeviationFile).one().storage_key

    assert client.delete(f"/deviations/{deviation_id}", headers=headers).status_code == 204

    db_session.expire_all()
    assert db_session.get(Deviation, deviation_id) is None
    assert db_session.query(DeviationFile).count() == 0
    assert not os.path.exists(storage.object_path(storage_key))


def test_delete_succeeds_when_storage_cleanup_fails(
    client, headers, db_session, user, make_deviation, monkeypatch, caplog
):
    deviation_id = make_deviation(user, status="draft").id
    _upload(client, headers, deviation_id)

    def _broken(storage_key):
        raise OSError("disk unavailable")

    monkeypatch.setattr(storage, "delete_object", _broken)
    with caplog.at_level(logging.WARNING, logger="artqueue.services.storage"):
        res = client.delete(f"/deviations/{deviation_id}", headers=headers)

    assert res.status_code == 204
    db_session.expire_all()
    assert db_session.get(Deviation, deviation_id) is None
    assert "disk unavailable" in caplog.text


def test_delete_blocked_while_sale_processing(
    client, headers, user, make_deviation, make_preset, make_queue_item
):
    deviation = make_deviation(user)
    make_queue_item(user, deviation, make_preset(user), status="processing")

    assert client.delete(f"/deviations/{deviation.id}", headers=headers).status_code == 409


def test_delete_drops_finished_queue_rows(
    client, headers, db_session, user, make_deviation, make_preset, make_queue_item
):
    deviation = make_deviation(user)
    make_queue_item(user, deviation, make_preset(user), status="completed")

    assert client.delete(f"/deviations/{deviation.id}", headers=headers).status_code == 204
    db_session.expire_all()
    assert db_session.query(SaleQueueItem).count() == 0


def test_batch_delete_reports_each_item(
    client, headers, user, other_user, make_deviation, make_preset, make_queue_item
):
    mine = make_deviation(user)
    busy = make_deviation(user)
    make_queue_item(user, busy, make_preset(user), status="processing")
    theirs = make_deviation(other_user)

    res = client.post(
        "/deviations/batch-delete",
        json={"deviationIds": [mine.id, busy.id, theirs.id, "missing"]},
        headers=headers,
    )

    assert res.status_code == 200
    body = res.json()
    by_id = {result["id"]: result for result in body["results"]}
    assert by_id[mine.id] == {"id": mine.id, "ok": True}
    assert by_id[busy.id]["status"] == 409
    assert by_id[theirs.id] == {"id": theirs.id, "ok": False, "status": 403, "error": "forbidden"}
    assert by_id["missing"]["status"] == 404
    assert (body["deleted"], body["failed"]) == (1, 3)


def test_foreign_deviation_is_not_found(client, headers, other_user, make_deviation):
    deviation = make_deviation(other_user)

    assert client.get(f"/deviations/{deviation.id}", headers=headers).status_code == 404
    assert _upload(client, headers, deviation.id).status_code == 404


def test_patch_updates_draft(client, headers, user, make_deviation, make_automation):
    deviation = make_deviation(user, status="draft")
    automation = make_automation(user)

    res = client.patch(
        f"/deviations/{deviation.id}",
        json={"title": "  Dawn ", "description": "  ", "automationId": automation.id},
        headers=headers,
    )

    assert res.status_code == 200
    updated = res.json()["deviation"]
    assert updated["title"] == "Dawn"
    assert updated["description"] is None
    assert updated["automationId"] == automation.id


def test_patch_rejects_published_and_foreign_automation(
    client, headers, user, other_user, make_deviation, make_automation
):
    published = make_deviation(user)
    draft = make_deviation(user, status="draft")
    foreign = make_automation(other_user)

    locked = client.patch(f"/deviations/{published.id}", json={"title": "New"}, headers=headers)
    unlinked = client.patch(f"/deviations/{draft.id}", json={"automationId": foreign.id}, headers=headers)
    blank = client.patch(f"/deviations/{draft.id}", json={"title": None}, headers=headers)

    assert locked.status_code == 409
    assert locked.json()["error"] == "Cannot edit published deviation"
    assert unlinked.status_code == 404
    assert blank.status_code == 400


def test_schedule_sets_jittered_publish_time(client, headers, db_session, user, make_deviation):
    deviation = make_deviation(user, status="draft")
    _add_file(db_session, deviation)
    scheduled_at = _hours_from_now(2)

    res = client.post(f"/deviations/{deviation.id}/schedule", json={"scheduledAt": scheduled_at}, headers=headers)

    assert res.status_code == 200
    body = res.json()["deviation"]
    assert body["status"] == "scheduled"
    assert body["scheduledAt"] == scheduled_at
    assert 0 <= body["jitterSeconds"] <= deviations.MAX_JITTER_SEC
    delay = datetime.fromisoformat(body["actualPublishAt"]) - datetime.fromisoformat(body["scheduledAt"])
    assert delay == timedelta(seconds=body["jitterSeconds"])
    assert len(body["files"]) == 1


def test_schedule_guards(client, headers, db_session, user, make_deviation):
    empty = make_deviation(user, status="draft")
    published = make_deviation(user)
    _add_file(db_session, published)
    ready = make_deviation(user, status="draft")
    _add_file(db_session, ready)

    def _schedule(deviation, when):
        return client.post(f"/deviations/{deviation.id}/schedule", json={"scheduledAt": when}, headers=headers)

    no_file = _schedule(empty, _hours_from_now(2))
    wrong_status = _schedule(published, _hours_from_now(2))
    too_soon = _schedule(ready, _hours_from_now(0.5))
    too_far = _schedule(ready, _hours_from_now(24 * 366))

    assert no_file.status_code == 400
    assert no_file.json()["error"] == "Deviation must have at least one file"
    assert wrong_status.status_code == 409
    assert too_soon.json()["error"] == "Scheduled time must be at least 1 hour in the future"
    assert too_far.json()["error"] == "Cannot schedule more than 365 days in the future"
    assert client.get(f"/deviations/{ready.id}", headers=headers).json()["deviation"]["status"] == "draft"


def test_failed_deviation_can_be_scheduled_again(client, headers, db_session, user, make_deviation):
    deviation = make_deviation(user, status="failed", error_message="Upload rejected")
    _add_file(db_session, deviation)

    res = client.post(
        f"/deviations/{deviation.id}/schedule", json={"scheduledAt": _hours_from_now(3)}, headers=headers
    )

    assert res.json()["deviation"]["status"] == "scheduled"
    assert res.json()["deviation"]["errorMessage"] is None


def test_cancel_returns_to_draft(client, headers, db_session, user, make_deviation):
    deviation = make_deviation(user, status="draft")
    _add_file(db_session, deviation)
    client.post(f"/deviations/{deviation.id}/schedule", json={"scheduledAt": _hours_from_now(2)}, headers=headers)

    res = client.post(f"/deviations/{deviation.id}/cancel", headers=headers)
    again = client.post(f"/deviations/{deviation.id}/cancel", headers=headers)

    body = res.json()["deviation"]
    assert (body["status"], body["scheduledAt"], body["actualPublishAt"], body["jitterSeconds"]) == (
        "draft",
        None,
        None,
        0,
    )
    assert again.status_code == 409


def test_publish_now_hands_off_to_publisher(client, headers, db_session, user, make_deviation):
    deviation = make_deviation(user, status="draft")
    _add_file(db_session, deviation)
    published = make_deviation(user)

    res = client.post(f"/deviations/{deviation.id}/publish-now", headers=headers)
    refused = client.post(f"/deviations/{published.id}/publish-now", headers=headers)

    assert res.status_code == 200
    assert res.json()["deviation"]["status"] == "publishing"
    assert refused.status_code == 409


def test_reorder_files(client, headers, db_session, user, make_deviation):
    deviation = make_deviation(user, status="draft")
    first = _add_file(db_session, deviation, "a.png", sort_order=0).id
    second = _add_file(db_session, deviation, "b.png", sort_order=1).id
    third = _add_file(db_session, deviation, "c.png", sort_order=2).id

    res = client.patch(f"/deviations/{deviation.id}/files/reorder", json={"fileIds": [third, first]}, headers=headers)

    assert res.status_code == 200
    assert [item["id"] for item in res.json()["files"]] == [third, first, second]
    files = client.get(f"/deviations/{deviation.id}", headers=headers).json()["deviation"]["files"]
    assert [(item["id"], item["sortOrder"]) for item in files] == [(third, 0), (first, 1), (second, 2)]


def test_reorder_rejects_files_of_another_deviation(client, headers, db_session, user, make_deviation):
    deviation = make_deviation(user, status="draft")
    other = make_deviation(user, status="draft")
    stray = _add_file(db_session, other).id

    res = client.patch(f"/deviations/{deviation.id}/files/reorder", json={"fileIds": [stray]}, headers=headers)

    assert res.status_code == 400


def test_uploads_append_in_order(client, headers, user, make_deviation):
    deviation = make_deviation(user, status="draft")
    _upload(client, headers, deviation.id, name="one.png")
    _upload(client, headers, deviation.id, name="two.png")

    files = client.get(f"/deviations/{deviation.id}", headers=headers).json()["deviation"]["files"]

    assert [(item["originalFilename"], item["sortOrder"]) for item in files] == [("one.png", 0), ("two.png", 1)]


def test_batch_schedule_reports_each_item(client, headers, db_session, user, other_user, make_deviation):
    ready = make_deviation(user, status="draft")
    _add_file(db_session, ready)
    empty = make_deviation(user, status="draft")
    published = make_deviation(user)
    theirs = make_deviation(other_user, status="draft")

    res = client.post(
        "/deviations/batch-schedule",
        json={
            "deviationIds": [ready.id, empty.id, published.id, theirs.id, "missing", ready.id],
            "scheduledAt": _hours_from_now(4),
        },
        headers=headers,
    )

    assert res.status_code == 200
    body = res.json()
    by_id = {result["id"]: result for result in body["results"]}
    assert len(body["results"]) == 5
    assert by_id[ready.id] == {"id": ready.id, "ok": True}
    assert by_id[empty.id]["status"] == 400
    assert by_id[published.id]["status"] == 409
    assert by_id[theirs.id]["status"] == 403
    assert by_id["missing"]["status"] == 404
    assert (body["updated"], body["failed"]) == (1, 4)
    assert client.get(f"/deviations/{ready.id}", headers=headers).json()["deviation"]["status"] == "scheduled"


def test_batch_schedule_rejects_bad_time_for_whole_request(client, headers, db_session, user, make_deviation):
    deviation = make_deviation(user, status="draft")
    _add_file(db_session, deviation)

    res = client.post(
        "/deviations/batch-schedule",
        json={"deviationIds": [deviation.id], "scheduledAt": _hours_from_now(0.1)},
        headers=headers,
    )

    assert res.status_code == 400
    assert client.get(f"/deviations/{deviation.id}", headers=headers).json()["deviation"]["status"] == "draft"


def test_batch_reschedule_and_cancel(client, headers, db_session, user, make_deviation):
    scheduled = make_deviation(user, status="draft")
    _add_file(db_session, scheduled)
    client.post(f"/deviations/{scheduled.id}/schedule", json={"scheduledAt": _hours_from_now(2)}, headers=headers)
    draft = make_deviation(user, status="draft")
    later = _hours_from_now(48)

    moved = client.post(
        "/deviations/batch-reschedule",
        json={"deviationIds": [scheduled.id, draft.id], "scheduledAt": later},
        headers=headers,
    ).json()
    canceled = client.post(
        "/deviations/batch-cancel", json={"deviationIds": [scheduled.id, draft.id]}, headers=headers
    ).json()

    assert [result["ok"] for result in moved["results"]] == [True, False]
    assert moved["results"][1]["status"] == 409
    assert [result["ok"] for result in canceled["results"]] == [True, False]
    fetched = client.get(f"/deviations/{scheduled.id}", headers=headers).json()["deviation"]
    assert (fetched["status"], fetched["scheduledAt"]) == ("draft", None)


def test_rescheduled_time_is_stored(client, headers, db_session, user, make_deviation):
    deviation = make_deviation(user, status="draft")
    _add_file(db_session, deviation)
    client.post(f"/deviations/{deviation.id}/schedule", json={"scheduledAt": _hours_from_now(2)}, headers=headers)
    later = _hours_from_now(72)

    client.post("/deviations/batch-reschedule", json={"deviationIds": [deviation.id], "scheduledAt": later}, headers=headers)

    fetched = client.get(f"/deviations/{deviation.id}", headers=headers).json()["deviation"]
    assert (fetched["status"], fetched["scheduledAt"]) == ("scheduled", later)


@pytest.mark.unit
def test_schedule_time_is_normalized_to_naive_utc():
    now = datetime(2026, 3, 1, 12, 0)
    aware = datetime(2026, 3, 1, 16, 0, tzinfo=timezone(timedelta(hours=2)))

    assert deviations.check_schedule_time(aware, now) == datetime(2026, 3, 1, 14, 0)
    with pytest.raises(AppError) as exc:
        deviations.check_schedule_time(datetime(2026, 3, 1, 12, 59), now)
    assert exc.value.status_code == 400
