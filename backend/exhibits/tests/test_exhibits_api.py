import uuid

from exhibits import models


def _create(client, headers, **payload):
    payload.setdefault("title", "Rivers and Railways")
    resp = client.post("/api/exhibits", json=payload, headers=headers)
    assert resp.status_code == 201
    return resp.json()


def test_create_list_and_read_exhibit(client, auth_headers):
    headers, _ = auth_headers()
    exhibit = _create(client, headers, subtitle="1850-1900", styles={"theme": "dark"})

    assert exhibit["is_published"] is False
    assert exhibit["styles"] == {"theme": "dark"}

    listed = client.get("/api/exhibits", headers=headers).json()
    assert exhibit["uuid"] in [row["uuid"] for row in listed]
    read = client.get(f"/api/exhibits/{exhibit['uuid']}", headers=headers)
    assert read.status_code == 200
    assert read.json()["subtitle"] == "1850-1900"

    assert client.get(f"/api/exhibits/{uuid.uuid4()}", headers=headers).status_code == 404


def test_exhibit_title_is_required(client, auth_headers):
    headers, _ = auth_headers()
    assert client.post("/api/exhibits", json={"subtitle": "untitled"}, headers=headers).status_code == 422


def test_publish_cascades_to_records(client, auth_headers, search_index):
    headers, _ = auth_headers()
    exhibit_id = _create(client, headers)["uuid"]
    heading_id = client.post(f"/api/exhibits/{exhibit_id}/headings", json={"text": "Intro"}, headers=headers).json()["data"]
    grid_id = client.post(f"/api/exhibits/{exhibit_id}/grids", json={"title": "Gallery"}, headers=headers).json()["data"]
    item_id = client.post(
        f"/api/exhibits/{exhibit_id}/grids/{grid_id}/items", json={"title": "Photo"}, headers=headers
    ).json()["data"]

    resp = client.post(f"/api/exhibits/{exhibit_id}/publish", headers=headers)

    assert resp.status_code == 200
    assert resp.json()["published"] == 3
    assert resp.json()["failed"] == 0
    assert exhibit_id in search_index.documents
    assert heading_id in search_index.documents
    assert [entry["uuid"] for entry in search_index.documents[grid_id]["items"]] == [item_id]
    assert client.get(f"/api/exhibits/{exhibit_id}", headers=headers).json()["is_published"] is True


def test_suppress_removes_exhibit_and_records(client, auth_headers, search_index, db):
    headers, _ = auth_headers()
    exhibit_id = _create(client, headers)["uuid"]
    heading_id = client.post(f"/api/exhibits/{exhibit_id}/headings", json={"text": "Intro"}, headers=headers).json()["data"]
    client.post(f"/api/exhibits/{exhibit_id}/publish", headers=headers)

    resp = client.post(f"/api/exhibits/{exhibit_id}/suppress", headers=headers)

    assert resp.status_code == 200
    assert resp.json()["suppressed"] == 1
    assert search_index.documents == {}
    assert db.get(models.HeadingRecord, uuid.UUID(heading_id)).is_published is False


def test_record_changes_touch_the_exhibit(client, auth_headers, db):
    headers, _ = auth_headers()
    exhibit = _create(client, headers)
    client.post(f"/api/exhibits/{exhibit['uuid']}/headings", json={"text": "Intro"}, headers=headers)

    row = db.get(models.Exhibit, uuid.UUID(exhibit["uuid"]))
    assert row.updated > row.created


def test_reconcile_is_admin_only(client, auth_headers, search_index):
    headers, _ = auth_headers()
    admin_headers, _ = auth_headers(is_admin=True)
    exhibit_id = _create(client, headers)["uuid"]
    heading_id = client.post(f"/api/exhibits/{exhibit_id}/headings", json={"text": "Intro"}, headers=headers).json()["data"]
    client.post(f"/api/exhibits/{exhibit_id}/publish", headers=headers)
    search_index.documents.pop(heading_id)

    assert client.post(f"/api/exhibits/{exhibit_id}/reconcile", headers=headers).status_code == 403

    report = client.post(f"/api/exhibits/{exhibit_id}/reconcile", params={"repair": "true"}, headers=admin_headers)
    assert report.status_code == 200
    findings = report.json()["findings"]
    assert [(f["record_id"], f["problem"], f["repaired"]) for f in findings] == [
        (heading_id, "missing_from_index", True)
    ]
    assert heading_id in search_index.documents


def test_recycle_bin_endpoints(client, auth_headers):
    headers, _ = auth_headers()
    admin_headers, _ = auth_headers(is_admin=True)
    exhibit_id = _create(client, headers)["uuid"]
    keep = client.post(f"/api/exhibits/{exhibit_id}/headings", json={"text": "Keep"}, headers=headers).json()["data"]
    purge = client.post(f"/api/exhibits/{exhibit_id}/headings", json={"text": "Purge"}, headers=headers).json()["data"]
    client.delete(f"/api/exhibits/{exhibit_id}/headings/{keep}", headers=headers)
    client.delete(f"/api/exhibits/{exhibit_id}/headings/{purge}", headers=headers)

    recycled = client.get("/api/recycle", params={"exhibit_id": exhibit_id}, headers=headers).json()["data"]
    assert sorted(row["uuid"] for row in recycled) == sorted([keep, purge])
    assert {row["type"] for row in recycled} == {"heading"}

    assert client.put(f"/api/recycle/{exhibit_id}/{keep}", params={"type": "heading"}, headers=headers).status_code == 204
    assert client.put(f"/api/recycle/{exhibit_id}/{keep}", params={"type": "nope"}, headers=headers).status_code == 400
    restored = client.get(f"/api/exhibits/{exhibit_id}/headings/{keep}", headers=headers).json()["data"]
    assert restored["is_published"] is False

    assert client.delete(f"/api/recycle/{exhibit_id}/{purge}", params={"type": "heading"}, headers=headers).status_code == 403
    assert client.delete(f"/api/recycle/{exhibit_id}/{purge}", params={"type": "heading"}, headers=admin_headers).status_code == 204
    assert client.post("/api/recycle", params={"exhibit_id": exhibit_id}, headers=admin_headers).status_code == 204
    assert client.get("/api/recycle", params={"exhibit_id": exhibit_id}, headers=headers).json()["data"] == []


def test_metrics_endpoint(client):
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert b"request_count" in resp.content


def test_update_exhibit(client, auth_headers):
    headers, _ = auth_headers()
    exhibit_id = _create(client, headers)["uuid"]

    resp = client.put(f"/api/exhibits/{exhibit_id}", json={"title": "Canals", "description": "Waterways"}, headers=headers)

    assert resp.status_code == 200
    assert resp.json() == {"message": "Exhibit record updated"}
    read = client.get(f"/api/exhibits/{exhibit_id}", headers=headers).json()
    assert read["title"] == "Canals"
    assert read["description"] == "Waterways"
    assert client.put(f"/api/exhibits/{exhibit_id}", json={"title": ""}, headers=headers).status_code == 400


def test_update_with_publish_flag_republishes_exhibit(client, auth_headers, search_index, db):
    headers, _ = auth_headers()
    exhibit_id = _create(client, headers)["uuid"]
    client.post(f"/api/exhibits/{exhibit_id}/publish", headers=headers)

    resp = client.put(f"/api/exhibits/{exhibit_id}", json={"title": "Canals", "is_published": True}, headers=headers)

    assert resp.status_code == 200
    # the test worker runs tasks eagerly, so the delayed republish has already happened
    assert search_index.documents[exhibit_id]["title"] == "Canals"
    job = db.query(models.RepublishJob).filter_by(record_id=uuid.UUID(exhibit_id)).one()
    assert job.status == "completed"


def test_delete_exhibit_requires_empty_exhibit(client, auth_headers, db):
    headers, user = auth_headers()
    exhibit_id = _create(client, headers)["uuid"]
    heading_id = client.post(f"/api/exhibits/{exhibit_id}/headings", json={"text": "Intro"}, headers=headers).json()["data"]

    refused = client.delete(f"/api/exhibits/{exhibit_id}", headers=headers)
    assert refused.status_code == 400
    assert refused.json()["message"].startswith("Cannot delete exhibit")

    assert client.delete(f"/api/exhibits/{exhibit_id}/headings/{heading_id}", headers=headers).status_code == 204
    assert client.delete(f"/api/exhibits/{exhibit_id}", headers=headers).status_code == 204
    assert client.get(f"/api/exhibits/{exhibit_id}", headers=headers).status_code == 404
    assert (
        db.query(models.AuditLog)
        .filter_by(user_id=user.id, action="delete_exhibit", target_id=uuid.UUID(exhibit_id))
        .count()
        == 1
    )


def test_exhibit_edit_lock_and_unlock(client, auth_headers):
    h1, u1 = auth_headers()
    h2, _ = auth_headers()
    admin_headers, _ = auth_headers(is_admin=True)
    exhibit_id = _create(client, h1)["uuid"]
    url = f"/api/exhibits/{exhibit_id}"

    first = client.get(url, params={"type": "edit"}, headers=h1)
    assert first.status_code == 200
    assert first.json()["data"]["lock"] == "acquired"
    second = client.get(url, params={"type": "edit"}, headers=h2).json()["data"]
    assert second["lock"] == "conflict"
    assert second["record"]["locked_by_user"] == str(u1.id)

    assert client.post(f"{url}/unlock", headers=h2).status_code == 400
    assert client.post(f"{url}/unlock", params={"force": "true"}, headers=h2).status_code == 400
    assert client.post(f"{url}/unlock", params={"force": "true"}, headers=admin_headers).status_code == 200
    assert client.get(url, params={"type": "edit"}, headers=h2).json()["data"]["lock"] == "acquired"


def test_reorder_exhibits(client, auth_headers):
    headers, _ = auth_headers()
    first = _create(client, headers, title="First")["uuid"]
    second = _create(client, headers, title="Second")["uuid"]

    resp = client.post(
        "/api/exhibits/reorder",
        json=[{"uuid": second, "order": 0}, {"uuid": first, "order": 1}],
        headers=headers,
    )

    assert resp.status_code == 200
    assert resp.json()["reordered"] == 2
    listed = [row["uuid"] for row in client.get("/api/exhibits", headers=headers).json()]
    assert listed == [second, first]
    assert client.post("/api/exhibits/reorder", json=[], headers=headers).status_code == 400
