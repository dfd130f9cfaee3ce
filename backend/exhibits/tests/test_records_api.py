import uuid

from exhibits import models


def _exhibit(client, headers, publish=False):
    resp = client.post("/api/exhibits", json={"title": "Maps of the Region"}, headers=headers)
    assert resp.status_code == 201
    exhibit_id = resp.json()["uuid"]
    if publish:
        assert client.post(f"/api/exhibits/{exhibit_id}/publish", headers=headers).status_code == 200
    return exhibit_id


def test_requires_authentication(client):
    resp = client.post(f"/api/exhibits/{uuid.uuid4()}/headings", json={"text": "Intro"})
    assert resp.status_code == 401


def test_heading_crud_flow(client, auth_headers, db):
    headers, user = auth_headers()
    exhibit_id = _exhibit(client, headers)

    created = client.post(f"/api/exhibits/{exhibit_id}/headings", json={"text": "Intro"}, headers=headers)
    assert created.status_code == 201
    heading_id = created.json()["data"]

    read = client.get(f"/api/exhibits/{exhibit_id}/headings/{heading_id}", headers=headers)
    assert read.status_code == 200
    body = read.json()["data"]
    assert body["text"] == "Intro"
    assert body["order"] == 0
    assert body["styles"] == {}
    assert body["is_locked"] is False

    updated = client.put(
        f"/api/exhibits/{exhibit_id}/headings/{heading_id}",
        json={"text": "Introduction", "styles": {"color": "red"}},
        headers=headers,
    )
    assert updated.status_code == 200
    listed = client.get(f"/api/exhibits/{exhibit_id}/headings", headers=headers).json()["data"]
    assert [(row["text"], row["styles"]) for row in listed] == [("Introduction", {"color": "red"})]

    assert client.delete(f"/api/exhibits/{exhibit_id}/headings/{heading_id}", headers=headers).status_code == 204
    assert client.delete(f"/api/exhibits/{exhibit_id}/headings/{heading_id}", headers=headers).status_code == 204
    gone = client.get(f"/api/exhibits/{exhibit_id}/headings/{heading_id}", headers=headers)
    assert gone.status_code == 200
    assert "data" not in gone.json()

    actions = {row.action for row in db.query(models.AuditLog).filter(models.AuditLog.user_id == user.id)}
    assert {"create_heading", "update_heading", "delete_heading"} <= actions


def test_validation_errors_are_returned_verbatim(client, auth_headers):
    headers, _ = auth_headers()
    exhibit_id = _exhibit(client, headers)

    resp = client.post(f"/api/exhibits/{exhibit_id}/headings", json={"subtext": "x"}, headers=headers)
    assert resp.status_code == 400
    errors = resp.json()["message"]
    assert errors[0]["field"] == "text"

    resp = client.post(f"/api/exhibits/{exhibit_id}/grids", json={"columns": 40}, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["message"][0]["field"] == "columns"

    resp = client.post("/api/exhibits/not-a-uuid/headings", json={"text": "x"}, headers=headers)
    assert resp.status_code == 400


def test_open_for_edit_and_unlock(client, auth_headers):
    h1, u1 = auth_headers()
    h2, _ = auth_headers()
    admin_headers, _ = auth_headers(is_admin=True)
    exhibit_id = _exhibit(client, h1)
    item_id = client.post(f"/api/exhibits/{exhibit_id}/items", json={"title": "Map"}, headers=h1).json()["data"]
    url = f"/api/exhibits/{exhibit_id}/items/{item_id}"

    first = client.get(url, params={"type": "edit"}, headers=h1).json()["data"]
    second = client.get(url, params={"type": "edit"}, headers=h2).json()["data"]
    assert first["lock"] == "acquired"
    assert second["lock"] == "conflict"
    assert second["record"]["locked_by_user"] == str(u1.id)

    assert client.post(f"{url}/unlock", headers=h2).status_code == 400
    assert client.post(f"{url}/unlock", params={"force": "true"}, headers=h2).status_code == 400
    assert client.post(f"{url}/unlock", params={"force": "true"}, headers=admin_headers).status_code == 200
    assert client.get(url, params={"type": "edit"}, headers=h2).json()["data"]["lock"] == "acquired"


def test_unlock_is_scoped_to_the_exhibit_in_the_url(client, auth_headers, db):
    headers, user = auth_headers()
    exhibit_id = _exhibit(client, headers)
    other_exhibit_id = _exhibit(client, headers)
    item_id = client.post(f"/api/exhibits/{exhibit_id}/items", json={"title": "Map"}, headers=headers).json()["data"]
    assert client.get(
        f"/api/exhibits/{exhibit_id}/items/{item_id}", params={"type": "edit"}, headers=headers
    ).json()["data"]["lock"] == "acquired"

    resp = client.post(f"/api/exhibits/{other_exhibit_id}/items/{item_id}/unlock", headers=headers)

    assert resp.status_code == 400
    item = db.get(models.ItemRecord, uuid.UUID(item_id))
    assert item.is_locked is True
    assert item.locked_by_user == user.id


def test_publish_requires_published_exhibit(client, auth_headers, search_index):
    headers, _ = auth_headers()
    exhibit_id = _exhibit(client, headers)
    heading_id = client.post(f"/api/exhibits/{exhibit_id}/headings", json={"text": "Intro"}, headers=headers).json()["data"]

    resp = client.post(f"/api/exhibits/{exhibit_id}/headings/{heading_id}/publish", headers=headers)
    assert resp.status_code == 400
    assert resp.json() == {
        "status": False,
        "message": "Unable to publish heading. Exhibit must be published first",
    }
    assert heading_id not in search_index.documents


def test_update_with_publish_flag_republishes(client, auth_headers, db, search_index):
    headers, _ = auth_headers()
    exhibit_id = _exhibit(client, headers, publish=True)
    heading_id = client.post(f"/api/exhibits/{exhibit_id}/headings", json={"text": "Intro"}, headers=headers).json()["data"]
    assert client.post(f"/api/exhibits/{exhibit_id}/headings/{heading_id}/publish", headers=headers).status_code == 200

    resp = client.put(
        f"/api/exhibits/{exhibit_id}/headings/{heading_id}",
        json={"text": "Edited", "is_published": "true", "is_locked": False},
        headers=headers,
    )
    assert resp.status_code == 200

    # the broker runs eagerly under test, so the delayed publish has already happened
    assert search_index.documents[heading_id]["text"] == "Edited"
    row = db.get(models.HeadingRecord, uuid.UUID(heading_id))
    assert row.is_published is True
    job = db.query(models.RepublishJob).filter(models.RepublishJob.record_id == row.uuid).one()
    assert job.status == "completed"


def test_grid_items_are_nested_under_their_grid(client, auth_headers, search_index):
    headers, _ = auth_headers()
    exhibit_id = _exhibit(client, headers, publish=True)
    grid_id = client.post(f"/api/exhibits/{exhibit_id}/grids", json={"title": "Gallery"}, headers=headers).json()["data"]
    base = f"/api/exhibits/{exhibit_id}/grids/{grid_id}/items"

    item_ids = [
        client.post(base, json={"title": f"Photo {n}"}, headers=headers).json()["data"]
        for n in range(2)
    ]
    listed = client.get(base, headers=headers).json()["data"]
    assert [row["order"] for row in listed] == [0, 1]

    blocked = client.post(f"{base}/{item_ids[0]}/publish", headers=headers)
    assert blocked.status_code == 400
    assert blocked.json()["message"] == "Unable to publish grid item. Grid must be published first"

    assert client.post(f"/api/exhibits/{exhibit_id}/grids/{grid_id}/publish", headers=headers).status_code == 200
    assert client.post(f"{base}/{item_ids[0]}/publish", headers=headers).status_code == 200
    assert [entry["uuid"] for entry in search_index.documents[grid_id]["items"]] == [item_ids[0]]

    reorder = client.post(
        f"{base}/reorder",
        json=[{"uuid": item_ids[0], "order": 1}, {"uuid": item_ids[1], "order": 0}],
        headers=headers,
    )
    assert reorder.status_code == 200
    assert reorder.json()["failed"] == 0
    listed = client.get(base, headers=headers).json()["data"]
    assert [row["uuid"] for row in listed] == [item_ids[1], item_ids[0]]


def test_timeline_items_require_a_date(client, auth_headers):
    headers, _ = auth_headers()
    exhibit_id = _exhibit(client, headers)
    timeline_id = client.post(f"/api/exhibits/{exhibit_id}/timelines", json={"title": "Years"}, headers=headers).json()["data"]
    base = f"/api/exhibits/{exhibit_id}/timelines/{timeline_id}/items"

    assert client.post(base, json={"title": "Founding"}, headers=headers).status_code == 400
    assert client.post(base, json={"title": "Founding", "date": "1887"}, headers=headers).status_code == 201


def test_mixed_reorder_counts_failures(client, auth_headers):
    headers, _ = auth_headers()
    exhibit_id = _exhibit(client, headers)
    heading_id = client.post(f"/api/exhibits/{exhibit_id}/headings", json={"text": "Intro"}, headers=headers).json()["data"]
    grid_id = client.post(f"/api/exhibits/{exhibit_id}/grids", json={"title": "Gallery"}, headers=headers).json()["data"]
    grid_item_id = client.post(
        f"/api/exhibits/{exhibit_id}/grids/{grid_id}/items", json={"title": "Photo"}, headers=headers
    ).json()["data"]
    missing_id = str(uuid.uuid4())

    resp = client.post(
        f"/api/exhibits/{exhibit_id}/reorder",
        json=[
            {"type": "grid", "uuid": grid_id, "order": 0},
            {"type": "heading", "uuid": heading_id, "order": 1},
            {"type": "griditem", "uuid": grid_item_id, "order": 3, "grid_id": grid_id},
            {"type": "item", "uuid": missing_id, "order": 2},
        ],
        headers=headers,
    )
    assert resp.status_code == 400
    assert resp.json()["reordered"] == 3
    assert resp.json()["failed"] == 1
    assert resp.json()["failures"] == [missing_id]

    headings = client.get(f"/api/exhibits/{exhibit_id}/headings", headers=headers).json()["data"]
    assert headings[0]["order"] == 1


def test_mixed_reorder_rejects_malformed_payload(client, auth_headers):
    headers, _ = auth_headers()
    exhibit_id = _exhibit(client, headers)
    url = f"/api/exhibits/{exhibit_id}/reorder"

    assert client.post(url, json=[], headers=headers).status_code == 400
    assert client.post(url, json=[{"type": "carousel", "uuid": "x", "order": 0}], headers=headers).status_code == 400
    assert client.post(url, json=[{"type": "griditem", "uuid": "x", "order": 0}], headers=headers).status_code == 400
