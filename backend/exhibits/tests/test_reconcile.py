import uuid

from exhibits import models
from exhibits.search import SearchIndex
from exhibits.services.reconcile import reconcile_publication


def _problems(report):
    return {(finding.kind, str(finding.record_id), finding.problem) for finding in report.findings}


def test_consistent_state_has_no_findings(db, make_exhibit, make_coordinator, search_index):
    exhibit = make_exhibit()
    search_index.index_document(exhibit.uuid, {"title": exhibit.title})
    exhibit.is_published = True
    db.commit()
    headings = make_coordinator("heading")
    heading = headings.create(exhibit.uuid, {"text": "Intro"}).data
    headings.publish(exhibit.uuid, heading)

    report = reconcile_publication(db, search_index, exhibit_id=exhibit.uuid)

    assert report.checked == 2
    assert report.findings == []


def test_detects_and_repairs_drift(db, make_exhibit, make_coordinator, search_index):
    exhibit = make_exhibit(published=True)
    search_index.index_document(exhibit.uuid, {"title": exhibit.title})
    headings = make_coordinator("heading")
    missing = headings.create(exhibit.uuid, {"text": "Missing"}).data
    stale = headings.create(exhibit.uuid, {"text": "Stale"}).data
    headings.publish(exhibit.uuid, missing)

    # drift: index lost one document and kept another the store no longer publishes
    search_index.documents.pop(missing)
    search_index.documents[stale] = {"text": "Stale"}

    report = reconcile_publication(db, search_index, exhibit_id=exhibit.uuid)
    assert _problems(report) == {
        ("heading", missing, "missing_from_index"),
        ("heading", stale, "stale_in_index"),
    }
    assert not any(finding.repaired for finding in report.findings)

    repaired = reconcile_publication(db, search_index, exhibit_id=exhibit.uuid, repair=True)
    assert all(finding.repaired for finding in repaired.findings)
    assert search_index.documents[missing]["text"] == "Missing"
    assert stale not in search_index.documents
    assert reconcile_publication(db, search_index, exhibit_id=exhibit.uuid).findings == []


def test_nested_items_are_checked_inside_their_container(db, make_exhibit, make_coordinator, search_index):
    exhibit = make_exhibit(published=True)
    search_index.index_document(exhibit.uuid, {"title": exhibit.title})
    grids = make_coordinator("grid")
    grid_items = make_coordinator("grid_item")
    grid = grids.create(exhibit.uuid, {"title": "Gallery"}).data
    item = grid_items.create(exhibit.uuid, {"title": "Photo"}, grid).data
    grids.publish(exhibit.uuid, grid)
    grid_items.publish(exhibit.uuid, item, grid)
    search_index.documents[grid]["items"] = []

    report = reconcile_publication(db, search_index, exhibit_id=exhibit.uuid, repair=True)

    assert _problems(report) == {("grid_item", item, "missing_from_index")}
    assert report.findings[0].repaired is True
    assert [entry["uuid"] for entry in search_index.documents[grid]["items"]] == [item]


def test_item_published_under_unpublished_grid_is_cleared(db, make_exhibit, make_coordinator, search_index):
    exhibit = make_exhibit(published=True)
    search_index.index_document(exhibit.uuid, {"title": exhibit.title})
    grid = make_coordinator("grid").create(exhibit.uuid, {"title": "Gallery"}).data
    item = make_coordinator("grid_item").create(exhibit.uuid, {"title": "Photo"}, grid).data
    row = db.get(models.GridItemRecord, uuid.UUID(item))
    row.is_published = True
    db.commit()

    report = reconcile_publication(db, search_index, exhibit_id=exhibit.uuid, repair=True)

    assert _problems(report) == {("grid_item", item, "missing_from_index")}
    db.expire_all()
    assert db.get(models.GridItemRecord, uuid.UUID(item)).is_published is False


def test_unpublished_exhibit_with_document_is_stale(db, make_exhibit, search_index):
    exhibit = make_exhibit(published=False)
    search_index.index_document(exhibit.uuid, {"title": exhibit.title})

    report = reconcile_publication(db, search_index, exhibit_id=exhibit.uuid)
    assert _problems(report) == {("exhibit", str(exhibit.uuid), "stale_in_index")}


def test_skipped_without_search_cluster(db, make_exhibit):
    make_exhibit(published=True)
    report = reconcile_publication(db, SearchIndex(client=None))
    assert report.checked == 0
    assert report.findings == []
