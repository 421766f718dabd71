import io

import pytest
from PIL import Image

from fabtrack.config import settings
from fabtrack.errors import Unavailable
from fabtrack.main import app, get_dispatcher

from conftest import headers

DAY = "2025-01-05"


def png_bytes(size=(200, 100)):
    buf = io.BytesIO()
    Image.new("RGB", size, color=(255, 255, 255)).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def loom(client):
    m = client.post("/api/machines", json={"machineNumber": "L-01", "type": "double"}, headers=headers())
    w = client.post("/api/workers", json={"name": "Ravi"}, headers=headers())
    assert m.status_code == 201 and w.status_code == 201
    return m.json()["data"], w.json()["data"]


@pytest.fixture
def panel(client):
    r = client.post("/api/screenshots/templates", headers=headers(), json={
        "templateName": "Panel A",
        "isDefault": True,
        "fieldMappings": [
            {"fieldName": "machineName", "x": 0, "y": 0, "width": 50, "height": 50},
            {"fieldName": "productionLength", "x": 50, "y": 0, "width": 60, "height": 50,
             "preprocessingHint": "number"},
        ],
    })
    assert r.status_code == 201
    return r.json()["data"]


def upload(client, template_id, machine_id, content=None, filename="shot.png", content_type="image/png", **form):
    data = {"templateId": str(template_id), "machineId": str(machine_id), "shift": "day", "date": DAY}
    data.update(form)
    files = {"screenshot": (filename, content if content is not None else png_bytes(), content_type)}
    return client.post("/api/screenshots/upload", data=data, files=files, headers=headers())


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_company_header_is_required(client):
    r = client.get("/api/machines")
    assert r.status_code == 400
    assert r.json()["category"] == "validation"
    assert r.json()["success"] is False


def test_token_is_checked_when_configured(client, monkeypatch):
    monkeypatch.setattr(settings, "API_TOKEN", "secret")
    assert client.get("/api/machines", headers=headers()).status_code == 401
    ok = client.get("/api/machines", headers={**headers(), "X-Token": "secret"})
    assert ok.status_code == 200


def test_machine_conflict_and_not_found(client, loom):
    machine, _ = loom
    dup = client.post("/api/machines", json={"machineNumber": "L-01", "type": "single"}, headers=headers())
    assert dup.status_code == 409
    assert dup.json()["category"] == "conflict"

    other = client.get(f"/api/machines/{machine['id']}", headers=headers("globex"))
    assert other.status_code == 404
    assert other.json()["category"] == "not_found"
    assert client.get("/api/machines", headers=headers("globex")).json()["count"] == 0


def test_production_entry_updates_summary(client, loom):
    machine, worker = loom
    body = {"machine": machine["id"], "worker": worker["id"], "productionDate": DAY, "shift": "day",
            "efficiency": 80, "meter": 100, "runtime": 600, "cfm": 18,
            "previousReading": 100, "currentReading": 150}
    r = client.post("/api/production", json=body, headers=headers())
    assert r.status_code == 201
    record = r.json()["data"]
    assert record["machine"]["machineNumber"] == "L-01"
    assert record["worker"]["name"] == "Ravi"

    night = {"machine": machine["id"], "worker": worker["id"], "productionDate": DAY, "shift": "night",
             "efficiency": 60, "meter": 50}
    assert client.post("/api/production", json=night, headers=headers()).status_code == 201

    summary = client.get("/api/production/summary/daily", params={"date": DAY}, headers=headers()).json()["data"]
    assert summary["dayMeter"] == 200
    assert summary["nightMeter"] == 100
    assert summary["totalEfficiency"] == pytest.approx((14 * 80 + 10 * 60) / 24)
    assert summary["totalUnitsConsumed"] == 50
    assert summary["avgCFM"] == 18

    detail = client.get(f"/api/production/summary/{DAY}", headers=headers()).json()["data"]
    assert len(detail["productions"]) == 2
    assert detail["dailyProductions"][0]["unitsConsumed"] == 50

    one = client.get(f"/api/production/{record['id']}", headers=headers()).json()["data"]
    assert one["dailyData"]["currentReading"] == 150

    upd = client.put(f"/api/production/{record['id']}", json={"meter": 120}, headers=headers())
    assert upd.status_code == 200
    summary = client.get("/api/production/summary/daily", params={"date": DAY}, headers=headers()).json()["data"]
    assert summary["dayMeter"] == 240

    assert client.delete(f"/api/production/{record['id']}", headers=headers()).status_code == 200
    summary = client.get("/api/production/summary/daily", params={"date": DAY}, headers=headers()).json()["data"]
    assert summary["dayMeter"] == 0
    assert summary["nightMeter"] == 100


def test_resubmission_keeps_one_record(client, loom):
    machine, worker = loom
    base = {"machine": machine["id"], "worker": worker["id"], "productionDate": DAY, "shift": "day"}
    client.post("/api/production", json={**base, "meter": 10}, headers=headers())
    client.post("/api/production", json={**base, "meter": 30}, headers=headers())
    rows = client.get("/api/production", params={"startDate": DAY, "endDate": DAY}, headers=headers()).json()
    assert rows["count"] == 1
    assert rows["data"][0]["meter"] == 30


def test_production_validation_errors(client, loom):
    machine, worker = loom
    bad = {"machine": machine["id"], "worker": worker["id"], "shift": "day", "efficiency": 150}
    r = client.post("/api/production", json=bad, headers=headers())
    assert r.status_code == 400
    assert r.json()["category"] == "validation"
    assert any(e["field"] == "efficiency" for e in r.json()["errors"])

    r = client.post("/api/production", json={**bad, "efficiency": 50, "productionDate": "not a date"},
                    headers=headers())
    assert r.status_code == 400
    assert r.json()["errors"][0]["field"] == "productionDate"


def test_production_for_foreign_machine_is_not_found(client, loom):
    machine, worker = loom
    body = {"machine": machine["id"], "worker": worker["id"], "productionDate": DAY, "shift": "day"}
    r = client.post("/api/production", json=body, headers=headers("globex"))
    assert r.status_code == 404


def test_missing_summary_is_not_an_error(client):
    r = client.get("/api/production/summary/daily", params={"date": DAY}, headers=headers())
    assert r.status_code == 200
    assert r.json()["data"] is None


def test_resync_endpoint(client, loom):
    machine, worker = loom
    body = {"machine": machine["id"], "worker": worker["id"], "productionDate": DAY, "shift": "day", "meter": 5}
    client.post("/api/production", json=body, headers=headers())
    r = client.post(f"/api/production/summary/{DAY}/resync", headers=headers())
    assert r.status_code == 200
    assert r.json()["data"]["totalMeter"] == 10


def test_analytics_and_exports(client, loom):
    machine, worker = loom
    body = {"machine": machine["id"], "worker": worker["id"], "productionDate": DAY, "shift": "day",
            "efficiency": 75, "meter": 70}
    client.post("/api/production", json=body, headers=headers())
    rng = {"startDate": "2025-01-01", "endDate": "2025-01-07"}

    w = client.get(f"/api/production/analytics/worker/{worker['id']}", params=rng, headers=headers())
    assert w.status_code == 200
    assert w.json()["data"]["overall"]["totalMeter"] == 140

    m = client.get(f"/api/production/analytics/machine/{machine['id']}", params=rng, headers=headers())
    assert m.json()["data"]["dailyData"][0]["dayShift"]["meterPerHour"] == pytest.approx(10)

    e = client.get("/api/production/analytics/electricity", params=rng, headers=headers())
    assert e.json()["data"]["overall"]["daysTracked"] == 1

    backwards = client.get("/api/production/analytics/electricity",
                           params={"startDate": "2025-01-07", "endDate": "2025-01-01"}, headers=headers())
    assert backwards.status_code == 400

    listed = client.get("/api/production/summaries", params=rng, headers=headers()).json()
    assert [s["date"] for s in listed] == [DAY]

    csv = client.get("/api/production/summaries.csv", params=rng, headers=headers())
    assert csv.headers["content-type"].startswith("text/csv")
    assert "totalMeter" in csv.text.splitlines()[0]

    xlsx = client.get("/api/production/summaries.xlsx", params=rng, headers=headers())
    assert xlsx.status_code == 200
    assert xlsx.content[:2] == b"PK"


def test_templates_api(client, panel):
    assert panel["isDefault"] is True
    assert panel["fieldMappings"][1]["width"] == 60

    clamped = client.post("/api/screenshots/templates", headers=headers(), json={
        "templateName": "Panel B", "isDefault": True,
        "fieldMappings": [{"fieldName": "h1", "x": -10, "y": 0, "width": 150, "height": 10}],
    }).json()["data"]
    assert clamped["fieldMappings"][0]["x"] == 0
    assert clamped["fieldMappings"][0]["width"] == 100

    default = client.get("/api/screenshots/templates/default", headers=headers()).json()["data"]
    assert default["templateName"] == "Panel B"
    listed = client.get("/api/screenshots/templates", headers=headers()).json()["data"]
    assert [t["isDefault"] for t in listed].count(True) == 1

    dup = client.post("/api/screenshots/templates", headers=headers(), json={"templateName": "Panel A"})
    assert dup.status_code == 409
    assert client.get("/api/screenshots/templates/default", headers=headers("globex")).status_code == 404


def test_upload_extract_verify(client, loom, panel, fake_reader):
    machine, _ = loom
    fake_reader.results.extend([("LOOM 1", 90), ("2,450", 10)])

    r = upload(client, panel["id"], machine["id"])
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "processing"
    record_id = r.json()["data"]["recordId"]

    status = client.get(f"/api/screenshots/status/{record_id}", headers=headers()).json()["data"]
    assert status["status"] == "completed"
    assert status["extractedData"] == {"machineName": "LOOM 1", "productionLength": "2450"}
    assert status["overallConfidence"] == pytest.approx(50)
    assert status["manuallyVerified"] is False

    listed = client.get("/api/screenshots/records", params={"date": DAY}, headers=headers()).json()["data"]
    assert [x["id"] for x in listed] == [record_id]

    v = client.put(f"/api/screenshots/verify/{record_id}", headers={**headers(), "X-User-Id": "sup"},
                   json={"extractedData": {"machineName": "LOOM 1", "productionLength": "2455"}})
    assert v.status_code == 200
    assert v.json()["data"]["manuallyVerified"] is True
    assert v.json()["data"]["verifiedBy"] == "sup"

    assert client.get(f"/api/screenshots/status/{record_id}", headers=headers("globex")).status_code == 404
    assert client.delete(f"/api/screenshots/records/{record_id}", headers=headers()).status_code == 200
    assert client.get(f"/api/screenshots/status/{record_id}", headers=headers()).status_code == 404


def test_low_confidence_upload_goes_to_review(client, loom, panel, fake_reader):
    machine, _ = loom
    fake_reader.results.extend([("??", 10), ("1", 20)])
    record_id = upload(client, panel["id"], machine["id"]).json()["data"]["recordId"]
    status = client.get(f"/api/screenshots/status/{record_id}", headers=headers()).json()["data"]
    assert status["status"] == "manual_review"


def test_upload_rejects_non_images(client, loom, panel):
    machine, _ = loom
    r = upload(client, panel["id"], machine["id"], content=b"hello", filename="notes.txt", content_type="text/plain")
    assert r.status_code == 400
    r = upload(client, panel["id"], machine["id"], shift="evening")
    assert r.status_code == 400


def test_upload_size_limit(client, loom, panel, monkeypatch):
    machine, _ = loom
    monkeypatch.setattr(settings, "MAX_UPLOAD_MB", 0)
    assert upload(client, panel["id"], machine["id"]).status_code == 413


def test_upload_with_unknown_template(client, loom):
    machine, _ = loom
    assert upload(client, 9999, machine["id"]).status_code == 404


def test_upload_when_queue_is_full(client, loom, panel):
    class FullDispatcher:
        def submit(self, company_id, record_id):
            raise Unavailable("Extraction queue is full, retry shortly")

    machine, _ = loom
    app.dependency_overrides[get_dispatcher] = lambda: FullDispatcher()
    r = upload(client, panel["id"], machine["id"])
    assert r.status_code == 503
    assert r.json()["category"] == "unavailable"

    records = client.get("/api/screenshots/records", headers=headers()).json()["data"]
    assert records[0]["status"] == "failed"


def test_upload_when_scheduler_is_down(client, loom, panel):
    class StoppedDispatcher:
        def submit(self, company_id, record_id):
            raise RuntimeError("Scheduler is not running")

    machine, _ = loom
    app.dependency_overrides[get_dispatcher] = lambda: StoppedDispatcher()
    r = upload(client, panel["id"], machine["id"])
    assert r.status_code == 503
    assert r.json()["category"] == "unavailable"

    [record] = client.get("/api/screenshots/records", headers=headers()).json()["data"]
    assert record["status"] == "failed"
    assert record["processingError"] == "Scheduler is not running"


def test_verify_accepts_numeric_corrections(client, loom, panel, fake_reader):
    machine, _ = loom
    fake_reader.results.extend([("??", 5), ("", 0)])
    record_id = upload(client, panel["id"], machine["id"]).json()["data"]["recordId"]

    v = client.put(f"/api/screenshots/verify/{record_id}", headers=headers(),
                   json={"extractedData": {"machineName": "L-01", "productionLength": 2455, "h1": None}})
    assert v.status_code == 200
    data = v.json()["data"]
    assert data["status"] == "completed"
    assert data["extractedData"] == {"machineName": "L-01", "productionLength": 2455, "h1": None}


def test_worker_mapping_api(client, loom):
    _, worker = loom
    r = client.post("/api/screenshots/worker-mappings", headers=headers(), json={
        "displayName": "ravi k", "systemName": "Ravi", "workerId": worker["id"], "aliases": ["rk"],
    })
    assert r.status_code == 201
    assert r.json()["data"]["displayName"] == "RAVI K"

    resolved = client.get("/api/screenshots/worker-mappings/resolve", params={"name": "RK"}, headers=headers())
    assert resolved.json()["data"]["systemName"] == "Ravi"
    unknown = client.get("/api/screenshots/worker-mappings/resolve", params={"name": "Nobody"}, headers=headers())
    assert unknown.json()["data"]["systemName"] == "Nobody"

    mapping_id = r.json()["data"]["id"]
    assert client.delete(f"/api/screenshots/worker-mappings/{mapping_id}", headers=headers("globex")).status_code == 404
    assert client.delete(f"/api/screenshots/worker-mappings/{mapping_id}", headers=headers()).status_code == 200
