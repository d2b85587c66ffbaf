import inspect
import io
import json
import logging
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from openpyxl import load_workbook

import restapi.main as api_main
from restapi.storage import SessionStorage

from .conftest import write_workbook

XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(
        api_main.manager, "storage", SessionStorage(tmp_path / "artifacts")
    )
    return TestClient(api_main.app)


def _create(client, **data):
    resp = client.post("/sessions", data=data)
    assert resp.status_code == 200
    return resp.json()["session_id"]


def _upload(client, session_id, path: Path, name=None):
    files = {"file": (name or path.name, path.read_bytes(), XLSX)}
    return client.post(f"/sessions/{session_id}/dataset", files=files)


def test_docs_redirect(client):
    resp = client.get("/", follow_redirects=False)
    assert resp.status_code in (302, 307)


def test_missing_session_returns_404(client):
    resp = client.get("/sessions/nonexistent")
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Session not found"
    assert client.delete("/sessions/nonexistent").status_code == 404


def test_invalid_parameters_rejected(client):
    resp = client.post("/sessions", data={"confidence_level": 1.5})
    assert resp.status_code == 422


def test_simple_flow(client, population_xlsx, tmp_path):
    session_id = _create(client, design="srswor", random_seed=4)
    detail = client.get(f"/sessions/{session_id}").json()
    assert detail["state"] == "idle"
    assert detail["can_calculate"] is False

    resp = _upload(client, session_id, population_xlsx)
    assert resp.status_code == 200
    assert resp.json() == {
        "source_name": "population.xlsx",
        "headers": ["Invoice", "Amount", "Date"],
        "rows": 1000,
    }
    stored = tmp_path / "artifacts" / session_id / "input.xlsx"
    assert stored.exists()

    years = client.get(f"/sessions/{session_id}/years", params={"column": 2})
    assert years.json() == {
        "column": 2,
        "header": "Date",
        "years": [2023, 2024],
    }

    resp = client.put(
        f"/sessions/{session_id}/year-filter", json={"column": 2, "year": 2024}
    )
    assert resp.json()["population_size"] == 500

    resp = client.post(f"/sessions/{session_id}/calculate")
    assert resp.status_code == 200
    result = resp.json()
    assert result["population_size"] == 500
    drawn = len(result["groups"][0]["indices"])
    assert drawn == result["required_sample_size"]

    resp = client.put(
        f"/sessions/{session_id}/annotations/0/0",
        json={"has_error": True, "note": "Missing invoice"},
    )
    assert resp.status_code == 200
    assert resp.json() == {
        "has_error": True,
        "note": "Missing invoice",
        "group": 0,
        "position": 0,
    }
    detail = client.get(f"/sessions/{session_id}").json()
    assert detail["state"] == "annotating"
    assert len(detail["annotations"]) == 1

    resp = client.post(
        f"/sessions/{session_id}/export", params={"filename": "review"}
    )
    assert resp.status_code == 200
    assert resp.headers["content-type"] == XLSX
    wb = load_workbook(io.BytesIO(resp.content))
    assert wb.sheetnames == ["Parameters", "Sample"]
    assert wb["Sample"]["E2"].value == "Yes"
    assert (tmp_path / "artifacts" / session_id / "review.xlsx").exists()
    detail = client.get(f"/sessions/{session_id}").json()
    assert detail["state"] == "exported"


def test_stratified_flow(client):
    session_id = _create(client, design="prop", random_seed=2)
    resp = client.put(
        f"/sessions/{session_id}/population",
        json={
            "strata": [
                {"name": "North", "size": 600},
                {"name": "South", "size": 400},
            ]
        },
    )
    assert resp.status_code == 200
    assert resp.json()["population_size"] == 1000
    assert resp.json()["can_calculate"] is True

    result = client.post(f"/sessions/{session_id}/calculate").json()
    assert result["required_sample_size"] == 68
    assert [len(g["indices"]) for g in result["groups"]] == [41, 27]

    resp = client.post(
        f"/sessions/{session_id}/export", params={"locale": "mn"}
    )
    assert resp.status_code == 200
    wb = load_workbook(io.BytesIO(resp.content))
    assert wb.sheetnames == ["Дүн", "Нэгтгэл", "North", "South"]


def test_population_requires_sizes_or_total(client):
    session_id = _create(client, design="prop")
    resp = client.put(
        f"/sessions/{session_id}/population",
        json={"strata": [{"name": "North"}]},
    )
    assert resp.status_code == 422


def test_proportional_needs_every_size(client):
    session_id = _create(client, design="prop")
    client.put(
        f"/sessions/{session_id}/population",
        json={"population_size": 100, "strata": [{"name": "North"}]},
    )
    resp = client.post(f"/sessions/{session_id}/calculate")
    assert resp.status_code == 400


def test_actions_out_of_order(client, population_xlsx):
    session_id = _create(client)
    base = f"/sessions/{session_id}"

    assert client.post(f"{base}/calculate").status_code == 409
    assert client.get(f"{base}/years", params={"column": 0}).status_code == 409
    resp = client.put(f"{base}/annotations/0/0", json={"has_error": True})
    assert resp.status_code == 409
    assert client.post(f"{base}/export").status_code == 409
    resp = client.put(f"{base}/year-filter", json={"column": 0, "year": 2024})
    assert resp.status_code == 409

    _upload(client, session_id, population_xlsx)
    assert client.get(f"{base}/years", params={"column": 7}).status_code == 400
    client.post(f"{base}/calculate")
    resp = client.put(f"{base}/annotations/0/999", json={"has_error": True})
    assert resp.status_code == 404


def test_empty_year_cannot_be_calculated(client, population_xlsx):
    session_id = _create(client)
    _upload(client, session_id, population_xlsx)
    client.put(
        f"/sessions/{session_id}/year-filter", json={"column": 2, "year": 1990}
    )
    resp = client.post(f"/sessions/{session_id}/calculate")
    assert resp.status_code == 409

    resp = client.delete(f"/sessions/{session_id}/year-filter")
    assert resp.json()["population_size"] == 1000


def test_rejected_uploads(client, tmp_path, population_xlsx):
    session_id = _create(client)
    csv = tmp_path / "data.csv"
    csv.write_text("Ref,Amount\nA,1\n", encoding="utf-8")
    assert _upload(client, session_id, csv).status_code == 400

    header_only = tmp_path / "header.xlsx"
    write_workbook(header_only, [["Ref", "Amount"]])
    assert _upload(client, session_id, header_only).status_code == 400


def test_delete_session(client):
    session_id = _create(client)
    assert client.delete(f"/sessions/{session_id}").status_code == 204
    assert client.get(f"/sessions/{session_id}").status_code == 404


def test_corrupt_upload_is_rejected(client):
    session_id = _create(client)
    files = {"file": ("x.xlsx", b"not a zip", XLSX)}
    resp = client.post(f"/sessions/{session_id}/dataset", files=files)
    assert resp.status_code == 400
    assert "could not be read" in resp.json()["detail"]

    files = {"file": ("legacy.xls", b"\x00" * 32, "application/vnd.ms-excel")}
    resp = client.post(f"/sessions/{session_id}/dataset", files=files)
    assert resp.status_code == 400


def test_blocking_handlers_run_in_threadpool():
    handlers = [
        api_main.create_session,
        api_main.upload_dataset,
        api_main.list_years,
        api_main.calculate,
        api_main.export,
        api_main.build_pivot,
        api_main.pivot_sample,
        api_main.export_pivot,
    ]
    assert not any(inspect.iscoroutinefunction(h) for h in handlers)


def test_design_change_discards_result(client, population_xlsx):
    session_id = _create(client, design="srswor", random_seed=1)
    _upload(client, session_id, population_xlsx)
    client.post(f"/sessions/{session_id}/calculate")

    resp = client.put(
        f"/sessions/{session_id}/config",
        json={"design": "srswor", "confidence_level": 0.9},
    )
    assert resp.json()["result"] is not None

    resp = client.put(
        f"/sessions/{session_id}/config", json={"design": "srswr"}
    )
    detail = resp.json()
    assert detail["result"] is None
    assert detail["state"] == "configured"
    assert client.post(f"/sessions/{session_id}/export").status_code == 409


def test_engine_events_carry_session_id(client, population_xlsx, caplog):
    caplog.set_level(logging.INFO)
    session_id = _create(client)
    _upload(client, session_id, population_xlsx)

    loaded = [
        record.getMessage()
        for record in caplog.records
        if "DATASET_LOADED" in record.getMessage()
    ]
    assert loaded
    prefix, payload = loaded[-1].split(" ", 1)
    assert prefix == session_id
    assert json.loads(payload)["session_id"] == session_id


def test_pivot_flow(client, ledger_xlsx):
    session_id = _create(client, random_seed=5)
    base = f"/sessions/{session_id}"
    assert client.get(
        f"{base}/pivot", params={"date_column": 1, "code_column": 0}
    ).status_code == 409
    _upload(client, session_id, ledger_xlsx)

    resp = client.get(
        f"{base}/pivot", params={"date_column": 1, "code_column": 0}
    )
    assert resp.status_code == 200
    pivot = resp.json()
    assert [g["prefix"] for g in pivot] == ["AB1", "CD4"]
    assert [(r["year"], r["count"]) for r in pivot[0]["rows"]] == [
        (2023, 30),
        (2024, 20),
    ]

    assert client.post(f"{base}/pivot-export").status_code == 409
    resp = client.post(
        f"{base}/pivot-sample",
        json={
            "date_column": 1,
            "code_column": 0,
            "prefix": "AB1",
            "year_sizes": {"2023": 3, "2024": 2},
        },
    )
    assert resp.status_code == 200
    sample = resp.json()
    assert [g["label"] for g in sample["groups"]] == ["2023", "2024"]
    assert [len(g["indices"]) for g in sample["groups"]] == [3, 2]

    resp = client.post(f"{base}/pivot-export", params={"filename": "ab1"})
    assert resp.status_code == 200
    wb = load_workbook(io.BytesIO(resp.content))
    assert wb.sheetnames == ["Pivot", "AB1 2023", "AB1 2024"]


def test_pivot_errors(client, ledger_xlsx):
    session_id = _create(client)
    base = f"/sessions/{session_id}"
    _upload(client, session_id, ledger_xlsx)

    resp = client.get(
        f"{base}/pivot", params={"date_column": 9, "code_column": 0}
    )
    assert resp.status_code == 400
    resp = client.post(
        f"{base}/pivot-sample",
        json={"date_column": 1, "code_column": 0, "prefix": "ZZ9"},
    )
    assert resp.status_code == 400
