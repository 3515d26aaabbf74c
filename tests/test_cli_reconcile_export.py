import json
from pathlib import Path
from urllib.parse import parse_qs

import httpx
from typer.testing import CliRunner

from featuresync.infra.http.feature_service_client import FeatureServiceClient
from featuresync.main import app

runner = CliRunner()

LAYER_URL = "https://gis.local/arcgis/rest/services/Rooms/FeatureServer/0"

FEATURES = [
    {
        "attributes": {"objectid": 1, "room_name": "A", "use_type_new": "Office", "status": "open", "CreationDate": 1700000000000},
        "geometry": {"x": 13.4, "y": 52.5},
    },
    {
        "attributes": {"objectid": 2, "room_name": "B", "use_type_new": "Lab", "status": "open", "CreationDate": 1700000000000},
        "geometry": {"x": 13.5, "y": 52.6},
    },
]


def patch_client_with_transport(monkeypatch, transport: httpx.BaseTransport):
    import featuresync.main as cli_module

    def factory(*args, **kwargs):
        kwargs["transport"] = transport
        return FeatureServiceClient(*args, **kwargs)

    monkeypatch.setattr(cli_module, "FeatureServiceClient", factory)


def make_responder(calls: list, update_results=None, query_status: int = 200):
    def responder(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/query"):
            calls.append(("query", dict(request.url.params)))
            if query_status != 200:
                return httpx.Response(query_status, text="down")
            return httpx.Response(200, json={"features": FEATURES})
        if request.url.path.endswith("/applyEdits"):
            form = parse_qs(request.content.decode("utf-8"))
            updates = json.loads(form["updates"][0])
            calls.append(("applyEdits", updates))
            results = update_results or [
                {"objectId": u["attributes"]["objectid"], "success": True} for u in updates
            ]
            return httpx.Response(200, json={"addResults": [], "updateResults": results, "deleteResults": []})
        return httpx.Response(404, text="not found")

    return responder


def base_args(tmp_path: Path) -> list[str]:
    return [
        "--log-dir", str(tmp_path / "logs"),
        "--report-dir", str(tmp_path / "reports"),
        "--layer-url", LAYER_URL,
        "--retries", "0",
        "--run-id", "run-1",
    ]


def write_csv(tmp_path: Path, text: str) -> str:
    path = tmp_path / "rooms.csv"
    path.write_text(text, encoding="utf-8")
    return str(path)


def read_report(tmp_path: Path, command: str) -> dict:
    return json.loads((tmp_path / "reports" / f"report_{command}_run-1.json").read_text(encoding="utf-8"))


def test_reconcile_applies_only_changed_fields(tmp_path, monkeypatch):
    calls = []
    patch_client_with_transport(monkeypatch, httpx.MockTransport(make_responder(calls)))
    csv_path = write_csv(
        tmp_path,
        "objectid,room_name,use_type_new,status,floor\n1,A2,Office,open,3\n2,B,Lab,open,1\n99,X,Lab,open,1\n",
    )

    result = runner.invoke(app, [*base_args(tmp_path), "reconcile", "--csv", csv_path])

    assert result.exit_code == 0
    assert [name for name, _ in calls] == ["query", "applyEdits"]
    assert calls[0][1]["returnGeometry"] == "false"
    assert calls[1][1] == [{"attributes": {"objectid": 1, "room_name": "A2"}}]

    report = read_report(tmp_path, "reconcile")
    assert report["meta"]["status"] == "SUCCESS"
    assert report["summary"]["incoming"] == 3
    assert report["summary"]["matched"] == 2
    assert report["summary"]["unmatched"] == 1
    assert report["summary"]["updated"] == 1
    assert report["items"] == [{"status": "SKIPPED", "id": "99", "reason": "not_found"}]

    log_text = (tmp_path / "logs" / "reconcile_run-1.log").read_text(encoding="utf-8")
    assert "comp=refresh" in log_text
    assert "runId=run-1" in log_text


def test_reconcile_partial_failure_exits_1(tmp_path, monkeypatch):
    calls = []
    results = [
        {"objectId": 1, "success": True},
        {"objectId": 2, "success": False, "error": {"code": 1000, "description": "Invalid status"}},
    ]
    patch_client_with_transport(monkeypatch, httpx.MockTransport(make_responder(calls, update_results=results)))
    csv_path = write_csv(tmp_path, "objectid,status\n1,closed\n2,bogus\n")

    result = runner.invoke(app, [*base_args(tmp_path), "reconcile", "--csv", csv_path])

    assert result.exit_code == 1
    report = read_report(tmp_path, "reconcile")
    assert report["meta"]["status"] == "PARTIAL"
    assert report["summary"]["updated"] == 1
    assert report["summary"]["failed"] == 1
    assert report["items"][0]["id"] == 2
    assert report["items"][0]["error"] == {"code": "1000", "message": "Invalid status"}


def test_reconcile_dry_run_does_not_submit(tmp_path, monkeypatch):
    calls = []
    patch_client_with_transport(monkeypatch, httpx.MockTransport(make_responder(calls)))
    csv_path = write_csv(tmp_path, "objectid,status\n1,closed\n")

    result = runner.invoke(app, [*base_args(tmp_path), "reconcile", "--csv", csv_path, "--dry-run"])

    assert result.exit_code == 0
    assert [name for name, _ in calls] == ["query"]
    report = read_report(tmp_path, "reconcile")
    assert report["meta"]["dry_run"] is True
    assert report["items"] == [{"status": "PLANNED", "id": 1, "changes": {"status": "closed"}}]


def test_reconcile_without_changes_submits_nothing(tmp_path, monkeypatch):
    calls = []
    patch_client_with_transport(monkeypatch, httpx.MockTransport(make_responder(calls)))
    csv_path = write_csv(tmp_path, "objectid,room_name,status\n1,A,open\n2.0,B,open\n")

    result = runner.invoke(app, [*base_args(tmp_path), "reconcile", "--csv", csv_path])

    assert result.exit_code == 0
    assert "No updates to apply." in result.stdout
    assert [name for name, _ in calls] == ["query"]


def test_reconcile_malformed_csv_exits_2_before_fetch(tmp_path, monkeypatch):
    calls = []
    patch_client_with_transport(monkeypatch, httpx.MockTransport(make_responder(calls)))
    csv_path = write_csv(tmp_path, "objectid,status\n1,closed,extra\n")

    result = runner.invoke(app, [*base_args(tmp_path), "reconcile", "--csv", csv_path])

    assert result.exit_code == 2
    assert calls == []
    report = read_report(tmp_path, "reconcile")
    assert report["meta"]["status"] == "FAILED"
    assert report["meta"]["error"]["code"] == "MALFORMED_INPUT"


def test_reconcile_fetch_failure_exits_2(tmp_path, monkeypatch):
    calls = []
    patch_client_with_transport(monkeypatch, httpx.MockTransport(make_responder(calls, query_status=503)))
    csv_path = write_csv(tmp_path, "objectid,status\n1,closed\n")

    result = runner.invoke(app, [*base_args(tmp_path), "reconcile", "--csv", csv_path])

    assert result.exit_code == 2
    assert [name for name, _ in calls] == ["query"]
    report = read_report(tmp_path, "reconcile")
    assert report["meta"]["error"]["category"] == "fetch"


def test_export_writes_csv_with_coordinates(tmp_path, monkeypatch):
    calls = []
    patch_client_with_transport(monkeypatch, httpx.MockTransport(make_responder(calls)))
    out_path = tmp_path / "out" / "rooms.csv"

    result = runner.invoke(app, [*base_args(tmp_path), "export", "--out", str(out_path)])

    assert result.exit_code == 0
    assert calls[0][1]["returnGeometry"] == "true"
    assert calls[0][1]["outSR"] == "4326"
    lines = out_path.read_text(encoding="utf-8").split("\n")
    assert lines[0] == "objectid,room_name,use_type_new,status,CreationDate,latitude,longitude"
    assert lines[1] == "1,A,Office,open,11/14/2023,52.5,13.4"
    assert read_report(tmp_path, "export")["summary"]["exported"] == 2


def test_export_empty_layer_writes_empty_file(tmp_path, monkeypatch):
    def responder(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"features": []})

    patch_client_with_transport(monkeypatch, httpx.MockTransport(responder))
    out_path = tmp_path / "empty.csv"

    result = runner.invoke(app, [*base_args(tmp_path), "export", "--out", str(out_path)])

    assert result.exit_code == 0
    assert out_path.read_text(encoding="utf-8") == ""


def test_reconcile_invalid_utf8_exits_2_before_fetch(tmp_path, monkeypatch):
    calls = []
    patch_client_with_transport(monkeypatch, httpx.MockTransport(make_responder(calls)))
    path = tmp_path / "rooms.csv"
    path.write_bytes(b"objectid,status\n1,caf\xe9\n")

    result = runner.invoke(app, [*base_args(tmp_path), "reconcile", "--csv", str(path)])

    assert result.exit_code == 2
    assert calls == []
    report = read_report(tmp_path, "reconcile")
    assert report["meta"]["status"] == "FAILED"
    assert report["meta"]["error"]["code"] == "MALFORMED_INPUT"


def test_export_survives_out_of_range_date(tmp_path, monkeypatch):
    def responder(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"features": [{"attributes": {"objectid": 1, "EditDate": 253402300800000}}]},
        )

    patch_client_with_transport(monkeypatch, httpx.MockTransport(responder))
    out_path = tmp_path / "rooms.csv"

    result = runner.invoke(app, [*base_args(tmp_path), "export", "--out", str(out_path)])

    assert result.exit_code == 0
    assert out_path.read_text(encoding="utf-8").split("\n")[1] == "1,253402300800000,,"
