"""
Tests for the read-only report API.
"""

import pytest
from fastapi.testclient import TestClient

from conftest import make_layer
from report_api import create_app
from shared_schema import CriterionResult, Criteria, QualityCheckResult
from tracking.checkpoint_recorder import CheckpointRecorder, snapshot_filename

RUN_1 = "2025-10-06T18:00:00.000+00:00"
RUN_2 = "2025-10-07T18:00:00.000+00:00"


def completed(layer, failing=()):
    result = QualityCheckResult.pending(layer)
    for criterion in Criteria.ORDERED:
        passed = criterion not in failing
        result.tests[criterion] = CriterionResult(passed, "ok" if passed else "broken", {})
    return result


@pytest.fixture
def checkpoint_dir(tmp_path):
    recorder = CheckpointRecorder(str(tmp_path))
    alpha, beta = make_layer("alpha"), make_layer("beta")
    recorder.record([completed(alpha), completed(beta, failing=[Criteria.LEGEND_EXISTS])], run_timestamp=RUN_1)
    recorder.record([completed(alpha, failing=[Criteria.LAYERS_LOAD]), completed(beta)], run_timestamp=RUN_2)
    return str(tmp_path)


@pytest.fixture
def client(checkpoint_dir):
    return TestClient(create_app(checkpoint_dir))


def test_health_echoes_request_id(client):
    response = client.get("/health", headers={"X-Request-ID": "req_fixed"})

    assert response.status_code == 200
    body = response.json()
    assert body["request_id"] == "req_fixed"
    assert body["status"] == "healthy"
    assert body["ledger_present"] is True


def test_generated_request_id(client):
    assert client.get("/health").json()["request_id"].startswith("req_")


def test_checkpoints(client):
    body = client.get("/checkpoints").json()

    assert [c["timestamp"] for c in body["checkpoints"]] == [RUN_1, RUN_2]
    assert body["checkpoints"][0]["pass_rate"] == 50.0


def test_progress(client):
    body = client.get("/progress", headers={"X-Trace-ID": "trace-1"}).json()

    assert body["request_id"] == "trace-1"
    assert body["diffs"][0]["regressions"] == ["alpha"]
    assert body["diffs"][0]["progressions"] == ["beta"]
    assert body["trend"]["direction"] == "no-change"


def test_snapshots(client):
    names = client.get("/snapshots").json()["snapshots"]

    assert names == [snapshot_filename(RUN_1), snapshot_filename(RUN_2)]

    detail = client.get(f"/snapshots/{names[1]}").json()
    assert detail["snapshot"]["timestamp"] == RUN_2
    assert detail["snapshot"]["results"][0]["tests"]["layers_load"]["passed"] is False


def test_missing_snapshot(client):
    assert client.get("/snapshots/checkpoint-unknown.json").status_code == 404


def test_invalid_snapshot_name(client):
    assert client.get("/snapshots/history.csv").status_code == 400


def test_empty_checkpoint_dir(tmp_path):
    client = TestClient(create_app(str(tmp_path)))

    assert client.get("/checkpoints").json()["checkpoints"] == []
    assert client.get("/progress").json()["trend"] is None
    assert client.get("/snapshots").json()["snapshots"] == []
    assert client.get("/health").json()["ledger_present"] is False


def test_progress_includes_accuracy_history(tmp_path):
    recorder = CheckpointRecorder(str(tmp_path))
    alpha = make_layer("alpha", expected={Criteria.LEGEND_EXISTS: False})
    recorder.record([completed(alpha)], layers=[alpha], run_timestamp=RUN_1)
    recorder.record([completed(alpha, failing=[Criteria.LEGEND_EXISTS])], layers=[alpha], run_timestamp=RUN_2)
    client = TestClient(create_app(str(tmp_path)))

    body = client.get("/progress").json()

    assert [point["accuracy"] for point in body["accuracy_history"]] == [87.5, 100.0]
    assert body["accuracy_trend"]["direction"] == "improvement"
