"""Tests for the record evaluation endpoint."""

from src.alerts.errors import StorageUnavailableError
from src.alerts.schemas import DispatchOutcome, DispatchResult

RECORD = {
    "record_id": "1001",
    "author_id": "7",
    "connector": "posts",
    "context": "post",
    "action": "updated",
    "summary": "Post updated",
}


def test_no_matches(client, mock_alert_service):
    resp = client.post("/records", json=RECORD)

    assert resp.status_code == 200
    data = resp.json()
    assert data["record_id"] == "1001"
    assert data["matched"] == 0
    assert data["results"] == []

    record, = mock_alert_service.process_record.call_args[0]
    assert record.author_id == "7"
    assert mock_alert_service.process_record.call_args[1] == {"source": "api"}


def test_results_returned(client, mock_alert_service):
    mock_alert_service.process_record.return_value = [
        DispatchResult("a1", "1001", "email", DispatchOutcome.DELIVERED, latency_ms=12.5),
        DispatchResult("a2", "1001", "webhook", DispatchOutcome.DUPLICATE),
    ]

    data = client.post("/records", json=RECORD).json()

    assert data["matched"] == 2
    assert [r["outcome"] for r in data["results"]] == ["delivered", "duplicate"]
    assert data["results"][0]["latency_ms"] == 12.5


def test_storage_unavailable_is_503(client, mock_alert_service):
    mock_alert_service.process_record.side_effect = StorageUnavailableError("db down")
    resp = client.post("/records", json=RECORD)
    assert resp.status_code == 503


def test_invalid_record(client):
    resp = client.post("/records", json={"record_id": "1"})
    assert resp.status_code == 422


def test_request_id_echoed(client):
    resp = client.post("/records", json=RECORD, headers={"X-Request-ID": "req-123"})
    assert resp.headers["X-Request-ID"] == "req-123"
