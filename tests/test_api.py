"""Tests for the HTTP and WebSocket endpoints."""

import io

import numpy as np
import soundfile as sf

from tests.conftest import SR, generate_click_track


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_rejects_unsupported_extension(client):
    response = client.post(
        "/api/analyze",
        files={"file": ("notes.xyz", b"not audio", "application/octet-stream")},
    )
    assert response.status_code == 400
    assert "Unsupported format" in response.json()["detail"]


def test_rejects_empty_upload(client):
    response = client.post("/api/analyze", files={"file": ("empty.wav", b"", "audio/wav")})
    assert response.status_code == 400
    assert response.json()["detail"] == "Empty file"


def test_undecodable_upload_is_a_server_error(client):
    response = client.post("/api/analyze", files={"file": ("broken.wav", b"RIFF0000garbage", "audio/wav")})
    assert response.status_code == 500
    assert response.json()["detail"] == "Analysis failed"


def test_analyze_wav_upload(client):
    """A short click track returns a final summary with per-detector readings."""
    buffer = io.BytesIO()
    sf.write(buffer, generate_click_track(120, 4.0), SR, format="WAV", subtype="PCM_16")
    response = client.post(
        "/api/analyze",
        files={"file": ("click_120.wav", buffer.getvalue(), "audio/wav")},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "streaming_results"
    assert body["buffered_seconds"] > 3.9
    assert body["readings"]
    for reading in body["readings"]:
        assert 0.0 <= reading["confidence"] <= 1.0
        assert isinstance(reading["timestamp"], str)
    if body["consensus"] is not None:
        assert body["consensus"]["bpm"] > 0


def test_live_websocket_reports_buffering(client):
    chunk = np.zeros(SR // 2, dtype=np.float32).tobytes()
    with client.websocket_connect("/api/ws/live") as ws:
        ws.send_bytes(chunk)
        message = ws.receive_json()
    assert message["type"] == "buffering"
    assert message["seconds"] == 0.5
    assert message["total"] > 0
