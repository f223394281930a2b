from fastapi.testclient import TestClient

from voicebuddy.relay import app as app_module
from voicebuddy.relay import config_loader
from voicebuddy.relay.app import app
from voicebuddy.relay.errors import UpstreamError
from voicebuddy.relay.metrics import MetricsAggregator, RelaySample


def test_metrics_disabled_returns_structured_404(monkeypatch):
    monkeypatch.setattr(app_module._cfg, "enable_metrics", False)

    r = TestClient(app).get("/v1/metrics")

    assert r.status_code == 404
    assert r.json()["error"]["type"] == "disabled"


def test_metrics_after_requests(monkeypatch, fake_client_factory):
    clients = iter(
        [
            fake_client_factory(["hello"]),
            fake_client_factory(["hel"], error=UpstreamError("boom")),
            fake_client_factory(["hi", "!"]),
        ]
    )
    monkeypatch.setattr(app_module, "_build_client", lambda cfg: next(clients))
    monkeypatch.setattr(app_module, "_metrics", MetricsAggregator())
    monkeypatch.setattr(app_module._cfg, "api_key", "sk-test")
    monkeypatch.setattr(app_module._cfg, "enable_metrics", True)

    client = TestClient(app)
    for _ in range(3):
        r = client.post("/api/chat", json={"messages": [{"role": "user", "content": "Hi"}]})
        assert r.status_code == 200

    body = client.get("/v1/metrics").json()
    assert body["total_requests"] == 3
    assert body["requests_by_outcome"] == {"completed": 2, "upstream_error": 1}
    assert body["rolling"]["count"] == 3
    assert body["rolling"]["avg_ttff_ms"] >= 0
    assert body["rolling"]["avg_fragments"] == 4 / 3


def test_metrics_summary_without_fragments():
    agg = MetricsAggregator(capacity=2)
    assert agg.summary()["rolling"] == {"count": 0}

    for _ in range(3):
        agg.add(
            RelaySample(
                ts=0.0,
                model="m",
                outcome="upstream_error",
                ttff_ms=None,
                fragments=0,
                chars=0,
                duration_ms=10.0,
            )
        )
    summary = agg.summary()
    assert summary["rolling"]["count"] == 2
    assert summary["rolling"]["avg_ttff_ms"] is None
    assert summary["total_requests"] == 3


def test_config_endpoint_never_echoes_credential(tmp_path, monkeypatch):
    monkeypatch.setenv(config_loader.CONFIG_FILE_ENV, str(tmp_path / "relay.toml"))
    monkeypatch.setenv("OPENAI_API_KEY", "sk-very-secret")

    r = TestClient(app).get("/v1/config/relay")

    assert r.status_code == 200
    assert "sk-very-secret" not in r.text
    body = r.json()
    assert body["runtime"]["api_key_configured"] is True
    assert "api_key" not in body["runtime"]
    assert body["config_file_path"] == str(tmp_path / "relay.toml")


def test_config_update_round_trip(tmp_path, monkeypatch):
    monkeypatch.setenv(config_loader.CONFIG_FILE_ENV, str(tmp_path / "relay.toml"))
    monkeypatch.delenv("VOICEBUDDY_PORT", raising=False)
    client = TestClient(app)

    r = client.put("/v1/config/relay", json={"port": 8777})
    assert r.status_code == 200
    assert r.json()["file"]["port"] == 8777
    assert r.json()["requires_restart"] is True

    bad = client.put("/v1/config/relay", json={"bogus": True})
    assert bad.status_code == 400
    assert bad.json()["error"]["type"] == "invalid_config"

    key = client.put("/v1/config/relay", json={"api_key": "sk-x"})
    assert key.status_code == 400
