# tests/test_metrics.py
import json
from unittest.mock import MagicMock

import pytest
import requests

from config.config import HTTP_TIMEOUT
from errors.exceptions import DomainError, ParseError, TransportError
from metrics.sampler import build_sample, fetch_stats_body, run
from metrics.series import DAY_MS, HOUR_MS, chart_points, filter_period, summarize
from metrics.store import MetricStore
from models.chain import MetricSample

NOW = 1_760_000_000.0
NOW_MS = int(NOW * 1000)


def _sample(ts, pflops=1.0):
    return MetricSample(timestamp=ts, pflops=pflops)


def _http(body=None, exc=None):
    """requests.Session stand-in answering /chain/stats"""
    session = MagicMock()
    if exc is not None:
        session.get.side_effect = exc
    else:
        session.get.return_value.json.return_value = body
        session.get.return_value.status_code = 200
    return session


# ──────────────────────────────────────────────────────────────────────────────
# Store
# ──────────────────────────────────────────────────────────────────────────────
def test_missing_file_loads_empty(tmp_path):
    store = MetricStore(str(tmp_path / "pflops.json"))
    assert store.load() == []


def test_cap_evicts_oldest(tmp_path):
    store = MetricStore(str(tmp_path / "pflops.json"), cap=720)
    for i in range(720):
        store.append(_sample(i))
    assert len(store.samples) == 720

    store.append(_sample(720))
    assert len(store.samples) == 720
    assert store.samples[0].timestamp == 1
    assert store.samples[-1].timestamp == 720


def test_save_then_load(tmp_path):
    path = tmp_path / "pflops.json"
    store = MetricStore(str(path), cap=3)
    store.append(_sample(1, 2.5))
    store.save()

    document = json.loads(path.read_text())
    assert document["data"][0]["pflops"] == 2.5
    assert [p.name for p in tmp_path.iterdir()] == ["pflops.json"]

    reloaded = MetricStore(str(path), cap=3).load()
    assert reloaded[0].timestamp == 1


@pytest.mark.parametrize("content", ["{not json", '{"rows": []}', '{"data": [{"timestamp": 1}]}'])
def test_corrupt_file_raises(tmp_path, content):
    path = tmp_path / "pflops.json"
    path.write_text(content)
    with pytest.raises(ParseError):
        MetricStore(str(path)).load()


def test_cap_must_be_positive(tmp_path):
    with pytest.raises(ValueError):
        MetricStore(str(tmp_path / "x.json"), cap=0)


# ──────────────────────────────────────────────────────────────────────────────
# Sampler
# ──────────────────────────────────────────────────────────────────────────────
def test_build_sample_fields():
    sample = build_sample({"stats": {"pflops": 3.25, "height": 250_000, "circulating": "12.5",
                                     "txsPerSec": 1.5}}, now=NOW)
    assert sample.timestamp == NOW_MS
    assert sample.epoch == 2
    assert sample.height == 250_000
    assert sample.circulating == 12.5
    assert sample.date.endswith("Z")


@pytest.mark.parametrize("body", [{"stats": {"height": 1}}, {"stats": {"pflops": 0}}, {}])
def test_build_sample_requires_pflops(body):
    with pytest.raises(ParseError):
        build_sample(body, now=NOW)


def test_fetch_maps_failures():
    with pytest.raises(TransportError):
        fetch_stats_body("https://node.test/api", session=_http(exc=requests.ConnectionError("down")))
    with pytest.raises(DomainError):
        fetch_stats_body("https://node.test/api", session=_http({"error": "busy"}))

    broken = _http()
    broken.get.return_value.json.side_effect = ValueError("not json")
    with pytest.raises(TransportError):
        fetch_stats_body("https://node.test/api", session=broken)


def test_run_appends_one_sample(tmp_path):
    path = tmp_path / "pflops.json"
    session = _http({"error": "ok", "stats": {"pflops": 4.0, "height": 10}})

    assert run(MetricStore(str(path)), api_url="https://node.test/api", session=session) == 0
    assert run(MetricStore(str(path)), api_url="https://node.test/api", session=session) == 0

    assert len(json.loads(path.read_text())["data"]) == 2
    session.get.assert_called_with("https://node.test/api/chain/stats", timeout=HTTP_TIMEOUT)


def test_run_fails_without_touching_history(tmp_path):
    path = tmp_path / "pflops.json"
    path.write_text("{broken")
    session = _http({"error": "ok", "stats": {"pflops": 4.0}})

    assert run(MetricStore(str(path)), session=session) == 1
    assert path.read_text() == "{broken"


def test_run_fails_on_missing_pflops(tmp_path):
    path = tmp_path / "pflops.json"
    assert run(MetricStore(str(path)), session=_http({"stats": {"height": 5}})) == 1
    assert not path.exists()


# ──────────────────────────────────────────────────────────────────────────────
# Series
# ──────────────────────────────────────────────────────────────────────────────
def test_filter_period():
    samples = [_sample(NOW_MS - 10 * DAY_MS), _sample(NOW_MS - 2 * DAY_MS), _sample(NOW_MS - HOUR_MS)]

    assert len(filter_period(samples, "24h", NOW_MS)) == 1
    assert len(filter_period(samples, "7d", NOW_MS)) == 2
    assert len(filter_period(samples, "all", NOW_MS)) == 3
    with pytest.raises(ValueError):
        filter_period(samples, "1y", NOW_MS)


def test_summarize():
    samples = [_sample(NOW_MS - 2 * DAY_MS, 100.0), _sample(NOW_MS - 2 * HOUR_MS, 2.0),
               _sample(NOW_MS - HOUR_MS, 4.0)]
    assert summarize(samples, NOW_MS) == {"current": 4.0, "avg_24h": 3.0, "peak_24h": 4.0, "entries": 3}
    assert summarize([], NOW_MS)["current"] is None


def test_chart_points_labels():
    points = chart_points([_sample(NOW_MS - 3 * DAY_MS), _sample(NOW_MS - HOUR_MS)], NOW_MS)
    assert ":00" in points[0]["label"] and "," in points[0]["label"]
    assert len(points[1]["label"]) == 5
    assert points[1]["timestamp"] == NOW_MS - HOUR_MS
