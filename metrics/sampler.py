"""
One-shot PFLOPS collector, meant to be run hourly by an external scheduler
"""

import time
from datetime import datetime, timezone
from typing import Optional

import requests

from config.config import HTTP_TIMEOUT, LOG_FILE, LOG_LEVEL, NODE_API_URL, PFLOPS_DATA_FILE, PFLOPS_MAX_ENTRIES
from errors.exceptions import ExplorerError, ParseError, TransportError
from gateway.api_gateway import check_envelope
from log_utils import get_logger, setup_logging
from metrics.store import MetricStore
from models.chain import MetricSample, parse_stats

logger = get_logger(__name__)


def fetch_stats_body(api_url: str = NODE_API_URL, session=None, timeout: float = HTTP_TIMEOUT) -> dict:
    url = f"{api_url.rstrip('/')}/chain/stats"
    http = session or requests
    try:
        response = http.get(url, timeout=timeout)
    except requests.RequestException as e:
        raise TransportError(f"Request to /chain/stats failed: {e}") from e
    try:
        body = response.json()
    except ValueError as e:
        raise TransportError("Failed to parse JSON response", status=response.status_code) from e
    return check_envelope(body, "/chain/stats")


def build_sample(body: dict, now: Optional[float] = None) -> MetricSample:
    raw = body.get("stats")
    if not isinstance(raw, dict) or not raw.get("pflops"):
        raise ParseError("PFLOPS data not found in API response")
    stats = parse_stats(raw)

    now = time.time() if now is None else now
    moment = datetime.fromtimestamp(now, tz=timezone.utc)
    return MetricSample(
        timestamp=int(now * 1000),
        date=moment.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        pflops=stats.pflops,
        epoch=stats.epoch,
        height=stats.height or None,
        circulating=float(stats.circulating) if stats.circulating else None,
        txs_per_sec=stats.txs_per_sec,
    )


def sample_once(store: MetricStore, api_url: str = NODE_API_URL, session=None,
                now: Optional[float] = None) -> MetricSample:
    """Fetch stats, append one sample and persist. Any failure raises."""
    logger.info("Collecting PFLOPS data...")
    body = fetch_stats_body(api_url, session=session)
    sample = build_sample(body, now)

    store.load()
    store.append(sample)
    store.save()

    logger.info(f"PFLOPS: {sample.pflops}, Epoch: {sample.epoch}, Height: {sample.height or 'N/A'}")
    return sample


def run(store: Optional[MetricStore] = None, api_url: str = NODE_API_URL, session=None) -> int:
    """Collect one sample; returns the process exit code."""
    store = store or MetricStore(PFLOPS_DATA_FILE, PFLOPS_MAX_ENTRIES)
    try:
        sample_once(store, api_url=api_url, session=session)
    except ExplorerError as e:
        logger.error(f"Error collecting PFLOPS: {e.message}")
        return 1
    except OSError as e:
        logger.error(f"Error saving data: {e}")
        return 1
    return 0


def main() -> int:
    setup_logging(level=LOG_LEVEL, log_file=LOG_FILE, enable_structured=False)
    return run()
