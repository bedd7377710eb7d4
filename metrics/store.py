"""
JSON-file time series of hourly PFLOPS samples
"""

import json
import os
import tempfile
from typing import List

from pydantic import ValidationError as PydanticValidationError

from config.config import PFLOPS_DATA_FILE, PFLOPS_MAX_ENTRIES
from errors.exceptions import ParseError
from log_utils import get_logger
from models.chain import MetricSample

logger = get_logger(__name__)


class MetricStore:
    """
    ``{"data": [sample, ...]}`` on disk, oldest first, at most ``cap`` samples.

    A file that exists but cannot be parsed raises ``ParseError`` instead of
    being treated as empty, so a later save never overwrites the history.
    """

    def __init__(self, path: str = PFLOPS_DATA_FILE, cap: int = PFLOPS_MAX_ENTRIES):
        if cap <= 0:
            raise ValueError("cap must be positive")
        self.path = path
        self.cap = cap
        self.samples: List[MetricSample] = []

    def load(self) -> List[MetricSample]:
        if not os.path.exists(self.path):
            self.samples = []
            return []

        with open(self.path, "r", encoding="utf-8") as f:
            try:
                document = json.load(f)
            except ValueError as e:
                raise ParseError(f"{self.path} is not valid JSON: {e}") from e

        if not isinstance(document, dict) or not isinstance(document.get("data"), list):
            raise ParseError(f"{self.path} has no data list")
        try:
            self.samples = [MetricSample.model_validate(item) for item in document["data"]]
        except PydanticValidationError as e:
            raise ParseError(f"{self.path} holds an invalid sample: {e.error_count()} errors") from e
        return list(self.samples)

    def append(self, sample: MetricSample) -> List[MetricSample]:
        self.samples.append(sample)
        if len(self.samples) > self.cap:
            evicted = len(self.samples) - self.cap
            self.samples = self.samples[-self.cap:]
            logger.debug(f"Evicted {evicted} oldest samples")
        return list(self.samples)

    def save(self):
        """Write through a temporary file in the same directory, then rename."""
        document = {"data": [s.model_dump(mode="json") for s in self.samples]}
        directory = os.path.dirname(os.path.abspath(self.path))
        fd, tmp_path = tempfile.mkstemp(prefix=".pflops-", suffix=".json", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        logger.info(f"Data saved successfully. Total entries: {len(self.samples)}")
