"""Base interface for scrape-driven collectors."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import Any


@dataclass
class MetricSample:
    """A single gauge observation produced by one collection cycle."""

    name: str
    value: float
    labels: dict[str, str] = field(default_factory=dict)
    description: str = ""


class BaseCollector(abc.ABC):
    """Abstract base class for collectors invoked once per scrape."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Collector name used in log output."""

    @abc.abstractmethod
    def collect(self) -> list[MetricSample]:
        """Run one collection cycle and return the samples to publish."""

    def to_dict(self, samples: list[MetricSample]) -> list[dict[str, Any]]:
        """Serialize samples to plain dictionaries."""
        return [
            {
                "name": s.name,
                "value": s.value,
                "labels": s.labels,
                "description": s.description,
            }
            for s in samples
        ]
