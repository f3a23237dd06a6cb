"""Analyzer plugin contract and registry."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TypeVar

from sre_remediator.analysis.models import Result
from sre_remediator.cluster import ClusterAccessor

logger = logging.getLogger(__name__)


@dataclass
class AnalysisContext:
    """What an analyzer may look at during one run."""

    accessor: ClusterAccessor
    namespace: str | None = None
    label_selector: str | None = None
    cancel: threading.Event = field(default_factory=threading.Event)

    @property
    def cancelled(self) -> bool:
        return self.cancel.is_set()


class Analyzer(ABC):
    """A diagnostic check producing zero or more Results."""

    name: str = ""

    @abstractmethod
    def analyze(self, context: AnalysisContext) -> list[Result]:
        """Inspect the cluster; raise on infrastructure failure."""


_REGISTRY: dict[str, type[Analyzer]] = {}

A = TypeVar("A", bound=type[Analyzer])


def register_analyzer(cls: A) -> A:
    """Class decorator adding an analyzer to the default set under its name."""
    if not cls.name:
        raise ValueError(f"{cls.__name__} has no name")
    _REGISTRY[cls.name] = cls
    return cls


def registered_analyzers() -> dict[str, type[Analyzer]]:
    return dict(_REGISTRY)


def select_analyzers(
    filters: list[str] | None = None,
    active_filters: list[str] | None = None,
    registry: dict[str, type[Analyzer]] | None = None,
) -> tuple[list[Analyzer], list[str]]:
    """
    Pick the analyzers for one run.

    Explicit filters win, then the active subset, then everything registered.
    Unknown names are returned as configuration errors instead of failing.
    """
    table = registry if registry is not None else _REGISTRY
    wanted = filters or active_filters or list(table)
    analyzers: list[Analyzer] = []
    config_errors: list[str] = []
    seen: set[str] = set()
    for name in wanted:
        if name in seen:
            continue
        seen.add(name)
        cls = table.get(name)
        if cls is None:
            logger.warning("Unknown analyzer filter: %s", name)
            config_errors.append(f"unknown analyzer filter: {name}")
            continue
        analyzers.append(cls())
    return analyzers, config_errors
