"""Structured outputs from the analysis layer."""

from __future__ import annotations

import hashlib
import string
import threading
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

_MASK_ALPHABET = string.ascii_letters + string.digits


def mask_string(value: str) -> str:
    """Deterministic same-length replacement for a sensitive value."""
    digest = hashlib.shake_256(value.encode("utf-8")).digest(len(value))
    return "".join(_MASK_ALPHABET[b % len(_MASK_ALPHABET)] for b in digest)


class Sensitive(BaseModel):
    """A substring that must not leave the process unmasked."""

    model_config = ConfigDict(frozen=True)

    unmasked: str
    masked: str = ""

    @model_validator(mode="before")
    @classmethod
    def _fill_mask(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("unmasked") and not data.get("masked"):
            data = {**data, "masked": mask_string(data["unmasked"])}
        return data

    @classmethod
    def of(cls, value: str) -> Sensitive:
        return cls(unmasked=value)


def mask_text(text: str, sensitive: list[Sensitive]) -> str:
    # Longest first so a name never gets partially masked by a shorter one it contains
    for s in sorted(sensitive, key=lambda s: len(s.unmasked), reverse=True):
        if s.unmasked:
            text = text.replace(s.unmasked, s.masked)
    return text


def unmask_text(text: str, sensitive: list[Sensitive]) -> str:
    for s in sorted(sensitive, key=lambda s: len(s.masked), reverse=True):
        if s.masked:
            text = text.replace(s.masked, s.unmasked)
    return text


class Failure(BaseModel):
    """One detected failure message."""

    model_config = ConfigDict(frozen=True)

    text: str
    sensitive: list[Sensitive] = Field(default_factory=list)

    def masked_text(self) -> str:
        return mask_text(self.text, self.sensitive)


class Result(BaseModel):
    """A diagnosed issue: one unhealthy resource and what is wrong with it."""

    model_config = ConfigDict(frozen=True)

    kind: str = Field(..., description="Resource kind, e.g. Pod or Deployment")
    name: str = Field(..., description="Resource name, namespace-qualified (namespace/name)")
    parent_object: str = Field(
        default="",
        description="Owning controller as Kind/name when the issue belongs to it rather than the pod",
    )
    errors: list[Failure] = Field(default_factory=list)
    details: str = Field(default="", description="AI explanation, filled by the explanation pass")

    @property
    def sensitive(self) -> list[Sensitive]:
        return [s for f in self.errors for s in f.sensitive]

    def failure_text(self, masked: bool = False) -> str:
        """Newline-joined failure messages, masked when sent out of process."""
        return "\n".join(f.masked_text() if masked else f.text for f in self.errors)

    def mask(self, text: str) -> str:
        return mask_text(text, self.sensitive)

    def unmask(self, text: str) -> str:
        return unmask_text(text, self.sensitive)


class AnalyzerError(BaseModel):
    """Infrastructure failure of one analyzer (distinct from a diagnosed issue)."""

    analyzer: str
    message: str


class AnalyzerStat(BaseModel):
    analyzer: str
    duration_seconds: float


@dataclass
class AnalysisReport:
    """
    Aggregate of one analysis run.

    Analyzers run concurrently and write here through the add_* methods only;
    each analyzer contributes exactly one outcome, either its results or an error.
    """

    results: list[Result] = field(default_factory=list)
    errors: list[AnalyzerError] = field(default_factory=list)
    stats: list[AnalyzerStat] = field(default_factory=list)
    config_errors: list[str] = field(default_factory=list)
    succeeded: list[str] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def add_results(self, analyzer: str, results: list[Result]) -> None:
        with self._lock:
            self.results.extend(results)
            self.succeeded.append(analyzer)

    def add_error(self, analyzer: str, message: str) -> None:
        with self._lock:
            self.errors.append(AnalyzerError(analyzer=analyzer, message=message))

    def add_stat(self, analyzer: str, duration: float) -> None:
        with self._lock:
            self.stats.append(AnalyzerStat(analyzer=analyzer, duration_seconds=duration))

    @property
    def analyzer_count(self) -> int:
        return len(self.succeeded) + len(self.errors)

    @property
    def has_issues(self) -> bool:
        return bool(self.results)
