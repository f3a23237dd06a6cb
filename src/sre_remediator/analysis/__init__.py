"""Analysis layer: run diagnostic analyzers and collect diagnosed issues."""

from sre_remediator.analysis import builtin  # noqa: F401  (registers the built-in analyzers)
from sre_remediator.analysis.analyzer import (
    AnalysisContext,
    Analyzer,
    register_analyzer,
    registered_analyzers,
    select_analyzers,
)
from sre_remediator.analysis.explain import explain_results
from sre_remediator.analysis.models import (
    AnalysisReport,
    AnalyzerError,
    AnalyzerStat,
    Failure,
    Result,
    Sensitive,
)
from sre_remediator.analysis.runner import run_analysis

__all__ = [
    "AnalysisContext",
    "AnalysisReport",
    "Analyzer",
    "AnalyzerError",
    "AnalyzerStat",
    "Failure",
    "Result",
    "Sensitive",
    "explain_results",
    "register_analyzer",
    "registered_analyzers",
    "run_analysis",
    "select_analyzers",
]
