"""Run a set of analyzers with bounded parallelism into one report."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor, wait

from sre_remediator.analysis.analyzer import AnalysisContext, Analyzer
from sre_remediator.analysis.models import AnalysisReport

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 10


def _run_one(analyzer: Analyzer, context: AnalysisContext, report: AnalysisReport, with_stats: bool) -> None:
    name = analyzer.name or type(analyzer).__name__
    if context.cancelled:
        report.add_error(name, "cancelled before start")
        return
    start = time.perf_counter()
    try:
        results = analyzer.analyze(context)
    except Exception as e:
        logger.exception("Analyzer %s failed", name)
        report.add_error(name, f"{type(e).__name__}: {e}")
    else:
        logger.debug("Analyzer %s found %d issue(s)", name, len(results))
        report.add_results(name, list(results))
    finally:
        if with_stats:
            report.add_stat(name, time.perf_counter() - start)


def run_analysis(
    analyzers: Iterable[Analyzer],
    context: AnalysisContext,
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    with_stats: bool = False,
) -> AnalysisReport:
    """
    Execute analyzers, at most max_concurrency at a time, and wait for all of them.

    Analyzer code runs outside the report lock; only the single append of its
    outcome is serialized. An analyzer raising is recorded as an analyzer error
    and never stops the others.
    """
    if max_concurrency < 1:
        raise ValueError("max_concurrency must be >= 1")
    pending = list(analyzers)
    report = AnalysisReport()
    if not pending:
        return report

    workers = min(max_concurrency, len(pending))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="analyzer") as executor:
        futures = [executor.submit(_run_one, a, context, report, with_stats) for a in pending]
        wait(futures)

    logger.info(
        "Analysis finished: %d analyzer(s), %d issue(s), %d analyzer error(s)",
        len(pending),
        len(report.results),
        len(report.errors),
    )
    return report
