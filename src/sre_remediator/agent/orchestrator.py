"""Orchestrator: analyze → explain → remediate → verify → report, one cycle at a time."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel

from sre_remediator.agent.prompts import (
    REPORT_CONFIG_ERROR,
    REPORT_DRY_RUN,
    REPORT_HEADER,
    REPORT_NO_ISSUE,
    REPORT_SECTION_ACTIONS,
    REPORT_SECTION_ANALYSIS,
    REPORT_SECTION_ANALYZER_ERRORS,
)
from sre_remediator.ai import AIBackend, new_backend
from sre_remediator.analysis import (
    AnalysisContext,
    AnalysisReport,
    Result,
    explain_results,
    run_analysis,
    select_analyzers,
)
from sre_remediator.cache import CompletionCache, new_cache
from sre_remediator.cluster import ClusterAccessor, KubernetesAccessor
from sre_remediator.config import AIProviderConfig, Settings, get_settings, load_provider_config
from sre_remediator.errors import ConfigError, InputError
from sre_remediator.remediation import (
    RemediationAttempt,
    RemediationGenerator,
    RemediationStatus,
    RolloutVerifier,
    resolve_target,
)

logger = logging.getLogger(__name__)


@dataclass
class CycleReport:
    """Result of one orchestration cycle."""

    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    provider: str | None = None
    analysis: AnalysisReport | None = None
    results: list[Result] = field(default_factory=list)
    attempts: list[RemediationAttempt] = field(default_factory=list)
    config_error: str | None = None
    dry_run: bool = False
    report: str = ""

    @property
    def remediated(self) -> list[RemediationAttempt]:
        return [a for a in self.attempts if a.succeeded]

    @property
    def all_resolved(self) -> bool:
        if self.config_error:
            return False
        return all(a.succeeded or a.status is RemediationStatus.SKIPPED for a in self.attempts)


def build_accessor(settings: Settings) -> ClusterAccessor:
    return KubernetesAccessor(
        kubeconfig=str(settings.kubeconfig) if settings.kubeconfig else None,
        context=settings.context,
    )


def build_generator(
    settings: Settings,
    accessor: ClusterAccessor,
    backend: AIBackend,
    cache: CompletionCache,
) -> RemediationGenerator:
    verifier = RolloutVerifier(
        accessor,
        poll_interval=settings.poll_interval_seconds,
        timeout=settings.rollout_timeout_seconds,
        require_all_ready=settings.require_all_ready,
    )
    return RemediationGenerator(
        accessor,
        backend,
        cache,
        verifier=verifier,
        language=settings.language,
        anonymize=settings.anonymize,
        field_manager=settings.field_manager,
        dry_run=settings.dry_run,
    )


def run_cycle(
    settings: Settings | None = None,
    accessor: ClusterAccessor | None = None,
    cache: CompletionCache | None = None,
    cancel: threading.Event | None = None,
    backend_factory: Callable[[AIProviderConfig], AIBackend] = new_backend,
) -> CycleReport:
    """
    Run one full cycle: analyze, optionally explain, then remediate each issue in report order.

    The AI provider configuration is loaded fresh here, so edits made between
    cycles apply to the next one. A configuration error aborts the cycle; every
    other failure is recorded per analyzer or per issue.
    """
    opts = settings or get_settings()
    cancel = cancel or threading.Event()
    cycle = CycleReport(dry_run=opts.dry_run)

    try:
        provider = load_provider_config(opts)
    except ConfigError as e:
        logger.error("Cycle aborted, configuration could not be loaded: %s", e)
        cycle.config_error = str(e)
        cycle.report = build_report(cycle)
        return cycle
    cycle.provider = provider.name
    backend = backend_factory(provider)
    cache = cache or new_cache(opts)
    accessor = accessor or build_accessor(opts)

    # Analyze
    analyzers, config_errors = select_analyzers(opts.filters, opts.active_filters)
    context = AnalysisContext(
        accessor=accessor,
        namespace=opts.namespace,
        label_selector=opts.label_selector,
        cancel=cancel,
    )
    report = run_analysis(analyzers, context, max_concurrency=opts.max_concurrency, with_stats=opts.with_stats)
    report.config_errors.extend(config_errors)
    cycle.analysis = report
    results = report.results
    if opts.explain and results:
        results = explain_results(results, backend, cache, language=opts.language, anonymize=opts.anonymize)
    cycle.results = results

    # Remediate + verify
    generator = build_generator(opts, accessor, backend, cache)
    done: set[str] = set()
    for result in results:
        if cancel.is_set():
            logger.warning("Cycle cancelled, %d issue(s) left unremediated", len(results) - len(cycle.attempts))
            break
        try:
            target = str(resolve_target(result))
        except InputError:
            target = None
        if target is not None and target in done:
            logger.info("%s already attempted in this cycle, skipping %s %s", target, result.kind, result.name)
            cycle.attempts.append(
                RemediationAttempt(
                    result=result,
                    status=RemediationStatus.SKIPPED,
                    error=f"{target} already attempted in this cycle",
                )
            )
            continue
        cycle.attempts.append(generator.remediate(result, cancel))
        if target is not None:
            done.add(target)

    _log_summary(cycle)
    cycle.report = build_report(cycle)
    return cycle


def _log_summary(cycle: CycleReport) -> None:
    for attempt in cycle.attempts:
        if attempt.succeeded:
            logger.info("Remediated %s", attempt.identity)
        elif attempt.status is not RemediationStatus.SKIPPED:
            logger.warning("Not remediated %s: %s (%s)", attempt.identity, attempt.status.value, attempt.error)
    logger.info(
        "Cycle finished: %d issue(s), %d remediated, %d attempt(s) without verified fix",
        len(cycle.results),
        len(cycle.remediated),
        sum(1 for a in cycle.attempts if not a.succeeded and a.status is not RemediationStatus.SKIPPED),
    )


def _describe_attempt(attempt: RemediationAttempt) -> str:
    line = f"- **{attempt.identity}**: {attempt.status.value}"
    if attempt.apply_outcome:
        line += f" (apply: {attempt.apply_outcome.action})"
    if attempt.verification:
        line += f", rollout {attempt.verification.outcome.value}: {attempt.verification.message}"
    elif attempt.error:
        line += f": {attempt.error}"
    if attempt.cached:
        line += " [cached]"
    return line


def build_report(cycle: CycleReport) -> str:
    """Render the cycle as Markdown."""
    parts = [REPORT_HEADER]
    if cycle.config_error:
        parts.append(REPORT_CONFIG_ERROR.format(error=cycle.config_error))
        return "\n".join(parts)

    analysis = cycle.analysis
    if cycle.results:
        issues = []
        for r in cycle.results:
            owner = f" (owner {r.parent_object})" if r.parent_object else ""
            issues.append(f"- **{r.kind} {r.name}**{owner}")
            issues.extend(f"  - {f.text}" for f in r.errors)
            if r.details:
                issues.append(f"  - _{r.details.strip()}_")
        parts.append(REPORT_SECTION_ANALYSIS.format(issues="\n".join(issues)))
    else:
        parts.append(REPORT_NO_ISSUE)

    if analysis and (analysis.errors or analysis.config_errors):
        lines = [f"- {e.analyzer}: {e.message}" for e in analysis.errors]
        lines.extend(f"- {msg}" for msg in analysis.config_errors)
        parts.append(REPORT_SECTION_ANALYZER_ERRORS.format(errors="\n".join(lines)))

    if cycle.attempts:
        parts.append(REPORT_SECTION_ACTIONS.format(actions="\n".join(_describe_attempt(a) for a in cycle.attempts)))
    if cycle.dry_run and cycle.results:
        parts.append(REPORT_DRY_RUN)
    return "\n".join(parts)


def print_result(cycle: CycleReport, console: Console | None = None) -> None:
    """Print cycle report to console using Rich."""
    c = console or Console()
    c.print(Panel(Markdown(cycle.report), title="SRE Remediator Report", border_style="blue"))
    if cycle.analysis and cycle.analysis.stats:
        for stat in sorted(cycle.analysis.stats, key=lambda s: s.duration_seconds, reverse=True):
            c.print(f"[dim]{stat.analyzer}: {stat.duration_seconds:.2f}s[/dim]")
