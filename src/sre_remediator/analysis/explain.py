"""Optional AI explanation pass filling Result.details."""

from __future__ import annotations

import logging

from sre_remediator.ai import AIBackend
from sre_remediator.analysis.models import Result
from sre_remediator.cache import CompletionCache, fingerprint
from sre_remediator.errors import AIBackendError, RateLimitedError

logger = logging.getLogger(__name__)

EXPLAIN_PROMPT = """Simplify the following Kubernetes error message delimited by triple dashes, written in {language}: --- {failure} ---.
Provide the most likely solution as short numbered steps, in no more than 280 characters.
Write the output in the following format:
Error: {{Explain error here}}
Solution: {{Step by step solution here}}"""


def explain_results(
    results: list[Result],
    backend: AIBackend,
    cache: CompletionCache,
    language: str = "english",
    anonymize: bool = False,
) -> list[Result]:
    """
    Return copies of results with details filled in by the AI backend.

    A failed explanation leaves details empty for that result; after a rate limit
    no further requests are made in this pass.
    """
    explained: list[Result] = []
    rate_limited = False
    for result in results:
        if rate_limited or not result.errors:
            explained.append(result)
            continue
        failure = result.failure_text(masked=anonymize)
        key = fingerprint(backend.name, language, failure, purpose="explain")
        text = cache.lookup(key)
        if text is None:
            try:
                text = backend.complete(EXPLAIN_PROMPT.format(language=language, failure=failure))
            except RateLimitedError as e:
                logger.warning("Explanation stopped: %s", e)
                rate_limited = True
                explained.append(result)
                continue
            except AIBackendError as e:
                logger.warning("Could not explain %s %s: %s", result.kind, result.name, e)
                explained.append(result)
                continue
            cache.store(key, text)
        details = result.unmask(text) if anonymize else text
        explained.append(result.model_copy(update={"details": details}))
    return explained
