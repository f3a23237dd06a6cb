"""Message templates for the cycle report."""

REPORT_HEADER = """
# SRE Remediator Report
"""

REPORT_SECTION_ANALYSIS = """
## What went wrong
{issues}
"""

REPORT_SECTION_ANALYZER_ERRORS = """
## Analyzer errors
{errors}
"""

REPORT_SECTION_ACTIONS = """
## Remediation
{actions}
"""

REPORT_NO_ISSUE = """
## Result
No unhealthy workload was detected by the selected analyzers.
"""

REPORT_CONFIG_ERROR = """
## Cycle aborted
Configuration could not be loaded: {error}
"""

REPORT_DRY_RUN = """
(Dry run: corrected manifests were generated but not applied.)
"""
