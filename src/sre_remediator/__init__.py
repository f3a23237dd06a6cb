"""SRE Remediator: diagnose unhealthy workloads, generate a corrected manifest, apply it, verify the rollout."""

__version__ = "0.1.0"
