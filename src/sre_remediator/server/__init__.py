"""Cluster agent: HTTP API over the cluster accessor."""

from sre_remediator.server.app import create_app

__all__ = ["create_app"]
