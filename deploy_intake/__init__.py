"""
Deploy Intake module.

Accepts deployment requests, enforces per-owner quotas, stages the source in
the object store and hands job ids to the workers through the queue.
"""

from .admission import AdmissionController
from .branches import GitHubBranchLister
from .fetcher import GitSourceFetcher
from .service import DeploymentService

__all__ = ["AdmissionController", "DeploymentService", "GitHubBranchLister", "GitSourceFetcher"]
