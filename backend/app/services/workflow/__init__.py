"""Workflow webhook client and reply normalization."""

from app.services.workflow.client import (
    WorkflowClient,
    WorkflowConfigurationError,
    WorkflowOptions,
    WorkflowRequestError,
    WorkflowResult,
)
from app.services.workflow.normalizer import (
    NormalizedReply,
    Source,
    normalize_visualizations,
    normalize_workflow_reply,
    strip_url_from_text,
)

__all__ = [
    "WorkflowClient",
    "WorkflowConfigurationError",
    "WorkflowOptions",
    "WorkflowRequestError",
    "WorkflowResult",
    "NormalizedReply",
    "Source",
    "normalize_visualizations",
    "normalize_workflow_reply",
    "strip_url_from_text",
]
