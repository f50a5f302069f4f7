"""Business logic services for Veston.

This package intentionally avoids eager imports to prevent circular import
chains during application startup.
"""

from importlib import import_module

__all__ = [
    # Chats
    "ChatRepository",
    "SQLChatRepository",
    "InMemoryChatRepository",
    "ChatPipeline",
    "ChatTurnResult",
    # LLM
    "LLMService",
    "WorkflowClassifier",
    "QuestionRewriter",
    "ChatTitleGenerator",
    # Workflows
    "WorkflowClient",
    "normalize_workflow_reply",
    # Visuals
    "VisualizationService",
]

_LAZY_IMPORTS = {
    "ChatRepository": ("app.services.chats", "ChatRepository"),
    "SQLChatRepository": ("app.services.chats", "SQLChatRepository"),
    "InMemoryChatRepository": ("app.services.chats", "InMemoryChatRepository"),
    "ChatPipeline": ("app.services.pipeline", "ChatPipeline"),
    "ChatTurnResult": ("app.services.pipeline", "ChatTurnResult"),
    "LLMService": ("app.services.llm", "LLMService"),
    "WorkflowClassifier": ("app.services.llm", "WorkflowClassifier"),
    "QuestionRewriter": ("app.services.llm", "QuestionRewriter"),
    "ChatTitleGenerator": ("app.services.llm", "ChatTitleGenerator"),
    "WorkflowClient": ("app.services.workflow", "WorkflowClient"),
    "normalize_workflow_reply": ("app.services.workflow", "normalize_workflow_reply"),
    "VisualizationService": ("app.services.visualization", "VisualizationService"),
}


def __getattr__(name: str):
    target = _LAZY_IMPORTS.get(name)
    if target is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module_name, attr_name = target
    return getattr(import_module(module_name), attr_name)
