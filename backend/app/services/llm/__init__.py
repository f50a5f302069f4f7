"""LLM services for Veston.

Routing classification, coreference rewriting and chat titles, all backed by
the OpenAI API.
"""

from importlib import import_module

__all__ = [
    "LLMService",
    "LLMUnavailableError",
    "WorkflowClassifier",
    "ClassificationResult",
    "QuestionRewriter",
    "RewriteResult",
    "ChatTitleGenerator",
]

_LAZY_IMPORTS = {
    "LLMService": ("app.services.llm.client", "LLMService"),
    "LLMUnavailableError": ("app.services.llm.client", "LLMUnavailableError"),
    "WorkflowClassifier": ("app.services.llm.classifier", "WorkflowClassifier"),
    "ClassificationResult": ("app.services.llm.classifier", "ClassificationResult"),
    "QuestionRewriter": ("app.services.llm.rewriter", "QuestionRewriter"),
    "RewriteResult": ("app.services.llm.rewriter", "RewriteResult"),
    "ChatTitleGenerator": ("app.services.llm.titles", "ChatTitleGenerator"),
}


def __getattr__(name: str):
    target = _LAZY_IMPORTS.get(name)
    if target is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module_name, attr_name = target
    return getattr(import_module(module_name), attr_name)
