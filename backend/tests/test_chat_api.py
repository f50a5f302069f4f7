import json

import pytest

from app.api import chat as chat_api
from app.services.llm.classifier import WorkflowClassifier
from app.services.llm.rewriter import QuestionRewriter
from app.services.pipeline import ChatPipeline
from app.services.workflow.client import WorkflowRequestError
from app.utils import cache
from app.utils.cache import CacheKeys

EMAIL = "tester@vestatelemed.com"


@pytest.fixture()
def use_pipeline(app, chat_repository, fake_llm_factory, fake_workflow_factory):
    """Serve /api/chat with fake model and webhook clients."""

    def _use(responses=None, classifier_outputs=None, has_api_key=True, **workflow_kwargs):
        workflow = fake_workflow_factory(responses=responses, **workflow_kwargs)
        pipeline = ChatPipeline(
            repo=chat_repository,
            classifier=WorkflowClassifier(
                llm=fake_llm_factory(classifier_outputs, has_api_key=has_api_key)
            ),
            rewriter=QuestionRewriter(llm=fake_llm_factory(), enabled=False),
            workflow_client=workflow,
        )
        app.dependency_overrides[chat_api.get_chat_pipeline] = lambda: pipeline
        return workflow

    return _use


def test_ask_returns_reconciled_reply(client, use_pipeline, workflow_result, chat_repository):
    workflow = use_pipeline(
        responses=[
            workflow_result(
                {"reply": "Done", "sources": [{"url": "https://s.io/1", "score": 0.5}]},
                execution_id="exec-1",
            )
        ]
    )

    response = client.post("/api/chat", json={"question": "How many reads?", "RAG": True})

    assert response.status_code == 200
    payload = response.json()
    assert payload["reply"] == "Done"
    assert payload["workflow"] == "GOOGLE_BUCKET_SCRAPER"
    assert payload["sources"] == [
        {"url": "https://s.io/1", "title": None, "snippet": None, "score": 0.5}
    ]
    assert payload["raw"]["reply"] == "Done"
    assert response.headers["execution-id"] == "exec-1"
    [chat_id] = chat_repository.store.chats
    assert payload["chat_id"] == str(chat_id)
    assert workflow.posts[0][1]["RAG"] is True


def test_ask_accepts_camel_case_fields(client, use_pipeline, workflow_result):
    workflow = use_pipeline(responses=[workflow_result("plain reply")])

    response = client.post(
        "/api/chat",
        json={
            "question": "Map CPT 70450",
            "radmapping": True,
            "studyAnalysis": True,
            "noWorkflow": True,
            "mode": "slow",
            "history": [{"role": "user", "content": "hi"}],
        },
    )

    assert response.status_code == 200
    assert response.json()["reply"] == "plain reply"
    url, payload = workflow.posts[0]
    assert url.endswith("/radmapping")
    assert payload["studyAnalysis"] is True
    assert payload["noWorkflow"] is True
    assert payload["mode"] == "slow"
    assert payload["history"] == [{"role": "user", "content": "hi"}]
    assert "execution-id" not in response.headers


def test_ask_requires_question(client, use_pipeline):
    use_pipeline()

    response = client.post("/api/chat", json={"question": "  "})

    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Question is required"


def test_ask_unknown_chat(client, use_pipeline):
    use_pipeline()

    response = client.post(
        "/api/chat",
        json={"question": "hi", "chatId": "00000000-0000-0000-0000-000000000001"},
    )

    assert response.status_code == 404


def test_ask_without_api_key(client, use_pipeline):
    use_pipeline(has_api_key=False)

    response = client.post("/api/chat", json={"question": "hi"})

    assert response.status_code == 500
    assert response.json()["error"]["message"] == "Missing OPENAI_API_KEY"


def test_ask_without_workflow_url(client, use_pipeline):
    use_pipeline(urls={})

    response = client.post("/api/chat", json={"question": "hi", "radmapping": True})

    assert response.status_code == 500
    assert response.json()["error"]["message"] == (
        "No workflow URL configured for label RADMAPPING_PLUS"
    )


def test_ask_workflow_error_status(client, use_pipeline, workflow_result):
    use_pipeline(responses=[workflow_result({"detail": "bad"}, status_code=503)])

    response = client.post("/api/chat", json={"question": "hi", "rag": True})

    assert response.status_code == 502
    assert response.json() == {
        "error": "Workflow request failed",
        "status": 503,
        "body": {"detail": "bad"},
    }


def test_ask_workflow_unreachable(client, use_pipeline):
    use_pipeline(error=WorkflowRequestError("timeout"))

    response = client.post("/api/chat", json={"question": "hi", "rag": True})

    assert response.status_code == 502
    assert response.json()["error"]["message"] == "Workflow request failed"


def test_ask_invalidates_chat_list_cache(client, use_pipeline, workflow_result):
    use_pipeline(responses=[workflow_result("ok")])
    cache._cache[CacheKeys.chats(EMAIL)] = (float("inf"), [])

    client.post("/api/chat", json={"question": "hi", "rag": True})

    assert CacheKeys.chats(EMAIL) not in cache._cache


def test_ask_classifier_label_is_echoed(client, use_pipeline, workflow_result):
    label = json.dumps({"label": "RADMAPPING_PLUS", "confidence": "high", "rationale": "cpt"})
    use_pipeline(responses=[workflow_result("ok")], classifier_outputs=[label])

    response = client.post("/api/chat", json={"question": "CPT for head CT"})

    assert response.json()["classifier"] == {
        "label": "RADMAPPING_PLUS",
        "confidence": "high",
        "rationale": "cpt",
        "source": "llm",
    }
