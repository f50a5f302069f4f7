"""Chat API endpoints: ask a question, generate a chat title."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.responses import JSONResponse

from app.api.deps import CurrentUser, get_chat_repository, get_current_user
from app.schemas.chat import AskRequest, AskResponse, TitleRequest, TitleResponse
from app.services.chats import ChatRepository
from app.services.llm.client import LLMUnavailableError
from app.services.llm.titles import ChatTitleGenerator
from app.services.pipeline import (
    ChatNotFoundError,
    ChatPersistenceError,
    ChatPipeline,
    EmptyQuestionError,
    WorkflowFailedError,
)
from app.services.workflow.client import (
    EXECUTION_ID_HEADER,
    WorkflowConfigurationError,
    WorkflowOptions,
    WorkflowRequestError,
)
from app.utils.cache import CacheKeys, clear_cache

logger = logging.getLogger("veston.api.chat")

router = APIRouter(prefix="/chat", tags=["Chat"])


async def get_chat_pipeline(
    repo: Annotated[ChatRepository, Depends(get_chat_repository)],
) -> ChatPipeline:
    return ChatPipeline(repo=repo)


@router.post("", response_model=AskResponse)
async def ask(
    request: AskRequest,
    response: Response,
    pipeline: Annotated[ChatPipeline, Depends(get_chat_pipeline)],
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
):
    """Answer a question through the workflow pipeline.

    This endpoint:
    1. Stores the question (creating the chat when ``chat_id`` is omitted)
    2. Rewrites follow-ups into standalone questions using chat history
    3. Routes the question to a workflow webhook and reconciles its reply
    4. Stores the answer and its sources
    """
    options = WorkflowOptions(
        mode=request.mode,
        fast=request.fast,
        slow=request.slow,
        openai=request.openai,
        gemini=request.gemini,
        radmapping=request.radmapping,
        rag=request.rag,
        study_analysis=request.study_analysis,
        no_workflow=request.no_workflow,
    )
    history = [turn.model_dump() for turn in request.history] if request.history else None

    try:
        result = await pipeline.ask(
            user_email=current_user.email,
            user_id=current_user.id,
            question=request.question,
            chat_id=request.chat_id,
            history=history,
            options=options,
        )
    except EmptyQuestionError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Question is required")
    except ChatNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found")
    except (ChatPersistenceError, WorkflowConfigurationError) as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
    except LLMUnavailableError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Missing OPENAI_API_KEY",
        )
    except WorkflowRequestError:
        logger.exception("Workflow webhook unreachable")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Workflow request failed")
    except WorkflowFailedError as exc:
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={
                "error": "Workflow request failed",
                "status": exc.status_code,
                "body": exc.body,
            },
        )
    finally:
        await clear_cache(CacheKeys.chats_prefix(current_user.email))

    if result.execution_id:
        response.headers[EXECUTION_ID_HEADER] = result.execution_id

    return AskResponse(
        reply=result.reply,
        raw=result.raw,
        chat_id=result.chat_id,
        workflow=result.workflow,
        classifier=result.classifier,
        rewrite=result.rewrite,
        sources=result.sources,
        visualizations=result.visualizations,
        user_message_id=result.user_message_id,
        assistant_message_id=result.assistant_message_id,
    )


@router.post("/title", response_model=TitleResponse, response_model_exclude_none=True)
async def generate_title(request: TitleRequest):
    """Suggest a short title for a chat from its first message.

    Always answers 200; when the model is slow or unavailable the trimmed
    message is used instead.
    """
    result = await ChatTitleGenerator().generate(request.message, request.fallback)
    return TitleResponse(title=result.title, reason=result.reason)
