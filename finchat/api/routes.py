from fastapi import APIRouter, Depends, HTTPException
from loguru import logger

from finchat.assistant.session import SessionManager
from finchat.db.repository import ExpenseNotFoundError, LedgerRepository
from finchat.deps import get_repository, get_sessions
from finchat.models.schemas import (
    ActivityEntry,
    ChatRequest,
    ChatResponse,
    Expense,
    Goal,
    TranscriptResponse,
    UserProfile,
)

router = APIRouter()


@router.post("/chat", response_model=ChatResponse)
async def chat(request: ChatRequest, sessions: SessionManager = Depends(get_sessions)):
    logger.info("Chat turn from {}: {}", request.user_id, request.message)
    session = sessions.get(request.user_id)
    replies = await session.submit(request.message)
    kind = session.active_flow_kind
    response = ChatResponse(
        replies=replies,
        suggestions=session.suggestions,
        active_flow=kind.value if kind else None,
        error=session.error,
    )
    # The user said goodbye with nothing pending; start fresh next time
    sessions.release(session)
    return response


@router.get("/chat/{user_id}", response_model=TranscriptResponse)
def get_transcript(user_id: str, sessions: SessionManager = Depends(get_sessions)):
    session = sessions.get(user_id)
    kind = session.active_flow_kind
    return TranscriptResponse(
        messages=session.messages,
        suggestions=session.suggestions,
        active_flow=kind.value if kind else None,
    )


@router.delete("/chat/{user_id}")
def drop_session(user_id: str, sessions: SessionManager = Depends(get_sessions)):
    if not sessions.drop(user_id):
        raise HTTPException(status_code=404, detail="No active session")
    logger.info("Dropped session for {}", user_id)
    return {"detail": "Session cleared"}


@router.get("/expenses/{user_id}", response_model=list[Expense])
async def list_expenses(
    user_id: str, limit: int = 20, repo: LedgerRepository = Depends(get_repository)
):
    return await repo.fetch_recent_expenses(user_id, limit)


@router.delete("/expenses/{user_id}/{expense_id}")
async def delete_expense(
    user_id: str, expense_id: int, repo: LedgerRepository = Depends(get_repository)
):
    try:
        await repo.delete_expense(user_id, expense_id)
    except ExpenseNotFoundError:
        raise HTTPException(status_code=404, detail="Expense not found")
    return {"detail": "Expense deleted"}


@router.get("/goals/{user_id}", response_model=list[Goal])
async def list_goals(user_id: str, repo: LedgerRepository = Depends(get_repository)):
    return await repo.list_goals(user_id)


@router.get("/profile/{user_id}", response_model=UserProfile)
async def get_profile(user_id: str, repo: LedgerRepository = Depends(get_repository)):
    profile = await repo.get_user_profile(user_id)
    if profile is None:
        raise HTTPException(status_code=404, detail="Profile not set")
    return profile


@router.get("/activity/{user_id}", response_model=list[ActivityEntry])
async def list_activity(
    user_id: str, limit: int = 20, repo: LedgerRepository = Depends(get_repository)
):
    return await repo.recent_activity(user_id, limit)
