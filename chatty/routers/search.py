"""
Combined search: people by display name, messages from cached threads.
"""

from fastapi import APIRouter, Depends, Query

from chatty.database import get_store
from chatty.dependencies.auth import AuthenticatedUser, get_current_user, get_session
from chatty.errors import ChatError, to_http_exception
from chatty.limits import MAX_SEARCH_TERM_CHARS
from chatty.routers.users import find_users
from chatty.schemas.conversation import SearchResponse
from chatty.services.search import search_messages

router = APIRouter()


@router.get("/search", response_model=SearchResponse)
async def search(
    q: str = Query(..., max_length=MAX_SEARCH_TERM_CHARS),
    user: AuthenticatedUser = Depends(get_current_user),
    session=Depends(get_session),
    store=Depends(get_store),
):
    try:
        users = await find_users(store, q, user.user_id)
    except ChatError as exc:
        raise to_http_exception(exc)

    return SearchResponse(users=users, messages=search_messages(session, user.user_id, q))
