"""
User profile endpoints
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from chatty.config import settings
from chatty.database import get_store
from chatty.dependencies.auth import AuthenticatedUser, get_current_user, get_session
from chatty.errors import ChatError, to_http_exception
from chatty.limits import MAX_SEARCH_TERM_CHARS, MIN_SEARCH_TERM_CHARS
from chatty.schemas.user import ProfileUpdate, UserProfile, UserSearchResponse

router = APIRouter()


def public_profile(profile: UserProfile) -> UserProfile:
    """Profile as shown to other users (no email)"""
    return profile.model_copy(update={"email": None})


async def find_users(store, term: str, exclude_user_id: str):
    """Display-name prefix search, excluding the caller"""
    term = term.strip()
    if len(term) < MIN_SEARCH_TERM_CHARS:
        return []
    # One extra row so the caller can be dropped without shrinking the page
    profiles = await store.search_profiles(term, settings.USER_SEARCH_LIMIT + 1)
    return [
        public_profile(profile) for profile in profiles
        if profile.id != exclude_user_id
    ][:settings.USER_SEARCH_LIMIT]


@router.get("/users/search", response_model=UserSearchResponse)
async def search_users(
    q: str = Query(..., max_length=MAX_SEARCH_TERM_CHARS),
    user: AuthenticatedUser = Depends(get_current_user),
    store=Depends(get_store),
):
    try:
        users = await find_users(store, q, user.user_id)
    except ChatError as exc:
        raise to_http_exception(exc)
    return UserSearchResponse(users=users)


@router.patch("/users/me", response_model=UserProfile)
async def update_me(
    update: ProfileUpdate,
    user: AuthenticatedUser = Depends(get_current_user),
    store=Depends(get_store),
):
    """Edit the caller's own profile; nobody else can write it"""
    if update.display_name is None and update.avatar_url is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "empty_update", "message": "Nothing to update"},
        )
    try:
        return await store.update_profile(
            user.user_id,
            display_name=update.display_name,
            avatar_url=update.avatar_url,
        )
    except ChatError as exc:
        raise to_http_exception(exc)


@router.post("/users/me/ping", status_code=status.HTTP_204_NO_CONTENT)
async def ping_me(
    user: AuthenticatedUser = Depends(get_current_user),
    store=Depends(get_store),
):
    """Mark the caller active now"""
    try:
        await store.touch_user(user.user_id)
    except ChatError as exc:
        raise to_http_exception(exc)


@router.get("/users/{user_id}", response_model=UserProfile)
async def get_user(
    user_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    session=Depends(get_session),
    store=Depends(get_store),
):
    try:
        profile = await store.get_profile(user_id)
    except ChatError as exc:
        raise to_http_exception(exc)

    if user_id != user.user_id:
        session.cache_profile(profile)
        return public_profile(profile)
    return profile
