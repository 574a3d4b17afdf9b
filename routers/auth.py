from datetime import datetime
from functools import lru_cache
from typing import Annotated, Optional

from fastapi import APIRouter, Cookie, Depends, Request, Response
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from pydantic import ValidationError

import config
from access import (
    CredentialStore,
    DispatcherSession,
    SessionState,
    StaticCredentialStore,
    authorize,
    check_session,
    issue_token,
    read_token,
)
from errors import InvalidInput
from models import utcnow
from schemas import LoginData, SessionRead

router = APIRouter(tags=["auth"])


@lru_cache
def get_credential_store() -> CredentialStore:
    return StaticCredentialStore.from_config()


def get_now() -> datetime:
    return utcnow()


CredentialStoreDep = Annotated[CredentialStore, Depends(get_credential_store)]
NowDep = Annotated[datetime, Depends(get_now)]


def get_dispatcher_session(
    session_token: Optional[str] = Cookie(default=None, alias=config.SESSION_COOKIE),
) -> Optional[DispatcherSession]:
    """
    Reads the 'session' cookie and returns the decoded dispatcher session,
    or None if there is no cookie / the signature is invalid.
    Expiry is checked by the access gate, not here.
    """
    return read_token(session_token)


DispatcherSessionDep = Annotated[
    Optional[DispatcherSession], Depends(get_dispatcher_session)
]


def set_session_cookie(response: Response, session: DispatcherSession) -> None:
    response.set_cookie(
        key=config.SESSION_COOKIE,
        value=issue_token(session),
        httponly=True,
        secure=False,
        samesite="lax",
        max_age=config.SESSION_TTL_HOURS * 60 * 60,
    )


LOGIN_FORM = """<!doctype html>
<title>Dispatcher login</title>
<form method="post" action="/login">
  <label>Username <input name="username" autocomplete="username" required></label>
  <label>Password <input name="password" type="password" autocomplete="current-password" required></label>
  <button type="submit">Log in</button>
</form>
"""


@router.get("/login", response_class=HTMLResponse)
def login_page(session: DispatcherSessionDep, now: NowDep):
    """
    Where unauthorized browsers are sent to re-authenticate.
    Already logged-in dispatchers go straight to the request list.
    """
    if check_session(session, now) is SessionState.VALID:
        return RedirectResponse(url="/requests/", status_code=303)
    return HTMLResponse(LOGIN_FORM)


@router.post("/login")
async def login(
    request: Request,
    credentials: CredentialStoreDep,
    now: NowDep,
):
    """
    Log in as dispatcher with username + password and set a signed cookie.

    Accepts either JSON (API clients) or form-data (from an HTML form).
    """
    content_type = request.headers.get("content-type", "")
    is_json = content_type.startswith("application/json")

    if is_json:
        try:
            payload = LoginData.model_validate(await request.json())
        except (ValueError, ValidationError):
            raise InvalidInput("Username and password are required") from None
    else:
        form = await request.form()

        raw_username = form.get("username")
        raw_password = form.get("password")

        username = raw_username if isinstance(raw_username, str) else None
        password = raw_password if isinstance(raw_password, str) else None

        if not username or not password:
            raise InvalidInput("Username and password are required")

        payload = LoginData(username=username, password=password)

    session = authorize(credentials, payload.username, payload.password, now=now)

    if is_json:
        resp = JSONResponse(
            {
                "message": "Login successful",
                "authorized": True,
                "expires_at": session.expires_at.isoformat(),
            }
        )
    else:
        resp = RedirectResponse(url="/requests/", status_code=303)
    set_session_cookie(resp, session)
    return resp


@router.get("/session", response_model=SessionRead)
def read_session(
    response: Response,
    session: DispatcherSessionDep,
    now: NowDep,
):
    """
    Report whether the caller holds a valid dispatcher session.
    An expired cookie is removed the first time it is seen.
    """
    state = check_session(session, now)
    if state is SessionState.EXPIRED:
        response.delete_cookie(config.SESSION_COOKIE)
    if state is not SessionState.VALID:
        return SessionRead(authorized=False)
    return SessionRead(authorized=True, expires_at=session.expires_at)


@router.post("/logout")
def logout():
    """
    Clear the session cookie.
    """
    response = JSONResponse({"message": "Logged out"})
    response.delete_cookie(config.SESSION_COOKIE)
    return response
