import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse

import config
from db import create_db_and_tables
from errors import TransportServiceError, Unauthorized
from routers import auth, requests

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


app = FastAPI(title="Transport Requests")


@app.on_event("startup")
def on_startup() -> None:
    configure_logging()
    create_db_and_tables()


@app.exception_handler(TransportServiceError)
def handle_service_error(request: Request, exc: TransportServiceError):
    if isinstance(exc, Unauthorized) and "text/html" in request.headers.get("accept", ""):
        # Browsers go straight back to the login page.
        response = RedirectResponse(url=exc.redirect or config.LOGIN_URL, status_code=303)
    else:
        response = JSONResponse(exc.to_dict(), status_code=exc.status_code)
    if isinstance(exc, Unauthorized) and exc.clear_session:
        response.delete_cookie(config.SESSION_COOKIE)
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return response


@app.get("/")
def read_root():
    return {"name": app.title, "requests": "/requests/", "login": config.LOGIN_URL}


app.include_router(auth.router)
app.include_router(requests.router, prefix="/requests")
