"""FastAPI app exposing the assistant and the document viewer."""

from __future__ import annotations

import html
import logging
import secrets
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field

from .assistant import AssistantServices, run_assistant_with_budget
from .config import Settings, get_settings
from .errors import StoreError

logger = logging.getLogger(__name__)

QUESTION_MIN_LENGTH = 3
QUESTION_HINT = "The question must be at least 3 characters long."
GENERIC_HINT = "Check that all required fields are present and valid."


class AssistantRequest(BaseModel):
    """Body of ``POST /assistant/run``."""

    model_config = ConfigDict(populate_by_name=True)

    question: str = Field(min_length=QUESTION_MIN_LENGTH)
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=5, ge=1, le=20, alias="pageSize")
    locale: Optional[str] = None


def validation_payload(errors: list[dict[str, Any]]) -> dict[str, Any]:
    """400 body: each issue as ``{path, message}`` plus a hint for the common mistake."""
    issues = []
    for error in errors:
        loc = [str(part) for part in error.get("loc", ()) if part != "body"]
        issues.append({"path": ".".join(loc), "message": error.get("msg", "")})
    short_question = any(
        issue["path"] == "question" and "at least 3" in issue["message"] for issue in issues
    )
    return {
        "message": "Invalid request payload",
        "issues": issues,
        "hint": QUESTION_HINT if short_question else GENERIC_HINT,
    }


def render_document_html(title: str, text: str) -> str:
    return (
        "<!DOCTYPE html>\n<html lang=\"no\">\n<head>\n<meta charset=\"utf-8\">\n"
        f"<title>{html.escape(title)}</title>\n</head>\n<body>\n"
        f"<pre>{html.escape(text)}</pre>\n</body>\n</html>\n"
    )


def create_app(settings: Settings | None = None, services: AssistantServices | None = None) -> FastAPI:
    """
    Create the FastAPI app.

    Args:
        settings: Settings to use; defaults to the process-wide instance.
        services: Prebuilt services. When omitted they are built on startup
            and closed on shutdown.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = app.state.services is None
        if owned:
            logger.info("Building assistant services (collection=%s)", settings.qdrant_collection_name)
            app.state.services = AssistantServices.from_settings(settings)
        try:
            yield
        finally:
            if owned and app.state.services is not None:
                await app.state.services.aclose()
                app.state.services = None

    app = FastAPI(title="Lovassist", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.services = services

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        payload = validation_payload(list(exc.errors()))
        logger.warning("Rejected %s %s: %s", request.method, request.url.path, payload["issues"])
        return JSONResponse(status_code=400, content=payload)

    def require_bearer(request: Request) -> None:
        expected = settings.api_bearer_token
        if not expected:
            return
        header = request.headers.get("authorization", "")
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not secrets.compare_digest(token.strip(), expected):
            logger.warning("Unauthorized request to %s", request.url.path)
            raise HTTPException(status_code=401, detail="Missing or invalid bearer token")

    def get_services(request: Request) -> AssistantServices:
        current = request.app.state.services
        if current is None:
            raise HTTPException(status_code=503, detail="Services not initialised")
        return current

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/assistant/run", dependencies=[Depends(require_bearer)])
    async def assistant_run(
        req: AssistantRequest,
        services: AssistantServices = Depends(get_services),
    ) -> JSONResponse:
        logger.info(
            "Assistant run requested: question_len=%d page=%d pageSize=%d locale=%s",
            len(req.question),
            req.page,
            req.page_size,
            req.locale,
        )
        try:
            response, timed_out = await run_assistant_with_budget(
                req.question,
                services,
                settings,
                page=req.page,
                page_size=req.page_size,
                locale=req.locale,
            )
        except ValueError as exc:
            return JSONResponse(
                status_code=400,
                content={
                    "message": "Invalid request payload",
                    "issues": [{"path": "question", "message": str(exc)}],
                    "hint": GENERIC_HINT,
                },
            )
        return JSONResponse(status_code=504 if timed_out else 200, content=response.to_dict())

    @app.get("/documents/xml", dependencies=[Depends(require_bearer)])
    async def document_viewer(
        filename: str = Query(min_length=1),
        member: str = Query(min_length=1),
        format: Literal["html", "markdown", "json"] = Query(default="html"),
        services: AssistantServices = Depends(get_services),
    ) -> Any:
        try:
            text, resolved_member = await services.store.fetch_document(filename, member)
        except StoreError as exc:
            logger.error("Document fetch failed for %s:%s: %s", filename, member, exc)
            raise HTTPException(status_code=502, detail="Document store unavailable") from exc
        if text is None:
            raise HTTPException(status_code=404, detail="Document not found")

        logger.info("Serving %s:%s as %s (%d chars)", filename, resolved_member, format, len(text))
        if format == "json":
            return JSONResponse(
                content={"filename": filename, "member": resolved_member, "content": text},
            )
        if format == "markdown":
            return PlainTextResponse(text, media_type="text/markdown; charset=utf-8")
        return HTMLResponse(render_document_html(f"{filename} / {resolved_member}", text))

    return app
