import asyncio
import logging

import httpx
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

import app.models  # noqa: F401
from app.api.chat import router as chat_router
from app.api.contacts import router as contacts_router
from app.api.webhooks import router as webhooks_router
from app.auth import require_admin
from app.config import settings
from app.database import engine

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="GHL Assistant",
    description="Conversational assistant over GoHighLevel CRM data",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:3001"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(chat_router, dependencies=[Depends(require_admin)])
app.include_router(webhooks_router)
app.include_router(contacts_router, dependencies=[Depends(require_admin)])


async def _check_external_api(
    name: str,
    url: str,
    *,
    headers: dict[str, str] | None = None,
) -> tuple[str, dict[str, str | int]]:
    try:
        async with httpx.AsyncClient(timeout=3.0) as client:
            response = await client.get(url, headers=headers)
        if response.status_code >= 500:
            return name, {"status": "error", "code": response.status_code}
        return name, {"status": "ok", "code": response.status_code}
    except Exception:
        return name, {"status": "error"}


@app.get("/health")
async def health() -> dict:
    status = "ok"
    db_status = "ok"
    external_status: dict[str, dict[str, str | int]] = {}

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception:
        status = "degraded"
        db_status = "error"

    results = await asyncio.gather(_check_external_api("ghl_mcp", settings.ghl_mcp_url))
    for name, result in results:
        external_status[name] = result
        if result.get("status") == "error":
            status = "degraded"

    return {"status": status, "db": db_status, "external_apis": external_status}


@app.exception_handler(Exception)
async def unhandled_exception_handler(_, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": str(exc),
            "mode": settings.environment,
        },
    )
