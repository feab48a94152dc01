from fastapi import APIRouter, Request
from sqlalchemy import text

router = APIRouter()


@router.get("/health")
async def health(request: Request) -> dict[str, object]:
    service = getattr(request.app.state, "chat_service", None)
    if service is None:
        return {"status": "starting"}
    return {
        "status": "ok",
        "conversations": len(service.store),
        "queued": len(service.queue),
    }


@router.get("/health/db")
async def db_health(request: Request) -> dict[str, str]:
    engine = getattr(request.app.state, "db_engine", None)
    if engine is None:
        return {"db": "disabled"}
    async with engine.connect() as connection:
        await connection.execute(text("SELECT 1"))
    return {"db": "ok"}
