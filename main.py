# LibraryGate - multi-tenant access control for library content in schools
# Library owners grant schools, schools grant users/roles/classes, teachers grant students.
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import select

from config import get_settings
from database.database import init_db, get_db, dispose_db
from database.models import User
from auth import verify_password, create_access_token
from access.audit import start_audit_logger, shutdown_audit_logger
from server.endpoints import router as access_router, audit_router
from server.grants import library_router, school_router, teacher_router

logger = logging.getLogger(__name__)


class LoginRequest(BaseModel):
    email: str
    password: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: str
    user_id: str
    school_id: str | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper())
    await init_db(settings.database_url)
    start_audit_logger(settings.audit_log_path)
    logger.info("LibraryGate started (database: %s)", settings.database_url)
    yield
    shutdown_audit_logger()
    await dispose_db()


app = FastAPI(
    title="LibraryGate",
    description="Three-tier access control: library -> school -> teacher",
    lifespan=lifespan,
)


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.post("/api/login", response_model=LoginResponse)
async def login(body: LoginRequest, db=Depends(get_db)):
    """Email + password. The JWT carries user id, role and school for the identity scope."""
    r = await db.execute(select(User).where(User.email == body.email))
    user = r.scalar_one_or_none()
    if not user or not verify_password(body.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    token = create_access_token({"sub": user.id, "role": user.role, "school_id": user.school_id})
    return LoginResponse(access_token=token, role=user.role, user_id=user.id, school_id=user.school_id)


app.include_router(access_router)
app.include_router(audit_router)
app.include_router(library_router)
app.include_router(school_router)
app.include_router(teacher_router)


if __name__ == "__main__":
    import os
    import uvicorn
    host = os.environ.get("UVICORN_HOST", "127.0.0.1")
    port = int(os.environ.get("PORT", "8000"))
    uvicorn.run("main:app", host=host, port=port, reload=False)
