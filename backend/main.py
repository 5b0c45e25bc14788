import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pymongo.database import Database
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend.accounts import AccountService
from backend.auth import get_account_service, get_current_user, get_task_repository
from backend.config import Settings
from backend.database import ensure_indexes, get_database
from backend.errors import AppError, InternalError, UnauthorizedError, ValidationError
from backend.logging_setup import setup_logging
from backend.security import PasswordHasher, TokenService
from backend.stats import task_stats
from backend.tasks import MAX_PAGE_SIZE, TaskQuery, TaskRepository
from schemas import TaskPriority, TaskStatus

logger = logging.getLogger(__name__)


# Auth Endpoints
class RegisterPayload(BaseModel):
    name: str
    email: EmailStr
    password: str


class LoginPayload(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    bio: Optional[str] = None
    avatar: Optional[str] = None


class PasswordChange(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    current_password: Optional[str] = Field(None, alias="currentPassword")
    new_password: Optional[str] = Field(None, alias="newPassword")


auth_router = APIRouter(prefix="/api/auth", tags=["Auth"])


@auth_router.post("/register", status_code=status.HTTP_201_CREATED)
def register(payload: RegisterPayload, accounts: AccountService = Depends(get_account_service)):
    user, token = accounts.register(payload.name, payload.email, payload.password)
    return {"success": True, "message": "Account created successfully", "data": user, "token": token}


@auth_router.post("/login")
def login(payload: LoginPayload, accounts: AccountService = Depends(get_account_service)):
    user, token = accounts.login(payload.email, payload.password)
    return {"success": True, "message": "Login successful", "data": user, "token": token}


@auth_router.get("/me")
def get_me(current: dict = Depends(get_current_user)):
    return {"success": True, "data": current}


@auth_router.put("/profile")
def update_profile(
    data: ProfileUpdate,
    current: dict = Depends(get_current_user),
    accounts: AccountService = Depends(get_account_service),
):
    user = accounts.update_profile(current["id"], data.model_dump(exclude_none=True))
    return {"success": True, "message": "Profile updated successfully", "data": user}


@auth_router.put("/password")
def change_password(
    data: PasswordChange,
    current: dict = Depends(get_current_user),
    accounts: AccountService = Depends(get_account_service),
):
    token = accounts.change_password(current["id"], data.current_password, data.new_password)
    return {"success": True, "message": "Password updated successfully", "token": token}


# Task Endpoints
class TaskCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[datetime] = Field(None, alias="dueDate")
    tags: Optional[List[str]] = None


class TaskUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[datetime] = Field(None, alias="dueDate")
    tags: Optional[List[str]] = None


task_router = APIRouter(prefix="/api/tasks", tags=["Tasks"])


@task_router.get("/stats")
def get_task_stats(request: Request, current: dict = Depends(get_current_user)):
    settings: Settings = request.app.state.settings
    now = datetime.now(settings.tzinfo)
    return {"success": True, "data": task_stats(request.app.state.db, current["id"], now)}


@task_router.get("")
def list_tasks(
    search: Optional[str] = None,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    sort: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_PAGE_SIZE),
    current: dict = Depends(get_current_user),
    tasks: TaskRepository = Depends(get_task_repository),
):
    query = TaskQuery(search=search, status=status, priority=priority, sort=sort, page=page, limit=limit)
    result = tasks.list(current["id"], query)
    return {"success": True, "data": result.items, "pagination": result.pagination()}


@task_router.post("", status_code=status.HTTP_201_CREATED)
def create_task(
    data: TaskCreate,
    current: dict = Depends(get_current_user),
    tasks: TaskRepository = Depends(get_task_repository),
):
    task = tasks.create(current["id"], data.model_dump(exclude_none=True))
    return {"success": True, "message": "Task created successfully", "data": task}


@task_router.get("/{task_id}")
def get_task(
    task_id: str,
    current: dict = Depends(get_current_user),
    tasks: TaskRepository = Depends(get_task_repository),
):
    return {"success": True, "data": tasks.get(current["id"], task_id)}


@task_router.put("/{task_id}")
def update_task(
    task_id: str,
    data: TaskUpdate,
    current: dict = Depends(get_current_user),
    tasks: TaskRepository = Depends(get_task_repository),
):
    task = tasks.update(current["id"], task_id, data.model_dump(exclude_unset=True))
    return {"success": True, "message": "Task updated successfully", "data": task}


@task_router.delete("/{task_id}")
def delete_task(
    task_id: str,
    current: dict = Depends(get_current_user),
    tasks: TaskRepository = Depends(get_task_repository),
):
    tasks.delete(current["id"], task_id)
    return {"success": True, "message": "Task deleted successfully"}


# Error rendering
def _error_body(message: str, **extra) -> dict:
    return {"success": False, "message": message, **extra}


async def app_error_handler(request: Request, exc: AppError):
    body = _error_body(exc.message)
    if isinstance(exc, ValidationError) and exc.errors:
        body["errors"] = exc.errors
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, UnauthorizedError) else None
    return JSONResponse(status_code=exc.status_code, content=body, headers=headers)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    error = ValidationError.from_pydantic(exc)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_body(error.message, errors=error.errors),
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail
    if exc.status_code == status.HTTP_404_NOT_FOUND and message == "Not Found":
        message = f"Route {request.url.path} not found"
    return JSONResponse(status_code=exc.status_code, content=_error_body(message), headers=exc.headers)


async def storage_error_handler(request: Request, exc: PyMongoError):
    logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc)
    return await app_error_handler(request, InternalError())


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    body = _error_body("Internal Server Error")
    if request.app.state.settings.is_development:
        body["error"] = str(exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body)


def create_app(settings: Optional[Settings] = None, db: Optional[Database] = None) -> FastAPI:
    settings = settings or Settings()
    if db is None:
        db = get_database(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ensure_indexes(db)
        logger.info("TaskFlow API started (%s)", settings.environment)
        yield

    app = FastAPI(title="TaskFlow API", version="1.0.0", lifespan=lifespan)

    tokens = TokenService.from_settings(settings)
    hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    app.state.settings = settings
    app.state.db = db
    app.state.tokens = tokens
    app.state.accounts = AccountService(db, hasher, tokens)
    app.state.tasks = TaskRepository(db)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.client_url],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH"],
        allow_headers=["Content-Type", "Authorization"],
    )

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(PyMongoError, storage_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(auth_router)
    app.include_router(task_router)

    @app.get("/")
    def read_root():
        return {"message": "TaskFlow API running"}

    @app.get("/api/health")
    def health():
        """Liveness plus a round trip to the database."""
        try:
            db.client.admin.command("ping")
            database = "connected"
        except PyMongoError as e:
            logger.warning("Database ping failed: %s", e)
            database = "unavailable"
        return {
            "success": True,
            "message": "Server is running",
            "environment": settings.environment,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "database": database,
        }

    return app


if __name__ == "__main__":
    import uvicorn

    settings = Settings()
    setup_logging(settings.log_level)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)
