from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from examsched.api.routes import failures, health, scheduling
from examsched.core.config import get_settings
from examsched.core.exceptions import AppError
from examsched.db.bootstrap import ensure_runtime_schema_compatibility

settings = get_settings()

logging.getLogger("examsched").setLevel(settings.log_level.upper())


@asynccontextmanager
async def lifespan(_: FastAPI):
    ensure_runtime_schema_compatibility()
    yield


async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.message, "details": exc.details},
    )


app = FastAPI(title=settings.project_name, lifespan=lifespan)
app.add_exception_handler(AppError, app_error_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, prefix=settings.api_prefix, tags=["health"])
app.include_router(scheduling.router, prefix=f"{settings.api_prefix}/scheduling", tags=["scheduling"])
app.include_router(failures.router, prefix=f"{settings.api_prefix}/failures", tags=["failures"])
