import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1.billing.router import router as billing_router
from app.api.v1.extra_charges.router import router as extra_charges_router
from app.api.v1.jobs.router import router as jobs_router
from app.api.v1.leaves.router import router as leaves_router
from app.api.v1.salary_deductions.router import router as salary_deductions_router
from app.core.config import settings
from app.db.session import AsyncSessionLocal
from app.scheduler.jobs import JobScheduler


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler: JobScheduler = app.state.job_scheduler
    if settings.scheduler_enabled:
        scheduler.start()
    yield
    await scheduler.shutdown()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Campus Billing Backend", lifespan=lifespan)

    # CORS: allow frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Jobs are registered even when the scheduler is disabled so they can be triggered manually
    app.state.job_scheduler = JobScheduler(AsyncSessionLocal)

    # Routers
    app.include_router(extra_charges_router)
    app.include_router(billing_router)
    app.include_router(salary_deductions_router)
    app.include_router(leaves_router)
    app.include_router(jobs_router)

    return app


app = create_app()
