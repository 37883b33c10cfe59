"""Jobs router: inspect and manually trigger recurring background jobs."""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel

from app.scheduler.jobs import JobScheduler, RecurringTask

from .schemas import JobStatus

router = APIRouter(prefix="/api/v1/jobs", tags=["jobs"])


def get_job_scheduler(request: Request) -> JobScheduler:
    return request.app.state.job_scheduler


def _to_status(task: RecurringTask) -> JobStatus:
    result = task.last_result
    if isinstance(result, BaseModel):
        result = result.model_dump(mode="json")
    return JobStatus(
        name=task.name,
        trigger=str(task.trigger),
        is_running=task.is_running,
        run_count=task.run_count,
        last_run_at=task.last_run_at,
        last_finished_at=task.last_finished_at,
        last_error=task.last_error,
        last_result=result,
    )


@router.get("", response_model=List[JobStatus])
async def list_jobs(scheduler: JobScheduler = Depends(get_job_scheduler)) -> List[JobStatus]:
    return [_to_status(t) for t in scheduler.list_tasks()]


@router.post("/{name}/trigger", response_model=JobStatus)
async def trigger_job(name: str, scheduler: JobScheduler = Depends(get_job_scheduler)) -> JobStatus:
    """Run a job now and wait for it; a run already in flight is joined rather than repeated."""
    task = scheduler.get(name)
    if not task:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Job '{name}' not found")
    await task.trigger_now()
    return _to_status(task)
