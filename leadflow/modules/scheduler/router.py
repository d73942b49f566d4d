from fastapi import APIRouter, Depends, HTTPException
from leadflow.core.db import SessionLocal
from leadflow.core.security import require_scopes
from leadflow.modules.scheduler.jobs import build_ticker
from leadflow.modules.scheduler.tick import Ticker, JobSummary

router = APIRouter()

def get_ticker() -> Ticker:
    return build_ticker(SessionLocal)

@router.post("/jobs/tick", response_model=dict[str, JobSummary], dependencies=[Depends(require_scopes("jobs:run"))])
async def tick(ticker: Ticker = Depends(get_ticker)):
    return await ticker.tick()

@router.post("/jobs/{job_name}", response_model=JobSummary, dependencies=[Depends(require_scopes("jobs:run"))])
async def run_job(job_name: str, ticker: Ticker = Depends(get_ticker)):
    job = ticker.job(job_name.replace("-", "_"))
    if not job:
        raise HTTPException(status_code=404, detail="Unknown job")
    return await ticker.run_job(job)
