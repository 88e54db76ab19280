from fastapi import APIRouter

from jobqueue.api.v1.endpoints import jobs

router = APIRouter()

router.include_router(jobs.router, tags=["jobs"])
