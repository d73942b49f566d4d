from fastapi import APIRouter
from leadflow.modules.leads.router import router as leads_router
from leadflow.modules.routing.router import router as routing_router
from leadflow.modules.automations.router import router as automations_router
from leadflow.modules.stage_automations.router import router as stage_automations_router
from leadflow.modules.notifications.router import router as notifications_router
from leadflow.modules.scheduler.router import router as jobs_router

api_router = APIRouter()
api_router.include_router(leads_router, tags=["leads"])
api_router.include_router(routing_router, tags=["routing"])
api_router.include_router(automations_router, tags=["automations"])
api_router.include_router(stage_automations_router, tags=["stage-automations"])
api_router.include_router(notifications_router, tags=["notifications"])
api_router.include_router(jobs_router, tags=["jobs"])

@api_router.get("/health", tags=["health"])
async def health():
    return {"status": "ok"}
