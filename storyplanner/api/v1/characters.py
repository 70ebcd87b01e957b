from fastapi import APIRouter

from storyplanner.api.deps import WorkflowDep
from storyplanner.api.v1.schemas import BatchStarted
from storyplanner.models import Character


router = APIRouter(tags=["characters"])


@router.post("/characters/portraits", response_model=BatchStarted, status_code=202)
async def generate_all_portraits(workflow=WorkflowDep):
    return BatchStarted(started=workflow.generate_all_portraits())


@router.post("/characters/{name}/portrait", response_model=Character)
async def generate_portrait(name: str, workflow=WorkflowDep):
    return await workflow.generate_portrait(name)
