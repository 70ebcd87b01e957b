from fastapi import APIRouter

from storyplanner.api.deps import WorkflowDep
from storyplanner.api.v1.schemas import SessionRead
from storyplanner.models import ReferenceSheet


router = APIRouter(tags=["generation"])


@router.post("/reference-sheet", response_model=ReferenceSheet)
async def analyze_reference_sheet(workflow=WorkflowDep):
    return await workflow.analyze_reference_sheet()


@router.post("/plan", response_model=SessionRead)
async def generate_plan(workflow=WorkflowDep):
    state = await workflow.generate_plan()
    return SessionRead.model_validate({**state.model_dump(), "last_error": workflow.last_error})
