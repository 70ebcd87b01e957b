from fastapi import APIRouter, Response

from storyplanner.api.deps import WorkflowDep
from storyplanner.api.v1.schemas import BatchStarted, ImageEditRequest, ShotUpdate
from storyplanner.models import VisualItem


router = APIRouter(tags=["shots"])


# Registered before the `{shot_id}` routes so "images" is never taken as an id.
# Async so the batch tasks are scheduled on the running event loop.
@router.post("/shots/images", response_model=BatchStarted, status_code=202)
async def generate_all_images(workflow=WorkflowDep):
    return BatchStarted(started=workflow.generate_all_images())


@router.patch("/shots/{shot_id}", response_model=VisualItem)
def update_shot(shot_id: str, payload: ShotUpdate, workflow=WorkflowDep):
    shot = workflow.store.get_shot(shot_id)
    if payload.type is not None:
        shot = workflow.update_shot_type(shot_id, payload.type)
    if payload.description is not None:
        shot = workflow.update_shot_description(shot_id, payload.description)
    return shot


@router.delete("/shots/{shot_id}", status_code=204)
def delete_shot(shot_id: str, workflow=WorkflowDep):
    workflow.delete_shot(shot_id)
    return Response(status_code=204)


@router.post("/shots/{shot_id}/regenerate", response_model=VisualItem)
async def regenerate_shot(shot_id: str, workflow=WorkflowDep):
    return await workflow.regenerate_shot(shot_id)


@router.post("/shots/{shot_id}/image", response_model=VisualItem)
async def generate_shot_image(shot_id: str, workflow=WorkflowDep):
    return await workflow.generate_shot_image(shot_id)


@router.post("/shots/{shot_id}/edit", response_model=VisualItem)
async def edit_shot_image(shot_id: str, payload: ImageEditRequest, workflow=WorkflowDep):
    return await workflow.edit_shot_image(shot_id, payload.instruction)
