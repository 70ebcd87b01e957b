from fastapi import APIRouter

from storyplanner.api.deps import WorkflowDep
from storyplanner.api.v1.schemas import SessionRead, SessionUpdate
from storyplanner.models import SessionState
from storyplanner.services.workflow import Workflow


router = APIRouter(tags=["session"])


def _read(workflow: Workflow, state: SessionState) -> SessionRead:
    return SessionRead.model_validate({**state.model_dump(), "last_error": workflow.last_error})


@router.get("/session", response_model=SessionRead)
def get_session(workflow=WorkflowDep):
    return _read(workflow, workflow.store.snapshot())


@router.patch("/session", response_model=SessionRead)
def update_session(payload: SessionUpdate, workflow=WorkflowDep):
    state = workflow.update_inputs(**payload.model_dump(exclude_unset=True, exclude_none=True))
    return _read(workflow, state)


@router.post("/session/reset", response_model=SessionRead)
def reset_session(workflow=WorkflowDep):
    return _read(workflow, workflow.start_new_project())


@router.post("/session/back", response_model=SessionRead)
def back_to_input(workflow=WorkflowDep):
    return _read(workflow, workflow.back_to_input())
