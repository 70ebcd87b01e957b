from fastapi import Depends, Request

from storyplanner.services.workflow import Workflow


def workflow(request: Request) -> Workflow:
    return request.app.state.workflow


WorkflowDep = Depends(workflow)
