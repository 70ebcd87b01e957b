from fastapi import APIRouter, Response

from storyplanner.api.deps import WorkflowDep
from storyplanner.api.v1.schemas import FileKind, FileUploadRequest
from storyplanner.models import UploadedFile


router = APIRouter(tags=["files"])


@router.post("/files/{kind}", response_model=list[UploadedFile])
def upload_files(kind: FileKind, payload: FileUploadRequest, workflow=WorkflowDep):
    files = [UploadedFile(name=item.name, mime_type=item.mime_type, data=item.data) for item in payload.files]
    return workflow.add_files(kind.value, files)


@router.delete("/files/{kind}/{file_id}", status_code=204)
def delete_file(kind: FileKind, file_id: str, workflow=WorkflowDep):
    workflow.remove_file(kind.value, file_id)
    return Response(status_code=204)
