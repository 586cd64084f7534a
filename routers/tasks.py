from typing import List, Optional

from fastapi import APIRouter, Depends, File, Response, UploadFile, status

from attachments import MAX_FILE_SIZE, IncomingFile
from dependencies import get_current_user, get_task_service
from models import User
from schemas import AttachmentOut, Task, TaskCreate, TaskUpdate
from services import TaskService

router = APIRouter(
    prefix="/tasks",
    tags=["tasks"]
)


@router.get("", response_model=List[Task])
def read_tasks(
    status: Optional[str] = "all",
    user: User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    return service.list_tasks(user, status)


@router.get("/{task_id}", response_model=Task)
def read_task(task_id: int, user: User = Depends(get_current_user), service: TaskService = Depends(get_task_service)):
    return service.get_task(user, task_id)


@router.post("", response_model=Task, status_code=status.HTTP_201_CREATED)
def create_task(
    task: TaskCreate,
    user: User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    return service.create_task(user, task)


@router.put("/{task_id}", response_model=Task)
def update_task(
    task_id: int,
    task: TaskUpdate,
    user: User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    # Fields missing from the body keep their stored value.
    return service.update_task(user, task_id, task)


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_task(task_id: int, user: User = Depends(get_current_user), service: TaskService = Depends(get_task_service)):
    service.delete_task(user, task_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{task_id}/attachments", response_model=List[AttachmentOut], status_code=status.HTTP_201_CREATED)
def upload_attachments(
    task_id: int,
    attachment: Optional[List[UploadFile]] = File(None),
    user: User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    files = []
    for upload in attachment or []:
        # One byte past the limit is enough to reject, no need to buffer more.
        data = upload.file.read(MAX_FILE_SIZE + 1)
        files.append(IncomingFile(filename=upload.filename or "", content_type=upload.content_type or "", data=data))
    return service.add_attachments(user, task_id, files)
