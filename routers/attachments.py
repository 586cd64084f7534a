from fastapi import APIRouter, Depends, Response, status

from dependencies import get_current_user, get_task_service
from models import User
from services import TaskService

router = APIRouter(
    prefix="/attachments",
    tags=["attachments"]
)


@router.delete("/{attachment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_attachment(
    attachment_id: int,
    user: User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    # Does not check that the parent task belongs to the caller unless
    # ENFORCE_ATTACHMENT_OWNERSHIP is set.
    service.delete_attachment(user, attachment_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
