from fastapi import APIRouter, Depends

from hostpanel.core.deps import get_messages
from hostpanel.core.flash import MessageQueue
from hostpanel.modules.auth.deps import get_current_user
from hostpanel.modules.users.models import User

router = APIRouter(prefix="/messages", tags=["Messages"])


@router.get("")
def read_messages(messages: MessageQueue = Depends(get_messages), current_user: User = Depends(get_current_user)):
    """Pending notices for the current user. Reading them clears the queue."""
    return messages.consume(current_user.username)
