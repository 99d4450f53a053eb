"""
Permission checking service for assignment operations.
Tenant isolation comes from the provider-scoped lookups (get_job, get_crew,
get_worker), which answer NotFound for another provider's records.
"""
from ..errors import Forbidden
from ..models.models import Worker

SCHEDULER_ROLES = ("owner", "office")


def is_scheduler(user: Worker) -> bool:
    """Owners and office staff may change assignments."""
    return user.role in SCHEDULER_ROLES and user.status == "active"


def require_scheduler(user: Worker, action: str = "change assignments") -> Worker:
    """
    Ensure the caller can mutate scheduling data.

    Args:
        user: Calling worker
        action: Human-readable verb phrase for the error message

    Returns:
        The same user, for chaining

    Raises:
        Forbidden: caller lacks the owner/office role or is not active
    """
    if not is_scheduler(user):
        raise Forbidden(f"Unauthorized. Only owners and office staff can {action}.")
    return user
