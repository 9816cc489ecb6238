"""Domain error taxonomy for checklist runs and reminder scheduling."""

from __future__ import annotations

from uuid import UUID

# purpose: give lifecycle, scheduler and HTTP layers one shared vocabulary of failures
# status: active


class FleetCheckError(Exception):
    """Base class for every domain failure raised by the service."""

    code = "fleetcheck_error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or self.__class__.__doc__ or self.code


class NotFound(FleetCheckError):
    """Requested entity does not exist."""

    code = "not_found"


class InvalidRequest(FleetCheckError):
    """Request is well formed but inconsistent with stored data."""

    code = "invalid_request"


class InvalidTimeZone(FleetCheckError):
    """Time zone identifier cannot be resolved."""

    code = "invalid_time_zone"

    def __init__(self, zone_name: str | None) -> None:
        super().__init__(f"Unknown time zone: {zone_name!r}")
        self.zone_name = zone_name


class AlreadyAssigned(FleetCheckError):
    """Run is already claimed by another actor."""

    code = "already_assigned"

    def __init__(self, run_id: UUID, assigned_to: UUID | None) -> None:
        super().__init__(f"Run {run_id} is assigned to {assigned_to}")
        self.run_id = run_id
        self.assigned_to = assigned_to


class NotAssignee(FleetCheckError):
    """Only the current assignee may release a run."""

    code = "not_assignee"

    def __init__(self, run_id: UUID, actor_id: UUID) -> None:
        super().__init__(f"Actor {actor_id} is not the assignee of run {run_id}")
        self.run_id = run_id
        self.actor_id = actor_id


class AlreadySubmitted(FleetCheckError):
    """Run has reached its terminal submitted state."""

    code = "already_submitted"

    def __init__(self, run_id: UUID) -> None:
        super().__init__(f"Run {run_id} is already submitted")
        self.run_id = run_id


class ConflictError(FleetCheckError):
    """Storage precondition or uniqueness collision; resolvable by re-reading."""

    code = "conflict"


class TransientStoreError(FleetCheckError):
    """Store timed out or the connection failed; the call may be retried."""

    code = "transient_store_error"


class EvidenceUploadFailed(FleetCheckError):
    """Blob gateway rejected or timed out on an evidence upload."""

    code = "evidence_upload_failed"
