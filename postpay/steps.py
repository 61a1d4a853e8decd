"""Fixed step plan of the post-payment pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Protocol, Tuple

from .constants import CONTENT_ID_KEYS, CRM_STEP, INVITE_STEP, UNLOCK_STEP


class StepOperations(Protocol):
    """Outbound side effects driven by the pipeline.

    Each operation returns a success payload, or raises (or returns a mapping
    with ``ok`` set to ``False``) on failure.
    """

    async def invite_member(self, email: str) -> Any:
        """Invite the payer to the community platform."""

    async def notify_crm(self, member: Dict[str, Any]) -> Any:
        """Report the paid member to the CRM."""

    async def unlock_content(self, email: str, content_id: str) -> Any:
        """Grant the payer access to the purchased content."""


@dataclass(frozen=True)
class PlannedStep:
    """One step of a pipeline run with its bound arguments."""

    name: str
    required: bool
    operation: Callable[..., Awaitable[Any]]
    args: Tuple[Any, ...] = field(default_factory=tuple)
    label: str = ""

    @property
    def display_name(self) -> str:
        return self.label or self.name


def resolve_content_id(data: Mapping[str, Any]) -> Optional[str]:
    metadata = data.get("metadata") or {}
    for key in CONTENT_ID_KEYS:
        if metadata.get(key):
            return str(metadata[key])
    return None


def member_info(data: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "email": data.get("email"),
        "name": data.get("name"),
        "sessionId": data.get("sessionId"),
    }


def plan_steps(data: Mapping[str, Any], operations: StepOperations) -> List[PlannedStep]:
    """Return the ordered steps for a pipeline input.

    The unlock step is only planned when the metadata names content to
    unlock; otherwise it is omitted entirely.
    """

    email = data.get("email")
    steps = [
        PlannedStep(INVITE_STEP, True, operations.invite_member, (email,)),
        PlannedStep(CRM_STEP, False, operations.notify_crm, (member_info(data),)),
    ]
    content_id = resolve_content_id(data)
    if content_id:
        steps.append(
            PlannedStep(
                UNLOCK_STEP,
                True,
                operations.unlock_content,
                (email, content_id),
                label=f"{UNLOCK_STEP} ({content_id})",
            )
        )
    return steps
