"""Inbound event contracts and error types for postpay."""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from .constants import CHECKOUT_COMPLETED


class PostpayError(Exception):
    """Base class for postpay errors."""


class PersistenceError(PostpayError):
    """The store could not confirm a write for a pipeline."""

    def __init__(self, pipeline_id: str, action: str) -> None:
        super().__init__(f"Could not persist {action} for pipeline {pipeline_id}")
        self.pipeline_id = pipeline_id
        self.action = action


class PipelineNotFound(PostpayError):
    def __init__(self, pipeline_id: str) -> None:
        super().__init__(f"Pipeline {pipeline_id} not found")
        self.pipeline_id = pipeline_id


class PipelineAlreadyFinished(PostpayError):
    def __init__(self, pipeline_id: str) -> None:
        super().__init__(f"Pipeline {pipeline_id} already finished")
        self.pipeline_id = pipeline_id


class StepOperationError(PostpayError):
    """An outbound step operation failed.

    ``status`` and ``body`` carry the HTTP response when there was one.
    """

    def __init__(
        self, message: str, status: Optional[int] = None, body: Any = None
    ) -> None:
        super().__init__(message)
        self.status = status
        self.body = body

    def details(self) -> Dict[str, Any]:
        details: Dict[str, Any] = {"message": str(self)}
        if self.status is not None:
            details["status"] = self.status
        if self.body is not None:
            details["body"] = self.body
        return details


class CustomerDetails(BaseModel):
    email: Optional[str] = None
    name: Optional[str] = None


class CheckoutSession(BaseModel):
    """Subset of a Stripe checkout session used to seed a pipeline."""

    model_config = ConfigDict(extra="ignore")

    id: str
    amount_total: Optional[int] = None
    currency: Optional[str] = None
    customer_email: Optional[str] = None
    customer_details: Optional[CustomerDetails] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def resolve_email(self) -> Optional[str]:
        """Payer email, preferring the one captured at checkout creation."""
        details = self.customer_details or CustomerDetails()
        return self.metadata.get("user_email") or details.email or self.customer_email

    def to_pipeline_data(self) -> Dict[str, Any]:
        details = self.customer_details or CustomerDetails()
        return {
            "sessionId": self.id,
            "email": self.resolve_email(),
            "name": details.name or "",
            "amount_total": self.amount_total,
            "currency": self.currency,
            "metadata": dict(self.metadata),
        }


class EventData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    object: Dict[str, Any] = Field(default_factory=dict)


class WebhookEvent(BaseModel):
    """Verified webhook event envelope."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    type: str
    data: EventData = Field(default_factory=EventData)

    @property
    def is_checkout_completed(self) -> bool:
        return self.type == CHECKOUT_COMPLETED

    def checkout_session(self) -> CheckoutSession:
        return CheckoutSession.model_validate(self.data.object)
