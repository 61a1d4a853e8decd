"""postpay: Resumable post-payment onboarding pipelines."""

from .clients import HttpStepOperations
from .contracts import CheckoutSession, WebhookEvent
from .dispatch import PipelineDispatcher
from .engine import PipelineEngine
from .persistence import PipelineRecord, PipelineStatus, PipelineStore, get_store
from .steps import StepOperations
from .utils.retry import execute_with_retry

__version__ = "0.1.0"
__all__ = [
    "CheckoutSession",
    "HttpStepOperations",
    "PipelineDispatcher",
    "PipelineEngine",
    "PipelineRecord",
    "PipelineStatus",
    "PipelineStore",
    "StepOperations",
    "WebhookEvent",
    "execute_with_retry",
    "get_store",
]
