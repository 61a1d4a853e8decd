from __future__ import annotations

import os
from typing import Optional

import yaml
from pydantic import BaseModel, Field


class RetryConfig(BaseModel):
    """Retry policy applied to every pipeline step."""

    max_attempts: int = 3
    base_delay_ms: int = 1000


class ServiceConfig(BaseModel):
    """Endpoints of the outbound step operations."""

    community_webhook_url: Optional[str] = None
    crm_endpoint: Optional[str] = None
    crm_api_key: Optional[str] = None
    timeout: float = 10.0


class PostpayConfig(BaseModel):
    """Top-level configuration model."""

    store_url: Optional[str] = None
    retry: RetryConfig = Field(default_factory=RetryConfig)
    services: ServiceConfig = Field(default_factory=ServiceConfig)
    log_level: str = "INFO"


def _first_env(*names: str) -> Optional[str]:
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return None


def load_config(path: Optional[str] = None) -> PostpayConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to POSTPAY_CONFIG env
            variable or 'config.yaml' in the current directory.

    Environment variables override values from the file:
    POSTPAY_STORE_URL / DATABASE_URL / PIPELINE_STORE_PATH for the store,
    PIPELINE_RETRY_COUNT and PIPELINE_RETRY_BASE_MS for the retry policy,
    SKOOL_WEBHOOK_URL, CRM_ENDPOINT, CRM_API_KEY and POSTPAY_HTTP_TIMEOUT for
    the step services and POSTPAY_LOG_LEVEL for logging.
    """

    config_path = path or os.getenv("POSTPAY_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = PostpayConfig(**data)
    else:
        config = PostpayConfig()

    store_url = _first_env("POSTPAY_STORE_URL", "DATABASE_URL", "PIPELINE_STORE_PATH")
    if store_url:
        config.store_url = store_url

    retry_count = os.getenv("PIPELINE_RETRY_COUNT")
    if retry_count:
        config.retry.max_attempts = int(retry_count)
    retry_base = os.getenv("PIPELINE_RETRY_BASE_MS")
    if retry_base:
        config.retry.base_delay_ms = int(retry_base)

    services = config.services
    services.community_webhook_url = (
        os.getenv("SKOOL_WEBHOOK_URL") or services.community_webhook_url
    )
    services.crm_endpoint = os.getenv("CRM_ENDPOINT") or services.crm_endpoint
    services.crm_api_key = os.getenv("CRM_API_KEY") or services.crm_api_key
    timeout = os.getenv("POSTPAY_HTTP_TIMEOUT")
    if timeout:
        services.timeout = float(timeout)

    config.log_level = os.getenv("POSTPAY_LOG_LEVEL", config.log_level).upper()
    return config
