"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Kept apart from core.config.Settings so gateway credentials can be loaded
by the worker and the API without pulling in unrelated configuration.
"""
from __future__ import annotations

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class PaymentTimeouts(BaseModel):
    connect: float = 1.0
    read: float = 3.0
    total: float = 5.0


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class WebhookSettings(BaseModel):
    tolerance_seconds: int = 300


class WechatSettings(BaseModel):
    appid: Optional[str] = None
    mch_id: Optional[str] = None
    mch_cert_serial_no: Optional[str] = None
    private_key_path: Optional[str] = None
    platform_cert_dir: Optional[str] = None
    api_v3_key: Optional[str] = None
    gateway: str = "https://api.mch.weixin.qq.com"


class PaymentSettings(BaseSettings):
    default_provider: str = "wechat"
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)

    wechat: WechatSettings = Field(default_factory=WechatSettings)

    model_config = SettingsConfigDict(
        # PAYMENT__WECHAT__MCH_ID, PAYMENT__TIMEOUTS__TOTAL, ...
        env_prefix="PAYMENT__",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
