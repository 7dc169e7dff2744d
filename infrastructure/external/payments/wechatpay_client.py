"""
WeChat Pay v3 adapter using the community `wechatpayv3` SDK.

Features used:
- Request signing with merchant private key (v3)
- Platform certificate verification and webhook resource decryption (AES-256-GCM)
- JSAPI/NATIVE/APP/H5 prepay, transaction query/close, refund apply/query

The SDK returns `(http_status, body_text)` for API calls and a decrypted
dict (or None) for callbacks.
"""
from __future__ import annotations

import json
import secrets
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping, Optional

from wechatpayv3 import WeChatPay, WeChatPayType

from application.dtos.payments import PrepayHandle, PrepayRequest, RefundCall, VerifiedNotification
from core.settings import WechatSettings, payment_settings
from domain.payment.entity import GatewayResult, RefundResult, ResultKind, TradeType
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import (
    PaymentProviderError,
    PaymentSignatureError,
)


_PAY_TYPES = {
    TradeType.JSAPI: WeChatPayType.JSAPI,
    TradeType.NATIVE: WeChatPayType.NATIVE,
    TradeType.APP: WeChatPayType.APP,
    TradeType.H5: WeChatPayType.H5,
}


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _canonical_headers(headers: Mapping[str, Any]) -> dict[str, Any]:
    # ASGI lower-cases header names; the SDK looks up "Wechatpay-Signature" etc.
    return {"-".join(part.capitalize() for part in str(k).split("-")): v for k, v in headers.items()}


class WechatPayClient(BasePaymentClient):
    provider = "wechat"

    def __init__(self, *, config: Optional[WechatSettings] = None, wx: Optional[Any] = None):
        super().__init__(
            timeouts=payment_settings.timeouts.model_dump(),
            retry={"max": payment_settings.retry.max, "base": payment_settings.retry.base_backoff},
        )
        cfg = config or payment_settings.wechat
        self._appid = cfg.appid
        self._tolerance = payment_settings.webhook.tolerance_seconds
        if wx is not None:
            self._wx = wx
            return
        if not (cfg.mch_id and cfg.mch_cert_serial_no and cfg.private_key_path and cfg.api_v3_key):
            raise RuntimeError("WECHAT configuration incomplete")
        key_path = Path(cfg.private_key_path)
        private_key = key_path.read_text(encoding="utf-8") if key_path.exists() else cfg.private_key_path
        self._wx = WeChatPay(
            wechatpay_type=WeChatPayType.JSAPI,
            mchid=cfg.mch_id,
            cert_serial_no=cfg.mch_cert_serial_no,
            private_key=private_key,
            apiv3_key=cfg.api_v3_key,
            appid=cfg.appid,
            notify_url=None,
            cert_dir=cfg.platform_cert_dir,
        )

    # ------------------------------------------------------------------
    # response handling
    # ------------------------------------------------------------------
    def _parse(self, operation: str, response: Any) -> dict[str, Any]:
        code, message = response
        payload: Any = message
        if isinstance(message, (bytes, str)):
            try:
                payload = json.loads(message) if message else {}
            except ValueError:
                payload = {"message": message}
        payload = payload if isinstance(payload, dict) else {}

        if 200 <= int(code) < 300:
            return payload

        provider_code = payload.get("code")
        self._log("wechat_api_error", operation=operation, status=code, provider_code=provider_code)
        raise PaymentProviderError(
            str(payload.get("message") or message),
            provider=self.provider,
            provider_code=provider_code,
            status=int(code),
            details={"operation": operation},
        )

    async def _call(self, operation: str, fn, **kwargs) -> dict[str, Any]:
        return self._parse(operation, await self._run_sync(operation, fn, **kwargs))

    def _to_gateway_result(self, data: dict[str, Any]) -> GatewayResult:
        state = str(data.get("trade_state") or "")
        kind = self._result_kind(state)
        amount = data.get("amount") or {}
        total = amount.get("total")
        # 使用代金券时 payer_total 小于订单金额，此时以订单金额计
        cash = total if data.get("promotion_detail") else amount.get("payer_total", total)
        return GatewayResult(
            out_trade_no=str(data.get("out_trade_no") or ""),
            kind=kind,
            transaction_id=data.get("transaction_id") or None,
            total_fee=total if kind == ResultKind.SUCCESS else None,
            cash_fee=cash if kind == ResultKind.SUCCESS else None,
            fee_type=amount.get("currency"),
            time_end=_parse_time(data.get("success_time")),
            err_code=state if kind == ResultKind.FAILURE else None,
            err_code_des=data.get("trade_state_desc") if kind == ResultKind.FAILURE else None,
            provider_state=state,
        )

    def _to_refund_result(self, data: dict[str, Any]) -> RefundResult:
        state = str(data.get("status") or data.get("refund_status") or "")
        amount = data.get("amount") or {}
        return RefundResult(
            out_trade_no=str(data.get("out_trade_no") or ""),
            kind=self._refund_kind(state),
            out_refund_no=data.get("out_refund_no"),
            refund_id=data.get("refund_id"),
            refund_fee=amount.get("refund"),
            success_time=_parse_time(data.get("success_time")),
            reason=state if state in {"CLOSED", "ABNORMAL"} else None,
            provider_state=state,
        )

    def _jsapi_params(self, prepay_id: str) -> dict[str, Any]:
        timestamp = str(int(time.time()))
        nonce = secrets.token_hex(16)
        package = f"prepay_id={prepay_id}"
        return {
            "appId": self._appid,
            "timeStamp": timestamp,
            "nonceStr": nonce,
            "package": package,
            "signType": "RSA",
            "paySign": self._wx.sign([self._appid, timestamp, nonce, package]),
        }

    # ------------------------------------------------------------------
    # gateway protocol
    # ------------------------------------------------------------------
    async def create_prepay(self, req: PrepayRequest) -> PrepayHandle:
        kwargs: dict[str, Any] = {
            "description": req.description,
            "out_trade_no": req.out_trade_no,
            "amount": {"total": req.total_fee, "currency": req.currency},
            "pay_type": _PAY_TYPES[req.trade_type],
            "notify_url": req.notify_url,
            "attach": req.attach,
        }
        if req.trade_type == TradeType.JSAPI:
            if not req.payer_openid:
                raise PaymentProviderError("openid required for jsapi", provider=self.provider)
            kwargs["payer"] = {"openid": req.payer_openid}
        elif req.trade_type == TradeType.H5:
            kwargs["scene_info"] = {"payer_client_ip": req.client_ip or "127.0.0.1", "h5_info": {"type": "Wap"}}

        data = await self._call("prepay", self._wx.pay, **kwargs)
        self._log("wechat_prepay_created", out_trade_no=req.out_trade_no, trade_type=req.trade_type.value)

        if req.trade_type == TradeType.NATIVE:
            return PrepayHandle(out_trade_no=req.out_trade_no, code_url=data.get("code_url"))
        if req.trade_type == TradeType.H5:
            return PrepayHandle(out_trade_no=req.out_trade_no, code_url=data.get("h5_url"))
        prepay_id = data.get("prepay_id")
        if not prepay_id:
            raise PaymentProviderError("prepay_id missing in response", provider=self.provider)
        params = self._jsapi_params(prepay_id) if req.trade_type == TradeType.JSAPI else None
        return PrepayHandle(out_trade_no=req.out_trade_no, prepay_id=prepay_id, client_params=params)

    async def query_status(self, out_trade_no: str) -> GatewayResult:
        try:
            data = await self._call("query", self._wx.query, out_trade_no=out_trade_no)
        except PaymentProviderError as exc:
            if (exc.details or {}).get("provider_code") == "ORDER_NOT_EXIST":
                # 预支付从未成功，网关侧不存在该交易
                return GatewayResult(
                    out_trade_no=out_trade_no,
                    kind=ResultKind.FAILURE,
                    err_code="ORDER_NOT_EXIST",
                    err_code_des=exc.message,
                    provider_state="ORDER_NOT_EXIST",
                )
            raise
        data.setdefault("out_trade_no", out_trade_no)
        return self._to_gateway_result(data)

    async def close(self, out_trade_no: str) -> None:
        await self._call("close", self._wx.close, out_trade_no=out_trade_no)
        self._log("wechat_trade_closed", out_trade_no=out_trade_no)

    async def refund(self, req: RefundCall) -> RefundResult:
        kwargs: dict[str, Any] = {
            "out_refund_no": req.out_refund_no,
            "amount": {"refund": req.refund_fee, "total": req.total_fee, "currency": req.currency},
            "reason": req.reason,
            "notify_url": req.notify_url,
        }
        if req.transaction_id:
            kwargs["transaction_id"] = req.transaction_id
        else:
            kwargs["out_trade_no"] = req.out_trade_no
        data = await self._call("refund", self._wx.refund, **kwargs)
        data.setdefault("out_trade_no", req.out_trade_no)
        data.setdefault("out_refund_no", req.out_refund_no)
        return self._to_refund_result(data)

    async def query_refund(self, out_refund_no: str, out_trade_no: str) -> RefundResult:
        data = await self._call("query_refund", self._wx.query_refund, out_refund_no=out_refund_no)
        data.setdefault("out_trade_no", out_trade_no)
        data.setdefault("out_refund_no", out_refund_no)
        return self._to_refund_result(data)

    async def verify_notification(self, headers: Mapping[str, Any], body: bytes) -> VerifiedNotification:
        canonical = _canonical_headers(headers)
        timestamp = canonical.get("Wechatpay-Timestamp")
        if timestamp is not None:
            try:
                skew = abs(time.time() - int(timestamp))
            except (TypeError, ValueError):
                raise PaymentSignatureError("invalid notification timestamp", provider=self.provider)
            if skew > self._tolerance:
                raise PaymentSignatureError("notification timestamp outside tolerance", provider=self.provider)

        try:
            data = await self._run_sync("callback", self._wx.callback, headers=canonical, body=body)
            resource = (data or {}).get("resource") or {}
            if isinstance(resource, str):
                resource = json.loads(resource)
        except ValueError as exc:
            raise PaymentSignatureError(str(exc), provider=self.provider) from exc
        if not data:
            raise PaymentSignatureError("signature verification failed", provider=self.provider)

        event_type = str(data.get("event_type") or "")
        event_id = str(data.get("id") or "")

        if event_type.startswith("REFUND."):
            return VerifiedNotification(
                id=event_id,
                provider=self.provider,
                kind="refund",
                event_type=event_type,
                refund=self._to_refund_result(resource),
            )
        return VerifiedNotification(
            id=event_id,
            provider=self.provider,
            kind="payment",
            event_type=event_type,
            payment=self._to_gateway_result(resource),
        )
