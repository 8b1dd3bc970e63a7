"""
支付网关
========

订单核心只依赖两个能力：确认支付（authorize）与退款（refund）。
扣款/退款算法本身由外部支付服务负责。
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx

from app.core.errors import UpstreamError
from app.gateways.http import HttpGatewayClient

logger = logging.getLogger(__name__)


@dataclass
class Refund:
    """
    退款结果

    Attributes:
        refund_id: 网关退款单号
        payment_ref: 原支付交易号
        amount_cents: 退款金额（分）
        status: 网关返回的状态
    """

    refund_id: str
    payment_ref: str
    amount_cents: int
    status: str = "succeeded"


class PaymentGateway(ABC):
    """支付网关接口"""

    @abstractmethod
    def authorize(self, payment_ref: str, amount_cents: int) -> bool:
        """确认该笔支付已成功且金额一致"""

    @abstractmethod
    def find_refund(self, payment_ref: str) -> Optional[Refund]:
        """查询该笔支付是否已有退款（用于幂等退款）"""

    @abstractmethod
    def refund(self, payment_ref: str, amount_cents: int, idempotency_key: str) -> Refund:
        """发起退款"""


class HttpPaymentGateway(PaymentGateway):
    """基于 HTTP 的支付网关实现"""

    def __init__(self, client: HttpGatewayClient):
        self.http = client

    def authorize(self, payment_ref: str, amount_cents: int) -> bool:
        try:
            data = self.http.request_json("GET", f"/payments/{payment_ref}")
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                return False
            raise UpstreamError(f"支付确认失败: {e}") from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"支付确认失败: {e}") from e

        try:
            succeeded = data.get("status") == "succeeded"
            amount_ok = int(data.get("amount_cents", -1)) == amount_cents
        except (TypeError, ValueError) as e:
            raise UpstreamError(f"支付确认响应异常: {data}") from e
        if succeeded and not amount_ok:
            logger.warning(
                f"支付金额不一致: payment_ref={payment_ref}, "
                f"expected={amount_cents}, actual={data.get('amount_cents')}"
            )
        return succeeded and amount_ok

    def find_refund(self, payment_ref: str) -> Optional[Refund]:
        try:
            data = self.http.request_json(
                "GET", "/refunds", params={"payment_ref": payment_ref, "limit": 1}
            )
        except httpx.HTTPError as e:
            raise UpstreamError(f"查询退款失败: {e}") from e

        refunds = data.get("data") or []
        if not refunds:
            return None
        try:
            first = refunds[0]
            return Refund(
                refund_id=first["id"],
                payment_ref=payment_ref,
                amount_cents=int(first.get("amount_cents", 0)),
                status=first.get("status", "succeeded"),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise UpstreamError(f"退款查询响应缺少必要字段: {refunds!r}") from e

    def refund(self, payment_ref: str, amount_cents: int, idempotency_key: str) -> Refund:
        try:
            data = self.http.request_json(
                "POST",
                "/refunds",
                json={
                    "payment_ref": payment_ref,
                    "amount_cents": amount_cents,
                    "reason": "requested_by_customer",
                },
                headers={"Idempotency-Key": idempotency_key},
            )
        except httpx.HTTPError as e:
            raise UpstreamError(f"退款失败: {e}") from e

        try:
            refund = Refund(
                refund_id=data["id"],
                payment_ref=payment_ref,
                amount_cents=int(data.get("amount_cents", amount_cents)),
                status=data.get("status", "succeeded"),
            )
        except (KeyError, TypeError, ValueError) as e:
            # 没有退款单号就无法幂等复用，按失败处理，由调度器重试
            raise UpstreamError(f"退款响应缺少退款单号: {data}") from e

        logger.info(f"退款已创建: payment_ref={payment_ref}, refund_id={refund.refund_id}")
        return refund
