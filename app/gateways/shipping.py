"""物流网关：订单核心只需要作废已购买的面单"""

import logging
from abc import ABC, abstractmethod

import httpx

from app.core.errors import UpstreamError
from app.gateways.http import HttpGatewayClient

logger = logging.getLogger(__name__)


class ShippingGateway(ABC):

    @abstractmethod
    def void_label(self, label_ref: str) -> bool:
        """作废面单，成功（或已作废）返回 True"""


class HttpShippingGateway(ShippingGateway):

    def __init__(self, client: HttpGatewayClient):
        self.http = client

    def void_label(self, label_ref: str) -> bool:
        try:
            data = self.http.request_json("POST", f"/transactions/{label_ref}/void")
        except httpx.HTTPError as e:
            raise UpstreamError(f"面单作废失败: {e}") from e

        status = str(data.get("status", "")).upper()
        if status in ("SUCCESS", "QUEUED", "VOIDED"):
            return True
        logger.error(f"面单作废返回异常状态: label_ref={label_ref}, data={data}")
        return False
