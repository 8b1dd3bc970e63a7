"""通知网关：站内信 + 邮件，由外部通知服务渲染与投递"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from app.core.errors import UpstreamError
from app.gateways.http import HttpGatewayClient

logger = logging.getLogger(__name__)


class NotificationGateway(ABC):

    @abstractmethod
    def notify(self, user_id: str, kind: str, title: str, body: str,
               link: Optional[str] = None, metadata: Optional[dict] = None) -> None:
        """向用户发送通知"""


class HttpNotificationGateway(NotificationGateway):

    def __init__(self, client: HttpGatewayClient):
        self.http = client

    def notify(self, user_id: str, kind: str, title: str, body: str,
               link: Optional[str] = None, metadata: Optional[dict] = None) -> None:
        try:
            self.http.request(
                "POST",
                "/notifications",
                json={
                    "user_id": user_id,
                    "kind": kind,
                    "title": title,
                    "body": body,
                    "link": link,
                    "metadata": metadata or {},
                    "channels": ["in_app", "email"],
                },
            )
        except httpx.HTTPError as e:
            raise UpstreamError(f"通知发送失败: {e}") from e
        logger.debug(f"通知已发送: user_id={user_id}, kind={kind}")
