"""业务异常定义

所有业务异常都继承自 HTTPException，服务层直接抛出，
由 app.main 中的全局处理器统一渲染为 {"success": False, "message": ..., 额外字段}。
"""

from fastapi import HTTPException


class ServiceError(HTTPException):
    """业务异常基类"""

    status_code = 500

    def __init__(self, message: str, **extra):
        super().__init__(status_code=self.status_code, detail=message)
        self.extra = extra


class ValidationError(ServiceError):
    status_code = 400


class AuthenticationError(ServiceError):
    status_code = 401


class AuthorizationError(ServiceError):
    status_code = 403


class NotFoundError(ServiceError):
    status_code = 404


class ConflictError(ServiceError):
    """资源已被占用或已售出"""
    status_code = 409


class RateLimitedError(ServiceError):
    status_code = 429


class UpstreamError(ServiceError):
    """支付/物流/通知网关调用失败"""
    status_code = 502


class UnavailableError(ServiceError):
    """数据存储不可用（失败即拒绝的路径）"""
    status_code = 503


class PayoutReviewError(ValidationError):
    """计算出的结算金额不为正，需要人工审核"""
