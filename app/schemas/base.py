from pydantic import BaseModel, Field
from typing import Optional


class BaseResponse(BaseModel):
    """基础响应模型"""
    success: bool = Field(
        True,
        description="请求是否成功"
    )
    message: Optional[str] = Field(
        None,
        description="响应消息"
    )


class ErrorResponse(BaseResponse):
    """错误响应：业务异常的额外字段（locked_items、days_remaining 等）平铺在顶层"""
    success: bool = False
