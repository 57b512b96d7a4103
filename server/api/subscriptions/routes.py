# 订阅相关API路由

import logging
from typing import Dict, Any, Optional
from fastapi import APIRouter, Depends, Query, Path

from .models import CreateSubscriptionRequest, SubscriptionActionRequest
from api.auth import get_current_user, get_database, get_scheduling_config, TokenData
from db.manager import DatabaseManager
from db.query_operations import QueryOperations
from db.recurring_operations import RecurringOperations
from db.schedule_operations import ScheduleOperations, SUBSCRIPTION
from utils.response import create_success_response

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/subscriptions", tags=["订阅"])


@router.post("", response_model=Dict[str, Any])
async def create_subscription(
    request: CreateSubscriptionRequest,
    current_user: TokenData = Depends(get_current_user),
    db: DatabaseManager = Depends(get_database),
    scheduling: Dict[str, Any] = Depends(get_scheduling_config)
):
    """订阅套餐"""
    recurring_ops = RecurringOperations(db, scheduling_config=scheduling)

    result = recurring_ops.create_subscription(
        user_id=current_user.user_id,
        plan_id=request.plan_id,
        delivery_slot=request.delivery_slot.model_dump(),
        delivery_address=request.delivery_address,
        payment_method=request.payment_method,
        start_date=request.start_date
    )

    return create_success_response(data=result, message=result.pop("message"))


@router.get("", response_model=Dict[str, Any])
async def list_subscriptions(
    status: Optional[str] = Query(None, description="订阅状态"),
    current_user: TokenData = Depends(get_current_user),
    db: DatabaseManager = Depends(get_database)
):
    """查询当前用户的订阅"""
    result = QueryOperations(db).list_user_subscriptions(current_user.user_id, status=status)
    return create_success_response(data=result["data"], message=result["message"])


@router.get("/{subscription_id}", response_model=Dict[str, Any])
async def get_subscription(
    subscription_id: int = Path(..., description="订阅ID"),
    current_user: TokenData = Depends(get_current_user),
    db: DatabaseManager = Depends(get_database)
):
    """查询订阅详情（所有者或管理员）"""
    result = QueryOperations(db).get_subscription(subscription_id, user_id=current_user.user_id)
    return create_success_response(data=result["data"], message=result["message"])


@router.patch("/{subscription_id}", response_model=Dict[str, Any])
async def change_subscription_status(
    request: SubscriptionActionRequest,
    subscription_id: int = Path(..., description="订阅ID"),
    current_user: TokenData = Depends(get_current_user),
    db: DatabaseManager = Depends(get_database),
    scheduling: Dict[str, Any] = Depends(get_scheduling_config)
):
    """
    暂停 / 恢复 / 跳过 / 取消订阅

    取消已生效但套餐订阅人数更新失败时，返回 partial 响应
    """
    schedule_ops = ScheduleOperations(db, scheduling_config=scheduling)

    result = schedule_ops.apply_action(
        SUBSCRIPTION, subscription_id, request.action,
        user_id=current_user.user_id,
        paused_until=request.paused_until,
        reason=request.reason
    )

    logger.info(f"用户 {current_user.user_id} 对订阅 {subscription_id} 执行 {request.action}")
    return create_success_response(data=result, message=result.pop("message"))
