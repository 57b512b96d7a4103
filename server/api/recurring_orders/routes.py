# 周期订单相关API路由

import logging
from typing import Dict, Any, Optional
from fastapi import APIRouter, Depends, Query, Path

from .models import CreateRecurringOrderRequest, UpdateRecurrenceRequest, RecurringActionRequest
from api.auth import get_current_user, get_database, get_scheduling_config, TokenData
from db.manager import DatabaseManager
from db.query_operations import QueryOperations
from db.recurring_operations import RecurringOperations
from db.schedule_operations import ScheduleOperations, RECURRING_ORDER
from utils.response import create_success_response

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/orders/recurring", tags=["周期订单"])


@router.post("", response_model=Dict[str, Any])
async def create_recurring_order(
    request: CreateRecurringOrderRequest,
    current_user: TokenData = Depends(get_current_user),
    db: DatabaseManager = Depends(get_database),
    scheduling: Dict[str, Any] = Depends(get_scheduling_config)
):
    """以已完成结账的订单为模板创建周期订单"""
    recurring_ops = RecurringOperations(db, scheduling_config=scheduling)

    result = recurring_ops.materialize_recurring_order(
        source_order_id=request.source_order_id,
        caller_id=current_user.user_id,
        rule=request.recurrence.model_dump(exclude_none=True),
        initial_status=request.initial_status,
        next_delivery_at=request.next_delivery_at
    )

    return create_success_response(data=result, message=result.pop("message"))


@router.get("", response_model=Dict[str, Any])
async def list_recurring_orders(
    status: Optional[str] = Query(None, description="排期状态：active / paused / ended"),
    sort_by: str = Query("created_at", description="排序字段"),
    sort_order: str = Query("desc", description="排序方向"),
    page: int = Query(1, ge=1, description="页码"),
    per_page: int = Query(20, ge=1, le=100, description="每页条数"),
    current_user: TokenData = Depends(get_current_user),
    db: DatabaseManager = Depends(get_database)
):
    """查询当前用户的周期订单"""
    query_ops = QueryOperations(db)

    result = query_ops.list_recurring_orders(
        customer_id=current_user.user_id,
        status=status,
        sort_by=sort_by,
        sort_order=sort_order,
        offset=(page - 1) * per_page,
        limit=per_page
    )

    return create_success_response(data=result["data"], message=result["message"])


@router.get("/{order_id}", response_model=Dict[str, Any])
async def get_recurring_order(
    order_id: int = Path(..., description="周期订单ID"),
    current_user: TokenData = Depends(get_current_user),
    db: DatabaseManager = Depends(get_database),
    scheduling: Dict[str, Any] = Depends(get_scheduling_config)
):
    """查询周期订单详情（所有者或管理员）"""
    query_ops = QueryOperations(db, scheduling_config=scheduling)
    result = query_ops.get_recurring_order(order_id, user_id=current_user.user_id)
    return create_success_response(data=result["data"], message=result["message"])


@router.put("/{order_id}", response_model=Dict[str, Any])
async def update_recurrence(
    request: UpdateRecurrenceRequest,
    order_id: int = Path(..., description="周期订单ID"),
    current_user: TokenData = Depends(get_current_user),
    db: DatabaseManager = Depends(get_database),
    scheduling: Dict[str, Any] = Depends(get_scheduling_config)
):
    """修改周期订单的重复规则"""
    recurring_ops = RecurringOperations(db, scheduling_config=scheduling)

    result = recurring_ops.update_recurrence(
        order_id=order_id,
        user_id=current_user.user_id,
        rule_patch=request.recurrence.model_dump(exclude_none=True),
        next_delivery_at=request.next_delivery_at
    )

    return create_success_response(data=result, message=result.pop("message"))


@router.patch("/{order_id}", response_model=Dict[str, Any])
async def change_recurring_order_status(
    request: RecurringActionRequest,
    order_id: int = Path(..., description="周期订单ID"),
    current_user: TokenData = Depends(get_current_user),
    db: DatabaseManager = Depends(get_database),
    scheduling: Dict[str, Any] = Depends(get_scheduling_config)
):
    """
    暂停 / 恢复 / 跳过 / 结束周期订单

    end 与 cancel 等价
    """
    schedule_ops = ScheduleOperations(db, scheduling_config=scheduling)

    result = schedule_ops.apply_action(
        RECURRING_ORDER, order_id, request.action,
        user_id=current_user.user_id,
        paused_until=request.paused_until,
        reason=request.reason
    )

    logger.info(f"用户 {current_user.user_id} 对周期订单 {order_id} 执行 {request.action}")
    return create_success_response(data=result, message=result.pop("message"))
