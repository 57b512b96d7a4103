# 管理员相关API路由

import logging
from typing import Dict, Any, Optional
from fastapi import APIRouter, Depends, Query

from api.auth import get_admin_user, get_database, get_scheduling_config, TokenData
from db.manager import DatabaseManager
from db.query_operations import QueryOperations
from utils.response import create_success_response

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin", tags=["管理员"])


@router.get("/schedules/due", response_model=Dict[str, Any])
async def get_due_schedules(
    within_days: Optional[int] = Query(None, ge=0, le=366, description="天数窗口，默认取配置"),
    current_admin: TokenData = Depends(get_admin_user),
    db: DatabaseManager = Depends(get_database),
    scheduling: Dict[str, Any] = Depends(get_scheduling_config)
):
    """查询即将配送的进行中排期（派单使用）"""
    result = QueryOperations(db, scheduling_config=scheduling).find_due_schedules(within_days=within_days)
    logger.info(f"管理员 {current_admin.user_id} 查询到期排期，共 {result['data']['total_count']} 条")
    return create_success_response(data=result["data"], message=result["message"])


@router.get("/orders/recurring", response_model=Dict[str, Any])
async def list_all_recurring_orders(
    customer_id: Optional[int] = Query(None, description="按客户过滤"),
    status: Optional[str] = Query(None, description="排期状态：active / paused / ended"),
    sort_by: str = Query("created_at", description="排序字段"),
    sort_order: str = Query("desc", description="排序方向"),
    page: int = Query(1, ge=1, description="页码"),
    per_page: int = Query(20, ge=1, le=100, description="每页条数"),
    current_admin: TokenData = Depends(get_admin_user),
    db: DatabaseManager = Depends(get_database)
):
    """查询全部客户的周期订单"""
    result = QueryOperations(db).list_recurring_orders(
        customer_id=customer_id,
        status=status,
        sort_by=sort_by,
        sort_order=sort_order,
        offset=(page - 1) * per_page,
        limit=per_page
    )
    return create_success_response(data=result["data"], message=result["message"])


@router.get("/orders/recurring/stats", response_model=Dict[str, Any])
async def get_recurring_order_stats(
    current_admin: TokenData = Depends(get_admin_user),
    db: DatabaseManager = Depends(get_database)
):
    """周期订单统计"""
    result = QueryOperations(db).recurring_order_statistics()
    return create_success_response(data=result["data"], message=result["message"])
