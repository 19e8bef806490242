"""
Router earnings : gains du livreur connecté.
"""
from fastapi import APIRouter, Depends, Query

from core.dependencies import require_driver
from services.earnings_service import get_driver_earnings_summary

router = APIRouter()


@router.get("/me", summary="Mes gains")
async def my_earnings(
    limit: int = Query(20, ge=1, le=100),
    current_user: dict = Depends(require_driver),
):
    return await get_driver_earnings_summary(current_user["user_id"], limit=limit)
