from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.database import get_db
from app.services.db_service import DBService
from app.services.hold_engine import booking_to_dict, hold_to_dict

router = APIRouter()


async def _require_tenant(db_service: DBService, tenant_id: str):
    tenant = await db_service.get_tenant(tenant_id)
    if not tenant:
        raise HTTPException(status_code=404, detail="Tenant not found")
    return tenant


@router.get("/{tenant_id}/holds")
async def get_tenant_holds(
    tenant_id: str,
    limit: int = 20,
    db: AsyncSession = Depends(get_db)
):
    """Get recent holds for a tenant"""
    db_service = DBService(db)
    await _require_tenant(db_service, tenant_id)
    holds = await db_service.get_tenant_holds(tenant_id, limit)

    return {
        "tenant_id": tenant_id,
        "total": len(holds),
        "holds": [hold_to_dict(hold) for hold in holds]
    }


@router.get("/{tenant_id}/bookings")
async def get_tenant_bookings(
    tenant_id: str,
    limit: int = 20,
    db: AsyncSession = Depends(get_db)
):
    """Get recent bookings for a tenant"""
    db_service = DBService(db)
    await _require_tenant(db_service, tenant_id)
    bookings = await db_service.get_tenant_bookings(tenant_id, limit)

    return {
        "tenant_id": tenant_id,
        "total": len(bookings),
        "bookings": [booking_to_dict(booking) for booking in bookings]
    }
