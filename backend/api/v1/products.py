from fastapi import APIRouter, Depends, Query
from typing import Optional
from db.session import get_db_session
from sqlalchemy.ext.asyncio import AsyncSession
from services.product_service import list_products, get_product
from utils.responses import success_response

router = APIRouter(prefix="/api/products")

@router.get("")
async def products(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    db: AsyncSession = Depends(get_db_session),
):
    return success_response(await list_products(db, page, limit, search))

@router.get("/{identifier}")
async def product(identifier: str, db: AsyncSession = Depends(get_db_session)):
    return success_response(await get_product(identifier, db))
