from db.models.user import User as UserModel
from db.models.order import Product
from schemas.order_schema import ProductCreate, Product as ProductSchema
from config import config
from fastapi import HTTPException, Request
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from services.audit_service import log_admin_action
from utils.cache import response_cache
from utils.helpers import generate_slug, paginate
from utils.db import safe_commit
import logging

logger = logging.getLogger(__name__)

CACHE_PREFIX = "products:"


async def list_products(db: AsyncSession, page: int = 1, limit: int = 20, search: Optional[str] = None) -> dict:
    cache_key = f"{CACHE_PREFIX}{page}:{limit}:{(search or '').strip().lower()}"
    cached = response_cache.get(cache_key)
    if cached is not None:
        return cached

    filters = [Product.is_active.is_(True)]
    if search and search.strip():
        term = f"%{search.strip()}%"
        filters.append(or_(Product.name.ilike(term), Product.description.ilike(term)))

    total = (await db.execute(select(func.count(Product.id)).where(*filters))).scalar_one()
    products = (await db.execute(
        select(Product).where(*filters).order_by(Product.name.asc()).offset((page - 1) * limit).limit(limit)
    )).scalars().all()
    result = {
        "products": [ProductSchema.model_validate(p).model_dump() for p in products],
        "pagination": paginate(page, limit, total),
    }
    response_cache.set(cache_key, result, config.get_product_cache_ttl())
    return result


async def get_product(id_or_slug: str, db: AsyncSession) -> dict:
    if id_or_slug.isdigit():
        query = select(Product).where(Product.id == int(id_or_slug))
    else:
        query = select(Product).where(Product.slug == id_or_slug)
    product = (await db.execute(query.where(Product.is_active.is_(True)))).scalars().first()
    if not product:
        raise HTTPException(status_code=404, detail="Produto não encontrado")
    return {"product": ProductSchema.model_validate(product).model_dump()}


async def create_product(admin: UserModel, data: ProductCreate, db: AsyncSession, request: Request = None) -> dict:
    values = data.model_dump()
    values["slug"] = generate_slug(values.get("slug") or values["name"])
    product = Product(**values)
    db.add(product)
    await db.flush()
    log_admin_action(db, admin.email, "product_created", entity="product", entity_id=product.id,
                     new_data=values, request=request)
    await safe_commit(db, client_error_message="Já existe um produto com este slug")
    response_cache.invalidate(CACHE_PREFIX)
    logger.info(f"Product {product.id} ({product.slug}) created by {admin.email}")
    return {"product": ProductSchema.model_validate(product).model_dump()}
