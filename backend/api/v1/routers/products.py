"""
Products Router — seller catalog.

Anyone signed in can browse active products; sellers manage their own.
Stock is only decremented by order placement, never edited below what
buyers have already reserved.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_account, get_db, require_roles
from core.roles import Role
from db.models import Product, User

router = APIRouter(prefix="/api/v1/products", tags=["products"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    category: str = Field(..., min_length=1, max_length=100)
    price: float = Field(..., gt=0)
    quantity: int = Field(..., ge=0)


class ProductUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    category: str | None = None
    price: float | None = Field(None, gt=0)
    quantity: int | None = Field(None, ge=0)
    status: str | None = Field(None, pattern="^(active|inactive)$")


class ProductResponse(BaseModel):
    product_id: UUID
    seller_id: UUID
    name: str
    description: str | None
    category: str
    price: float
    quantity: int
    status: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/", response_model=list[ProductResponse])
async def list_products(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    category: str | None = None,
    seller_id: UUID | None = None,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_account),
):
    """List active products with optional category and seller filters."""
    query = select(Product).where(Product.status == "active")
    if category:
        query = query.where(Product.category == category)
    if seller_id:
        query = query.where(Product.seller_id == seller_id)
    query = query.order_by(Product.created_at.desc()).offset(skip).limit(limit)
    result = await db.execute(query)
    return result.scalars().all()


@router.get("/mine", response_model=list[ProductResponse])
async def list_my_products(
    db: AsyncSession = Depends(get_db),
    seller: User = Depends(require_roles(Role.SELLER)),
):
    result = await db.execute(
        select(Product).where(Product.seller_id == seller.user_id).order_by(Product.created_at.desc())
    )
    return result.scalars().all()


@router.get("/{product_id}", response_model=ProductResponse)
async def get_product(
    product_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_account),
):
    """Get a single product by ID."""
    product = await db.get(Product, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@router.post("/", response_model=ProductResponse, status_code=201)
async def create_product(
    product: ProductCreate,
    db: AsyncSession = Depends(get_db),
    seller: User = Depends(require_roles(Role.SELLER)),
):
    """List a new product for sale."""
    db_product = Product(seller_id=seller.user_id, **product.model_dump())
    db.add(db_product)
    await db.commit()
    await db.refresh(db_product)
    return db_product


@router.patch("/{product_id}", response_model=ProductResponse)
async def update_product(
    product_id: UUID,
    updates: ProductUpdate,
    db: AsyncSession = Depends(get_db),
    seller: User = Depends(require_roles(Role.SELLER)),
):
    """Update one of the seller's own products."""
    product = await db.get(Product, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    if product.seller_id != seller.user_id:
        raise HTTPException(status_code=403, detail="You can only edit your own products")

    for field, value in updates.model_dump(exclude_unset=True).items():
        setattr(product, field, value)

    await db.commit()
    await db.refresh(product)
    return product
