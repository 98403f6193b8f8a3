"""Member cart endpoints."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from cloudcafe_api.api.dependencies.session import require_member_session
from cloudcafe_api.api.errors import api_error
from cloudcafe_api.db.session import get_session
from cloudcafe_api.domain.cart import CartItemNotFoundError, CartSession
from cloudcafe_api.models.user import User
from cloudcafe_api.services.cart import CartService


router = APIRouter(prefix="/cart", tags=["cart"])


class CartItemResponse(BaseModel):
    id: str
    name: str
    price: str
    quantity: int
    category: Optional[str]
    rewardApplied: bool
    originalPrice: Optional[str]
    lineTotal: float


class CartResponse(BaseModel):
    items: List[CartItemResponse]
    notes: str
    rewardApplied: bool
    total: float
    count: int
    eligibleUnits: int


class AddCartItemRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    price: str = Field(..., min_length=1, max_length=64, description="Menu price label, e.g. '£3.50'")
    category: Optional[str] = Field(default=None, max_length=64)
    quantity: int = Field(default=1, ge=1, le=50)


class UpdateQuantityRequest(BaseModel):
    quantity: int = Field(..., ge=0, le=50)


class CartNotesRequest(BaseModel):
    notes: Optional[str] = None


def serialize_cart(cart: CartSession) -> CartResponse:
    return CartResponse(
        items=[
            CartItemResponse(
                id=item.id,
                name=item.name,
                price=item.price,
                quantity=item.quantity,
                category=item.category,
                rewardApplied=item.reward_applied,
                originalPrice=item.original_price,
                lineTotal=float(item.line_total),
            )
            for item in cart.items
        ],
        notes=cart.notes,
        rewardApplied=cart.reward_applied,
        total=float(cart.total()),
        count=cart.count(),
        eligibleUnits=cart.eligible_units(),
    )


def _item_not_found(exc: CartItemNotFoundError):
    return api_error(status.HTTP_404_NOT_FOUND, "cart_item_not_found", str(exc))


@router.get("", response_model=CartResponse)
async def get_cart(
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> CartResponse:
    service = CartService(db)
    cart = await service.load(user.id)
    await db.commit()
    return serialize_cart(cart)


@router.post("/items", response_model=CartResponse, status_code=status.HTTP_201_CREATED)
async def add_cart_item(
    payload: AddCartItemRequest,
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> CartResponse:
    cart = await CartService(db).add_item(
        user.id,
        name=payload.name,
        price=payload.price,
        category=payload.category,
        quantity=payload.quantity,
    )
    return serialize_cart(cart)


@router.patch("/items/{item_id}", response_model=CartResponse)
async def update_cart_item(
    item_id: str,
    payload: UpdateQuantityRequest,
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> CartResponse:
    try:
        cart = await CartService(db).update_quantity(user.id, item_id, payload.quantity)
    except CartItemNotFoundError as exc:
        raise _item_not_found(exc) from exc
    return serialize_cart(cart)


@router.delete("/items/{item_id}", response_model=CartResponse)
async def remove_cart_item(
    item_id: str,
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> CartResponse:
    try:
        cart = await CartService(db).remove_item(user.id, item_id)
    except CartItemNotFoundError as exc:
        raise _item_not_found(exc) from exc
    return serialize_cart(cart)


@router.put("/notes", response_model=CartResponse)
async def set_cart_notes(
    payload: CartNotesRequest,
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> CartResponse:
    cart = await CartService(db).set_notes(user.id, payload.notes)
    return serialize_cart(cart)


@router.post("/reward", response_model=CartResponse)
async def apply_cart_reward(
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> CartResponse:
    """Apply the pending free drink to the first eligible line; idempotent."""

    cart = await CartService(db).apply_reward(user.id)
    return serialize_cart(cart)


@router.delete("", response_model=CartResponse)
async def clear_cart(
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> CartResponse:
    cart = await CartService(db).clear(user.id)
    return serialize_cart(cart)
