import logging
from typing import Optional, List
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload
from pydantic import BaseModel, Field

from farmhub.database import get_db
from farmhub.dependencies import get_current_user, require_admin
from farmhub.errors import validation_error
from farmhub.models import Order, OrderItem, OrderStatus, Product, User
from farmhub.serializers import serialize_user_summary

router = APIRouter(prefix="/orders", tags=["orders"])

logger = logging.getLogger(__name__)

# completed and cancelled are terminal
ORDER_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.pending:    {OrderStatus.processing, OrderStatus.cancelled},
    OrderStatus.processing: {OrderStatus.completed, OrderStatus.cancelled},
    OrderStatus.completed:  set(),
    OrderStatus.cancelled:  set(),
}

TERMINAL_STATUSES = {OrderStatus.completed, OrderStatus.cancelled}


# =====================================================
# PYDANTIC SCHEMAS
# =====================================================

class OrderItemInput(BaseModel):
    product_id: int
    quantity: int = Field(..., ge=1)


class CreateOrderPayload(BaseModel):
    items: List[OrderItemInput] = Field(..., min_length=1)
    shipping_address: str = Field(..., min_length=1)
    phone_number: str = Field(..., min_length=1, max_length=20)
    notes: Optional[str] = None


class StatusPayload(BaseModel):
    status: OrderStatus


# =====================================================
# HELPERS
# =====================================================

def _serialize_item(i: OrderItem) -> dict:
    p = i.product
    return {
        "id":          i.id,
        "product_id":  i.product_id,
        "quantity":    i.quantity,
        "unit_price":  i.unit_price,
        "total_price": i.total_price,
        "status":      i.status,
        "product": {
            "id":    p.id,
            "name":  p.name,
            "image": p.image,
            "price": p.price,
            "user":  serialize_user_summary(p.user),
        } if p else None,
    }


def serialize_order(o: Order) -> dict:
    return {
        "id":               o.id,
        "user_id":          o.user_id,
        "total_amount":     o.total_amount,
        "status":           o.status,
        "shipping_address": o.shipping_address,
        "phone_number":     o.phone_number,
        "notes":            o.notes,
        "created_at":       o.created_at,
        "updated_at":       o.updated_at,
        "user":             serialize_user_summary(o.user),
        "items":            [_serialize_item(i) for i in o.items],
    }


def _order_query(db: Session):
    return db.query(Order).options(
        joinedload(Order.user),
        joinedload(Order.items).joinedload(OrderItem.product).joinedload(Product.user),
    )


def _get_order_or_404(db: Session, order_id: int) -> Order:
    order = _order_query(db).filter(Order.id == order_id).first()
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


def _is_seller_of(order: Order, user: User) -> bool:
    return any(i.product and i.product.user_id == user.id for i in order.items)


def _newest_first(query):
    return query.order_by(Order.created_at.desc(), Order.id.desc())


# =====================================================
# USER: CREATE ORDER
# =====================================================

@router.post("", status_code=status.HTTP_201_CREATED)
def create_order(
    payload: CreateOrderPayload,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """
    Creates an order and its items in one transaction.
    Unit prices come from the product rows, never from the client.
    """
    items_data = []
    total = 0.0

    for index, item in enumerate(payload.items):
        product = db.query(Product).filter(Product.id == item.product_id).first()
        if not product:
            raise validation_error(
                f"items.{index}.product_id",
                f"Product {item.product_id} does not exist.",
            )

        line_total = round(product.price * item.quantity, 2)
        total += line_total
        items_data.append({
            "product_id":  product.id,
            "quantity":    item.quantity,
            "unit_price":  product.price,
            "total_price": line_total,
        })

    try:
        order = Order(
            user_id=user.id,
            total_amount=round(total, 2),
            status=OrderStatus.pending,
            shipping_address=payload.shipping_address,
            phone_number=payload.phone_number,
            notes=payload.notes,
        )
        db.add(order)
        db.flush()

        for data in items_data:
            db.add(OrderItem(order_id=order.id, status=OrderStatus.pending, **data))

        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Order creation failed | user_id=%s", user.id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error creating order",
        )

    logger.info(
        "Order created | order_id=%s | user_id=%s | total=%s",
        order.id,
        user.id,
        order.total_amount,
    )

    return {
        "message": "Order created successfully",
        "order": serialize_order(_get_order_or_404(db, order.id)),
    }


# =====================================================
# LISTINGS
# =====================================================

@router.get("")
def all_orders(
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
):
    query = _order_query(db)
    if status_filter:
        query = query.filter(Order.status == status_filter)

    return {"orders": [serialize_order(o) for o in _newest_first(query).all()]}


@router.get("/my-orders")
def my_orders(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    orders = _newest_first(_order_query(db).filter(Order.user_id == user.id)).all()
    return {"orders": [serialize_order(o) for o in orders]}


@router.get("/sales")
def my_sales(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Orders that contain at least one of the caller's products."""
    order_ids = (
        db.query(OrderItem.order_id)
        .join(Product, Product.id == OrderItem.product_id)
        .filter(Product.user_id == user.id)
    )
    orders = _newest_first(_order_query(db).filter(Order.id.in_(order_ids))).all()
    return {"orders": [serialize_order(o) for o in orders]}


@router.get("/{order_id}")
def get_order(
    order_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    order = _get_order_or_404(db, order_id)

    if order.user_id != user.id and not user.is_admin and not _is_seller_of(order, user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")

    return {"order": serialize_order(order)}


# =====================================================
# STATUS CHANGES
# =====================================================

@router.patch("/{order_id}/status")
def update_order_status(
    order_id: int,
    payload: StatusPayload,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    order = _get_order_or_404(db, order_id)
    new_status = payload.status

    is_buyer = order.user_id == user.id
    if not (user.is_admin or _is_seller_of(order, user)):
        # buyers may only withdraw an order nobody started on
        if not (is_buyer and new_status == OrderStatus.cancelled):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")

    if new_status not in ORDER_TRANSITIONS[order.status]:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Cannot change order status from '{order.status.value}' to '{new_status.value}'",
        )

    if is_buyer and not user.is_admin and order.status != OrderStatus.pending:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Only pending orders can be cancelled by the buyer",
        )

    try:
        order.status = new_status
        for item in order.items:
            item.status = new_status
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Order status update failed | order_id=%s", order_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error updating order status",
        )

    logger.info("Order status changed | order_id=%s | status=%s | by=%s", order_id, new_status.value, user.id)

    db.expire_all()
    return {
        "message": "Order status updated successfully",
        "order": serialize_order(_get_order_or_404(db, order_id)),
    }


@router.patch("/{order_id}/items/{item_id}/status")
def update_item_status(
    order_id: int,
    item_id: int,
    payload: StatusPayload,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    item = (
        db.query(OrderItem)
        .options(joinedload(OrderItem.product), joinedload(OrderItem.order))
        .filter(OrderItem.order_id == order_id, OrderItem.id == item_id)
        .first()
    )
    if not item:
        raise HTTPException(status_code=404, detail="Order item not found")

    if not user.is_admin and not (item.product and item.product.user_id == user.id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")

    order = item.order
    if order.status in TERMINAL_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Order is already {order.status.value}",
        )

    item.status = payload.status
    db.flush()

    remaining = (
        db.query(OrderItem.id)
        .filter(OrderItem.order_id == order_id, OrderItem.status != OrderStatus.completed)
        .count()
    )
    if remaining == 0:
        order.status = OrderStatus.completed

    db.commit()

    db.expire_all()
    return {
        "message": "Order item status updated successfully",
        "order": serialize_order(_get_order_or_404(db, order_id)),
    }
