from typing import List, Optional
from fastapi import APIRouter, BackgroundTasks, Depends, Header
from sqlalchemy.orm import Session

from storefront.api.deps import get_catalog, get_current_identity, get_db, get_publisher, require_admin
from storefront.core.auth import is_admin
from storefront.core.errors import AuthorizationError
from storefront.schemas import OrderCancel, OrderCreate, OrderCreated, OrderRead, OrderStatusUpdate
from storefront.services import orders
from storefront.services.catalog import CatalogClient

router = APIRouter()

@router.post("", response_model=OrderCreated, status_code=201)
def create_order(
    payload: OrderCreate,
    background: BackgroundTasks,
    identity: dict = Depends(get_current_identity),
    db: Session = Depends(get_db),
    catalog: CatalogClient = Depends(get_catalog),
    publish=Depends(get_publisher),
):
    # the event is published once the response has gone out
    order = orders.create_order(
        db, payload, identity.get("sub"), catalog,
        notify=lambda event: background.add_task(publish, event),
    )
    return OrderCreated(
        order_id=order.id,
        order_number=order.order_number,
        total_amount=order.total_amount,
        payment_method=order.payment_method,
        order_status=order.order_status,
        delivery_estimate=order.delivery_estimate,
    )

@router.get("", response_model=List[OrderRead])
def list_orders_by_email(
    email: Optional[str] = None,
    _admin: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return [OrderRead.from_order(o) for o in orders.list_orders_by_email(db, email)]

@router.get("/id/{order_id}", response_model=OrderRead)
def get_order_by_id(
    order_id: int,
    verify_email: Optional[str] = Header(default=None, alias="X-Verify-Email"),
    db: Session = Depends(get_db),
):
    return OrderRead.from_order(orders.get_order_by_id(db, order_id, verify_email))

@router.get("/users/{user_id}", response_model=List[OrderRead])
def list_user_orders(user_id: str, identity: dict = Depends(get_current_identity), db: Session = Depends(get_db)):
    if identity.get("sub") != user_id and not is_admin(identity):
        raise AuthorizationError("You can only view your own orders")
    return [OrderRead.from_order(o) for o in orders.list_orders_for_user(db, user_id)]

@router.put("/{order_id}/status", response_model=OrderRead)
def update_status(
    order_id: int,
    payload: OrderStatusUpdate,
    _admin: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return OrderRead.from_order(orders.update_order_status(db, order_id, payload))

@router.post("/{order_id}/cancel", response_model=OrderRead)
def cancel_order(
    order_id: int,
    payload: Optional[OrderCancel] = None,
    identity: dict = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    reason = payload.reason if payload else None
    order = orders.cancel_order(db, order_id, identity.get("sub"), is_admin(identity), reason)
    return OrderRead.from_order(order)

@router.get("/{order_number}", response_model=OrderRead)
def get_order_by_number(
    order_number: str,
    verify_email: Optional[str] = Header(default=None, alias="X-Verify-Email"),
    db: Session = Depends(get_db),
):
    return OrderRead.from_order(orders.get_order_by_number(db, order_number, verify_email))
