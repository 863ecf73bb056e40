"""
Order placement and status transitions.

Both operations run as a single database transaction on the session they
are given: either every write lands (order, items, stock changes, status)
or the session is rolled back and nothing does.

Stock is decremented with a conditional UPDATE (``stock >= quantity`` in the
WHERE clause), so concurrent orders for the same menu item cannot oversell
it; the database's row locking serializes the competing updates.
"""
import logging
from typing import Iterable, List

from sqlalchemy.orm import Session

import models
from roles import OrderStatus, can_transition
from schemas import OrderLine

logger = logging.getLogger(__name__)


class OrderError(Exception):
    """Base class for order failures that map onto a client error."""


class MenuNotFoundError(OrderError):
    def __init__(self, menu_id: int):
        self.menu_id = menu_id
        super().__init__(f"Menu item {menu_id} not found")


class InsufficientStockError(OrderError):
    def __init__(self, menu_id: int, name: str, requested: int, available: int):
        self.menu_id = menu_id
        self.name = name
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for '{name}': requested={requested}, available={available}"
        )


class OrderNotFoundError(OrderError):
    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class InvalidStatusTransitionError(OrderError):
    def __init__(self, current: OrderStatus, target: OrderStatus):
        self.current = current
        self.target = target
        super().__init__(f"Cannot change order status from '{current.value}' to '{target.value}'")


def _decrement_stock(db: Session, menu_id: int, quantity: int) -> bool:
    updated = db.query(models.Menu).filter(
        models.Menu.id == menu_id,
        models.Menu.stock >= quantity,
    ).update({models.Menu.stock: models.Menu.stock - quantity}, synchronize_session=False)
    return updated == 1


def _restore_stock(db: Session, items: Iterable[models.OrderItem]) -> None:
    for item in sorted(items, key=lambda i: i.menu_id):
        db.query(models.Menu).filter(models.Menu.id == item.menu_id).update(
            {models.Menu.stock: models.Menu.stock + item.quantity}, synchronize_session=False
        )


def place_order(db: Session, lines: List[OrderLine], total_amount: int) -> int:
    """
    Create an order in the received state, insert its items and take their
    quantities out of stock. Returns the new order id.

    Raises MenuNotFoundError or InsufficientStockError after rolling back
    everything written so far.
    """
    try:
        db_order = models.Order(total_amount=total_amount, status=OrderStatus.RECEIVED.value)
        db.add(db_order)
        db.flush()

        menus = {}
        for line in lines:
            menu = menus.get(line.id) or db.query(models.Menu).filter(models.Menu.id == line.id).first()
            if menu is None:
                raise MenuNotFoundError(line.id)
            menus[menu.id] = menu

            db.add(models.OrderItem(
                order_id=db_order.id,
                menu_id=menu.id,
                quantity=line.quantity,
                price=line.price,
                selected_options=", ".join(line.selectedOptions),
            ))

        # Lock menu rows in id order so concurrent orders cannot deadlock
        for line in sorted(lines, key=lambda l: l.id):
            if not _decrement_stock(db, line.id, line.quantity):
                menu = menus[line.id]
                db.refresh(menu)
                raise InsufficientStockError(menu.id, menu.name, line.quantity, menu.stock)

        db.commit()
    except Exception:
        db.rollback()
        raise

    # Conditional updates bypass the identity map
    db.expire_all()
    logger.info("Order #%d placed: %d line(s), total %d", db_order.id, len(lines), total_amount)
    return db_order.id


def change_order_status(db: Session, order_id: int, target: OrderStatus) -> models.Order:
    """
    Move an order along received -> preparing -> completed, or from received
    to cancelled. Cancelling puts every item's quantity back into stock in
    the same transaction as the status write.
    """
    try:
        db_order = db.query(models.Order).filter(models.Order.id == order_id).with_for_update().first()
        if db_order is None:
            raise OrderNotFoundError(order_id)

        current = OrderStatus(db_order.status)
        if not can_transition(current, target):
            raise InvalidStatusTransitionError(current, target)

        db_order.status = target.value
        if target is OrderStatus.CANCELLED:
            _restore_stock(db, db_order.items)

        db.commit()
    except Exception:
        db.rollback()
        raise

    db.expire_all()
    logger.info("Order #%d: '%s' -> '%s'", order_id, current.value, target.value)
    return db_order
