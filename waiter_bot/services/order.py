"""
Order sinks.

At checkout the cart is frozen into an OrderProjection and handed to an
OrderSink. The cart is only cleared after `submit` returns an order id; any
failure is raised as TransientUpstreamError and the cart is kept.
"""

import logging
from abc import ABC, abstractmethod

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ..errors import TransientUpstreamError
from ..models import Order
from ..schemas import OrderProjection

logger = logging.getLogger(__name__)


class OrderSink(ABC):
    """Abstract destination for confirmed orders."""

    @abstractmethod
    def submit(self, projection: OrderProjection) -> str:
        """Persist the order and return its id. Raises TransientUpstreamError."""
        pass


class SqlOrderSink(OrderSink):
    """Writes orders to the `orders` table."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def submit(self, projection: OrderProjection) -> str:
        db = self._session_factory()
        try:
            order = Order(
                tenant_id=projection.tenant_id,
                user_id=projection.user_id,
                items=[line.model_dump() for line in projection.lines],
                total=projection.total,
                status="received",
            )
            db.add(order)
            db.commit()
            db.refresh(order)
            order_id = str(order.id)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to persist order for tenant %s: %s", projection.tenant_id, e)
            raise TransientUpstreamError("Order storage unavailable") from e
        finally:
            db.close()

        logger.info(
            "Order %s received for tenant %s: %d lines, total %.2f",
            order_id, projection.tenant_id, len(projection.lines), projection.total,
        )
        return order_id
