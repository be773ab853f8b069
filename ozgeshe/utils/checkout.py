from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from ..core.auth import CurrentUser
from ..core.database import unit_of_work
from ..core.errors import ValidationFailed
from ..models.book import Book
from ..models.order import Order, OrderItem
import logging

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


async def load_order(session: AsyncSession, order_id: int) -> Optional[Order]:
    result = await session.execute(
        select(Order)
        .options(selectinload(Order.items).selectinload(OrderItem.book))
        .filter(Order.id == order_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def place_order(session: AsyncSession, buyer: CurrentUser, items: List[dict]) -> Order:
    """
    Create an order from [{"book_id", "quantity"}, ...].

    Every book must exist; otherwise nothing is written. Each item keeps the
    price the book had at this moment, so later catalogue changes never
    alter the order total.
    """
    book_ids = {item["book_id"] for item in items}
    result = await session.execute(select(Book).filter(Book.id.in_(book_ids)))
    prices = {book.id: to_money(book.price) for book in result.scalars().all()}

    missing = book_ids - prices.keys()
    if missing:
        logger.warning(f"Order rejected, unknown books: {sorted(missing)}")
        raise ValidationFailed("Some books are no longer available", code="BOOKS_UNAVAILABLE")

    total = sum((prices[item["book_id"]] * item["quantity"] for item in items), Decimal("0"))

    async with unit_of_work(session):
        order = Order(
            user_id=buyer.id,
            total_price=to_money(total),
            items=[
                OrderItem(
                    book_id=item["book_id"],
                    quantity=item["quantity"],
                    price_at_purchase=prices[item["book_id"]],
                )
                for item in items
            ],
        )
        session.add(order)
        await session.flush()
        order_id = order.id

    logger.info(f"Order {order_id} placed by user {buyer.id}: total {to_money(total)}")
    return await load_order(session, order_id)
