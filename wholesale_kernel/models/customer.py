"""
Customer (wholesale account) model.

One row per store.  Upserted by order decomposition inside the same
transaction as the order, and linked to its commerce platform customer by
outbound transfer.
"""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from wholesale_kernel.db.base import TrackedBase

ADDRESS_FIELDS = (
    "street1",
    "street2",
    "city",
    "state_province",
    "postal_code",
    "country",
)


class Customer(TrackedBase):
    """
    A wholesale account keyed by store name.

    Contract:
        ``order_count`` is incremented once per created order; contact and
        address fields are overwritten with the latest submission.
    """

    __tablename__ = "customers"

    store_name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)

    buyer_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    email: Mapped[str] = mapped_column(String(320), nullable=False, default="")
    phone: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    rep_code: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    website: Mapped[str] = mapped_column(String(300), nullable=False, default="")

    # Billing address
    street1: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    street2: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    city: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    state_province: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    postal_code: Mapped[str] = mapped_column(String(20), nullable=False, default="")
    country: Mapped[str] = mapped_column(String(100), nullable=False, default="")

    # Shipping address
    shipping_street1: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    shipping_street2: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    shipping_city: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    shipping_state_province: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    shipping_postal_code: Mapped[str] = mapped_column(String(20), nullable=False, default="")
    shipping_country: Mapped[str] = mapped_column(String(100), nullable=False, default="")

    order_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    first_order_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_order_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Commerce platform customer id, recorded after an on-demand create
    external_customer_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    def __repr__(self) -> str:
        return f"<Customer {self.store_name}>"
