"""
CustomerService -- wholesale account upsert and external mapping.

Runs inside the order-creation transaction: a failed order never leaves a
half-updated customer behind.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from wholesale_kernel.domain.actor import ActorContext
from wholesale_kernel.domain.dtos import Address, OrderSubmission
from wholesale_kernel.logging_config import get_logger
from wholesale_kernel.models.catalog import SalesRep
from wholesale_kernel.models.customer import ADDRESS_FIELDS, Customer
from wholesale_kernel.services.base import BaseService

logger = get_logger("services.customer")


class CustomerService(BaseService[Customer]):
    """Create-or-merge customers keyed by store name."""

    def upsert_for_order(
        self,
        submission: OrderSubmission,
        rep: SalesRep,
        actor: ActorContext,
        now: datetime,
    ) -> Customer:
        """
        Create the customer if absent, else merge contact and address
        fields.  Either way increments ``order_count``.
        """
        store_name = submission.store_name.strip()
        customer = self.session.execute(
            select(Customer).where(Customer.store_name == store_name).with_for_update()
        ).scalar_one_or_none()

        created = customer is None
        if created:
            customer = Customer(
                store_name=store_name,
                order_count=0,
                first_order_at=now,
                created_by_id=actor.actor_id,
            )
            self.session.add(customer)

        customer.buyer_name = submission.buyer_name
        customer.email = submission.customer_email
        customer.phone = submission.customer_phone
        customer.rep_code = rep.display_code
        if submission.website:
            customer.website = submission.website

        self._apply_address(customer, submission.billing_address, prefix="")
        self._apply_address(customer, submission.shipping_address, prefix="shipping_")

        customer.order_count = (customer.order_count or 0) + 1
        customer.last_order_at = now
        customer.updated_by_id = actor.actor_id
        self.session.flush()

        logger.info(
            "customer_upserted",
            extra={
                "customer_id": str(customer.id),
                "store_name": store_name,
                "is_new": created,
                "order_count": customer.order_count,
            },
        )
        return customer

    @staticmethod
    def _apply_address(customer: Customer, address: Address, prefix: str) -> None:
        for field_name in ADDRESS_FIELDS:
            setattr(customer, f"{prefix}{field_name}", getattr(address, field_name) or "")

    def link_external(
        self,
        customer_id: UUID,
        external_customer_id: str,
        actor: ActorContext,
    ) -> Customer | None:
        customer = self.session.get(Customer, customer_id)
        if customer is None:
            return None
        customer.external_customer_id = external_customer_id
        customer.updated_by_id = actor.actor_id
        self.session.flush()
        return customer
