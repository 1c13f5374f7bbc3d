"""Customer repository for data access."""

from uuid import UUID

from sqlalchemy.orm import Session

from backoffice.models.customer import Customer


class CustomerRepository:
    """Repository for Customer model."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, customer_id: UUID) -> Customer | None:
        return self.db.query(Customer).filter(Customer.id == customer_id).first()

    def get_by_email(self, email: str) -> Customer | None:
        return self.db.query(Customer).filter(Customer.email == email.strip().lower()).first()

    def find_or_add(self, name: str, email: str, phone: str | None = None) -> Customer:
        """Return the customer with *email*, staging a new one if none exists.

        Nothing is committed; the caller owns the transaction.
        """
        customer = self.get_by_email(email)
        if customer:
            return customer

        customer = Customer(name=name, email=email.strip().lower(), phone=phone)
        self.db.add(customer)
        self.db.flush()
        return customer
