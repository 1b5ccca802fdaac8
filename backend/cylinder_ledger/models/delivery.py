from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Customer(db.Model):
    """Customer master data (read model, names only)."""
    __tablename__ = "customers"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)

    def __repr__(self) -> str:
        return f"<Customer id={self.id} name={self.name!r}>"


class Vehicle(db.Model):
    """Vehicle master data (read model, registration number only)."""
    __tablename__ = "vehicles"

    id = db.Column(db.Integer, primary_key=True)
    vehicle_number = db.Column(db.String(32), nullable=False)

    def __repr__(self) -> str:
        return f"<Vehicle id={self.id} number={self.vehicle_number!r}>"


class DeliveryTransaction(db.Model):
    """
    Delivery transaction owned by the Delivery domain.

    GR approve/finalize read the customer, vehicle and per-cylinder-type
    lines from here; this subsystem never writes these rows.
    """
    __tablename__ = "delivery_transactions"

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    vehicle_id = db.Column(db.Integer, db.ForeignKey("vehicles.id"), nullable=True, index=True)
    delivery_datetime = db.Column(db.DateTime(timezone=True), nullable=True)

    total_bill_amount_cents = db.Column(db.Integer, nullable=True)

    customer = db.relationship("Customer")
    vehicle = db.relationship("Vehicle")
    lines = db.relationship(
        "DeliveryTransactionLine",
        back_populates="delivery",
        order_by="DeliveryTransactionLine.id",
        lazy="selectin",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "customer_name": self.customer.name if self.customer else None,
            "vehicle_id": self.vehicle_id,
            "vehicle_number": self.vehicle.vehicle_number if self.vehicle else None,
            "delivery_datetime": to_utc_z(self.delivery_datetime),
            "total_bill_amount_cents": self.total_bill_amount_cents,
        }


class DeliveryTransactionLine(db.Model):
    __tablename__ = "delivery_transaction_lines"

    id = db.Column(db.Integer, primary_key=True)
    delivery_id = db.Column(db.Integer, db.ForeignKey("delivery_transactions.id"), nullable=False, index=True)
    cylinder_type_id = db.Column(db.Integer, db.ForeignKey("cylinder_types.id"), nullable=False)

    delivered_qty = db.Column(db.Integer, nullable=False, default=0)
    returned_qty = db.Column(db.Integer, nullable=False, default=0)

    rate_applied_cents = db.Column(db.Integer, nullable=True)
    line_amount_cents = db.Column(db.Integer, nullable=True)

    delivery = db.relationship("DeliveryTransaction", back_populates="lines")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cylinder_type_id": self.cylinder_type_id,
            "delivered_qty": self.delivered_qty,
            "returned_qty": self.returned_qty,
            "net_qty": self.delivered_qty - self.returned_qty,
            "rate_applied_cents": self.rate_applied_cents,
            "line_amount_cents": self.line_amount_cents,
        }
