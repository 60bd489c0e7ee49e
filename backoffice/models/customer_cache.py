"""Local customer cache.

A copy of the ServiceTitan customer export, loaded by
`flask import-customers`. Fast to search but possibly stale, so lookups
can fall back to the live CRM.

- CachedCustomer: one row per ServiceTitan customer.
- CachedContact: phone/email contact values, normalized for matching.
"""

from backoffice.extensions import db


class CachedCustomer(db.Model):
    __tablename__ = "customers_xlsx"

    id = db.Column(db.BigInteger, primary_key=True)  # ServiceTitan customer id
    name = db.Column(db.String(255), nullable=False)
    type = db.Column(db.String(50), default="Residential")  # Residential | Commercial
    phone = db.Column(db.String(50), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    street = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(100), nullable=True)
    state = db.Column(db.String(50), nullable=True)
    zip = db.Column(db.String(20), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    lifetime_revenue = db.Column(db.Integer, default=0)  # cents
    imported_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    contacts = db.relationship(
        "CachedContact", back_populates="customer", lazy="dynamic"
    )

    def __repr__(self):
        return f"<CachedCustomer {self.id} {self.name}>"


class CachedContact(db.Model):
    __tablename__ = "contacts_xlsx"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    customer_id = db.Column(
        db.BigInteger, db.ForeignKey("customers_xlsx.id"), nullable=False
    )
    contact_type = db.Column(db.String(50), nullable=False)  # Phone | MobilePhone | Email
    value = db.Column(db.String(255), nullable=False)
    normalized_value = db.Column(db.String(255), nullable=False, index=True)

    customer = db.relationship("CachedCustomer", back_populates="contacts")

    def __repr__(self):
        return f"<CachedContact {self.contact_type}={self.normalized_value}>"
