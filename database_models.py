from sqlalchemy import Column, Integer, String, DateTime
from models.entitlement import utc_now
from database import Base


class Entitlement(Base):
    """
    One entitlement row per identity-provider subject.
    `version` is bumped on every write and guards read-modify-write cycles.
    """
    __tablename__ = "entitlements"

    id = Column(Integer, primary_key=True, index=True)
    identity = Column(String, unique=True, nullable=False, index=True)
    email = Column(String, nullable=True)
    display_name = Column(String, nullable=True)
    plan = Column(String, nullable=False, default="trialing")
    trial_expiry = Column(DateTime, nullable=True)
    billing_customer_ref = Column(String, unique=True, nullable=True, index=True)
    billing_subscription_ref = Column(String, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)
