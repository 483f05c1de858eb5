from sqlalchemy import Column, DateTime, Integer, JSON, String
from shared.config.database import Base

class PaymentCallback(Base):
    """Audit log: one row per gateway callback received, whatever its outcome."""
    __tablename__ = "payment_callbacks"
    __table_args__ = {"schema": "payment_schema"}

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, nullable=True, index=True)
    gateway_payment_id = Column(String(128), nullable=True, index=True)
    outcome = Column(String(16), nullable=False) # success, failure
    transaction_id = Column(String(128), nullable=True)
    disposition = Column(String(16), nullable=False) # applied, replayed, rejected
    detail = Column(String(255), nullable=True)
    payload = Column(JSON, nullable=True)
    received_at = Column(DateTime(timezone=True), nullable=False)
