import uuid

from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint, Uuid, func

from app.database import Base


class MpesaCallbackReceipt(Base):
    """One processed Daraja STK callback; guards against duplicate deliveries."""

    __tablename__ = "mpesa_callback_receipts"
    __table_args__ = (
        UniqueConstraint(
            "checkout_request_id",
            "result_code",
            name="uq_mpesa_callback_receipts_checkout_result",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    checkout_request_id = Column(String(100), nullable=False, index=True)
    merchant_request_id = Column(String(100))
    result_code = Column(Integer, nullable=False)
    result_description = Column(Text)
    receipt_number = Column(String(50))
    linked_account_id = Column(Uuid, nullable=True)
    received_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return (
            f"<MpesaCallbackReceipt(checkout_request_id='{self.checkout_request_id}', "
            f"result_code={self.result_code})>"
        )
