from datetime import datetime
from sqlalchemy import BigInteger, String, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class PaymentDealRelation(Base):
    __tablename__ = 'payment_deal_relations'

    payment_id: Mapped[str] = mapped_column(String, primary_key=True)
    deal_id: Mapped[int] = mapped_column(BigInteger, index=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), index=True)
