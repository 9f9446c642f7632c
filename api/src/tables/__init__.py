from .base import Base
from .payment_deal_relation import PaymentDealRelation
