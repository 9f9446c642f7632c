import logging
from typing import Annotated
from dataclasses import dataclass
from fastapi import Depends
from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncSession

import db.postgres
import tables


logger = logging.getLogger('kommo-pay-relations')


@dataclass(frozen=True)
class RelationStore:
    session_maker: async_sessionmaker[AsyncSession]

    async def create(self, payment_id: str, deal_id: int) -> bool:
        try:
            async with self.session_maker() as session, session.begin():
                await session.execute(insert(tables.PaymentDealRelation).values({
                    tables.PaymentDealRelation.payment_id: payment_id,
                    tables.PaymentDealRelation.deal_id: deal_id
                }))
        except IntegrityError:
            # payment_id уникален, повторная доставка того же платежа не создает вторую связь
            logger.warning(f'relation for payment {payment_id} already exists, ignoring')
            return False

        logger.info(f'saved relation payment {payment_id} -> deal {deal_id}')
        return True

    async def get_by_payment_id(self, payment_id: str) -> tables.PaymentDealRelation | None:
        async with self.session_maker() as session:
            relation = await session.get(tables.PaymentDealRelation, payment_id)
            if relation is not None:
                session.expunge(relation)
            return relation

    async def list_by_deal_id(self, deal_id: int) -> list[tables.PaymentDealRelation]:
        async with self.session_maker() as session:
            relations = list((await session.execute(
                select(tables.PaymentDealRelation)
                .where(tables.PaymentDealRelation.deal_id == deal_id)
                .order_by(tables.PaymentDealRelation.created_at)
            )).scalars())
            session.expunge_all()
            return relations


def get_relation_store(
    session_maker: Annotated[async_sessionmaker[AsyncSession], Depends(db.postgres.get_session_maker)]
) -> RelationStore:
    return RelationStore(session_maker=session_maker)
