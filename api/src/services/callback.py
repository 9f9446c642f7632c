import re
import httpx
import logging
from typing import Annotated, Any, Literal
from dataclasses import dataclass
from fastapi import Depends
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from clients.kommo import KommoClient, KommoApiError, get_kommo_client
from clients.flitt import FlittClient, get_flitt_client
from services.amount import to_decimal
from services.lead_id import coerce_lead_id
from services.relations import RelationStore, get_relation_store
from services.retry import RetryPolicy
from settings import DealFieldsSettings, settings, deal_fields_settings


logger = logging.getLogger('kommo-pay-callback')

# https://docs.flitt.com/api/callback/
STATUS_FIELDS = ('status', 'response_status', 'order_status')
SUCCESS_STATUSES = frozenset(('success', 'approved'))
# response_status=success означает лишь, что запрос обработан, итог платежа в order_status
FAILED_ORDER_STATUSES = frozenset(('declined', 'expired', 'reversed'))

_ORDER_DEAL_ID = re.compile(r'^deal_(\d+)')


class CallbackResult(BaseModel):
    status: Literal['success', 'ignored', 'error']
    payment_id: str | None = None
    order_id: str | None = None
    lead_id: int | None = None
    status_updated: bool = False
    note_created: bool = False
    error: str | None = None


def is_payment_successful(data: dict[str, Any]) -> bool:
    statuses = {field: str(data.get(field) or '').lower() for field in STATUS_FIELDS}
    if statuses['order_status'] in FAILED_ORDER_STATUSES:
        return False
    return any(status in SUCCESS_STATUSES for status in statuses.values())


def lead_id_from_order_id(order_id: str | None) -> int | None:
    if not order_id:
        return None
    match = _ORDER_DEAL_ID.match(order_id)
    return coerce_lead_id(match.group(1)) if match else None


@dataclass(frozen=True)
class CallbackService:
    kommo: KommoClient
    relations: RelationStore
    fields: DealFieldsSettings
    note_retry: RetryPolicy

    async def process(self, data: dict[str, Any]) -> CallbackResult:
        if isinstance(data.get('response'), dict):
            data = data['response']

        payment_id = str(data['payment_id']) if data.get('payment_id') is not None else None
        order_id = str(data['order_id']) if data.get('order_id') is not None else None

        if not is_payment_successful(data):
            statuses = {field: data.get(field) for field in STATUS_FIELDS}
            logger.info(f'payment {payment_id} ({order_id}) is not successful: {statuses}, ignoring')
            return CallbackResult(status='ignored', payment_id=payment_id, order_id=order_id)

        lead_id = await self.resolve_lead_id(payment_id, order_id)
        if lead_id is None:
            logger.error(f'no deal found for successful payment {payment_id} ({order_id})')
            return CallbackResult(
                status='error',
                payment_id=payment_id,
                order_id=order_id,
                error=f'No deal found for payment {payment_id} (order {order_id})'
            )

        # Деньги уже списаны, поэтому сбой обновления сделки не отменяет успех
        status_updated = True
        try:
            await self.kommo.update_lead_status(lead_id, self.fields.won_status_id)
        except (KommoApiError, httpx.HTTPError) as e:
            logger.error(f'failed to move lead {lead_id} to status {self.fields.won_status_id}: {e}')
            status_updated = False

        amount = to_decimal(data.get('amount')) / 100
        currency = data.get('currency') or ''
        note = f'Payment received: {amount:.2f} {currency}, transaction {payment_id}, order {order_id}'

        async def create_note() -> bool:
            await self.kommo.create_note(lead_id, note)
            return True

        note_created = await self.note_retry.run(create_note, f'payment note on lead {lead_id}')
        if not note_created:
            logger.error(f'failed to create payment note on lead {lead_id}')

        logger.info(f'payment {payment_id} reconciled with lead {lead_id}')
        return CallbackResult(
            status='success',
            payment_id=payment_id,
            order_id=order_id,
            lead_id=lead_id,
            status_updated=status_updated,
            note_created=note_created
        )

    async def resolve_lead_id(self, payment_id: str | None, order_id: str | None) -> int | None:
        if payment_id:
            try:
                relation = await self.relations.get_by_payment_id(payment_id)
            except SQLAlchemyError:
                # Без базы сделку еще можно найти через Kommo или order_id
                logger.exception(f'failed to look up relation for payment {payment_id}')
                relation = None

            if relation is not None:
                return relation.deal_id

            try:
                leads = await self.kommo.search_leads_by_custom_field(self.fields.payment_id_field_id, payment_id)
            except (KommoApiError, httpx.HTTPError) as e:
                logger.warning(f'failed to search leads by payment id {payment_id}: {e}')
                leads = []

            if leads:
                return leads[0].id

        return lead_id_from_order_id(order_id)


def get_callback_service(
    kommo: Annotated[KommoClient | None, Depends(get_kommo_client)],
    flitt: Annotated[FlittClient | None, Depends(get_flitt_client)],
    relations: Annotated[RelationStore, Depends(get_relation_store)]
) -> CallbackService | None:
    if kommo is None or flitt is None:
        return None

    return CallbackService(
        kommo=kommo,
        relations=relations,
        fields=deal_fields_settings,
        note_retry=RetryPolicy(attempts=settings.note_attempts, delay=settings.note_retry_delay)
    )
