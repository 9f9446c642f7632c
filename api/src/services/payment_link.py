import httpx
import logging
from uuid import uuid4
from decimal import Decimal
from typing import Annotated
from dataclasses import dataclass
from fastapi import Depends
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from clients.kommo import KommoClient, get_kommo_client
from clients.flitt import FlittClient, FlittApiError, PaymentLink, get_flitt_client
from services.amount import calculate_amount
from services.company import resolve_company_name
from services.relations import RelationStore, get_relation_store
from services.retry import RetryPolicy
from settings import Settings, DealFieldsSettings, settings, deal_fields_settings


logger = logging.getLogger('kommo-pay-payment-link')


class PaymentLinkResult(BaseModel):
    lead_id: int
    amount: int
    currency: str
    description: str
    order_id: str
    checkout_url: str
    payment_id: str
    relation_saved: bool
    note_created: bool
    payment_id_stored: bool


def make_order_id(lead_id: int | None) -> str:
    # Случайный хвост: Kommo может доставить один веб-хук несколько раз,
    # а Flitt не принимает повторный order_id
    suffix = uuid4().hex[:8]
    return f'deal_{lead_id}_{suffix}' if lead_id is not None else f'order_{suffix}'


def format_amount(amount: int) -> str:
    return str((Decimal(amount) / 100).quantize(Decimal('0.01')))


@dataclass(frozen=True)
class PaymentLinkService:
    kommo: KommoClient
    flitt: FlittClient
    relations: RelationStore
    settings: Settings
    fields: DealFieldsSettings
    note_retry: RetryPolicy
    field_write_retry: RetryPolicy

    async def create_for_lead(self, lead_id: int) -> PaymentLinkResult:
        lead = await self.kommo.get_lead(lead_id)
        amount = calculate_amount(lead, self.fields)
        company_name = await resolve_company_name(lead, self.kommo, self.fields)
        description = f'Payment for {company_name} (deal #{lead_id})'

        # https://docs.flitt.com/api/checkout-url/
        payment = await self.flitt.create_payment_link(
            amount=amount,
            currency=self.settings.currency,
            description=description,
            callback_url=self.settings.callback_url,
            order_id=make_order_id(lead_id)
        )
        logger.info(f'created payment {payment.payment_id} ({payment.order_id}) for lead {lead_id}, amount {amount}')

        # Платеж уже создан, дальше ошибки только логируются
        relation_saved = await self._save_relation(payment.payment_id, lead_id)

        note = (
            f'Payment link created: {payment.checkout_url}\n'
            f'Payment ID: {payment.payment_id}\n'
            f'Amount: {format_amount(amount)} {self.settings.currency}'
        )
        note_created = await self.note_retry.run(
            lambda: self._create_note(lead_id, note),
            f'note for payment {payment.payment_id} on lead {lead_id}'
        )
        if not note_created:
            logger.error(f'failed to create a note for payment {payment.payment_id} on lead {lead_id}')

        payment_id_stored = await self.field_write_retry.run(
            lambda: self._write_payment_id(lead_id, payment.payment_id),
            f'payment id {payment.payment_id} in field {self.fields.payment_id_field_id} of lead {lead_id}'
        )
        if not payment_id_stored:
            logger.error(
                f'payment id {payment.payment_id} is not stored in field {self.fields.payment_id_field_id} '
                f'of lead {lead_id}, payment is created anyway'
            )

        return PaymentLinkResult(
            lead_id=lead_id,
            amount=amount,
            currency=self.settings.currency,
            description=description,
            order_id=payment.order_id,
            checkout_url=payment.checkout_url,
            payment_id=payment.payment_id,
            relation_saved=relation_saved,
            note_created=note_created,
            payment_id_stored=payment_id_stored
        )

    async def create_unbound(self) -> PaymentLink | None:
        try:
            payment = await self.flitt.create_payment_link(
                amount=0,
                currency=self.settings.currency,
                description='Payment without deal',
                callback_url=self.settings.callback_url,
                order_id=make_order_id(None)
            )
        except (FlittApiError, httpx.HTTPError) as e:
            logger.warning(f'failed to create a payment link without deal: {e}')
            return None

        logger.info(f'created payment {payment.payment_id} ({payment.order_id}) without deal')
        return payment

    async def _save_relation(self, payment_id: str, lead_id: int) -> bool:
        try:
            return await self.relations.create(payment_id, lead_id)
        except SQLAlchemyError:
            # Связь остается доступной через поиск по полю сделки
            logger.exception(f'failed to save relation payment {payment_id} -> deal {lead_id}')
            return False

    async def _create_note(self, lead_id: int, text: str) -> bool:
        await self.kommo.create_note(lead_id, text)
        return True

    async def _write_payment_id(self, lead_id: int, payment_id: str) -> bool:
        field_id = self.fields.payment_id_field_id
        await self.kommo.update_lead_custom_field(lead_id, field_id, payment_id)

        stored = (await self.kommo.get_lead(lead_id)).custom_field_value(field_id)
        if str(stored) != payment_id:
            logger.warning(f'field {field_id} of lead {lead_id} holds "{stored}" instead of "{payment_id}"')
            return False
        return True


def get_payment_link_service(
    kommo: Annotated[KommoClient | None, Depends(get_kommo_client)],
    flitt: Annotated[FlittClient | None, Depends(get_flitt_client)],
    relations: Annotated[RelationStore, Depends(get_relation_store)]
) -> PaymentLinkService | None:
    if kommo is None or flitt is None:
        return None

    return PaymentLinkService(
        kommo=kommo,
        flitt=flitt,
        relations=relations,
        settings=settings,
        fields=deal_fields_settings,
        note_retry=RetryPolicy(attempts=settings.note_attempts, delay=settings.note_retry_delay),
        field_write_retry=RetryPolicy(
            attempts=settings.field_write_attempts,
            delay=settings.field_write_retry_delay
        )
    )
