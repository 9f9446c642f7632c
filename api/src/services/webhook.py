import httpx
import logging
from typing import Annotated, Literal
from dataclasses import dataclass
from fastapi import Depends
from pydantic import BaseModel

from clients.kommo import KommoApiError
from clients.flitt import FlittApiError
from services.company import CompanyNameNotFoundError
from services.lead_id import extract_lead_id
from services.payload import MalformedBody, WebhookArchive, normalize_body, get_webhook_archive
from services.payment_link import PaymentLinkService, get_payment_link_service


logger = logging.getLogger('kommo-pay-webhook')


class WebhookResult(BaseModel):
    # Kommo повторяет веб-хук при не-2xx ответе, поэтому результат всегда отдается с 200,
    # а исход обработки виден по `status`
    status: Literal['success', 'accepted', 'error']
    message: str
    lead_id: int | None = None
    checkout_url: str | None = None
    payment_id: str | None = None
    webhook_file: str | None = None
    malformed: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class WebhookService:
    archive: WebhookArchive
    payment_links: PaymentLinkService | None

    async def process(self, headers: dict[str, str], raw_body: str) -> WebhookResult:
        body = normalize_body(headers.get('content-type'), raw_body)
        malformed = body.reason if isinstance(body, MalformedBody) else None

        # Сохраняем до любой обработки, чтобы веб-хук можно было разобрать вручную
        webhook_file = None
        try:
            webhook_file = str(await self.archive.save('kommo', headers, body, raw_body))
        except OSError as e:
            logger.error(f'failed to archive kommo webhook: {e}')

        lead_id = extract_lead_id(body.data, raw_body)
        result = WebhookResult(
            status='accepted',
            message='webhook received',
            lead_id=lead_id,
            webhook_file=webhook_file,
            malformed=malformed
        )

        if self.payment_links is None:
            logger.warning(f'payment service unavailable, webhook for lead {lead_id} is only archived')
            return result.model_copy(update={'message': 'payment service unavailable'})

        if lead_id is None:
            logger.warning('no lead id found in kommo webhook, creating a payment link without deal')
            payment = await self.payment_links.create_unbound()
            if payment is None:
                return result.model_copy(update={'message': 'no lead id found'})

            return result.model_copy(update={
                'message': 'no lead id found, created payment link without deal',
                'checkout_url': payment.checkout_url,
                'payment_id': payment.payment_id
            })

        try:
            link = await self.payment_links.create_for_lead(lead_id)
        except (KommoApiError, FlittApiError, CompanyNameNotFoundError, httpx.HTTPError) as e:
            logger.error(f'failed to create payment link for lead {lead_id}: {e}')
            return result.model_copy(update={
                'status': 'error',
                'message': 'failed to create payment link',
                'error': str(e)
            })

        return result.model_copy(update={
            'status': 'success',
            'message': 'payment link created',
            'checkout_url': link.checkout_url,
            'payment_id': link.payment_id
        })


def get_webhook_service(
    archive: Annotated[WebhookArchive, Depends(get_webhook_archive)],
    payment_links: Annotated[PaymentLinkService | None, Depends(get_payment_link_service)]
) -> WebhookService:
    return WebhookService(archive=archive, payment_links=payment_links)
