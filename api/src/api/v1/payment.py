import httpx
import logging
from typing import Annotated
from fastapi import APIRouter, Body, Depends, Path, Request
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel, Field

from api.v1.errors import error_response
from clients.flitt import FlittClient, FlittApiError, get_flitt_client
from clients.kommo import KommoApiError
from services.callback import CallbackService, get_callback_service
from services.company import CompanyNameNotFoundError
from services.payload import MalformedBody, WebhookArchive, normalize_body, get_webhook_archive
from services.payment_link import PaymentLinkService, get_payment_link_service
from settings import settings


logger = logging.getLogger('kommo-pay-payment-api')

router = APIRouter()


def payment_service_unavailable() -> ORJSONResponse:
    return error_response(503, 'Payment service unavailable', 'Payment API credentials not configured')


@router.post(
    path='/payment-callback',
    response_model=None,
    description=
    'Уведомление Flitt о платеже (server_callback_url)<br>'
    'Успешный платеж переводит сделку в статус "успешно реализовано" и добавляет примечание'
)
async def payment_callback(
    request: Request,
    archive: Annotated[WebhookArchive, Depends(get_webhook_archive)],
    callbacks: Annotated[CallbackService | None, Depends(get_callback_service)]
) -> ORJSONResponse:
    raw_body = (await request.body()).decode('utf-8', errors='replace')
    headers = dict(request.headers)
    body = normalize_body(headers.get('content-type'), raw_body)

    try:
        await archive.save('payment-callback', headers, body, raw_body)
    except OSError as e:
        logger.error(f'failed to archive payment callback: {e}')

    if callbacks is None:
        return payment_service_unavailable()

    if isinstance(body, MalformedBody):
        return error_response(400, 'Malformed payment callback body', body.reason)
    if not body.data:
        return error_response(400, 'Empty payment callback body')

    result = await callbacks.process(body.data)
    return ORJSONResponse(
        status_code=400 if result.status == 'error' else 200,
        content=result.model_dump()
    )


@router.get(
    path='/payment-status/{order_id}',
    response_model=None,
    description='Статус заказа во Flitt'
)
async def payment_status(
    order_id: Annotated[str, Path()],
    flitt: Annotated[FlittClient | None, Depends(get_flitt_client)]
):
    if flitt is None:
        return payment_service_unavailable()

    try:
        return await flitt.get_order_status(order_id)
    except (FlittApiError, httpx.HTTPError) as e:
        return error_response(502, 'Failed to fetch payment status', str(e))


class CancelBody(BaseModel):
    amount: int = Field(gt=0, description='Сумма в минимальных единицах валюты')
    currency: str | None = None


@router.post(
    path='/cancel-payment/{order_id}',
    response_model=None,
    description='Отмена (возврат) оплаченного заказа во Flitt'
)
async def cancel_payment(
    order_id: Annotated[str, Path()],
    body: Annotated[CancelBody, Body()],
    flitt: Annotated[FlittClient | None, Depends(get_flitt_client)]
):
    if flitt is None:
        return payment_service_unavailable()

    try:
        return await flitt.reverse_payment(order_id, body.amount, body.currency or settings.currency)
    except (FlittApiError, httpx.HTTPError) as e:
        return error_response(502, 'Failed to cancel payment', str(e))


class CreatePaymentBody(BaseModel):
    lead_id: int = Field(gt=0, description='id сделки в Kommo')


@router.post(
    path='/create-payment',
    response_model=None,
    description=
    'Ручное создание ссылки на оплату для сделки<br>'
    'Делает то же, что веб-хук Kommo для найденной сделки'
)
async def create_payment(
    body: Annotated[CreatePaymentBody, Body()],
    payment_links: Annotated[PaymentLinkService | None, Depends(get_payment_link_service)]
):
    if payment_links is None:
        return payment_service_unavailable()

    try:
        return await payment_links.create_for_lead(body.lead_id)
    except CompanyNameNotFoundError as e:
        return error_response(422, 'Company name not found', str(e))
    except (KommoApiError, FlittApiError, httpx.HTTPError) as e:
        return error_response(502, 'Payment creation failed', str(e))
