from typing import Annotated
from fastapi import APIRouter, Depends, Request

from services.webhook import WebhookService, WebhookResult, get_webhook_service


router = APIRouter()


@router.post(
    path='',
    description=
    'Принимает веб-хук Kommo (JSON или form-urlencoded), сохраняет его как есть<br>'
    'и создает ссылку на оплату для найденной сделки<br>'
    'Всегда отвечает 200, результат обработки в поле `status`'
)
@router.post(path='/', include_in_schema=False)
async def kommo_webhook(
    request: Request,
    webhooks: Annotated[WebhookService, Depends(get_webhook_service)]
) -> WebhookResult:
    raw_body = (await request.body()).decode('utf-8', errors='replace')
    return await webhooks.process(dict(request.headers), raw_body)
