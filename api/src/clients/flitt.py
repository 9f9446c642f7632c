import httpx
import hashlib
import logging
from typing import Any
from dataclasses import dataclass
from functools import lru_cache
from pydantic import BaseModel

from settings import flitt_settings


logger = logging.getLogger('kommo-pay-flitt-client')


class FlittApiError(Exception):
    def __init__(self, url: str, status_code: int, body: Any):
        super().__init__(f'flitt {url} returned {status_code}: {body}')
        self.status_code = status_code
        self.body = body


class PaymentLink(BaseModel):
    checkout_url: str
    payment_id: str
    order_id: str


def sign(secret_key: str, params: dict[str, Any]) -> str:
    # https://docs.flitt.com/api/building-signature/
    # Секрет первым, затем непустые значения в порядке сортировки ключей, через '|'
    values = [
        str(params[key])
        for key in sorted(params)
        if params[key] is not None and str(params[key]) != ''
    ]
    return hashlib.sha1('|'.join([secret_key, *values]).encode('utf-8')).hexdigest().lower()


@dataclass(frozen=True)
class FlittClient:
    client: httpx.AsyncClient
    merchant_id: str
    secret_key: str
    version: str = '1.0'

    async def _post(self, url: str, params: dict[str, Any]) -> dict[str, Any]:
        request = {**params, 'merchant_id': self.merchant_id, 'version': self.version}
        request['signature'] = sign(self.secret_key, request)

        response = await self.client.post(url=url, json={'request': request})
        if response.status_code != 200:
            logger.warning(f'flitt {url} failed with {response.status_code}: {response.text}')
            raise FlittApiError(url, response.status_code, response.text)

        try:
            body = response.json()
        except ValueError:
            logger.warning(f'flitt {url} returned a non-json body: {response.text}')
            raise FlittApiError(url, response.status_code, response.text)

        data = body.get('response') if isinstance(body, dict) else None
        if not isinstance(data, dict):
            logger.warning(f'flitt {url} returned an unexpected body: {body}')
            raise FlittApiError(url, response.status_code, body)

        if data.get('response_status') == 'failure':
            logger.warning(f'flitt {url} rejected the request: {data}')
            raise FlittApiError(url, response.status_code, data)

        return data

    # https://docs.flitt.com/api/checkout-url/
    async def create_payment_link(
        self,
        amount: int,
        currency: str,
        description: str,
        callback_url: str,
        order_id: str
    ) -> PaymentLink:
        data = await self._post('/checkout/url', {
            'order_id': order_id,
            'order_desc': description,
            'amount': amount,
            'currency': currency,
            'response_url': callback_url,
            'server_callback_url': callback_url,
        })
        if not data.get('checkout_url') or data.get('payment_id') is None:
            raise FlittApiError('/checkout/url', 200, data)

        return PaymentLink(
            checkout_url=data['checkout_url'],
            payment_id=str(data['payment_id']),
            order_id=order_id
        )

    # https://docs.flitt.com/api/order-status/
    async def get_order_status(self, order_id: str) -> dict[str, Any]:
        return await self._post('/status/order_id', {'order_id': order_id})

    # https://docs.flitt.com/api/reverse/
    async def reverse_payment(self, order_id: str, amount: int, currency: str) -> dict[str, Any]:
        return await self._post('/reverse/order_id', {
            'order_id': order_id,
            'amount': amount,
            'currency': currency
        })


@lru_cache
def get_flitt_client() -> FlittClient | None:
    if not flitt_settings.configured:
        logger.warning('flitt credentials are not configured, payment endpoints are disabled')
        return None

    assert flitt_settings.merchant_id is not None and flitt_settings.secret_key is not None
    return FlittClient(
        client=httpx.AsyncClient(
            base_url=flitt_settings.base_url,
            timeout=flitt_settings.connection_timeout_sec
        ),
        merchant_id=flitt_settings.merchant_id,
        secret_key=flitt_settings.secret_key,
        version=flitt_settings.version
    )
