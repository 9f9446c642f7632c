import json
import pytest
from typing import Any
from pytest_httpx import HTTPXMock
from sqlalchemy.pool import StaticPool
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from clients.kommo import KommoClient
from services.callback import CallbackService, is_payment_successful, lead_id_from_order_id
from services.relations import RelationStore
from services.retry import RetryPolicy
from settings import deal_fields_settings
from helpers import KOMMO_URL, PAYMENT_ID_FIELD, lead_json


def callback(**kwargs) -> dict[str, Any]:
    return {
        'order_id': 'deal_555_AB',
        'payment_id': 999,
        'order_status': 'approved',
        'response_status': 'success',
        'amount': '14360',
        'currency': 'GEL',
        **kwargs
    }


def mock_crm_update(httpx_mock: HTTPXMock, lead_id: int):
    httpx_mock.add_response(method='PATCH', url=f'{KOMMO_URL}/leads/{lead_id}', json={'id': lead_id})
    httpx_mock.add_response(method='POST', url=f'{KOMMO_URL}/leads/{lead_id}/notes', json={})


@pytest.mark.parametrize(('data', 'expected'), [
    ({'order_status': 'approved'}, True),
    ({'response_status': 'success'}, True),
    ({'status': 'SUCCESS'}, True),
    ({'response_status': 'success', 'order_status': 'declined'}, False),
    ({'response_status': 'success', 'order_status': 'expired'}, False),
    ({'order_status': 'processing'}, False),
    ({'response_status': 'failure'}, False),
    ({}, False),
])
def test_is_payment_successful(data: dict[str, Any], expected: bool):
    assert is_payment_successful(data) is expected


def test_lead_id_from_order_id():
    assert lead_id_from_order_id('deal_555_AB') == 555
    assert lead_id_from_order_id('deal_555') == 555
    assert lead_id_from_order_id('order_ab12') is None
    assert lead_id_from_order_id('my_deal_5') is None
    assert lead_id_from_order_id(None) is None


async def test_lead_from_order_id(callback_service: CallbackService, httpx_mock: HTTPXMock):
    httpx_mock.add_response(method='GET', url=f'{KOMMO_URL}/leads?query=999', status_code=204)
    mock_crm_update(httpx_mock, 555)

    result = await callback_service.process(callback())

    assert result.status == 'success'
    assert result.lead_id == 555
    assert result.status_updated
    assert result.note_created

    patch = json.loads(httpx_mock.get_request(method='PATCH').content)
    assert patch == {'status_id': 142}

    note = json.loads(httpx_mock.get_request(method='POST').content)[0]['params']['text']
    assert note == 'Payment received: 143.60 GEL, transaction 999, order deal_555_AB'


async def test_relation_store_wins(
    callback_service: CallbackService,
    relation_store: RelationStore,
    httpx_mock: HTTPXMock
):
    await relation_store.create('999', 777)
    mock_crm_update(httpx_mock, 777)

    result = await callback_service.process(callback())

    assert result.lead_id == 777
    assert httpx_mock.get_requests(method='GET') == []


async def test_lead_from_crm_search(callback_service: CallbackService, httpx_mock: HTTPXMock):
    httpx_mock.add_response(
        method='GET',
        url=f'{KOMMO_URL}/leads?query=999',
        json={'_embedded': {'leads': [lead_json(888, fields={PAYMENT_ID_FIELD: '999'})]}}
    )
    mock_crm_update(httpx_mock, 888)

    result = await callback_service.process(callback(order_id='order_ab12'))

    assert result.status == 'success'
    assert result.lead_id == 888


async def test_response_envelope(callback_service: CallbackService, httpx_mock: HTTPXMock):
    httpx_mock.add_response(method='GET', url=f'{KOMMO_URL}/leads?query=999', status_code=204)
    mock_crm_update(httpx_mock, 555)

    result = await callback_service.process({'response': callback()})

    assert result.status == 'success'
    assert result.lead_id == 555


async def test_no_deal_found(callback_service: CallbackService, httpx_mock: HTTPXMock):
    httpx_mock.add_response(method='GET', url=f'{KOMMO_URL}/leads?query=998', status_code=204)

    result = await callback_service.process(callback(order_id='order_ab12', payment_id=998))

    assert result.status == 'error'
    assert result.error == 'No deal found for payment 998 (order order_ab12)'
    assert httpx_mock.get_requests(method='PATCH') == []
    assert httpx_mock.get_requests(method='POST') == []


async def test_unsuccessful_payment_is_ignored(callback_service: CallbackService, httpx_mock: HTTPXMock):
    result = await callback_service.process(callback(order_status='declined'))

    assert result.status == 'ignored'
    assert result.lead_id is None
    assert httpx_mock.get_requests() == []


async def test_status_update_failure(callback_service: CallbackService, httpx_mock: HTTPXMock):
    httpx_mock.add_response(method='GET', url=f'{KOMMO_URL}/leads?query=999', status_code=204)
    httpx_mock.add_response(method='PATCH', url=f'{KOMMO_URL}/leads/555', status_code=400, text='bad status')
    httpx_mock.add_response(method='POST', url=f'{KOMMO_URL}/leads/555/notes', json={})

    result = await callback_service.process(callback())

    assert result.status == 'success'
    assert not result.status_updated
    assert result.note_created


async def test_relation_store_failure_falls_back_to_order_id(
    kommo_client: KommoClient,
    httpx_mock: HTTPXMock
):
    # База без таблиц: любой запрос к хранилищу падает
    engine = create_async_engine('sqlite+aiosqlite://', poolclass=StaticPool)
    service = CallbackService(
        kommo=kommo_client,
        relations=RelationStore(session_maker=async_sessionmaker(engine)),
        fields=deal_fields_settings,
        note_retry=RetryPolicy(attempts=2, delay=0.0)
    )
    httpx_mock.add_response(method='GET', url=f'{KOMMO_URL}/leads?query=999', status_code=204)
    mock_crm_update(httpx_mock, 555)

    try:
        result = await service.process(callback())
    finally:
        await engine.dispose()

    assert result.status == 'success'
    assert result.lead_id == 555


def test_oversized_order_deal_id():
    assert lead_id_from_order_id('deal_123456789012345678901234567890_AB') is None
