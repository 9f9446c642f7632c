import os
import sys
import pathlib
import pytest
import httpx
from asgi_lifespan import LifespanManager
from sqlalchemy.pool import StaticPool
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

sys.path.append(str(pathlib.Path(__file__).parent.parent/'src'))
sys.path.append(str(pathlib.Path(__file__).parent))

# До импорта settings: настройки читаются один раз при импорте
os.environ.setdefault('kommo_pay_postgres_user', 'kommo_pay')
os.environ.setdefault('kommo_pay_postgres_password', 'kommo_pay')
os.environ.setdefault('kommo_pay_postgres_db', 'kommo_pay')
os.environ.setdefault('kommo_pay_kommo_subdomain', 'testcrm')
os.environ.setdefault('kommo_pay_kommo_token', 'test-token')
os.environ.setdefault('kommo_pay_flitt_merchant_id', '1549901')
os.environ.setdefault('kommo_pay_flitt_secret_key', 'test')
os.environ.setdefault('kommo_pay_public_url', 'https://pay.example.com')
os.environ.setdefault('kommo_pay_field_write_retry_delay', '0')
os.environ.setdefault('kommo_pay_note_retry_delay', '0')

import db.postgres
import tables
from clients.kommo import KommoClient
from clients.flitt import FlittClient
from services.callback import CallbackService
from services.payload import WebhookArchive, get_webhook_archive
from services.payment_link import PaymentLinkService
from services.relations import RelationStore
from services.retry import RetryPolicy
from settings import settings, deal_fields_settings
from helpers import KOMMO_URL, FLITT_URL


@pytest.fixture
async def session_maker():
    engine = create_async_engine('sqlite+aiosqlite://', poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(tables.Base.metadata.create_all)

    yield async_sessionmaker(engine)

    await engine.dispose()


@pytest.fixture
def relation_store(session_maker) -> RelationStore:
    return RelationStore(session_maker=session_maker)


@pytest.fixture
def archive(tmp_path: pathlib.Path) -> WebhookArchive:
    return WebhookArchive(directory=tmp_path/'webhooks')


@pytest.fixture
async def kommo_client():
    async with httpx.AsyncClient(base_url=KOMMO_URL, headers={'Authorization': 'Bearer test-token'}) as client:
        yield KommoClient(client=client)


@pytest.fixture
async def flitt_client():
    async with httpx.AsyncClient(base_url=FLITT_URL) as client:
        yield FlittClient(client=client, merchant_id='1549901', secret_key='test')


@pytest.fixture
def payment_link_service(
    kommo_client: KommoClient,
    flitt_client: FlittClient,
    relation_store: RelationStore
) -> PaymentLinkService:
    return PaymentLinkService(
        kommo=kommo_client,
        flitt=flitt_client,
        relations=relation_store,
        settings=settings,
        fields=deal_fields_settings,
        note_retry=RetryPolicy(attempts=2, delay=0.0),
        field_write_retry=RetryPolicy(attempts=2, delay=0.0)
    )


@pytest.fixture
def callback_service(kommo_client: KommoClient, relation_store: RelationStore) -> CallbackService:
    return CallbackService(
        kommo=kommo_client,
        relations=relation_store,
        fields=deal_fields_settings,
        note_retry=RetryPolicy(attempts=2, delay=0.0)
    )


@pytest.fixture
async def app(session_maker, archive: WebhookArchive):
    from main import app

    app.dependency_overrides[db.postgres.get_session_maker] = lambda: session_maker
    app.dependency_overrides[get_webhook_archive] = lambda: archive

    async with LifespanManager(app):
        yield app

    app.dependency_overrides.clear()


@pytest.fixture
async def api_client(app):
    async with httpx.AsyncClient(
        mounts={'http://tests': httpx.ASGITransport(app=app)},
        base_url='http://tests'
    ) as client:
        yield client
