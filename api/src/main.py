import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.responses import ORJSONResponse

import db.postgres
from api.v1 import deal, kommo, payment
from clients.kommo import get_kommo_client
from clients.flitt import get_flitt_client


logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(name)s %(levelname)s: %(message)s'
)

logger = logging.getLogger('kommo-pay')


@asynccontextmanager
async def lifespan(app: FastAPI):
    db.postgres.connect()

    kommo_client = get_kommo_client()
    flitt_client = get_flitt_client()
    if kommo_client is None or flitt_client is None:
        logger.warning('credentials are missing, kommo webhooks will only be archived')

    yield

    await db.postgres.disconnect()
    for client in (kommo_client, flitt_client):
        if client is not None:
            await client.client.aclose()

    get_kommo_client.cache_clear()
    get_flitt_client.cache_clear()


app = FastAPI(
    title='Kommo Pay',
    lifespan=lifespan,
    docs_url='/api/openapi',
    openapi_url='/api/openapi.json',
    default_response_class=ORJSONResponse
)

app.include_router(kommo.router, prefix='/kommo-webhooks', tags=['kommo'])
app.include_router(payment.router, tags=['payment'])
app.include_router(deal.router, tags=['diagnostics'])
