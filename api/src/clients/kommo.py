import httpx
import logging
from typing import Any
from dataclasses import dataclass
from functools import lru_cache
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from settings import kommo_settings


logger = logging.getLogger('kommo-pay-kommo-client')


class KommoApiError(Exception):
    def __init__(self, method: str, url: str, status_code: int, body: str):
        super().__init__(f'kommo {method} {url} returned {status_code}: {body}')
        self.status_code = status_code
        self.body = body


class CustomFieldValue(BaseModel):
    value: Any = None


class CustomField(BaseModel):
    field_id: int
    field_name: str | None = None
    values: list[CustomFieldValue] | None = None


class EmbeddedEntity(BaseModel):
    model_config = ConfigDict(extra='allow')

    id: int
    name: str | None = None


class LeadEmbedded(BaseModel):
    model_config = ConfigDict(extra='allow')

    companies: list[EmbeddedEntity] = Field(default_factory=list)
    contacts: list[EmbeddedEntity] = Field(default_factory=list)


class Lead(BaseModel):
    model_config = ConfigDict(extra='allow', populate_by_name=True)

    id: int
    name: str | None = None
    # Не приводим к Decimal здесь: нечисловая цена не должна ломать разбор всей сделки
    price: Any = None
    status_id: int | None = None
    pipeline_id: int | None = None
    custom_fields_values: list[CustomField] | None = None
    embedded: LeadEmbedded = Field(default_factory=LeadEmbedded, alias='_embedded')

    def custom_field_value(self, field_id: int) -> Any:
        for field in self.custom_fields_values or ():
            if field.field_id == field_id and field.values:
                return field.values[0].value
        return None


@dataclass(frozen=True)
class KommoClient:
    client: httpx.AsyncClient

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        response = await self.client.request(method, url, **kwargs)
        if response.status_code >= 400:
            logger.warning(f'kommo {method} {url} failed with {response.status_code}: {response.text}')
            raise KommoApiError(method, url, response.status_code, response.text)
        return response

    async def _get(self, url: str, **kwargs) -> dict[str, Any]:
        response = await self._request('GET', url, **kwargs)
        if response.status_code == 204:  # пустой результат списка
            return {}

        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            logger.warning(f'kommo GET {url} returned an unexpected body: {response.text}')
            raise KommoApiError('GET', url, response.status_code, response.text)
        return data

    @staticmethod
    def _parse_lead(url: str, data: Any) -> Lead:
        try:
            return Lead.model_validate(data)
        except ValidationError as e:
            raise KommoApiError('GET', url, 200, str(e))

    # https://www.kommo.com/developers/content/crm_platform/leads-api/#lead-detailed
    async def get_lead(self, lead_id: int) -> Lead:
        url = f'/leads/{lead_id}'
        return self._parse_lead(url, await self._get(url, params={'with': 'contacts'}))

    async def get_contact(self, contact_id: int) -> dict[str, Any]:
        return await self._get(f'/contacts/{contact_id}')

    async def get_company(self, company_id: int) -> dict[str, Any]:
        return await self._get(f'/companies/{company_id}')

    # https://www.kommo.com/developers/content/crm_platform/entity-links-api/
    async def get_lead_companies(self, lead_id: int) -> list[dict[str, Any]]:
        data = await self._get(f'/leads/{lead_id}/links')

        links = data.get('_embedded', {}).get('links', [])
        return [
            await self.get_company(link['to_entity_id'])
            for link in links
            if link.get('to_entity_type') == 'companies' and link.get('to_entity_id') is not None
        ]

    # https://www.kommo.com/developers/content/crm_platform/events-and-notes/#notes-adding
    async def create_note(self, lead_id: int, text: str) -> None:
        await self._request('POST', f'/leads/{lead_id}/notes', json=[{
            'note_type': 'common',
            'params': {'text': text}
        }])

    async def update_lead_custom_field(self, lead_id: int, field_id: int, value: Any) -> None:
        await self._request('PATCH', f'/leads/{lead_id}', json={
            'custom_fields_values': [{
                'field_id': field_id,
                'values': [{'value': value}]
            }]
        })

    async def update_lead_status(self, lead_id: int, status_id: int) -> None:
        await self._request('PATCH', f'/leads/{lead_id}', json={'status_id': status_id})

    # Kommo ищет `query` по всем полям, поэтому совпадение по конкретному полю проверяем сами
    async def search_leads_by_custom_field(self, field_id: int, value: str) -> list[Lead]:
        data = await self._get('/leads', params={'query': value})

        leads = [self._parse_lead('/leads', lead) for lead in data.get('_embedded', {}).get('leads', [])]
        return [lead for lead in leads if str(lead.custom_field_value(field_id)) == value]


@lru_cache
def get_kommo_client() -> KommoClient | None:
    if not kommo_settings.configured:
        logger.warning('kommo credentials are not configured')
        return None

    return KommoClient(client=httpx.AsyncClient(
        base_url=kommo_settings.base_url,
        headers={'Authorization': f'Bearer {kommo_settings.token}'},
        timeout=kommo_settings.connection_timeout_sec
    ))
