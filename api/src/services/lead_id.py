"""
Поиск id сделки во входящем веб-хуке.

Форма веб-хука Kommo зависит от триггера (добавление, смена статуса) и от того,
как тело было закодировано, поэтому id ищется набором правил.
Правила проверяются в порядке объявления, побеждает первое сработавшее.
"""
import re
from typing import Any, Iterator, Protocol, Sequence
from dataclasses import dataclass


# Корни, относительно которых проверяются пути, в порядке приоритета
ROOT_KEYS = (None, 'body', 'data', 'result')

# id сделки в Kommo - положительный int64
MAX_LEAD_ID = 2**63 - 1

_PATH_TOKEN = re.compile(r'([^.\[\]]+)|\[(\d+)\]')


class LeadIdRule(Protocol):
    def __call__(self, payload: dict[str, Any], raw_body: str | None) -> int | None: ...


def coerce_lead_id(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, str) and value.strip().isdecimal():
        value = int(value.strip())
    if isinstance(value, int) and 0 < value <= MAX_LEAD_ID:
        return value
    return None


def iter_roots(payload: dict[str, Any]) -> Iterator[dict[str, Any]]:
    for key in ROOT_KEYS:
        root = payload if key is None else payload.get(key)
        if isinstance(root, dict):
            yield root


def resolve_path(obj: Any, path: str) -> Any:
    for key, index in _PATH_TOKEN.findall(path):
        if index:
            if isinstance(obj, list):
                position = int(index)
                obj = obj[position] if position < len(obj) else None
            elif isinstance(obj, dict):
                # Форма без последовательных индексов остается словарем
                obj = obj.get(index)
            else:
                return None
        else:
            if not isinstance(obj, dict):
                return None
            obj = obj.get(key)

        if obj is None:
            return None
    return obj


@dataclass(frozen=True)
class PathRule:
    path: str

    def __call__(self, payload: dict[str, Any], raw_body: str | None) -> int | None:
        for root in iter_roots(payload):
            lead_id = coerce_lead_id(resolve_path(root, self.path))
            if lead_id is not None:
                return lead_id
        return None


@dataclass(frozen=True)
class LeadsScanRule:
    def __call__(self, payload: dict[str, Any], raw_body: str | None) -> int | None:
        for root in iter_roots(payload):
            leads = root.get('leads')
            if not isinstance(leads, dict):
                continue

            for items in leads.values():
                if not isinstance(items, list) or not items:
                    continue
                for item in items:
                    if isinstance(item, dict) and 'id' in item:
                        lead_id = coerce_lead_id(item['id'])
                        if lead_id is not None:
                            return lead_id
        return None


@dataclass(frozen=True)
class RawBodyRule:
    patterns: tuple[re.Pattern[str], ...]

    def __call__(self, payload: dict[str, Any], raw_body: str | None) -> int | None:
        if not raw_body:
            return None

        for pattern in self.patterns:
            match = pattern.search(raw_body)
            if match:
                lead_id = coerce_lead_id(match.group(1))
                if lead_id is not None:
                    return lead_id
        return None


LEAD_ID_RULES: Sequence[LeadIdRule] = (
    PathRule('leads.add[0].id'),
    PathRule('leads.status[0].id'),
    PathRule('_embedded.leads[0].id'),
    PathRule('lead_id'),
    PathRule('id'),
    PathRule('lead.id'),
    LeadsScanRule(),
    RawBodyRule((
        re.compile(r'leads%5Badd%5D%5B0%5D%5Bid%5D=(\d+)'),
        re.compile(r'leads\[add\]\[0\]\[id\]=(\d+)'),
        re.compile(r'id=(\d+)'),
    )),
)


def extract_lead_id(
    payload: dict[str, Any],
    raw_body: str | None = None,
    rules: Sequence[LeadIdRule] = LEAD_ID_RULES
) -> int | None:
    for rule in rules:
        lead_id = rule(payload, raw_body)
        if lead_id is not None:
            return lead_id
    return None
