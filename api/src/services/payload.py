"""
Приведение тела входящего веб-хука к одному виду.

Kommo присылает веб-хуки как form-urlencoded (`leads[status][0][id]=123`),
но через прокси и ручные тесты приходит и JSON, и дважды экранированные ключи,
и `[object Object]` вместо вложенного объекта. Ничего из этого не должно ронять обработку:
результат всегда `ParsedBody` или `MalformedBody`.
"""
import re
import anyio
import orjson
import logging
from typing import Any
from pathlib import Path
from functools import lru_cache
from dataclasses import dataclass
from datetime import datetime, timezone
from urllib.parse import parse_qsl, unquote

from settings import settings


logger = logging.getLogger('kommo-pay-payload')

OBJECT_MARKER = '[object Object]'

_BRACKETS = re.compile(r'\[([^\]]*)\]')


@dataclass(frozen=True)
class ParsedBody:
    data: dict[str, Any]


@dataclass(frozen=True)
class MalformedBody:
    raw_body: str
    reason: str

    @property
    def data(self) -> dict[str, Any]:
        return {}


NormalizedBody = ParsedBody | MalformedBody


def normalize_body(content_type: str | None, raw_body: str) -> NormalizedBody:
    content_type = (content_type or '').lower()
    stripped = raw_body.strip()

    if not stripped:
        return ParsedBody({})

    if 'json' in content_type:
        return _parse_json(raw_body)
    if 'x-www-form-urlencoded' in content_type:
        return _parse_form(raw_body)

    # Тип не указан или неизвестен, угадываем по содержимому
    if stripped.startswith(('{', '[')):
        return _parse_json(raw_body)
    if '=' in stripped:
        return _parse_form(raw_body)

    return MalformedBody(raw_body, f'unsupported content type "{content_type}"')


def _parse_json(raw_body: str) -> NormalizedBody:
    try:
        data = orjson.loads(raw_body)
    except ValueError as e:
        logger.warning(f'failed to parse json body: {e}')
        return MalformedBody(raw_body, f'invalid json: {e}')

    if not isinstance(data, dict):
        data = {'items': data}
    return ParsedBody(data)


def _parse_form(raw_body: str) -> NormalizedBody:
    try:
        pairs = parse_qsl(raw_body, keep_blank_values=True)
    except ValueError as e:
        logger.warning(f'failed to parse form body: {e}')
        return MalformedBody(raw_body, f'invalid form body: {e}')

    data: dict[str, Any] = {}
    embedded_objects: list[dict[str, Any]] = []

    for key, value in pairs:
        # leads%255Badd%255D... после первого декодирования все еще экранирован
        if '%' in key:
            key = unquote(key)

        if key.lstrip().startswith('{'):
            # JSON, отправленный как форма, целиком оказывается в ключе
            document = _loads_object(f'{key}={value}' if value else key)
            if document is not None:
                embedded_objects.append(document)
                continue

        if OBJECT_MARKER in key:
            document = _loads_object(value)
            if document is not None:
                embedded_objects.append(document)
            else:
                logger.warning(f'form key "{key}" carries an unparsable object, ignoring')
            continue

        if value.lstrip().startswith('{'):
            document = _loads_object(value)
            if document is not None:
                _assign(data, _split_key(key), document)
                continue

        _assign(data, _split_key(key), value)

    data = _listify(data)
    for document in embedded_objects:
        _merge(data, document)

    return ParsedBody(data)


def _loads_object(text: str) -> dict[str, Any] | None:
    try:
        document = orjson.loads(text)
    except ValueError:
        return None
    return document if isinstance(document, dict) else None


def _split_key(key: str) -> list[str]:
    head = key.split('[', 1)[0]
    return [head, *_BRACKETS.findall(key[len(head):])]


def _assign(target: dict[str, Any], parts: list[str], value: Any):
    node = target
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child

    last = parts[-1]
    if last == '':  # `ids[]=1&ids[]=2`
        last = str(len(node))
    node[last] = value


def _listify(value: Any) -> Any:
    if not isinstance(value, dict):
        return value

    converted = {key: _listify(item) for key, item in value.items()}
    if converted and all(key.isdigit() for key in converted):
        return [converted[key] for key in sorted(converted, key=int)]
    return converted


def _merge(target: dict[str, Any], source: dict[str, Any]):
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge(target[key], value)
        else:
            target[key] = value


@dataclass(frozen=True)
class WebhookArchive:
    directory: Path

    async def save(
        self,
        prefix: str,
        headers: dict[str, str],
        body: NormalizedBody,
        raw_body: str
    ) -> Path:
        timestamp = datetime.now(timezone.utc).isoformat()
        path = anyio.Path(self.directory) / f'{prefix}-{timestamp.replace(":", "-")}.json'

        if isinstance(body, ParsedBody):
            archived_body = body.data
        else:
            archived_body = {'error': 'malformed', 'reason': body.reason}

        document = {
            'timestamp': timestamp,
            'headers': headers,
            'body': archived_body,
            'raw_body': raw_body
        }
        try:
            content = orjson.dumps(document, option=orjson.OPT_INDENT_2)
        except orjson.JSONEncodeError as e:
            # Например, целые больше 64 бит; исходное тело остается в raw_body
            logger.warning(f'failed to encode parsed {prefix} body: {e}')
            document['body'] = {'error': 'unserializable', 'reason': str(e)}
            content = orjson.dumps(document, option=orjson.OPT_INDENT_2)

        await path.parent.mkdir(parents=True, exist_ok=True)
        await path.write_bytes(content)
        logger.info(f'saved {prefix} webhook to {path}')

        return Path(path)


@lru_cache
def get_webhook_archive() -> WebhookArchive:
    return WebhookArchive(directory=settings.webhooks_dir)
