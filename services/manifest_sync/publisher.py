from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from services.manifest_sync.errors import MalformedResponseError, NotFoundError, PublishError, TransientNetworkError
from services.manifest_sync.manifest import order_manifest
from services.manifest_sync.models import Manifest

LOGGER = logging.getLogger('manifest_sync.publisher')


class IpfsContentStore:
    """Reads manifests through an IPFS gateway and pins new ones with Pinata."""

    def __init__(
        self,
        http: httpx.Client,
        *,
        gateway_url: str,
        pin_url: str,
        api_key: str,
        secret_api_key: str,
        pin_name: str = ''
    ) -> None:
        self.http = http
        self.gateway_url = gateway_url
        self.pin_url = pin_url
        self.api_key = api_key
        self.secret_api_key = secret_api_key
        self.pin_name = pin_name

    def manifest_url(self, cid: str) -> str:
        return f"{self.gateway_url.rstrip('/')}/{cid}"

    def fetch_manifest(self, cid: str) -> Manifest:
        url = self.manifest_url(cid)
        LOGGER.info('fetching manifest cid=%s url=%s', cid, url)
        try:
            response = self.http.get(url)
        except httpx.HTTPError as exc:
            raise TransientNetworkError(f'manifest fetch failed cid={cid}: {exc}') from exc

        if response.status_code == 404:
            raise NotFoundError(f'manifest cid={cid} not found on gateway')
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise TransientNetworkError(f'manifest fetch failed cid={cid}: {exc}') from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise MalformedResponseError(f'manifest cid={cid} is not valid JSON') from exc
        if not isinstance(payload, dict):
            raise MalformedResponseError(f'manifest cid={cid} is not a JSON object')
        return payload

    def publish(self, manifest: Manifest) -> str:
        body: dict[str, Any] = {'pinataContent': order_manifest(manifest)}
        if self.pin_name:
            body['pinataMetadata'] = {'name': self.pin_name}

        headers = {
            'Content-Type': 'application/json',
            'pinata_api_key': self.api_key,
            'pinata_secret_api_key': self.secret_api_key
        }
        try:
            response = self.http.post(
                self.pin_url,
                content=json.dumps(body, separators=(',', ':'), ensure_ascii=False).encode('utf-8'),
                headers=headers
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise PublishError(f'pinning manifest failed: {exc}') from exc

        cid = payload.get('IpfsHash') if isinstance(payload, dict) else None
        if not cid or not isinstance(cid, str):
            raise PublishError(f'pinning response has no IpfsHash: {payload!r}')

        LOGGER.info('manifest pinned cid=%s entries=%s', cid, len(manifest))
        return cid
