from __future__ import annotations

import logging
from typing import Any

import httpx

from services.manifest_sync.errors import MalformedResponseError, TransientNetworkError

LOGGER = logging.getLogger('manifest_sync.graphql')


class GraphQLClient:
    def __init__(self, url: str, http: httpx.Client) -> None:
        self.url = url
        self.http = http

    def execute(
        self,
        query: str,
        variables: dict[str, Any],
        *,
        jwt: str | None = None,
        role: str | None = None,
        operation_name: str | None = None
    ) -> dict[str, Any]:
        headers = {'Content-Type': 'application/json'}
        if jwt:
            headers['Authorization'] = f'Bearer {jwt}'
        if role:
            headers['x-hasura-role'] = role

        body: dict[str, Any] = {'query': query, 'variables': variables}
        if operation_name:
            body['operationName'] = operation_name

        LOGGER.debug('graphql request url=%s operation=%s variables=%s', self.url, operation_name, variables)
        try:
            response = self.http.post(self.url, json=body, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise TransientNetworkError(f'graphql request to {self.url} failed: {exc}') from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise MalformedResponseError(f'graphql response from {self.url} is not JSON') from exc

        if not isinstance(payload, dict):
            raise MalformedResponseError(f'graphql response from {self.url} is not an object')

        errors = payload.get('errors')
        if errors:
            messages = [str(item.get('message', item)) if isinstance(item, dict) else str(item) for item in errors]
            raise MalformedResponseError(f"graphql errors from {self.url}: {'; '.join(messages)}")

        data = payload.get('data')
        if not isinstance(data, dict):
            raise MalformedResponseError(f'graphql response from {self.url} has no data object')
        return data
