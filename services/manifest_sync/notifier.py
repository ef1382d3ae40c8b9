from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from services.manifest_sync.errors import NotifyError
from services.manifest_sync.graphql import GraphQLClient

LOGGER = logging.getLogger('manifest_sync.notifier')

AUTH_MESSAGE_QUERY = '''
query GetAuthMessage($publicAddress: String!, $domain: String!, $uri: String!) {
  getAuthMessage(publicAddress: $publicAddress, domain: $domain, uri: $uri) {
    authMessage
  }
}
'''

AUTHENTICATE_MUTATION = '''
mutation Authenticate($input: AuthenticateInput!) {
  authenticate(input: $input) {
    jwt
    expiration
  }
}
'''

UPDATE_PROJECT_MEDIA_MUTATION = '''
mutation UpdateProjectMedia($projectId: String!, $features: Boolean!, $render: Boolean!, $renderVideo: Boolean!) {
  updateProjectMedia(projectId: $projectId, features: $features, render: $render, renderVideo: $renderVideo) {
    __typename
  }
}
'''


@dataclass(frozen=True)
class AuthToken:
    jwt: str
    expiration: Any


class RefreshNotifier:
    """Triggers a re-render of the composite project after a manifest update.

    Each call runs the full challenge/sign/authenticate exchange, so it can be
    repeated on a later run without any state from the run that changed the
    manifest.
    """

    def __init__(
        self,
        graphql: GraphQLClient,
        *,
        private_key: str,
        public_address: str = '',
        domain: str,
        uri: str,
        role: str = 'artist'
    ) -> None:
        self.graphql = graphql
        self.private_key = private_key
        self.domain = domain
        self.uri = uri
        self.role = role
        address = public_address or Account.from_key(private_key).address
        self.address = Web3.to_checksum_address(address)

    def fetch_auth_message(self) -> str:
        data = self.graphql.execute(
            AUTH_MESSAGE_QUERY,
            {'publicAddress': self.address, 'domain': self.domain, 'uri': self.uri}
        )
        payload = data.get('getAuthMessage') or {}
        message = payload.get('authMessage') if isinstance(payload, dict) else None
        if not message:
            raise NotifyError(f'no auth message returned for address={self.address}')
        return message

    def sign(self, message: str) -> str:
        signed = Account.sign_message(encode_defunct(text=message), private_key=self.private_key)
        return Web3.to_hex(signed.signature)

    def authenticate(self) -> AuthToken:
        message = self.fetch_auth_message()
        signature = self.sign(message)
        data = self.graphql.execute(
            AUTHENTICATE_MUTATION,
            {'input': {'publicAddress': self.address, 'message': message, 'signature': signature}}
        )
        payload = data.get('authenticate') or {}
        jwt = payload.get('jwt') if isinstance(payload, dict) else None
        if not jwt:
            raise NotifyError(f'authentication returned no jwt for address={self.address}')
        return AuthToken(jwt=jwt, expiration=payload.get('expiration'))

    def update_project_media(self, project_id: int, token: AuthToken) -> dict[str, Any]:
        data = self.graphql.execute(
            UPDATE_PROJECT_MEDIA_MUTATION,
            {'projectId': str(project_id), 'features': True, 'render': True, 'renderVideo': False},
            jwt=token.jwt,
            role=self.role,
            operation_name='UpdateProjectMedia'
        )
        result = data.get('updateProjectMedia')
        if not result:
            raise NotifyError(f'updateProjectMedia returned nothing for project_id={project_id}')
        return result

    def notify(self, project_id: int) -> dict[str, Any]:
        try:
            token = self.authenticate()
            result = self.update_project_media(project_id, token)
        except NotifyError:
            raise
        except Exception as exc:
            raise NotifyError(f'refresh for project_id={project_id} failed: {exc}') from exc

        LOGGER.info('project media refresh requested project_id=%s', project_id)
        return result
