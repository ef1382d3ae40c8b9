from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Protocol, Sequence

from pydantic import AliasChoices, BaseModel, Field, ValidationError

from services.manifest_sync.config import DEFAULT_PAGE_SIZE
from services.manifest_sync.errors import MalformedResponseError, NotFoundError, PaginationLoopError
from services.manifest_sync.graphql import GraphQLClient
from services.manifest_sync.models import DotToken, Manifest, ProjectInfo, Token

LOGGER = logging.getLogger('manifest_sync.indexer')


class ManifestReader(Protocol):
    def fetch_manifest(self, cid: str) -> Manifest: ...


class TokenRow(BaseModel):
    id: str
    token_id: int = Field(validation_alias=AliasChoices('token_id', 'tokenId'))
    invocation: int


class DotRow(BaseModel):
    token_id: int = Field(validation_alias=AliasChoices('token_id', 'tokenId'))
    hash: str


class ProjectRow(BaseModel):
    invocations: int
    cid: str | None = None


def _parse_rows(model: type[BaseModel], rows: Any, label: str) -> list[Any]:
    if not isinstance(rows, list):
        raise MalformedResponseError(f'{label} is not a list')
    try:
        return [model.model_validate(row) for row in rows]
    except ValidationError as exc:
        raise MalformedResponseError(f'{label} has invalid rows: {exc}') from exc


class IndexerClient(ABC):
    """Read-only queries against the metadata index.

    Subclasses provide the query shapes of a concrete backend; pagination,
    validation and manifest retrieval are shared.
    """

    backend = 'base'

    def __init__(
        self,
        graphql: GraphQLClient,
        manifests: ManifestReader,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        bootstrap_empty_manifest: bool = False
    ) -> None:
        self.graphql = graphql
        self.manifests = manifests
        self.page_size = page_size
        self.bootstrap_empty_manifest = bootstrap_empty_manifest

    @abstractmethod
    def _fetch_project_row(self, contract: str, project_id: int) -> dict[str, Any] | None:
        ...

    @abstractmethod
    def _fetch_token_rows(self, contract: str, project_id: int, since_index: int) -> Any:
        ...

    @abstractmethod
    def _fetch_dot_rows(self, contract: str, project_id: int, token_ids: Sequence[int]) -> Any:
        ...

    def get_project_info(self, contract: str, project_id: int) -> ProjectInfo:
        row = self._fetch_project_row(contract, project_id)
        if row is None:
            raise NotFoundError(f'project not found contract={contract} project_id={project_id}')
        try:
            project = ProjectRow.model_validate(row)
        except ValidationError as exc:
            raise MalformedResponseError(f'project row is invalid: {exc}') from exc

        if not project.cid:
            if not self.bootstrap_empty_manifest:
                raise NotFoundError(f'project {contract}-{project_id} has no external asset dependency')
            LOGGER.warning('no manifest dependency for %s-%s; starting from an empty manifest', contract, project_id)
            return ProjectInfo(invocation_count=project.invocations, manifest={}, cid=None)

        manifest = self.manifests.fetch_manifest(project.cid)
        LOGGER.info(
            'project info contract=%s project_id=%s invocations=%s cid=%s manifest_entries=%s',
            contract,
            project_id,
            project.invocations,
            project.cid,
            len(manifest)
        )
        return ProjectInfo(invocation_count=project.invocations, manifest=manifest, cid=project.cid)

    def get_tokens(self, contract: str, project_id: int, since_index: int) -> list[Token]:
        rows = _parse_rows(TokenRow, self._fetch_token_rows(contract, project_id, since_index), 'token page')
        if len(rows) > self.page_size:
            raise MalformedResponseError(f'token page has {len(rows)} rows, page size is {self.page_size}')

        for previous, row in zip(rows, rows[1:]):
            if row.invocation <= previous.invocation:
                raise MalformedResponseError(
                    f'token page out of order: invocation={row.invocation} after {previous.invocation}'
                )
        return [Token(id=row.id, token_id=row.token_id, invocation=row.invocation) for row in rows]

    def get_all_tokens(self, contract: str, project_id: int) -> list[Token]:
        tokens: list[Token] = []
        cursor = -1
        while True:
            page = self.get_tokens(contract, project_id, cursor)
            LOGGER.debug('token page cursor=%s rows=%s', cursor, len(page))
            if page:
                if page[-1].invocation == cursor:
                    raise PaginationLoopError(f'indexer returned cursor={cursor} twice for {contract}-{project_id}')
                if page[0].invocation <= cursor:
                    raise MalformedResponseError(
                        f'token page starts at invocation={page[0].invocation}, not after cursor={cursor}'
                    )
            tokens.extend(page)
            if len(page) < self.page_size:
                break
            cursor = page[-1].invocation

        LOGGER.info('fetched tokens contract=%s project_id=%s count=%s', contract, project_id, len(tokens))
        return tokens

    def get_all_token_indices(self, contract: str, project_id: int) -> list[int]:
        return [token.invocation for token in self.get_all_tokens(contract, project_id)]

    def get_dot_tokens(self, contract: str, project_id: int, token_ids: Sequence[int]) -> list[DotToken]:
        """Looks up dots in batches; the result follows ``token_ids`` order and omits unknown ids."""
        wanted = list(dict.fromkeys(int(token_id) for token_id in token_ids))
        found: dict[int, DotToken] = {}
        for start in range(0, len(wanted), self.page_size):
            chunk = wanted[start:start + self.page_size]
            rows = _parse_rows(DotRow, self._fetch_dot_rows(contract, project_id, chunk), 'dot tokens')
            for row in rows:
                found[row.token_id] = DotToken(token_id=row.token_id, hash=row.hash)
        return [found[token_id] for token_id in token_ids if token_id in found]


class HasuraIndexerClient(IndexerClient):
    backend = 'hasura'

    PROJECT_INFO_QUERY = '''
    query GetCompositeDeps($contractAddress: String!, $projectId: String!) {
      projects_metadata(where: {contract_address: {_eq: $contractAddress}, project_id: {_eq: $projectId}}) {
        id
        invocations
        project_id
        external_asset_dependencies {
          cid
        }
      }
    }
    '''

    TOKENS_QUERY = '''
    query GetCompositeTokens($contractAddress: String!, $projectId: String!, $lastInvocation: Int!, $limit: Int!) {
      tokens_metadata(
        where: {contract_address: {_eq: $contractAddress}, project_id: {_eq: $projectId}, invocation: {_gt: $lastInvocation}}
        limit: $limit
        order_by: {invocation: asc}
      ) {
        id
        token_id
        invocation
      }
    }
    '''

    DOT_TOKENS_QUERY = '''
    query GetDotsTokens($contractAddress: String!, $projectId: String!, $dotTokenIds: [String!], $limit: Int!) {
      tokens_metadata(
        where: {contract_address: {_eq: $contractAddress}, project_id: {_eq: $projectId}, token_id: {_in: $dotTokenIds}}
        limit: $limit
      ) {
        hash
        token_id
      }
    }
    '''

    def _fetch_project_row(self, contract: str, project_id: int) -> dict[str, Any] | None:
        data = self.graphql.execute(
            self.PROJECT_INFO_QUERY,
            {'contractAddress': contract.lower(), 'projectId': str(project_id)}
        )
        projects = data.get('projects_metadata')
        if not isinstance(projects, list):
            raise MalformedResponseError('projects_metadata is missing from indexer response')
        if not projects:
            return None
        project = projects[0]
        if not isinstance(project, dict):
            raise MalformedResponseError('projects_metadata row is not an object')
        dependencies = project.get('external_asset_dependencies') or []
        cid = dependencies[0].get('cid') if dependencies and isinstance(dependencies[0], dict) else None
        return {'invocations': project.get('invocations'), 'cid': cid}

    def _fetch_token_rows(self, contract: str, project_id: int, since_index: int) -> Any:
        data = self.graphql.execute(
            self.TOKENS_QUERY,
            {
                'contractAddress': contract.lower(),
                'projectId': str(project_id),
                'lastInvocation': since_index,
                'limit': self.page_size
            }
        )
        return data.get('tokens_metadata')

    def _fetch_dot_rows(self, contract: str, project_id: int, token_ids: Sequence[int]) -> Any:
        data = self.graphql.execute(
            self.DOT_TOKENS_QUERY,
            {
                'contractAddress': contract.lower(),
                'projectId': str(project_id),
                'dotTokenIds': [str(token_id) for token_id in token_ids],
                'limit': self.page_size
            }
        )
        return data.get('tokens_metadata')


class SubgraphIndexerClient(IndexerClient):
    backend = 'subgraph'

    PROJECT_INFO_QUERY = '''
    query GetCompositeDeps($projectId: String) {
      project(id: $projectId) {
        id
        invocations
        externalAssetDependencies(first: 1) {
          cid
        }
      }
    }
    '''

    TOKENS_QUERY = '''
    query GetCompositeTokens($projectId: String, $lastInvocation: BigInt, $limit: Int) {
      project(id: $projectId) {
        tokens(where: {invocation_gt: $lastInvocation}, first: $limit, orderBy: invocation, orderDirection: asc) {
          id
          tokenId
          invocation
        }
      }
    }
    '''

    DOT_TOKENS_QUERY = '''
    query GetDotsTokens($projectId: String, $dotTokenIds: [String], $limit: Int) {
      project(id: $projectId) {
        tokens(where: {tokenId_in: $dotTokenIds}, first: $limit) {
          hash
          tokenId
        }
      }
    }
    '''

    @staticmethod
    def project_key(contract: str, project_id: int) -> str:
        return f'{contract.lower()}-{project_id}'

    def _project(self, query: str, variables: dict[str, Any]) -> dict[str, Any] | None:
        data = self.graphql.execute(query, variables)
        project = data.get('project')
        if project is not None and not isinstance(project, dict):
            raise MalformedResponseError('project is not an object in subgraph response')
        return project

    def _fetch_project_row(self, contract: str, project_id: int) -> dict[str, Any] | None:
        project = self._project(self.PROJECT_INFO_QUERY, {'projectId': self.project_key(contract, project_id)})
        if project is None:
            return None
        dependencies = project.get('externalAssetDependencies') or []
        cid = dependencies[0].get('cid') if dependencies and isinstance(dependencies[0], dict) else None
        return {'invocations': project.get('invocations'), 'cid': cid}

    def _fetch_token_rows(self, contract: str, project_id: int, since_index: int) -> Any:
        project = self._project(
            self.TOKENS_QUERY,
            {
                'projectId': self.project_key(contract, project_id),
                'lastInvocation': str(since_index),
                'limit': self.page_size
            }
        )
        if project is None:
            raise NotFoundError(f'project not found contract={contract} project_id={project_id}')
        return project.get('tokens')

    def _fetch_dot_rows(self, contract: str, project_id: int, token_ids: Sequence[int]) -> Any:
        project = self._project(
            self.DOT_TOKENS_QUERY,
            {
                'projectId': self.project_key(contract, project_id),
                'dotTokenIds': [str(token_id) for token_id in token_ids],
                'limit': self.page_size
            }
        )
        if project is None:
            raise NotFoundError(f'dots project not found contract={contract} project_id={project_id}')
        return project.get('tokens')


INDEXER_BACKENDS: dict[str, type[IndexerClient]] = {
    HasuraIndexerClient.backend: HasuraIndexerClient,
    SubgraphIndexerClient.backend: SubgraphIndexerClient
}
