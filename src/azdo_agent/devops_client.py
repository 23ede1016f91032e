"""Azure DevOps agent pool queries via REST API.

Used after provisioning to confirm the new agent registered and is online.

Security Requirements:
- HTTPS only for API calls
- No credential storage
- Timeout on API calls
"""

import logging
from dataclasses import dataclass
from typing import Literal

import requests

logger = logging.getLogger(__name__)


@dataclass
class AgentInfo:
    """Runtime information about a registered agent."""

    agent_id: int
    name: str
    status: Literal["online", "offline"]
    enabled: bool
    version: str


class PoolQueryError(Exception):
    """Failed to query agent pools."""

    pass


class PoolNotFoundError(PoolQueryError):
    """No pool with the requested name."""

    pass


class AzureDevOpsClient:
    """Read agent pools and agents from an Azure DevOps organization."""

    API_VERSION = "7.1"
    API_TIMEOUT = 30

    def __init__(self, organization_url: str, access_token: str):
        """Initialize client.

        Args:
            organization_url: e.g. https://dev.azure.com/contoso
            access_token: PAT with Agent Pools (Read) scope

        Raises:
            ValueError: If inputs are invalid
        """
        self._validate_organization_url(organization_url)
        if not access_token:
            raise ValueError("Access token cannot be empty")

        self.organization_url = organization_url.rstrip("/")
        self._auth = ("", access_token)

    def _get(self, path: str, params: dict[str, str]) -> dict:
        url = f"{self.organization_url}/_apis/distributedtask/{path}"
        try:
            response = requests.get(
                url,
                params={**params, "api-version": self.API_VERSION},
                auth=self._auth,
                headers={"Accept": "application/json"},
                timeout=self.API_TIMEOUT,
            )
        except requests.RequestException as e:
            raise PoolQueryError(f"Failed to query {url}: {e}") from e

        if response.status_code != 200:
            raise PoolQueryError(f"Failed to query {url}: {response.status_code} - {response.text}")

        try:
            return response.json()
        except ValueError as e:
            # Azure DevOps answers expired tokens with an HTML sign-in page
            raise PoolQueryError(f"Unexpected non-JSON response from {url}") from e

    def get_pool_id(self, pool_name: str) -> int:
        """Resolve a pool name to its id.

        Raises:
            PoolNotFoundError: If no pool has that name
            PoolQueryError: If the API call fails
        """
        data = self._get("pools", {"poolName": pool_name})
        pools = data.get("value", [])
        if not pools:
            raise PoolNotFoundError(f"Agent pool not found: {pool_name}")
        return int(pools[0]["id"])

    def list_agents(self, pool_name: str) -> list[AgentInfo]:
        """List agents registered in ``pool_name``."""
        pool_id = self.get_pool_id(pool_name)
        data = self._get(f"pools/{pool_id}/agents", {})
        agents = [
            AgentInfo(
                agent_id=int(item["id"]),
                name=item["name"],
                status=item.get("status", "offline"),
                enabled=bool(item.get("enabled", False)),
                version=item.get("version", ""),
            )
            for item in data.get("value", [])
        ]
        logger.debug(f"Pool {pool_name} has {len(agents)} agent(s)")
        return agents

    def find_agent(self, pool_name: str, agent_name: str) -> AgentInfo | None:
        for agent in self.list_agents(pool_name):
            if agent.name.lower() == agent_name.lower():
                return agent
        return None

    @classmethod
    def _validate_organization_url(cls, organization_url: str) -> None:
        if not organization_url:
            raise ValueError("Organization URL cannot be empty")
        if not organization_url.startswith("https://"):
            raise ValueError(f"Organization URL must use HTTPS: {organization_url}")


__all__ = ["AgentInfo", "AzureDevOpsClient", "PoolNotFoundError", "PoolQueryError"]
