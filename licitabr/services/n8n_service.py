"""
N8N admin service

Thin async client for the N8N public REST API (workflows) plus the builder of
the webhook workflow that exposes the MCP dispatcher through N8N.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from ..core.config import config
from ..utils.logger import get_logger


class N8NAPIError(Exception):
    """N8N API error"""

    def __init__(self, message: str, status: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.status = status
        self.body = body


@dataclass
class N8NAPIConfig:
    """N8N API configuration"""

    base_url: str = "http://localhost:5678"
    api_key: Optional[str] = None
    timeout_seconds: int = 30

    @classmethod
    def from_config(cls) -> 'N8NAPIConfig':
        return cls(
            base_url=config.n8n.base_url,
            api_key=config.n8n.api_key,
            timeout_seconds=config.n8n.timeout_seconds,
        )


class N8NAdminClient:
    """Manages workflows on an N8N instance"""

    def __init__(self, api_config: N8NAPIConfig = None):
        self.config = api_config or N8NAPIConfig.from_config()
        self.logger = get_logger("n8n_service")
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        if self._session:
            await self._session.close()
            self._session = None

    async def list_workflows(self) -> List[Dict[str, Any]]:
        body = await self._api("GET", "workflows")
        # Public API wraps lists in {"data": [...], "nextCursor": ...}
        if isinstance(body, dict):
            return body.get("data") or []
        return body or []

    async def get_workflow(self, workflow_id: str) -> Dict[str, Any]:
        return await self._api("GET", f"workflows/{workflow_id}")

    async def find_workflow(self, name: str) -> Optional[Dict[str, Any]]:
        """Find a workflow by exact name, falling back to a case-insensitive substring"""
        workflows = await self.list_workflows()
        for workflow in workflows:
            if workflow.get("name") == name:
                return workflow
        lowered = name.lower()
        for workflow in workflows:
            if lowered in (workflow.get("name") or "").lower():
                return workflow
        return None

    async def create_workflow(self, workflow: Dict[str, Any]) -> Dict[str, Any]:
        self.logger.info(f"Creating N8N workflow {workflow.get('name')!r}")
        return await self._api("POST", "workflows", payload=_writable(workflow))

    async def update_workflow(self, workflow_id: str, workflow: Dict[str, Any]) -> Dict[str, Any]:
        self.logger.info(f"Updating N8N workflow {workflow_id}")
        return await self._api("PUT", f"workflows/{workflow_id}", payload=_writable(workflow))

    async def activate_workflow(self, workflow_id: str) -> Dict[str, Any]:
        self.logger.info(f"Activating N8N workflow {workflow_id}")
        return await self._api("POST", f"workflows/{workflow_id}/activate")

    async def deactivate_workflow(self, workflow_id: str) -> Dict[str, Any]:
        self.logger.info(f"Deactivating N8N workflow {workflow_id}")
        return await self._api("POST", f"workflows/{workflow_id}/deactivate")

    async def call_webhook(self, path: str, payload: Dict[str, Any], test: bool = False) -> Any:
        """
        POST a JSON payload to a workflow webhook.

        Args:
            path: Webhook path as configured on the Webhook node
            payload: JSON body
            test: Use the editor's test URL (/webhook-test/) instead of the production one

        Returns:
            Parsed response body
        """
        prefix = "webhook-test" if test else "webhook"
        url = f"{self.config.base_url}/{prefix}/{path.strip('/')}"
        status, body = await self._send("POST", url, payload, headers={"Content-Type": "application/json"})
        if not 200 <= status < 300:
            raise N8NAPIError(f"Webhook {url} returned {status}", status=status, body=body)
        return body

    # Private methods

    async def _ensure_session(self):
        if not self._session:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)

    async def _api(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        if not self.config.api_key:
            raise N8NAPIError("N8N_API_KEY is not configured")

        url = f"{self.config.base_url}/api/v1/{path}"
        headers = {
            "Content-Type": "application/json",
            "X-N8N-API-KEY": self.config.api_key,
        }
        status, body = await self._send(method, url, payload, headers)
        if not 200 <= status < 300:
            message = body.get("message") if isinstance(body, dict) else body
            self.logger.error(f"N8N API {method} {path} failed: {status} {message}")
            raise N8NAPIError(f"N8N API {method} {path} failed: {status} {message}", status=status, body=body)
        return body

    async def _send(self, method: str, url: str, payload: Optional[Dict[str, Any]],
                    headers: Dict[str, str]) -> Tuple[int, Any]:
        await self._ensure_session()
        try:
            async with self._session.request(method, url, json=payload, headers=headers) as response:
                raw = await response.text()
                status = response.status
        except aiohttp.ClientError as e:
            self.logger.error(f"N8N request failed: {method} {url}: {e}")
            raise N8NAPIError(f"N8N request failed: {e}")

        try:
            body = json.loads(raw) if raw else None
        except ValueError:
            body = raw
        return status, body


# Fields the public API accepts on create/update; everything else is read-only
_WRITABLE_FIELDS = ("name", "nodes", "connections", "settings", "staticData")


def _writable(workflow: Dict[str, Any]) -> Dict[str, Any]:
    data = {key: workflow[key] for key in _WRITABLE_FIELDS if key in workflow}
    data.setdefault("settings", {})
    return data


def build_mcp_proxy_workflow(dispatcher_url: str, webhook_path: str = "mcp",
                             name: str = "MCP Server", api_key: Optional[str] = None) -> Dict[str, Any]:
    """
    Build a workflow that forwards JSON-RPC requests received on an N8N
    webhook to the LicitaBR dispatcher and returns its answer.

    Args:
        dispatcher_url: Full URL of the dispatcher endpoint (e.g. http://api:3001/webhook/mcp)
        webhook_path: Path registered on the Webhook node
        name: Workflow name
        api_key: Sent as the api-key header when the dispatcher requires authentication

    Returns:
        Workflow document ready for create_workflow/update_workflow
    """
    webhook = {
        "parameters": {
            "httpMethod": "POST",
            "path": webhook_path,
            "responseMode": "responseNode",
            "options": {},
        },
        "id": "mcp-webhook",
        "name": "MCP Webhook",
        "type": "n8n-nodes-base.webhook",
        "typeVersion": 2,
        "position": [240, 300],
        "webhookId": f"licitabr-{webhook_path}",
    }
    forward = {
        "parameters": {
            "method": "POST",
            "url": dispatcher_url,
            "sendBody": True,
            "specifyBody": "json",
            "jsonBody": "={{ JSON.stringify($json.body) }}",
            "options": {},
        },
        "id": "mcp-dispatcher",
        "name": "MCP Dispatcher",
        "type": "n8n-nodes-base.httpRequest",
        "typeVersion": 4.2,
        "position": [460, 300],
    }
    if api_key:
        forward["parameters"]["sendHeaders"] = True
        forward["parameters"]["headerParameters"] = {
            "parameters": [{"name": "api-key", "value": api_key}]
        }
    respond = {
        "parameters": {
            "respondWith": "json",
            "responseBody": "={{ $json }}",
            "options": {
                "responseHeaders": {
                    "entries": [
                        {"name": "Content-Type", "value": "application/json"},
                        {"name": "Access-Control-Allow-Origin", "value": "*"},
                    ]
                }
            },
        },
        "id": "respond-webhook",
        "name": "Respond to Webhook",
        "type": "n8n-nodes-base.respondToWebhook",
        "typeVersion": 1.5,
        "position": [680, 300],
    }

    return {
        "name": name,
        "nodes": [webhook, forward, respond],
        "connections": {
            webhook["name"]: {"main": [[{"node": forward["name"], "type": "main", "index": 0}]]},
            forward["name"]: {"main": [[{"node": respond["name"], "type": "main", "index": 0}]]},
        },
        "settings": {"executionOrder": "v1"},
    }
