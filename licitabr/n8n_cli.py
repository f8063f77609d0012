#!/usr/bin/env python3
"""
N8N management CLI.
Lists and activates workflows, deploys the MCP webhook workflow and tests it.
Credentials are read from N8N_BASE_URL / N8N_API_KEY.
"""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

from .core.config import config
from .services.n8n_service import N8NAdminClient, N8NAPIError, build_mcp_proxy_workflow
from .utils.logger import get_logger

logger = get_logger("n8n_cli")


async def list_workflows(client: N8NAdminClient) -> int:
    workflows = await client.list_workflows()
    if not workflows:
        print("No workflows found")
        return 0

    print(f"\n=== Workflows ({len(workflows)}) ===")
    for workflow in workflows:
        state = "active" if workflow.get("active") else "inactive"
        print(f"{workflow.get('id')}  [{state}]  {workflow.get('name')}")
    return 0


async def activate(client: N8NAdminClient, name: str) -> int:
    workflow = await client.find_workflow(name)
    if workflow is None:
        print(f"Workflow '{name}' not found")
        return 1

    if workflow.get("active"):
        print(f"Workflow '{workflow['name']}' ({workflow['id']}) is already active")
        return 0

    await client.activate_workflow(workflow["id"])
    print(f"Workflow '{workflow['name']}' ({workflow['id']}) activated")
    return 0


async def deploy_mcp(client: N8NAdminClient, dispatcher_url: str, name: str, webhook_path: str) -> int:
    """Create or update the webhook workflow forwarding to the dispatcher, then activate it"""
    document = build_mcp_proxy_workflow(dispatcher_url, webhook_path=webhook_path, name=name,
                                        api_key=config.security.api_key)

    existing = await client.find_workflow(name)
    if existing is not None and existing.get("name") == name:
        if existing.get("active"):
            await client.deactivate_workflow(existing["id"])
        await client.update_workflow(existing["id"], document)
        workflow_id = existing["id"]
        print(f"Updated workflow '{name}' ({existing['id']})")
    else:
        workflow = await client.create_workflow(document)
        workflow_id = workflow["id"]
        print(f"Created workflow '{name}' ({workflow_id})")

    await client.activate_workflow(workflow_id)
    print(f"Webhook available at: {config.n8n.base_url}/webhook/{webhook_path}")
    return 0


async def test_webhook(client: N8NAdminClient, webhook_path: str, test: bool) -> int:
    payload = {"jsonrpc": "2.0", "id": 1, "method": "tools/list", "params": {}}
    response = await client.call_webhook(webhook_path, payload, test=test)

    tools = []
    if isinstance(response, dict):
        tools = (response.get("result") or {}).get("tools") or response.get("tools") or []

    print(json.dumps(response, ensure_ascii=False, indent=2))
    print(f"\nTools available: {len(tools)}")
    return 0 if tools else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="N8N workflow management for the LicitaBR MCP webhook")
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose output"
    )
    subparsers = parser.add_subparsers(dest="action", required=True)

    subparsers.add_parser("list", help="List workflows")

    activate_parser = subparsers.add_parser("activate", help="Activate a workflow by name")
    activate_parser.add_argument(
        "--name",
        default=config.n8n.mcp_workflow_name,
        help="Workflow name (exact or partial)"
    )

    deploy_parser = subparsers.add_parser("deploy-mcp", help="Deploy the MCP webhook workflow")
    deploy_parser.add_argument(
        "--dispatcher-url",
        required=True,
        help="URL of the LicitaBR MCP endpoint, e.g. http://api:3001/webhook/mcp"
    )
    deploy_parser.add_argument("--name", default=config.n8n.mcp_workflow_name, help="Workflow name")
    deploy_parser.add_argument("--path", default=config.n8n.webhook_path, help="Webhook path")

    test_parser = subparsers.add_parser("test-webhook", help="Send tools/list to the webhook")
    test_parser.add_argument("--path", default=config.n8n.webhook_path, help="Webhook path")
    test_parser.add_argument(
        "--test-url",
        action="store_true",
        help="Use the editor test URL (/webhook-test/)"
    )

    return parser


async def run(args: argparse.Namespace) -> int:
    async with N8NAdminClient() as client:
        if args.action == "list":
            return await list_workflows(client)
        if args.action == "activate":
            return await activate(client, args.name)
        if args.action == "deploy-mcp":
            return await deploy_mcp(client, args.dispatcher_url, args.name, args.path)
        if args.action == "test-webhook":
            return await test_webhook(client, args.path, args.test_url)
    return 2


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point"""
    args = build_parser().parse_args(argv)

    if args.verbose:
        logger.setLevel("DEBUG")

    try:
        return asyncio.run(run(args))
    except N8NAPIError as e:
        logger.error(f"N8N operation failed: {e}")
        print(f"\nError: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
