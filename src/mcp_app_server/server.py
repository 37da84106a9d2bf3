"""MCP Server for application server management.

Drives an application server's management endpoint:
- Reads attributes and resources
- Adds resource trees atomically (declarative, with dry-run)
- Executes CLI commands in order, fail-fast

Tools exposed:
- list_servers: List all configured servers
- server_status: Reachability and identity of a server
- read_attribute: Read one attribute of a resource
- read_resource: Read a resource (optionally recursive)
- execute_command: Execute one CLI command
- execute_commands: Execute CLI commands in order (execute-commands goal)
- add_resource: Add resources with their children (add-resource goal)
- preview_goal: Show what a goal would send
"""
import asyncio
import json
import logging
import os
from typing import Any, Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import (
    TextContent,
    Tool,
    Resource,
)
from pydantic import AnyUrl

from .config.inventory import ServerInventory
from .config_engine import (
    Address,
    CommandParser,
    ConfigEngine,
    ResultInterpreter,
    build_read_attribute_operation,
    build_read_resource_operation,
)
from .utils.logging_config import setup_logging, timed_section

logger = logging.getLogger(__name__)

# Global inventory (initialized on server start)
inventory: Optional[ServerInventory] = None


def get_inventory() -> ServerInventory:
    """Get or create the server inventory."""
    global inventory
    if inventory is None:
        inventory = ServerInventory(os.environ.get("MGMTCRAFT_SERVERS"))
    return inventory


def get_engine(inv: ServerInventory) -> ConfigEngine:
    return ConfigEngine(inv, os.environ.get("MGMTCRAFT_AUDIT_LOG"))


# Create MCP server
server = Server("mcp-app-server")


SERVER_ID_PROPERTY = {
    "type": "string",
    "description": "Server ID from servers.yaml (e.g., 'local', 'domain-dc')"
}

ADDRESS_PROPERTY = {
    "type": "string",
    "description": "Resource address, e.g. 'subsystem=logging,console-handler=CONSOLE' "
                   "or '/subsystem=logging/console-handler=CONSOLE'"
}


# === TOOLS ===

@server.list_tools()
async def list_tools() -> list[Tool]:
    """List all available tools."""
    return [
        Tool(
            name="list_servers",
            description="List all configured application servers with their connection info",
            inputSchema={
                "type": "object",
                "properties": {},
                "required": []
            }
        ),
        Tool(
            name="server_status",
            description="Check reachability and read product, version and launch type of a server",
            inputSchema={
                "type": "object",
                "properties": {"server_id": SERVER_ID_PROPERTY},
                "required": ["server_id"]
            }
        ),
        Tool(
            name="read_attribute",
            description="Read one attribute of a management resource",
            inputSchema={
                "type": "object",
                "properties": {
                    "server_id": SERVER_ID_PROPERTY,
                    "address": ADDRESS_PROPERTY,
                    "name": {
                        "type": "string",
                        "description": "Attribute name"
                    }
                },
                "required": ["server_id", "name"]
            }
        ),
        Tool(
            name="read_resource",
            description="Read a management resource's attributes (and children if recursive)",
            inputSchema={
                "type": "object",
                "properties": {
                    "server_id": SERVER_ID_PROPERTY,
                    "address": ADDRESS_PROPERTY,
                    "recursive": {
                        "type": "boolean",
                        "description": "Include child resources",
                        "default": False
                    }
                },
                "required": ["server_id"]
            }
        ),
        Tool(
            name="execute_command",
            description="Execute one CLI command, e.g. "
                        "'/subsystem=logging/console-handler=CONSOLE:write-attribute(name=level,value=DEBUG)'",
            inputSchema={
                "type": "object",
                "properties": {
                    "server_id": SERVER_ID_PROPERTY,
                    "command": {
                        "type": "string",
                        "description": "CLI command in operation syntax"
                    }
                },
                "required": ["server_id", "command"]
            }
        ),
        Tool(
            name="execute_commands",
            description="Execute CLI commands strictly in order, stopping at the first failure "
                        "unless fail_on_error=false. Use batch=true to apply them atomically.",
            inputSchema={
                "type": "object",
                "properties": {
                    "server_id": SERVER_ID_PROPERTY,
                    "commands": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "CLI commands"
                    },
                    "fail_on_error": {
                        "type": "boolean",
                        "description": "Stop at the first failed command",
                        "default": True
                    },
                    "batch": {
                        "type": "boolean",
                        "description": "Send all commands as one atomic composite",
                        "default": False
                    },
                    "system_properties": {
                        "type": "object",
                        "additionalProperties": {"type": "string"},
                        "description": "Values substituted for ${name} in the commands"
                    },
                    "dry_run": {
                        "type": "boolean",
                        "description": "Only parse and list the commands",
                        "default": False
                    }
                },
                "required": ["server_id", "commands"]
            }
        ),
        Tool(
            name="add_resource",
            description="Add a resource and its children in one atomic operation. "
                        "Pass either address/attributes or a full goal config. "
                        "Use dry_run=true to preview.",
            inputSchema={
                "type": "object",
                "properties": {
                    "server_id": SERVER_ID_PROPERTY,
                    "address": ADDRESS_PROPERTY,
                    "attributes": {
                        "type": "object",
                        "description": "Resource attributes; 'a,b' keys set nested values"
                    },
                    "if_exists": {
                        "type": "string",
                        "enum": ["add", "skip", "replace", "update"],
                        "description": "What to do when the resource already exists",
                        "default": "add"
                    },
                    "config": {
                        "type": "object",
                        "description": "Full goal config with 'resources' (overrides address/attributes)"
                    },
                    "dry_run": {
                        "type": "boolean",
                        "description": "Preview without applying",
                        "default": False
                    },
                    "audit_context": {
                        "type": "string",
                        "description": "Reason for the change (for the audit log)"
                    }
                },
                "required": ["server_id"]
            }
        ),
        Tool(
            name="preview_goal",
            description="Show the operations a goal config would send, without applying anything",
            inputSchema={
                "type": "object",
                "properties": {
                    "config": {
                        "type": "object",
                        "description": "Goal config with 'server', 'resources', 'commands', 'scripts'"
                    }
                },
                "required": ["config"]
            }
        ),
    ]


@server.call_tool()
async def call_tool(name: str, arguments: dict) -> list[TextContent]:
    """Handle tool calls."""
    server_id = arguments.get("server_id", "N/A")

    async with timed_section(f"tool:{name}", server_id=server_id):
        try:
            inv = get_inventory()

            if name == "list_servers":
                return await handle_list_servers(inv)

            elif name == "server_status":
                return await handle_server_status(inv, arguments["server_id"])

            elif name == "read_attribute":
                return await handle_read_attribute(
                    inv,
                    arguments["server_id"],
                    arguments.get("address", ""),
                    arguments["name"]
                )

            elif name == "read_resource":
                return await handle_read_resource(
                    inv,
                    arguments["server_id"],
                    arguments.get("address", ""),
                    arguments.get("recursive", False)
                )

            elif name == "execute_command":
                return await handle_execute_command(
                    inv,
                    arguments["server_id"],
                    arguments["command"]
                )

            elif name == "execute_commands":
                return await handle_execute_commands(inv, arguments)

            elif name == "add_resource":
                return await handle_add_resource(inv, arguments)

            elif name == "preview_goal":
                return await handle_preview_goal(inv, arguments["config"])

            else:
                return [TextContent(type="text", text=f"Unknown tool: {name}")]

        except Exception as e:
            logger.exception(f"Tool {name} failed")
            return [TextContent(type="text", text=f"Error: {str(e)}")]


def _json(payload: Any) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(payload, indent=2, default=str))]


# === TOOL HANDLERS ===

async def handle_list_servers(inv: ServerInventory) -> list[TextContent]:
    """List all configured servers."""
    servers = []
    for server_id in inv.get_server_ids():
        config = inv.get_server_config(server_id)
        servers.append({
            "id": server_id,
            "name": config.get("name", server_id),
            "type": config.get("type"),
            "host": config.get("host"),
            "protocol": config.get("protocol", "http"),
            "port": config.get("port", 9990),
        })

    return _json({"servers": servers})


async def handle_server_status(inv: ServerInventory, server_id: str) -> list[TextContent]:
    """Get server reachability and identity."""
    client = inv.get_client(server_id)
    try:
        status = await client.check_health()
    finally:
        await client.disconnect()

    return _json({"server_id": server_id, **status.to_dict()})


async def handle_read_attribute(
    inv: ServerInventory,
    server_id: str,
    address: str,
    name: str
) -> list[TextContent]:
    """Read one attribute."""
    op = build_read_attribute_operation(Address.parse(address), name)

    async with inv.get_client(server_id) as client:
        result = ResultInterpreter().interpret(await client.execute(op), op)

    return _json({
        "server_id": server_id,
        "address": str(op.address),
        "name": name,
        "success": result.success,
        "value": result.value,
        "error": result.failure_description,
    })


async def handle_read_resource(
    inv: ServerInventory,
    server_id: str,
    address: str,
    recursive: bool
) -> list[TextContent]:
    """Read a resource."""
    op = build_read_resource_operation(Address.parse(address), recursive=recursive)

    async with inv.get_client(server_id) as client:
        result = ResultInterpreter().interpret(await client.execute(op), op)

    return _json({
        "server_id": server_id,
        "address": str(op.address),
        "success": result.success,
        "resource": result.value,
        "error": result.failure_description,
    })


async def handle_execute_command(
    inv: ServerInventory,
    server_id: str,
    command: str
) -> list[TextContent]:
    """Execute one CLI command."""
    op = CommandParser().parse(command)

    async with inv.get_client(server_id) as client:
        result = ResultInterpreter().interpret(await client.execute(op), op)

    return _json({
        "server_id": server_id,
        "command": command,
        "success": result.success,
        "result": result.value,
        "error": result.failure_description,
        "rolled_back": result.rolled_back,
    })


async def handle_execute_commands(inv: ServerInventory, args: dict) -> list[TextContent]:
    """Run the execute-commands goal."""
    result = await get_engine(inv).execute_commands(
        {
            "server": args["server_id"],
            "commands": args["commands"],
            "fail-on-error": args.get("fail_on_error", True),
            "batch": args.get("batch", False),
            "system-properties": args.get("system_properties", {}),
        },
        dry_run=args.get("dry_run", False),
        audit_context=args.get("audit_context", "mcp:execute_commands"),
    )
    return _json(result.to_dict())


async def handle_add_resource(inv: ServerInventory, args: dict) -> list[TextContent]:
    """
    Run the add-resource goal.

    Either a full goal config or a single resource given by
    address/attributes.
    """
    config = dict(args.get("config") or {})
    if not config:
        config["resources"] = [{
            "address": args.get("address", ""),
            "attributes": args.get("attributes", {}),
            "if-exists": args.get("if_exists", "add"),
        }]
    config.setdefault("server", args["server_id"])

    result = await get_engine(inv).add_resources(
        config,
        dry_run=args.get("dry_run", False),
        audit_context=args.get("audit_context", "mcp:add_resource"),
    )
    return _json(result.to_dict())


async def handle_preview_goal(inv: ServerInventory, config: dict) -> list[TextContent]:
    """Preview a goal config."""
    summary = await get_engine(inv).preview(config)
    return [TextContent(type="text", text=summary)]


# === RESOURCES ===

@server.list_resources()
async def list_resources() -> list[Resource]:
    """List available resources."""
    inv = get_inventory()
    resources = []

    for server_id in inv.get_server_ids():
        config = inv.get_server_config(server_id)
        resources.append(Resource(
            uri=AnyUrl(f"mgmt://{server_id}/root"),
            name=f"{config.get('name', server_id)} Root Resource",
            description=f"Root management resource of {server_id}",
            mimeType="application/json",
        ))

    return resources


@server.read_resource()
async def read_resource(uri: AnyUrl) -> str:
    """Read a resource."""
    # Parse URI: mgmt://server_id/root
    uri_str = str(uri)
    if uri_str.startswith("mgmt://"):
        parts = uri_str[7:].split("/")
        if len(parts) >= 2 and parts[1] == "root":
            result = await handle_read_resource(get_inventory(), parts[0], "", False)
            return result[0].text

    return json.dumps({"error": f"Unknown resource: {uri}"})


def main():
    """Run the MCP server."""
    setup_logging()

    async def run():
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options()
            )

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
