"""MCP server exposing ChartMuseum chart operations as tools."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List

from mcp.server import Server, NotificationOptions
from mcp.server.models import InitializationOptions
from mcp.server.stdio import stdio_server
from mcp.types import Tool, TextContent

from .chart_tools.client import ChartMuseumClient
from .chart_tools.config import ChartMuseumSettings, McpToolNames
from .chart_tools.exceptions import (
    AcceptedError,
    ChartMuseumError,
    DeadlineExceededError,
    ErrorResponse,
    RequestBuildError,
    TransportError,
    TwoFactorRequiredError,
)
from .chart_tools.models import ErrorType, ToolResponse

logger = logging.getLogger("chartmuseum-mcp")

SERVER_NAME = "chartmuseum-mcp"

_REPO = {
    "type": "string",
    "description": "Repository path on the ChartMuseum server, e.g. 'org/team'",
}
_NAME = {"type": "string", "description": "Chart name"}
_VERSION = {"type": "string", "description": "Chart version"}


def _schema(properties: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": "object", "properties": properties, "required": list(properties)}


def _dump(value: Any) -> Any:
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json", by_alias=True, exclude_none=True)
    if isinstance(value, dict):
        return {key: _dump(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_dump(item) for item in value]
    return value


def _text(response: ToolResponse) -> List[TextContent]:
    return [TextContent(type="text", text=response.model_dump_json(indent=2))]


def error_response(error: ChartMuseumError) -> ToolResponse:
    """Map a client error onto the tool error vocabulary."""
    if isinstance(error, AcceptedError):
        return ToolResponse(
            success=True,
            error=ErrorType.ACCEPTED,
            message="Request accepted, the server will complete it later",
            details=str(error),
        )
    if isinstance(error, RequestBuildError):
        error_type = ErrorType.INVALID_REQUEST
    elif isinstance(error, TwoFactorRequiredError) or (
        isinstance(error, ErrorResponse) and error.status in (401, 403)
    ):
        error_type = ErrorType.AUTHENTICATION_FAILED
    elif isinstance(error, ErrorResponse) and error.status == 404:
        error_type = ErrorType.CHART_NOT_FOUND
    elif isinstance(error, (TransportError, DeadlineExceededError)):
        error_type = ErrorType.TRANSPORT_FAILED
    else:
        error_type = ErrorType.SERVER_ERROR
    return ToolResponse(
        success=False, error=error_type, message="ChartMuseum request failed", details=str(error)
    )


class ChartMuseumMCPServer:
    """MCP server for working with charts on a ChartMuseum server."""

    def __init__(self, client: ChartMuseumClient) -> None:
        self.server = Server(SERVER_NAME)
        self.client = client

        # Register handlers
        self._register_handlers()

    def _register_handlers(self) -> None:
        """Register MCP server handlers."""

        @self.server.list_tools()
        async def handle_list_tools() -> List[Tool]:
            """List available tools."""
            return self.tools()

        @self.server.call_tool()
        async def handle_call_tool(name: str, arguments: Dict[str, Any]) -> List[TextContent]:
            """Handle tool calls."""
            return await self.dispatch(name, arguments or {})

    def tools(self) -> List[Tool]:
        return [
            Tool(
                name=McpToolNames.LIST_CHARTS,
                description="List every chart in a repository with all of its versions.",
                inputSchema=_schema({"repo": _REPO}),
            ),
            Tool(
                name=McpToolNames.LIST_VERSIONS,
                description="List all versions of a chart.",
                inputSchema=_schema({"repo": _REPO, "name": _NAME}),
            ),
            Tool(
                name=McpToolNames.GET_VERSION,
                description="Get the metadata of one chart version.",
                inputSchema=_schema({"repo": _REPO, "name": _NAME, "version": _VERSION}),
            ),
            Tool(
                name=McpToolNames.CHART_EXISTS,
                description="Check whether a chart, or a specific chart version if 'version' is given, exists.",
                inputSchema={
                    "type": "object",
                    "properties": {"repo": _REPO, "name": _NAME, "version": _VERSION},
                    "required": ["repo", "name"],
                },
            ),
            Tool(
                name=McpToolNames.UPLOAD_CHART,
                description="Upload a packaged chart (.tgz) from a local path.",
                inputSchema=_schema(
                    {
                        "repo": _REPO,
                        "chart_path": {"type": "string", "description": "Local path of the .tgz package"},
                    }
                ),
            ),
            Tool(
                name=McpToolNames.DELETE_VERSION,
                description="Delete one chart version.",
                inputSchema=_schema({"repo": _REPO, "name": _NAME, "version": _VERSION}),
            ),
            Tool(
                name=McpToolNames.DOWNLOAD_CHART,
                description="Download a chart package into a local directory.",
                inputSchema=_schema(
                    {
                        "repo": _REPO,
                        "name": _NAME,
                        "version": _VERSION,
                        "dest_dir": {"type": "string", "description": "Destination directory"},
                    }
                ),
            ),
            Tool(
                name=McpToolNames.LATEST_VERSION,
                description="Find the highest chart version matching a regular expression.",
                inputSchema=_schema(
                    {
                        "repo": _REPO,
                        "name": _NAME,
                        "pattern": {"type": "string", "description": "Regular expression versions must match"},
                    }
                ),
            ),
            Tool(
                name=McpToolNames.REPOSITORY_INDEX,
                description="Fetch the parsed index.yaml of a repository.",
                inputSchema=_schema({"repo": _REPO}),
            ),
            Tool(
                name=McpToolNames.SERVER_HEALTH,
                description="Report whether the ChartMuseum server is healthy.",
                inputSchema=_schema({}),
            ),
            Tool(
                name=McpToolNames.SERVER_INFO,
                description="Report the ChartMuseum server version.",
                inputSchema=_schema({}),
            ),
        ]

    def _required_arguments(self) -> Dict[str, List[str]]:
        return {tool.name: tool.inputSchema.get("required", []) for tool in self.tools()}

    async def dispatch(self, name: str, arguments: Dict[str, Any]) -> List[TextContent]:
        """Run a tool and render its result."""
        handlers = {
            McpToolNames.LIST_CHARTS: self._list_charts,
            McpToolNames.LIST_VERSIONS: self._list_versions,
            McpToolNames.GET_VERSION: self._get_version,
            McpToolNames.CHART_EXISTS: self._chart_exists,
            McpToolNames.UPLOAD_CHART: self._upload_chart,
            McpToolNames.DELETE_VERSION: self._delete_version,
            McpToolNames.DOWNLOAD_CHART: self._download_chart,
            McpToolNames.LATEST_VERSION: self._latest_version,
            McpToolNames.REPOSITORY_INDEX: self._repository_index,
            McpToolNames.SERVER_HEALTH: self._server_health,
            McpToolNames.SERVER_INFO: self._server_info,
        }

        try:
            handler = handlers[McpToolNames(name)]
        except ValueError:
            return _text(
                ToolResponse(success=False, error=ErrorType.INVALID_REQUEST, message=f"Unknown tool: {name}")
            )

        required = self._required_arguments().get(name, [])
        missing = [argument for argument in required if argument not in arguments]
        if missing:
            return _text(
                ToolResponse(
                    success=False,
                    error=ErrorType.INVALID_REQUEST,
                    message="Missing required argument(s): " + ", ".join(missing),
                )
            )

        try:
            return _text(await handler(arguments))
        except ChartMuseumError as e:
            logger.error(f"Error in tool {name}: {e}")
            return _text(error_response(e))

    async def _list_charts(self, arguments: Dict[str, Any]) -> ToolResponse:
        charts = await self.client.charts.list_charts(arguments["repo"])
        return ToolResponse(
            success=True, message=f"Found {len(charts)} charts", data=_dump(charts)
        )

    async def _list_versions(self, arguments: Dict[str, Any]) -> ToolResponse:
        versions = await self.client.charts.list_versions(arguments["repo"], arguments["name"])
        return ToolResponse(
            success=True, message=f"Found {len(versions)} versions", data=_dump(versions)
        )

    async def _get_version(self, arguments: Dict[str, Any]) -> ToolResponse:
        chart_version = await self.client.charts.get_version(
            arguments["repo"], arguments["name"], arguments["version"]
        )
        return ToolResponse(success=True, message="Chart version found", data=_dump(chart_version))

    async def _chart_exists(self, arguments: Dict[str, Any]) -> ToolResponse:
        found, error = await self.client.charts.exists_with_error(
            arguments["repo"], arguments["name"], version=arguments.get("version")
        )
        return ToolResponse(
            success=True,
            message="Chart exists" if found else "Chart does not exist",
            details=str(error) if error else None,
            data={"exists": found},
        )

    async def _upload_chart(self, arguments: Dict[str, Any]) -> ToolResponse:
        response = await self.client.charts.upload(arguments["repo"], arguments["chart_path"])
        return ToolResponse(
            success=True,
            message="Chart uploaded",
            data={"status": response.status, "saved": response.saved},
        )

    async def _delete_version(self, arguments: Dict[str, Any]) -> ToolResponse:
        response = await self.client.charts.delete(
            arguments["repo"], arguments["name"], arguments["version"]
        )
        return ToolResponse(
            success=True,
            message="Chart version deleted",
            data={"status": response.status, "deleted": response.deleted},
        )

    async def _download_chart(self, arguments: Dict[str, Any]) -> ToolResponse:
        path = await self.client.charts.download(
            arguments["repo"], arguments["name"], arguments["version"], arguments["dest_dir"]
        )
        return ToolResponse(success=True, message="Chart downloaded", data={"path": str(path)})

    async def _latest_version(self, arguments: Dict[str, Any]) -> ToolResponse:
        version = await self.client.charts.latest_version(
            arguments["repo"], arguments["name"], arguments["pattern"]
        )
        return ToolResponse(
            success=True,
            message=f"Latest matching version is {version}" if version else "No matching version",
            data={"version": version},
        )

    async def _repository_index(self, arguments: Dict[str, Any]) -> ToolResponse:
        index = await self.client.charts.get_index(arguments["repo"])
        return ToolResponse(
            success=True, message=f"Index lists {len(index.entries)} charts", data=_dump(index)
        )

    async def _server_health(self, arguments: Dict[str, Any]) -> ToolResponse:
        health = await self.client.info.health()
        return ToolResponse(
            success=True,
            message="Server is healthy" if health.healthy else "Server is not healthy",
            data=_dump(health),
        )

    async def _server_info(self, arguments: Dict[str, Any]) -> ToolResponse:
        version = await self.client.info.info()
        return ToolResponse(success=True, message="Server version retrieved", data=_dump(version))


async def main():
    """Main entry point for the MCP server."""
    settings = ChartMuseumSettings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    async with ChartMuseumClient(settings.client_config) as client:
        server_instance = ChartMuseumMCPServer(client)

        async with stdio_server() as (read_stream, write_stream):
            await server_instance.server.run(
                read_stream,
                write_stream,
                InitializationOptions(
                    server_name=SERVER_NAME,
                    server_version="0.1.0",
                    capabilities=server_instance.server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                ),
            )


def cli_main():
    """Synchronous entry point for the CLI."""
    asyncio.run(main())


if __name__ == "__main__":
    cli_main()
