"""Tool-protocol surface: one "run shell command" tool over a persistent session.

External agents that speak a tool-use contract get a single tool,
``run_shell_command``, taking ``{command: string, restart?: boolean}`` and
returning sanitized combined output as text. The same safety validator used
by the orchestrator guards it.

`create_server` registers the tool on an MCP server; `serve_stdio` runs that
server over stdio for clients that launch this process.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

from terminal_assistant.domain.command_safety import CommandValidator
from terminal_assistant.errors import CommandTimeoutError, InfrastructureError
from terminal_assistant.tools.base import CommandRunner

if TYPE_CHECKING:
    from mcp.server.fastmcp import FastMCP as FastMCPType

logger = logging.getLogger(__name__)

TOOL_NAME = "run_shell_command"
TOOL_DESCRIPTION = (
    "Run a command in a persistent bash session and return its output. "
    "Working directory and exported variables persist between calls. "
    "Set restart=true to respawn the session and discard that state."
)


class ShellTool:
    """Adapter between tool-call arguments and a command backend."""

    name = TOOL_NAME

    def __init__(self, runner: CommandRunner, validator: Optional[CommandValidator] = None) -> None:
        self.runner = runner
        self.validator = validator or CommandValidator()

    def call(self, args: Dict[str, Any]) -> str:
        """Run the tool and return text for the caller."""

        restart = bool(args.get("restart"))
        command = args.get("command")
        if restart:
            self.runner.restart()
            if not command:
                return "Shell session restarted."
        if not isinstance(command, str) or not command.strip():
            return "Error: 'command' must be a non-empty string."

        decision = self.validator.validate(command)
        if not decision.allowed:
            return f"Command blocked by safety policy: {decision.reason}"
        try:
            output = self.runner.run(command)
        except CommandTimeoutError as exc:
            self.runner.restart()
            return f"Error: {exc}. The session was restarted; shell state was reset."
        except InfrastructureError as exc:
            return f"Error: {exc}"
        text = output.combined or "(no output)"
        if output.exit_code != 0:
            text += f"\n(exit code {output.exit_code})"
        return text


def create_server(tool: ShellTool) -> FastMCPType:
    """Build an MCP server exposing ``tool`` as ``run_shell_command``."""

    from mcp.server.fastmcp import FastMCP

    mcp = FastMCP("terminal-assistant")

    @mcp.tool(name=TOOL_NAME, description=TOOL_DESCRIPTION)
    def run_shell_command(command: str = "", restart: bool = False) -> str:
        return tool.call({"command": command, "restart": restart})

    return mcp


def serve_stdio(tool: ShellTool) -> None:
    """Serve the tool over MCP stdio until the client disconnects."""

    create_server(tool).run(transport="stdio")
    logger.info("Tool server input closed")
