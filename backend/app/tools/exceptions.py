class ToolError(Exception):
    """Base exception for the tool framework."""


class InvalidToolDefinitionError(ToolError):
    """A tool definition was rejected at registration."""

    def __init__(self, tool_name: str, reason: str):
        super().__init__(f"Invalid tool definition '{tool_name}': {reason}")
        self.tool_name = tool_name
        self.reason = reason
