"""MCP server and tool registration for localmem."""
