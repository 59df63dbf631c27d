"""docgrab: document download MCP server with headless-browser fallback."""
