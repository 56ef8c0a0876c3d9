"""MCP server exposing paperlm ingestion and retrieval."""
