"""
devlog-mcp - queryable index over development logs.

Sessions, plans and learned patterns are plain markdown files with a YAML
header. devlog-mcp indexes them, answers filtered queries and text searches,
and edits them so the index never falls behind the files.

Stack:
- Python + FastMCP (MCP tools)
- JSON file or SQLite (derived index)
- Markdown with YAML front matter (source of truth)
"""

__version__ = "0.1.0"
