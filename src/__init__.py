"""Source tree for devlog-mcp; the importable package is `devlog_mcp`."""
