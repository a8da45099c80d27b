"""Remote Process MCP 入口点。

支持: python -m remote_process_mcp
"""

from .app import main

if __name__ == "__main__":
    main()
