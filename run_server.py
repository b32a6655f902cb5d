import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent / "src"))

from chartmuseum_mcp.server import cli_main

if __name__ == "__main__":
    cli_main()
