"""Entry point for running WipeBot as a module.

Usage:
    python -m wipebot validate-config
    python -m wipebot --help
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env before any other imports that need env vars

from wipebot.cli import main  # noqa: E402

if __name__ == "__main__":
    main()
