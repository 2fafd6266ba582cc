"""Entry point for running graphsession as a module.

Usage:
    python -m graphsession sign-in
    python -m graphsession --help
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env before any other imports that need env vars

from graphsession.cli import main  # noqa: E402

if __name__ == "__main__":
    main()
