#!/usr/bin/env python3
"""
Missing Money Search - Main Entry Point

Usage:
    # Run API server
    python main.py server

    # Run one search and print the outcome JSON
    python main.py search --first Ben --last Smith --city Austin --state TX
"""

import sys
import json
import asyncio
import argparse
import logging

from dotenv import load_dotenv

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def check_environment() -> bool:
    """Report configuration problems before starting."""
    from api.config import get_config

    problems = get_config().validate()
    if problems:
        print("❌ Configuration problems:")
        for problem in problems:
            print(f"  - {problem}")
        print("\nPlease fix these in your .env file or environment.")
        return False
    return True


def run_server(host: str = "0.0.0.0", port: int = 8080, reload: bool = False):
    """Run the FastAPI server."""
    import uvicorn

    print(f"🚀 Starting server on {host}:{port}")
    uvicorn.run(
        "api.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info"
    )


async def run_search(first: str, last: str, city: str, state: str, solver_key: str = None) -> dict:
    """Run a single search outside the API."""
    from api.config import get_config
    from core.models import SearchRequest
    from core.orchestrator import OrchestratorConfig, SearchOrchestrator
    from core.slot_manager import SlotManager

    config = get_config()
    orchestrator = SearchOrchestrator(
        OrchestratorConfig.from_app_config(config),
        SlotManager(capacity=1, queue_timeout=config.QUEUE_TIMEOUT_SECONDS),
    )
    request = SearchRequest.create(
        first_name=first,
        last_name=last,
        city=city,
        state=state,
        use_challenge_solver=bool(solver_key or config.TWOCAPTCHA_API_KEY),
        solver_api_key=solver_key,
    )
    logger.info(f"Search {request.request_id} in {request.state_name}")
    outcome = await orchestrator.search(request)
    return outcome.to_dict()


def main():
    """Main entry point."""
    load_dotenv()

    parser = argparse.ArgumentParser(
        description="Missing Money Search - unclaimed property lookup service"
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # Server command
    server_parser = subparsers.add_parser('server', help='Run API server')
    server_parser.add_argument('--host', default=None, help='Host to bind to')
    server_parser.add_argument('--port', type=int, default=None, help='Port to bind to')
    server_parser.add_argument('--reload', action='store_true', help='Enable auto-reload')

    # Search command
    search_parser = subparsers.add_parser('search', help='Run one search and print the outcome')
    search_parser.add_argument('--first', required=True, help='First name')
    search_parser.add_argument('--last', required=True, help='Last name')
    search_parser.add_argument('--city', required=True, help='City')
    search_parser.add_argument('--state', required=True, help='State (abbreviation or full name)')
    search_parser.add_argument('--solver-key', default=None, help='2captcha API key')

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    if not check_environment():
        sys.exit(1)

    if args.command == 'server':
        from api.config import get_config
        config = get_config()
        run_server(args.host or config.HOST, args.port or config.PORT, args.reload)

    elif args.command == 'search':
        result = asyncio.run(run_search(args.first, args.last, args.city, args.state, args.solver_key))
        print(json.dumps(result, indent=2))
        if not result.get("success"):
            sys.exit(2)


if __name__ == "__main__":
    main()
