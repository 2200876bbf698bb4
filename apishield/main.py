"""Main entry point for the apishield CLI.

Sets up the Typer CLI application, performs dependency injection (Composition Root),
defines CLI commands, and delegates execution to the CommandHandler.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Annotated, Any, Coroutine, Dict, Optional

import typer

from apishield.core.command_handler import CommandHandler
from apishield.core.resilient_client import ResilientClient
from apishield.infrastructure.cache.caching_service import TTLCache
from apishield.infrastructure.cli.display import ConsoleDisplay
from apishield.infrastructure.config.settings import (
    get_cache_config,
    get_cache_dir,
    get_config,
    get_rate_limit_config,
    get_retry_policy,
    load_configuration,
    set_config,
)
from apishield.infrastructure.monitoring.logger_setup import setup_logging
from apishield.infrastructure.resilience.api_retry import BackoffExecutor
from apishield.infrastructure.resilience.rate_limiter import AdmissionController

logger = logging.getLogger(__name__)

# --- Dependency Injection Container (Manual) ---

def create_dependencies() -> Dict[str, Any]:
    """Creates and wires up all dependencies for the application.

    This acts as the Composition Root.
    """
    dependencies: Dict[str, Any] = {}
    try:
        # 1. Load Configuration First
        load_configuration()
        setup_logging(
            log_level=get_config('logging.level', 'INFO'),
            log_format=get_config('logging.format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s'),
            log_file=get_config('logging.file'),
        )
        logger.debug("Configuration and logging initialized.")

        # 2. Instantiate Infrastructure Adapters & Services
        dependencies['ui'] = ConsoleDisplay()
        dependencies['cache'] = TTLCache(cache_dir=get_cache_dir(), config=get_cache_config())
        dependencies['admission'] = AdmissionController(config=get_rate_limit_config())
        dependencies['executor'] = BackoffExecutor(policy=get_retry_policy())

        # 3. Compose the resilience path
        dependencies['client'] = ResilientClient(
            admission=dependencies['admission'],
            executor=dependencies['executor'],
            cache=dependencies['cache'],
        )

        # 4. Instantiate Command Handler
        dependencies['command_handler'] = CommandHandler(
            client=dependencies['client'],
            ui=dependencies['ui'],
        )
        logger.debug("All dependencies initialized successfully.")
        return dependencies

    except Exception as e:
        logger.error(f"Fatal Error during application initialization: {e}", exc_info=True)
        if 'ui' in dependencies:
            dependencies['ui'].display_error(f"Application Initialization Failed: {e}")
        else:
            print(f"FATAL ERROR during initialization: {e}", file=sys.stderr)
        raise typer.Exit(code=1)

_dependencies: Optional[Dict[str, Any]] = None

def get_dependencies() -> Dict[str, Any]:
    """Returns the wired-up dependencies, creating them on first use."""
    global _dependencies
    if _dependencies is None:
        _dependencies = create_dependencies()
    return _dependencies

def reset_dependencies() -> None:
    """Drops the cached dependencies so the next command rebuilds them."""
    global _dependencies
    _dependencies = None

# --- Typer App Definition ---
app = typer.Typer(
    name="apishield",
    help="apishield: rate limiting, retries with backoff, and a TTL response cache for API clients.",
    add_completion=False,
)

# --- Helper for Running Async Commands ---
def run_async(coro: Coroutine[Any, Any, Any]) -> Any:
    """Runs an async handler from a sync Typer command."""
    try:
        return asyncio.run(coro)
    except Exception as e:
        logger.error(f"Error executing async command: {e}", exc_info=True)
        get_dependencies()['ui'].display_error(f"Command execution failed: {e}")
        raise typer.Exit(code=1)

def _handler() -> CommandHandler:
    return get_dependencies()['command_handler']

# --- CLI Commands ---

@app.command()
def status():
    """Show rate limiter and cache status."""
    run_async(_handler().handle_status())

@app.command(name="cache-put")
def cache_put(
    key: Annotated[str, typer.Argument(help="Cache key.")],
    file: Annotated[Path, typer.Argument(
        exists=True, file_okay=True, dir_okay=False, readable=True, resolve_path=True,
        help="File whose bytes are stored.")],
    ttl: Annotated[Optional[float], typer.Option("--ttl", min=0, help="Time-to-live in seconds (defaults to cache max age).")] = None,
):
    """Store a file's contents in the cache."""
    run_async(_handler().handle_cache_put(key, file, ttl))

@app.command(name="cache-get")
def cache_get(
    key: Annotated[str, typer.Argument(help="Cache key.")],
    output: Annotated[Optional[Path], typer.Option("--output", "-o", help="Write the payload to this file instead of printing it.")] = None,
):
    """Print (or save) a cached payload."""
    run_async(_handler().handle_cache_get(key, output))

@app.command(name="cache-remove")
def cache_remove(
    key: Annotated[str, typer.Argument(help="Cache key.")],
):
    """Remove one entry from the cache."""
    run_async(_handler().handle_cache_remove(key))

@app.command(name="clear-cache")
def clear_cache_command():
    """Delete every cached entry."""
    run_async(_handler().handle_clear_cache())

@app.command()
def sweep():
    """Remove expired cache entries now."""
    run_async(_handler().handle_sweep())

@app.command()
def simulate(
    requests: Annotated[int, typer.Option("--requests", "-n", min=1, help="Number of concurrent calls.")] = 20,
    cost: Annotated[float, typer.Option("--cost", min=0, help="Tokens each call acquires.")] = 1.0,
    failure_rate: Annotated[float, typer.Option("--failure-rate", min=0.0, max=1.0, help="Probability each attempt fails.")] = 0.3,
    seed: Annotated[Optional[int], typer.Option("--seed", help="Random seed for reproducible runs.")] = None,
):
    """Drive the full resilience path with a synthetic flaky endpoint."""
    run_async(_handler().handle_simulate(requests, cost=cost, failure_rate=failure_rate, seed=seed))

@app.callback()
def main_callback(
    cache_dir: Annotated[Optional[Path], typer.Option("--cache-dir", help="Override the cache directory.")] = None,
    log_level: Annotated[Optional[str], typer.Option("--log-level", help="Logging level (DEBUG, INFO, WARNING, ...).")] = None,
):
    """Global options applied before dependencies are created."""
    load_configuration()
    if cache_dir is not None:
        set_config('cache.dir', str(cache_dir))
    if log_level is not None:
        set_config('logging.level', log_level)

# --- Main Execution Guard ---

def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    app()

if __name__ == "__main__":
    cli_entry_point()
