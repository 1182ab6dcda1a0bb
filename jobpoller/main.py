"""Main entry point for the jobpoller application.

Sets up the Typer CLI application, performs dependency injection (Composition
Root), and starts the billing and scheduling poll cycles.
"""

import asyncio
import logging
import sys
from typing import Annotated, Any, Dict, Optional

import httpx
import typer

# --- Setup Logging Early ---
# Use basic config until setup_logging is called with the configured settings
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# --- Core Layer ---
from jobpoller.core.poll_loop import PollLoop
from jobpoller.core.services.billing_service import BillingService
from jobpoller.core.services.scheduling_service import SchedulingService

# --- Infrastructure Layer ---
from jobpoller.infrastructure.auth.credential_provider import CredentialProvider
from jobpoller.infrastructure.config.settings import PollerSettings, load_configuration
from jobpoller.infrastructure.http.api_client import ApiClient
from jobpoller.infrastructure.monitoring.logger_setup import setup_logging
from jobpoller.infrastructure.resilience.api_retry import ApiRetryService


def create_dependencies(
    settings: Optional[PollerSettings] = None,
    log_level: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    """Creates and wires up all dependencies for the application.

    This acts as the Composition Root. Exits with status 1 when anything
    fails to initialize.
    """
    dependencies: Dict[str, Any] = {}
    try:
        # 1. Configuration and logging
        if settings is None:
            load_configuration()
            settings = PollerSettings.from_config()
        setup_logging(
            log_level=log_level or settings.log_level,
            log_format=settings.log_format,
            log_file=settings.log_file,
        )
        if settings.billing_interval <= 0 or settings.scheduler_interval <= 0:
            raise ValueError("Poll intervals must be positive")
        if settings.batch_size <= 0:
            raise ValueError("BATCH_SIZE must be positive")
        dependencies['settings'] = settings
        logger.info("Configuration and logging initialized.")

        # 2. Infrastructure adapters
        dependencies['credential_provider'] = CredentialProvider(
            api_key=settings.api_key,
            issuer_url=settings.keycloak_issuer_url,
            realm=settings.keycloak_realm,
            client_id=settings.keycloak_client_id,
            client_secret=settings.keycloak_client_secret,
            transport=transport,
        )
        dependencies['api_client'] = ApiClient(
            base_url=settings.api_root_url,
            timeout_seconds=settings.http_timeout_seconds,
            credentials=dependencies['credential_provider'],
            transport=transport,
        )
        dependencies['api_retry_service'] = ApiRetryService.from_policy(settings.backoff_policy)

        # 3. Core services
        dependencies['billing_service'] = BillingService(
            api_client=dependencies['api_client'],
            api_retry_service=dependencies['api_retry_service'],
            batch_size=settings.batch_size,
            mode=settings.billing_mode,
        )
        dependencies['scheduling_service'] = SchedulingService(
            api_client=dependencies['api_client'],
            api_retry_service=dependencies['api_retry_service'],
            batch_size=settings.batch_size,
        )
        dependencies['poll_loop'] = PollLoop(
            billing_cycle=dependencies['billing_service'].run_once,
            scheduling_cycle=dependencies['scheduling_service'].run_once,
            billing_interval_s=settings.billing_interval,
            scheduling_interval_s=settings.scheduler_interval,
        )

        logger.info("All dependencies initialized successfully.")
        return dependencies

    except Exception as e:
        logger.error(f"Fatal Error during application initialization: {e}", exc_info=True)
        sys.exit(1)


async def serve(dependencies: Dict[str, Any]) -> None:
    """Runs the poll loop until the process is terminated."""
    async with dependencies['api_client']:
        await dependencies['poll_loop'].run()


async def serve_once(dependencies: Dict[str, Any], billing: bool = True, scheduling: bool = True) -> None:
    async with dependencies['api_client']:
        await dependencies['poll_loop'].run_once(billing=billing, scheduling=scheduling)


# --- Typer App Definition ---
app = typer.Typer(
    name="jobpoller",
    help="Periodically triggers billing processing and due schedules on the remote API.",
    add_completion=False,
)

LogLevelOption = Annotated[
    Optional[str],
    typer.Option("--log-level", "-l", help="Override LOG_LEVEL (e.g. DEBUG, INFO, WARNING).")
]


def _run_poller(log_level: Optional[str]) -> None:
    dependencies = create_dependencies(log_level=log_level)
    try:
        asyncio.run(serve(dependencies))
    except KeyboardInterrupt:
        logger.info("Poller stopped.")
    except Exception as e:
        logger.error(f"Unhandled error starting scheduler: {e}", exc_info=True)
        raise typer.Exit(code=1)


@app.command()
def run(log_level: LogLevelOption = None):
    """Start both poll cycles and keep running until terminated."""
    _run_poller(log_level)


@app.command()
def once(
    only: Annotated[
        Optional[str],
        typer.Option("--only", help="Run just one cycle: 'billing' or 'scheduling'.")
    ] = None,
    log_level: LogLevelOption = None,
):
    """Run each poll cycle a single time, then exit."""
    if only not in (None, "billing", "scheduling"):
        logger.error(f"Unknown cycle '{only}', expected 'billing' or 'scheduling'.")
        raise typer.Exit(code=2)

    dependencies = create_dependencies(log_level=log_level)
    try:
        asyncio.run(serve_once(
            dependencies,
            billing=only in (None, "billing"),
            scheduling=only in (None, "scheduling"),
        ))
    except Exception as e:
        logger.error(f"Unhandled error during single run: {e}", exc_info=True)
        raise typer.Exit(code=1)


@app.callback(invoke_without_command=True)
def main_callback(ctx: typer.Context):
    """Starts the poller if no command is given."""
    if ctx.invoked_subcommand is None:
        logger.debug("No command invoked, starting the poller.")
        _run_poller(None)


# --- Main Execution Guard ---

def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    app()


if __name__ == "__main__":
    cli_entry_point()
