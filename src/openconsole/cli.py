"""CLI module for openconsole."""

import asyncio
import json
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click
from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel

from openconsole import __version__
from openconsole.auth.views import CredentialBundle
from openconsole.browser.pool import InstancePool, attach_fingerprint
from openconsole.browser.profile import LaunchConfig
from openconsole.config import load_openconsole_config
from openconsole.exceptions import OpenConsoleError
from openconsole.logging_config import setup_logging
from openconsole.workflow import Dispatcher
from openconsole.workflow.views import ActionResult

console = Console()


def _load_credentials(path: str | None) -> CredentialBundle:
    try:
        if path:
            return CredentialBundle.from_file(path)
        return CredentialBundle.from_env()
    except (ValidationError, OSError, json.JSONDecodeError) as e:
        source = path or 'OPENCONSOLE_* environment variables'
        raise click.ClickException(f'Could not load credentials from {source}: {e}') from e


def _run_batch(action: str, **params: Any) -> list[dict[str, Any]]:
    async def execute() -> list[dict[str, Any]]:
        async with Dispatcher() as dispatcher:
            return await dispatcher.run_batch([{}], action, **params)

    try:
        return asyncio.run(execute())
    except OpenConsoleError as e:
        console.print(f'[red]Error: {e}[/red]')
        sys.exit(1)


def _print_records(title: str, records: list[dict[str, Any]]) -> None:
    console.print(Panel.fit(f'[green]{title}[/green]\nRecords: {len(records)}', title='Results'))
    console.print_json(data=records)


_CONSOLE_OPTIONS = (
    click.option('--debug-port', type=int, default=None, help='Remote debugging port of the running browser'),
    click.option('--host', default=None, help='Host of the remote debugging endpoint'),
    click.option(
        '--manual-second-factor/--auto-second-factor',
        default=True,
        help='Wait for the code to be typed into the browser, or submit the code from the credentials',
    ),
    click.option('--popup-timeout', type=int, default=None, help='Popup wait in milliseconds'),
    click.option(
        '--credentials',
        'credentials_file',
        type=click.Path(exists=True, dir_okay=False),
        default=None,
        help='JSON credentials file (defaults to OPENCONSOLE_* environment variables)',
    ),
    click.option('--verify-login', is_flag=True, help='Wait for the post-login redirect before continuing'),
    click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging'),
)


def console_options(func: Callable) -> Callable:
    """Options shared by the commands that drive the attached console browser."""
    for option in reversed(_CONSOLE_OPTIONS):
        func = option(func)
    return func


def _console_params(
    debug_port: int | None,
    host: str | None,
    manual_second_factor: bool,
    popup_timeout: int | None,
    credentials_file: str | None,
    verify_login: bool,
    verbose: bool,
) -> dict[str, Any]:
    setup_logging(log_level='debug' if verbose else None, force_setup=verbose)
    defaults = load_openconsole_config()
    return {
        'credentials': _load_credentials(credentials_file),
        'debug_port': debug_port or defaults['debug_port'],
        'host': host or defaults['debug_host'],
        'manual_second_factor': manual_second_factor,
        'verify_login': verify_login,
        'popup_timeout_ms': popup_timeout if popup_timeout is not None else defaults['popup_timeout_ms'],
    }


@click.group()
@click.version_option(version=__version__, prog_name='openconsole')
def cli():
    """openconsole - console login and data extraction through a shared browser."""
    pass


@cli.command()
@click.option('--headless/--no-headless', default=None, help='Run browser in headless mode')
@click.option('--executable-path', default=None, help='Browser executable to launch')
@click.option('--debug-port', type=int, default=None, help='Remote debugging port the browser listens on')
@click.option('--host', default=None, help='Host of the remote debugging endpoint')
@click.option('--url', default=None, help='Open this URL and report the page title')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
def launch(
    headless: bool | None,
    executable_path: str | None,
    debug_port: int | None,
    host: str | None,
    url: str | None,
    verbose: bool,
):
    """Start a browser that stays up on the debug port after this command exits."""
    setup_logging(log_level='debug' if verbose else None, force_setup=verbose)
    defaults = load_openconsole_config()
    config = LaunchConfig(
        headless=defaults['headless'] if headless is None else headless,
        executable_path=executable_path or defaults['executable_path'],
    )
    port = debug_port or defaults['debug_port']
    host = host or defaults['debug_host']

    async def execute() -> dict[str, Any]:
        pool = InstancePool()
        try:
            spawned = await pool.spawn(config, debug_port=port, host=host)
            result: dict[str, Any] = {
                'pid': spawned.pid,
                'endpoint': spawned.endpoint,
                'user_data_dir': spawned.user_data_dir,
            }
            page_url = None
            if url:
                attached = await pool.attach(debug_port=port, host=host)
                await attached.page.goto(url)
                result['title'] = await attached.page.title()
                page_url = attached.page.url
        finally:
            # disconnects only; the spawned process keeps running
            await pool.shutdown()
        return ActionResult(
            success=True,
            action='launch',
            session_id=attach_fingerprint(host, port),
            browser_type=config.browser_type,
            is_connected=True,
            reused_existing=False,
            page_url=page_url,
            result=result,
            message=f'Browser listening on {spawned.endpoint}',
        ).to_record()

    try:
        record = asyncio.run(execute())
    except OpenConsoleError as e:
        console.print(f'[red]Error: {e}[/red]')
        sys.exit(1)
    _print_records('Browser launched', [record])


@cli.command()
@click.option('--debug-port', type=int, default=None, help='Remote debugging port of the browser to close')
@click.option('--host', default=None, help='Host of the remote debugging endpoint')
def close(debug_port: int | None, host: str | None):
    """Close the browser listening on the debug port."""
    defaults = load_openconsole_config()
    port = debug_port or defaults['debug_port']
    host = host or defaults['debug_host']

    async def execute() -> bool:
        pool = InstancePool()
        try:
            return await pool.terminate(debug_port=port, host=host)
        finally:
            await pool.shutdown()

    if asyncio.run(execute()):
        console.print(f'[green]Closed browser on port {port}[/green]')
    else:
        console.print(f'[yellow]No browser listening on port {port}[/yellow]')


@cli.command()
@console_options
def authenticate(**options: Any):
    """Log in through the browser listening on the debug port."""
    records = _run_batch('authenticate', **_console_params(**options))
    _print_records('Authentication completed', records)


@cli.command(name='console')
@console_options
def console_command(**options: Any):
    """Log in and open the console page."""
    records = _run_batch('console', **_console_params(**options))
    _print_records('Console opened', records)


def _extraction_command(action: str, title: str) -> Callable:
    @console_options
    @click.option('--data-timeout', type=int, default=None, help='Data table wait in milliseconds')
    @click.option('--output-format', type=click.Choice(['items', 'array']), default='items',
                  help='One record per row, or one record holding all rows')
    @click.option('--include-details', is_flag=True, help='Also read the detail modal of every row')
    @click.option('--output', '-o', type=click.Path(dir_okay=False), default=None, help='Write records to a JSON file')
    def command(data_timeout: int | None, output_format: str, include_details: bool, output: str | None, **options: Any):
        params = _console_params(**options)
        params['data_timeout_ms'] = data_timeout if data_timeout is not None else load_openconsole_config()['data_timeout_ms']
        records = _run_batch(action, output_format=output_format, include_details=include_details, **params)
        if output:
            Path(output).write_text(json.dumps(records, indent=2, ensure_ascii=False), encoding='utf-8')
            console.print(f'[green]Records saved to: {output}[/green]')
        _print_records(title, records)

    return command


cli.command(name='extract', help='Log in, open the console and extract the data table.')(
    _extraction_command('extract', 'Extraction completed')
)
cli.command(name='full', help='Run the complete login and extraction process.')(
    _extraction_command('full', 'Full process completed')
)


def main():
    """Main entry point for CLI."""
    # CONFIG reads os.environ directly
    load_dotenv()
    cli()


if __name__ == '__main__':
    main()
