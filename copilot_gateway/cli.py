"""Command line entrypoint: login, logout, start and version."""

import asyncio
import logging
from typing import Optional

import httpx
import typer
import uvicorn

from copilot_gateway.app import CONFIG_ENV, VERSION, create_app, load_gateway_config
from copilot_gateway.client import UpstreamClient
from copilot_gateway.config import GatewayConfig
from copilot_gateway.credentials import CredentialStore
from copilot_gateway.errors import GatewayError
from copilot_gateway.login import device_login
from copilot_gateway.models import LoginResponse
from copilot_gateway.telemetry import setup_logging

app = typer.Typer(help="OpenAI-compatible gateway for the GitHub Copilot chat API")

ConfigOption = typer.Option(
    None,
    "--config",
    "-c",
    envvar=CONFIG_ENV,
    help="Path to a JSON config file",
)


def _load(config_path: Optional[str]) -> GatewayConfig:
    try:
        return load_gateway_config(config_path)
    except (FileNotFoundError, ValueError) as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)


def _show_device_code(login: LoginResponse) -> None:
    typer.echo(
        "Please visit {} to authenticate and enter the code: {}".format(
            login.verification_uri, login.user_code
        )
    )


async def _login(cfg: GatewayConfig, store: CredentialStore) -> None:
    async with httpx.AsyncClient() as http:
        client = UpstreamClient(cfg.upstream, http)
        await device_login(client, store, notify=_show_device_code)


@app.command()
def login(config: Optional[str] = ConfigOption) -> None:
    """Authorize this machine with GitHub Copilot via the device flow."""
    cfg = _load(config)
    setup_logging(None)
    store = CredentialStore(cfg.token_file)
    if store.exists():
        typer.secho("You are already logged in.", fg=typer.colors.YELLOW)
        raise typer.Exit(code=1)

    try:
        asyncio.run(_login(cfg, store))
    except GatewayError as exc:
        typer.secho("Error logging in: {}".format(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.secho("Authenticated successfully!", fg=typer.colors.GREEN)


@app.command()
def logout(config: Optional[str] = ConfigOption) -> None:
    """Delete the stored access token."""
    cfg = _load(config)
    if not CredentialStore(cfg.token_file).delete():
        typer.secho("You are not logged in.", fg=typer.colors.YELLOW)
        raise typer.Exit(code=1)
    typer.secho("Logged out.", fg=typer.colors.GREEN)


@app.command()
def start(
    config: Optional[str] = ConfigOption,
    host: Optional[str] = typer.Option(None, help="Bind address"),
    port: Optional[int] = typer.Option(None, help="Bind port"),
    debug: bool = typer.Option(False, help="Log request details"),
) -> None:
    """Run the gateway server."""
    cfg = _load(config)
    store = CredentialStore(cfg.token_file)
    if not store.exists():
        typer.secho(
            "The file {} does not exist, please run login first".format(store.path),
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)

    setup_logging(cfg.log_file, level=logging.DEBUG if debug else logging.INFO)
    uvicorn.run(
        create_app(cfg),
        host=host or cfg.host,
        port=port or cfg.port,
    )


@app.command()
def version() -> None:
    """Print the gateway version."""
    typer.echo("copilot-gateway v{}".format(VERSION))


def main() -> None:
    app(prog_name="copilot-gateway")


if __name__ == "__main__":
    main()
