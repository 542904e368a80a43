"""CLI entry point for the outbox service."""

from __future__ import annotations

import json
import sys

import click

from .core.enums import Mode

# Exit code for "retry shortly" (EX_TEMPFAIL)
EXIT_RETRY_LATER = 75


def _overrides(mode: str | None) -> dict:
    overrides: dict = {}
    if mode:
        overrides["mode"] = mode
    return overrides


@click.group()
def main() -> None:
    """Transactional outbox service."""


@main.command()
@click.option("--config", default="configs/outbox.toml", help="Config file path")
@click.option("--mode", type=click.Choice([m.value for m in Mode]), default=None)
@click.option("--workers", default=None, type=int, help="Concurrent relay instances")
def relay(config: str, mode: str | None, workers: int | None) -> None:
    """Run outbox relay workers."""
    import asyncio

    from .main import run

    overrides = _overrides(mode)
    if workers:
        overrides["relay"] = {"workers": workers}
    asyncio.run(run(config_path=config, overrides=overrides, relay=True, consume=False))


@main.command()
@click.option("--config", default="configs/outbox.toml", help="Config file path")
@click.option("--mode", type=click.Choice([m.value for m in Mode]), default=None)
def consume(config: str, mode: str | None) -> None:
    """Run the order confirmation e-mail consumer."""
    import asyncio

    from .main import run

    asyncio.run(run(config_path=config, overrides=_overrides(mode), relay=False, consume=True))


@main.command()
@click.option("--config", default="configs/outbox.toml", help="Config file path")
@click.option("--mode", type=click.Choice([m.value for m in Mode]), default=None)
def serve(config: str, mode: str | None) -> None:
    """Run relay workers and the e-mail consumer in one process."""
    import asyncio

    from .main import run

    asyncio.run(run(config_path=config, overrides=_overrides(mode), relay=True, consume=True))


@main.command("create-order")
@click.option("--config", default="configs/outbox.toml", help="Config file path")
@click.option("--mode", type=click.Choice([m.value for m in Mode]), default=None)
@click.option("--token", required=True, help="Client idempotency token")
@click.option("--user-id", required=True, help="Owning user id (UUID)")
@click.option("--amount", required=True, type=int, help="Order amount")
def create_order(config: str, mode: str | None, token: str, user_id: str, amount: int) -> None:
    """Submit one order. Exit 0 on success, 75 to retry later, 1 on failure."""
    import asyncio

    from .core.errors import LockContention, WriteError
    from .main import submit

    try:
        result = asyncio.run(
            submit(token, user_id, amount, config_path=config, overrides=_overrides(mode))
        )
    except LockContention as e:
        click.echo(json.dumps({"error": "in_flight", "detail": str(e)}), err=True)
        sys.exit(EXIT_RETRY_LATER)
    except WriteError as e:
        click.echo(json.dumps({"error": "write_failed", "stage": e.stage.value, "detail": str(e)}), err=True)
        sys.exit(1)

    click.echo(result.response.model_dump_json())
    if result.replayed:
        click.echo("(replayed from idempotency cache)", err=True)


@main.command("init-db")
@click.option("--config", default="configs/outbox.toml", help="Config file path")
def init_db(config: str) -> None:
    """Create the orders and outbox tables."""
    import asyncio

    from .main import init_db as _init_db

    asyncio.run(_init_db(config_path=config))
    click.echo("Tables created.")


@main.command()
@click.option("--orders", default=5, type=int, help="Number of orders to submit")
def demo(orders: int) -> None:
    """Run the full flow in-process with in-memory backends."""
    import asyncio

    from .main import run_demo

    summary = asyncio.run(run_demo(n_orders=orders))
    for key, value in summary.items():
        click.echo(f"{key:<12} {value}")


if __name__ == "__main__":
    main()
