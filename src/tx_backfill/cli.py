"""CLI entry point for the transaction backfill."""

from __future__ import annotations

import click

from .core.enums import LogFormat


@click.command()
@click.option("--dry-run", is_flag=True, help="Preview messages without posting")
@click.option("--after", "after_tx", default=None, help="Reference tx hash (exclusive start)")
@click.option("--yes", "-y", "skip_confirm", is_flag=True, help="Skip the confirmation prompt")
@click.option("--config", default=None, help="Config file path (TOML)")
@click.option("--log-level", default=None, help="Log level override (DEBUG, INFO, ...)")
@click.option(
    "--log-format",
    type=click.Choice([f.value for f in LogFormat]),
    default=None,
    help="Log output format",
)
def main(
    dry_run: bool,
    after_tx: str | None,
    skip_confirm: bool,
    config: str | None,
    log_level: str | None,
    log_format: str | None,
) -> None:
    """Backfill token transfers missed by the live notifier into Discord."""
    import asyncio

    from .core.config import load_settings
    from .core.errors import BackfillError, MissingCredentialError
    from .main import run
    from .observability.logger import setup_logging

    overrides: dict = {}
    if log_level or log_format:
        overrides["observability"] = {
            k: v
            for k, v in (("log_level", log_level), ("log_format", log_format))
            if v
        }

    settings = load_settings(config_path=config, overrides=overrides)
    setup_logging(
        level=settings.observability.log_level,
        format=settings.observability.log_format.value,
    )

    try:
        asyncio.run(
            run(
                settings,
                after_tx=after_tx,
                dry_run=dry_run,
                skip_confirm=skip_confirm,
            )
        )
    except MissingCredentialError as exc:
        click.echo(f"❌ {exc}", err=True)
        raise SystemExit(1) from exc
    except BackfillError as exc:
        click.echo(f"❌ Fatal: {exc}", err=True)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
