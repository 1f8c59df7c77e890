"""CLI entry point for Dictate."""

import sys
from pathlib import Path

import click

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from cli.commands import learn, sync_group
from cli.config import load_config_model
from cli.logging_config import setup_logging


@click.group()
@click.version_option(version="0.1.0")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON lines")
def cli(verbose: bool, json_logs: bool):
    """Dictate - learning and sync engine for personal dictation."""
    try:
        config = load_config_model()
    except ValueError as e:
        raise click.ClickException(str(e))

    log_cfg = config.logging
    setup_logging(
        json_mode=json_logs or log_cfg.json_format,
        level="DEBUG" if verbose else log_cfg.level,
        log_file=config.paths.log_file,
        file_level=log_cfg.file_level,
    )


cli.add_command(learn)
cli.add_command(sync_group)


if __name__ == "__main__":
    cli()
