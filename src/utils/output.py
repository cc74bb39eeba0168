"""Formatted CLI output for archive summaries."""

from typing import Any

import click


def print_header(title: str, width: int = 70, color: str = "cyan") -> None:
    """Print a framed header line."""
    click.echo()
    click.echo(click.style("=" * width, fg=color))
    click.echo(click.style(title, fg=color, bold=True))
    click.echo(click.style("=" * width, fg=color))


def print_key_value(
    key: str, value: Any, key_color: str = "white", value_color: str = "cyan"
) -> None:
    """Print an aligned key/value pair.

    Args:
        key: Key name
        value: Value
        key_color: Key color
        value_color: Value color
    """
    click.echo(
        f"  {click.style(f'{key}:', fg=key_color):<32} {click.style(str(value), fg=value_color)}"
    )


def print_success(message: str) -> None:
    """Print a success line."""
    click.echo(click.style(f"✓ {message}", fg="green"))


def print_error(message: str) -> None:
    """Print an error line to stderr."""
    click.echo(click.style(f"✗ {message}", fg="red"), err=True)


def print_warning(message: str) -> None:
    """Print a warning line."""
    click.echo(click.style(f"! {message}", fg="yellow"))
