"""Command line entry for the conversational property search."""

from cli.console import main as run_console_cli


def main() -> None:
    """Run the interactive filter conversation."""
    run_console_cli()


if __name__ == "__main__":
    main()
