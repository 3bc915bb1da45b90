"""team-order: collaborative team food and drink ordering sessions."""

__version__ = "0.4.0"


def main() -> None:
    from team_order.cli import app

    app()


if __name__ == "__main__":
    main()
