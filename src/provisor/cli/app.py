import typer
import rich_click  # noqa: F401
from .list_recipes import list_recipes
from .run import run
from .status import status
from provisor import __version__

app = typer.Typer(
    name="provisor",
    help="Staged, idempotent toolchain provisioning",
    no_args_is_help=True,
)

@app.command("version")
def version() -> None:
    """Show the provisor version."""
    typer.echo(f"provisor v{__version__}")

app.command()(run)
app.command()(status)
app.command("list-recipes")(list_recipes)
