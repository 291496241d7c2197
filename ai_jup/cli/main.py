"""CLI entry point.

Provides commands for:
- serve: Run the API server
- ask: Send a prompt to a running server and print the answer
- token: Issue a JWT for the API
"""

import asyncio
import json
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Optional

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel

if TYPE_CHECKING:
    from ai_jup.conversation.models import ContextBundle

app = typer.Typer(
    name="ai-jup",
    help="Streaming LLM prompts with live notebook tools",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()

DEFAULT_SERVER = "http://127.0.0.1:8000/api/v1"


@app.command()
def serve(
    host: Annotated[
        Optional[str],  # noqa: UP007
        typer.Option("--host", "-h", help="Host to bind to (default: API_HOST)"),
    ] = None,
    port: Annotated[
        Optional[int],  # noqa: UP007
        typer.Option("--port", "-p", help="Port to bind to (default: API_PORT)"),
    ] = None,
    reload: Annotated[
        bool,
        typer.Option("--reload", "-r", help="Enable auto-reload for development"),
    ] = False,
) -> None:
    """Start the ai-jup API server."""
    import uvicorn

    from ai_jup.logging_config import configure_logging
    from ai_jup.settings import get_settings

    settings = get_settings()
    configure_logging(settings.log_level)
    host = host or settings.api_host
    port = port or settings.api_port

    console.print(
        Panel(
            f"[bold green]Starting ai-jup API Server[/bold green]\n"
            f"Host: {host}\n"
            f"Port: {port}\n"
            f"Model: {settings.llm_provider}/{settings.llm_model}\n"
            f"Execution backend: {settings.execution_backend}\n"
            f"Reload: {reload}",
            title="ai-jup",
            border_style="green",
        )
    )

    # One worker: sessions and their locks live in process memory
    uvicorn.run(
        "ai_jup.api.main:get_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


@app.command()
def ask(
    prompt: Annotated[
        Optional[str],  # noqa: UP007
        typer.Argument(help="Prompt text ($var and &func references allowed)"),
    ] = None,
    server: Annotated[
        str,
        typer.Option("--server", "-s", envvar="AI_JUP_SERVER", help="API base URL"),
    ] = DEFAULT_SERVER,
    model: Annotated[
        Optional[str],  # noqa: UP007
        typer.Option("--model", "-m", help="Model to use (default: server's LLM_MODEL)"),
    ] = None,
    session: Annotated[
        Optional[str],  # noqa: UP007
        typer.Option("--session", help="Execution session id for tool calls"),
    ] = None,
    max_steps: Annotated[
        int,
        typer.Option("--max-steps", help="Maximum model/tool round trips"),
    ] = 5,
    context_file: Annotated[
        Optional[Path],  # noqa: UP007
        typer.Option(
            "--context",
            "-c",
            exists=True,
            dir_okay=False,
            help="JSON file with a context bundle (preceding_code, variables, functions)",
        ),
    ] = None,
    notebook: Annotated[
        Optional[Path],  # noqa: UP007
        typer.Option(
            "--notebook",
            "-n",
            exists=True,
            dir_okay=False,
            help="Notebook (.ipynb) whose code cells before --cell become the context",
        ),
    ] = None,
    cell: Annotated[
        Optional[int],  # noqa: UP007
        typer.Option("--cell", min=0, help="Index of the prompt cell (default: after the last)"),
    ] = None,
    api_key: Annotated[
        Optional[str],  # noqa: UP007
        typer.Option("--api-key", envvar="AI_JUP_API_KEY", help="API key for the server"),
    ] = None,
) -> None:
    """Send a prompt to a running server and print the rendered answer.

    With ``--notebook`` the code cells before ``--cell`` are sent as
    preceding code, and the prompt defaults to that cell's source.
    Variables and functions the prompt references are taken from
    ``--context`` when given.
    """
    from ai_jup.conversation.models import ContextBundle

    context = None
    if context_file is not None:
        try:
            context = ContextBundle.model_validate(json.loads(context_file.read_text()))
        except ValueError as e:
            console.print(f"[red]Invalid context file:[/red] {e}")
            raise typer.Exit(code=2) from e

    if notebook is not None:
        prompt, context = _notebook_context(notebook, cell, prompt, context or ContextBundle())
    if not prompt:
        console.print("[red]A prompt is required[/red]")
        raise typer.Exit(code=2)

    markdown = asyncio.run(
        _ask(
            prompt,
            server=server,
            model=model,
            session_id=session,
            max_steps=max_steps,
            context=context,
            api_key=api_key,
        )
    )
    console.print(Markdown(markdown))


def _notebook_context(path: Path, cell: int | None, prompt: str | None, known: "ContextBundle"):
    from ai_jup.prompt.context import cell_source, gather_context
    from ai_jup.prompt.parser import parse_prompt
    from ai_jup.settings import get_settings

    try:
        cells = json.loads(path.read_text())["cells"]
    except (ValueError, KeyError, TypeError) as e:
        console.print(f"[red]Invalid notebook:[/red] {path}")
        raise typer.Exit(code=2) from e
    if not isinstance(cells, list):
        console.print(f"[red]Invalid notebook:[/red] {path}")
        raise typer.Exit(code=2)

    index = len(cells) if cell is None else cell
    if index > len(cells):
        console.print(f"[red]--cell {index} is outside a notebook of {len(cells)} cells[/red]")
        raise typer.Exit(code=2)
    if prompt is None and index < len(cells):
        prompt = cell_source(cells[index])

    bundle = gather_context(
        cells,
        index,
        parse_prompt(prompt or ""),
        variable_lookup=known.variables.get,
        function_lookup=known.functions.get,
        max_chars=get_settings().max_context_chars,
    )
    return prompt, bundle


async def _ask(prompt: str, *, server: str, api_key: str | None, **kwargs) -> str:
    from ai_jup.client import PromptClient

    client = PromptClient(server, api_key=api_key)
    with console.status("[bold]Thinking...[/bold]"):
        return await client.ask(prompt, **kwargs)


@app.command()
def token(
    principal: Annotated[str, typer.Argument(help="Principal (user name) to issue the token for")],
) -> None:
    """Issue a JWT for the API, signed with JWT_SECRET."""
    from ai_jup.api.auth import create_jwt_token
    from ai_jup.exceptions import ConfigurationError

    try:
        console.print(create_jwt_token(principal), soft_wrap=True)
    except ConfigurationError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=1) from e


if __name__ == "__main__":
    app()
