"""Command line interface for ragchat."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List

import typer
from rich.console import Console
from rich.progress import Progress
from rich.table import Table

from ragchat.config import AppConfig
from ragchat.errors import RagError
from ragchat.llm.ollama import OllamaClient
from ragchat.service import RagService
from ragchat.utils.files import iter_document_paths
from ragchat.web.app import app as web_app


console = Console()
app = typer.Typer(help="ragchat - local document retrieval for chat prompts")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _build_config(db: Path | None, model: str | None = None, backend: str | None = None) -> AppConfig:
    defaults = AppConfig()
    return AppConfig(
        db_path=db if db is not None else defaults.db_path,
        model_name=model or defaults.model_name,
        embedding_backend=backend or defaults.embedding_backend,
    )


def _open_existing(config: AppConfig) -> RagService:
    resolved_db = config.resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        raise typer.BadParameter(f"Database not found: {resolved_db}")
    return RagService.from_config(config, Path.cwd())


def _format_size(size: int) -> str:
    value = float(size)
    for unit in ("Bytes", "KB", "MB"):
        if value < 1024:
            return f"{value:.0f} {unit}" if unit == "Bytes" else f"{value:.2f} {unit}"
        value /= 1024
    return f"{value:.2f} GB"


@app.command()
def ingest(
    inputs: List[Path] = typer.Argument(
        ..., help="Files or directories to ingest.", resolve_path=True
    ),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    model: str = typer.Option(AppConfig().model_name, help="Sentence-transformer model name"),
    backend: str = typer.Option(None, help="Embedding backend: sentence-transformers or hashed"),
    chunk_chars: int = typer.Option(AppConfig().chunk_chars, help="Chunk size in characters"),
    overlap: int = typer.Option(AppConfig().overlap, help="Chunk overlap"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Chunk, embed and store one or more documents."""
    _setup_logging(verbose)
    config = _build_config(db, model, backend)
    config.chunk_chars = chunk_chars
    config.overlap = overlap

    paths = list(iter_document_paths(inputs))
    if not paths:
        console.print("[yellow]No supported files found.[/yellow]")
        return

    service = RagService.from_config(config, Path.cwd())
    console.print(f"Ingesting into [bold]{config.resolve_db_path(Path.cwd())}[/bold]...")
    ingested = failed = 0
    try:
        with Progress(console=console, transient=True) as progress:
            for path in paths:
                task = progress.add_task(path.name, total=1.0)

                def report(fraction: float, task_id=task) -> None:
                    progress.update(task_id, completed=fraction)

                try:
                    document = asyncio.run(service.indexer.ingest_path(path, report))
                except RagError as exc:
                    failed += 1
                    console.print(f"[red]Failed to process \"{path.name}\": {exc.message}[/red]")
                    continue
                ingested += 1
                console.print(
                    f"Processed \"{document.name}\" with {document.chunk_count} chunks"
                )
    finally:
        service.close()

    console.print(f"Ingested: {ingested}, failed: {failed}")


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    model: str = typer.Option(AppConfig().model_name, help="Sentence-transformer model name"),
    backend: str = typer.Option(None, help="Embedding backend: sentence-transformers or hashed"),
    top_k: int = typer.Option(AppConfig().max_results, help="Number of results to display"),
    threshold: float = typer.Option(
        AppConfig().similarity_threshold, help="Minimum similarity (0-1)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Show the chunks most similar to a query."""
    _setup_logging(verbose)
    service = _open_existing(_build_config(db, model, backend))
    try:
        results = asyncio.run(service.search(query, top_k, threshold))
        names = {doc.id: doc.name for doc in service.list_documents()}
    finally:
        service.close()

    if not results:
        console.print("[yellow]No matches found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Rank")
    table.add_column("Score")
    table.add_column("Document")
    table.add_column("Span")
    table.add_column("Snippet")

    for rank, result in enumerate(results, start=1):
        chunk = result.chunk
        snippet = chunk.content.replace("\n", " ")
        table.add_row(
            str(rank),
            f"{result.similarity:.4f}",
            names.get(chunk.document_id, chunk.document_id),
            f"{chunk.start_index}-{chunk.end_index}",
            snippet[:180],
        )

    console.print(table)


@app.command()
def context(
    query: str = typer.Argument(..., help="Query text"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    model: str = typer.Option(AppConfig().model_name, help="Sentence-transformer model name"),
    backend: str = typer.Option(None, help="Embedding backend: sentence-transformers or hashed"),
    max_results: int = typer.Option(AppConfig().max_results, help="Maximum chunks to include"),
    threshold: float = typer.Option(
        AppConfig().similarity_threshold, help="Minimum similarity (0-1)"
    ),
) -> None:
    """Print the context block that would be prepended to a prompt."""
    service = _open_existing(_build_config(db, model, backend))
    try:
        text = asyncio.run(service.retrieve_context(query, max_results, threshold))
    finally:
        service.close()

    if not text:
        console.print("[yellow]No relevant documents found.[/yellow]")
        return
    console.print(text, markup=False, highlight=False)


@app.command(name="list")
def list_documents(
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """List stored documents."""
    config = _build_config(db)
    if not config.resolve_db_path(Path.cwd()).exists():
        console.print("[yellow]No documents uploaded yet.[/yellow]")
        return

    service = RagService.from_config(config, Path.cwd())
    try:
        documents = service.list_documents()
    finally:
        service.close()

    if not documents:
        console.print("[yellow]No documents uploaded yet.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Size")
    table.add_column("Chunks")
    table.add_column("Uploaded")
    for doc in documents:
        table.add_row(
            doc.id,
            doc.name,
            doc.content_type,
            _format_size(doc.size),
            str(doc.chunk_count),
            doc.uploaded_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@app.command()
def delete(
    doc_id: str = typer.Argument(..., help="Document ID"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Delete a document and all of its chunks."""
    service = _open_existing(_build_config(db))
    try:
        deleted = service.delete_document(doc_id)
    finally:
        service.close()

    if not deleted:
        console.print(f"[red]Document {doc_id} not found.[/red]")
        raise typer.Exit(code=1)
    console.print(f"Deleted {doc_id}.")


@app.command()
def clear(
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Remove every document and chunk."""
    config = _build_config(db)
    if not config.resolve_db_path(Path.cwd()).exists():
        console.print("[yellow]Database not found, nothing to clear.[/yellow]")
        return
    if not yes:
        typer.confirm("Delete all documents?", abort=True)

    service = RagService.from_config(config, Path.cwd())
    try:
        service.clear_all_documents()
    finally:
        service.close()
    console.print("Cleared all documents.")


@app.command()
def models(
    url: str = typer.Option(None, "--url", help="Model server URL (defaults to $OLLAMA_URL)"),
) -> None:
    """List the models available on the model server."""
    client = OllamaClient(url or AppConfig().ollama_url)
    try:
        names = asyncio.run(client.list_models())
    except RagError as exc:
        console.print(f"[red]{exc.message}[/red]")
        raise typer.Exit(code=1)

    if not names:
        console.print("[yellow]No models available.[/yellow]")
        return
    for name in names:
        console.print(name)


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
) -> None:
    """Start the HTTP API."""
    try:
        import uvicorn
    except ImportError as exc:  # pragma: no cover
        raise typer.BadParameter("uvicorn is not installed.") from exc

    console.print(f"Starting API on http://{host}:{port}")
    uvicorn.run(
        web_app,
        host=host,
        port=port,
        reload=False,
        log_level="info",
    )
