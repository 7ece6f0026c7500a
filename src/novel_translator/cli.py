"""Main CLI entry point for novel-translator."""

import asyncio
import signal
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import click
import structlog
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn
from rich.table import Table

from novel_translator import __version__
from novel_translator.config import AppConfig, get_config, set_config

logger = structlog.get_logger()
console = Console()


def setup_config(env_file: Optional[Path] = None, data_dir: Optional[Path] = None) -> None:
    """Load configuration from environment, with CLI overrides."""
    config = AppConfig.load(env_file)
    if data_dir is not None:
        config.data_dir = data_dir
    set_config(config)


def _open_store():
    from novel_translator.storage import JsonLibraryStore

    return JsonLibraryStore(get_config().data_dir)


def _capabilities(ctx: click.Context):
    from novel_translator.services.pipeline_service import default_capabilities

    factory = ctx.obj.get("capabilities_factory") or default_capabilities
    return factory()


@contextmanager
def _handle_errors() -> Iterator[None]:
    """Turn store and validation errors into a log line and exit code 1."""
    from novel_translator.storage import RecordNotFoundError

    try:
        yield
    except RecordNotFoundError as e:
        logger.error("not_found", detail=str(e))
        raise SystemExit(1)
    except ValueError as e:
        logger.error("invalid_request", detail=str(e))
        raise SystemExit(1)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--quiet", "-q", is_flag=True, help="Minimal output")
@click.option("--log-file", type=click.Path(), help="Write JSON logs to file")
@click.option("--env-file", type=click.Path(exists=True), help="Path to .env file")
@click.option("--data-dir", type=click.Path(file_okay=False), help="Library directory (overrides DATA_DIR)")
@click.version_option(version=__version__)
@click.pass_context
def cli(
    ctx,
    verbose: bool,
    quiet: bool,
    log_file: Optional[str],
    env_file: Optional[str],
    data_dir: Optional[str],
) -> None:
    """Glossary-consistent novel translation.

    Import chapters, build a glossary with a deep scan, then batch-translate
    every chapter with the glossary enforced in each request.
    """
    from novel_translator.log import configure_logging

    ctx.ensure_object(dict)
    ctx.obj["quiet"] = quiet

    setup_config(
        Path(env_file) if env_file else None,
        Path(data_dir) if data_dir else None,
    )

    verbosity = 1 if verbose else (-1 if quiet else 0)
    configure_logging(
        verbosity=verbosity,
        log_file=Path(log_file) if log_file else None,
        default_level=get_config().log_level,
    )


# =============================================================================
# Project Commands
# =============================================================================


@cli.command()
@click.argument("project_id")
@click.option("--title", help="Project title (defaults to the id)")
@click.option("--author", default="", help="Author name")
@click.option("--description", default="", help="Synopsis")
def init(project_id: str, title: Optional[str], author: str, description: str) -> None:
    """Create a new project."""
    from novel_translator.services.project_service import ProjectService

    with _handle_errors():
        project = ProjectService(_open_store()).create_project(
            title or project_id, project_id=project_id, author=author, description=description
        )
    click.echo(f"Created project '{project.id}' in {get_config().data_dir}")


@cli.command("list")
def list_projects() -> None:
    """List projects with translation progress."""
    from novel_translator.services.project_service import ProjectService

    projects = ProjectService(_open_store()).list_projects()
    if not projects:
        click.echo("No projects yet. Create one with 'novel-translator init'.")
        return

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("Project", style="cyan")
    table.add_column("Title")
    table.add_column("Translated", justify="right", style="green")
    table.add_column("Terms", justify="right", style="magenta")
    for p in projects:
        table.add_row(p["id"], p["title"], f"{p['translated']}/{p['documents']}", str(p["terms"]))
    console.print(table)


@cli.command("import")
@click.argument("project_id")
@click.argument("paths", nargs=-1, required=True, type=click.Path(exists=True))
def import_documents(project_id: str, paths: tuple[str, ...]) -> None:
    """Import .txt files (or folders of them) as documents.

    Files are ordered by name, numbers compared numerically (ch2 before ch10).
    """
    from novel_translator.services.project_service import ProjectService

    with _handle_errors():
        added = ProjectService(_open_store()).import_paths(project_id, [Path(p) for p in paths])
    click.echo(f"Imported {len(added)} documents into '{project_id}'")


@cli.command()
@click.argument("project_id")
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Output text file")
def export(project_id: str, output: Optional[str]) -> None:
    """Export all documents as one text file."""
    from novel_translator.services.project_service import ProjectService

    service = ProjectService(_open_store())
    with _handle_errors():
        text = service.export_text(project_id)
        target = Path(output) if output else Path(service.export_filename(project_id))
    target.write_text(text, encoding="utf-8")
    logger.info("export_complete", path=str(target))


# =============================================================================
# Scan / Translate Commands
# =============================================================================


@cli.command()
@click.argument("project_id")
@click.pass_context
def scan(ctx, project_id: str) -> None:
    """Deep scan: extract and translate new glossary terms from a sample."""
    from novel_translator.pipeline.extraction import DeepScan, ScanProgress, ScanStatus

    store = _open_store()
    with _handle_errors():
        store.get_project(project_id)
    caps = _capabilities(ctx)
    documents = store.list_documents(project_id)
    if not documents:
        logger.error("no_documents", project=project_id)
        raise SystemExit(1)

    def on_progress(progress: ScanProgress) -> None:
        if not ctx.obj.get("quiet"):
            console.print(f"[dim]scan:[/dim] {progress.label}")

    deep_scan = DeepScan(caps.extractor, caps.term_translator, store, config=get_config().scan)
    summary = asyncio.run(deep_scan.run(project_id, documents, on_progress=on_progress))

    if summary.status == ScanStatus.FAILED:
        logger.error("scan_failed", error=summary.error, inserted=summary.inserted)
        raise SystemExit(1)
    click.echo(
        f"Added {summary.inserted} new terms "
        f"({summary.candidates} candidates, {summary.fallbacks} kept untranslated)"
    )


@cli.command()
@click.argument("project_id")
@click.pass_context
def translate(ctx, project_id: str) -> None:
    """Translate every untranslated document, in order.

    Press Ctrl+C once to stop after the current document.
    """
    from novel_translator.pipeline.batch import BatchProgress, BatchScheduler, BatchState, ItemResult
    from novel_translator.translator.engine import GlossaryTranslator

    config = get_config()
    store = _open_store()
    with _handle_errors():
        store.get_project(project_id)
    caps = _capabilities(ctx)
    scheduler = BatchScheduler(
        GlossaryTranslator(caps.document_translator, config=config.batch),
        store,
        store,
        config=config.batch,
    )

    progress_bar = Progress(
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
        disable=ctx.obj.get("quiet", False),
    )

    async def run():
        task_id = progress_bar.add_task("Translating", total=None)

        def on_before_item(progress: BatchProgress) -> None:
            progress_bar.update(task_id, total=progress.total, description=progress.label)

        def on_after_item(result: ItemResult) -> None:
            progress_bar.advance(task_id)

        batch = scheduler.start(
            project_id, on_before_item=on_before_item, on_after_item=on_after_item
        )
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, batch.stop)
        except (NotImplementedError, RuntimeError):
            pass  # Windows or not in the main thread: Ctrl+C stays a hard interrupt
        try:
            with progress_bar:
                return await batch.wait()
        finally:
            try:
                loop.remove_signal_handler(signal.SIGINT)
            except (NotImplementedError, RuntimeError):
                pass

    with _handle_errors():
        summary = asyncio.run(run())

    if summary.total == 0:
        click.echo("Nothing to translate.")
        return
    for error in summary.errors:
        logger.warning("document_failed", detail=error)
    click.echo(
        f"{summary.state.value}: {summary.succeeded} translated, "
        f"{summary.failed} failed, {summary.remaining} remaining"
    )
    if summary.state == BatchState.STOPPED:
        click.echo("Run the same command again to continue.")
    if summary.failed:
        raise SystemExit(1)


@cli.command()
@click.argument("project_id")
@click.argument("document_id", type=int)
@click.pass_context
def retranslate(ctx, project_id: str, document_id: int) -> None:
    """Translate one document again with the current glossary.

    The stored translation is kept if the new one fails.
    """
    from novel_translator.services.project_service import ProjectService
    from novel_translator.translator.engine import GlossaryTranslator

    def translator_factory() -> GlossaryTranslator:
        return GlossaryTranslator(_capabilities(ctx).document_translator, config=get_config().batch)

    # The document is looked up before the factory is called
    service = ProjectService(_open_store(), translator_factory=translator_factory)
    with _handle_errors():
        outcome = asyncio.run(service.translate_document(project_id, document_id))
    if not outcome.ok:
        logger.error("retranslate_failed", document=document_id, error=outcome.error)
        raise SystemExit(1)
    click.echo(f"Translated document {document_id} ({len(outcome.text or '')} chars)")


@cli.command()
@click.argument("project_id")
@click.argument("document_id", type=int)
@click.option("--text", help="New translated text")
@click.option(
    "--file", "-f", "text_file", type=click.Path(exists=True, dir_okay=False), help="Read the text from a file"
)
def edit(project_id: str, document_id: int, text: Optional[str], text_file: Optional[str]) -> None:
    """Replace a document's translation with edited text."""
    from novel_translator.services.project_service import ProjectService

    if (text is None) == (text_file is None):
        raise click.UsageError("Give exactly one of --text or --file")
    if text_file is not None:
        text = Path(text_file).read_text(encoding="utf-8")

    with _handle_errors():
        ProjectService(_open_store()).update_translation(project_id, document_id, text)
    click.echo(f"Saved translation for document {document_id}")


# =============================================================================
# Glossary Commands
# =============================================================================


@cli.group()
def glossary():
    """Glossary management commands."""
    pass


def _glossary_service():
    from novel_translator.services.glossary_service import GlossaryService

    return GlossaryService(_open_store())


def _require_term(service, project_id: str, original: str):
    term = service.find_term(project_id, original)
    if term is None:
        logger.error("term_not_found", project=project_id, term=original)
        raise SystemExit(1)
    return term


@glossary.command("list")
@click.argument("project_id")
@click.option("--query", "-q", help="Filter by original or translation")
@click.option("--limit", default=50, help="Maximum entries to show")
def glossary_list(project_id: str, query: Optional[str], limit: int) -> None:
    """Show glossary entries."""
    with _handle_errors():
        terms = _glossary_service().list_terms(project_id, query)

    click.echo(f"Glossary ({len(terms)} entries):")
    for term in terms[:limit]:
        lock = " [locked]" if term.is_locked else ""
        click.echo(f"  {term.original} → {term.translation} [{term.category.value}]{lock}")
    if len(terms) > limit:
        click.echo(f"  ... and {len(terms) - limit} more")


@glossary.command("add")
@click.argument("project_id")
@click.argument("original")
@click.argument("translation")
@click.option("--category", default="Other", help="Person, Location, Skill, Item, Organization, Other")
@click.option("--locked/--unlocked", default=False, help="Protect the term from automated changes")
def glossary_add(project_id: str, original: str, translation: str, category: str, locked: bool) -> None:
    """Add a term."""
    with _handle_errors():
        term = _glossary_service().add_term(project_id, original, translation, category, is_locked=locked)
    click.echo(f"Added {term.original} → {term.translation}")


@glossary.command("remove")
@click.argument("project_id")
@click.argument("original")
def glossary_remove(project_id: str, original: str) -> None:
    """Remove a term by its original text."""
    service = _glossary_service()
    with _handle_errors():
        term = _require_term(service, project_id, original)
        service.remove_term(project_id, term.id)
    click.echo(f"Removed {term.original}")


@glossary.command("lock")
@click.argument("project_id")
@click.argument("original")
def glossary_lock(project_id: str, original: str) -> None:
    """Lock a term."""
    service = _glossary_service()
    with _handle_errors():
        service.set_locked(project_id, _require_term(service, project_id, original).id, True)
    click.echo(f"Locked {original}")


@glossary.command("unlock")
@click.argument("project_id")
@click.argument("original")
def glossary_unlock(project_id: str, original: str) -> None:
    """Unlock a term."""
    service = _glossary_service()
    with _handle_errors():
        service.set_locked(project_id, _require_term(service, project_id, original).id, False)
    click.echo(f"Unlocked {original}")


@glossary.command("export")
@click.argument("project_id")
@click.option("--output", "-o", required=True, type=click.Path(), help="Output CSV path")
def glossary_export(project_id: str, output: str) -> None:
    """Export the glossary to CSV."""
    with _handle_errors():
        csv_text = _glossary_service().export_csv(project_id)
    Path(output).write_text(csv_text, encoding="utf-8")
    click.echo(f"Exported glossary to {output}")


@glossary.command("import")
@click.argument("project_id")
@click.option(
    "--input",
    "-i",
    "input_file",
    required=True,
    type=click.Path(exists=True),
    help="Input CSV path",
)
def glossary_import(project_id: str, input_file: str) -> None:
    """Import terms from CSV; existing originals are updated."""
    from novel_translator.utils.encoding import decode_content

    with _handle_errors():
        counts = _glossary_service().import_csv(project_id, decode_content(Path(input_file).read_bytes()))
    click.echo(f"Imported {counts['imported']} entries, updated {counts['updated']}")


# =============================================================================
# Server Command
# =============================================================================


@cli.command()
@click.option("--port", default=8000, type=int, help="API server port")
@click.option("--host", default="127.0.0.1", help="API server host")
@click.pass_context
def serve(ctx, port: int, host: str) -> None:
    """Run the HTTP/WebSocket API server."""
    import uvicorn

    from novel_translator.api.server import create_app
    from novel_translator.config import log_llm_config_summary

    config = get_config()
    if not ctx.obj.get("quiet"):
        log_llm_config_summary()
    app = create_app(
        data_dir=config.data_dir.resolve(),
        capabilities_factory=ctx.obj.get("capabilities_factory"),
        config=config,
    )

    click.echo(f"API: http://{host}:{port}/api/docs")
    click.echo("Press Ctrl+C to stop\n")
    uvicorn.run(app, host=host, port=port, log_level="info", lifespan="on")


if __name__ == "__main__":
    cli()
