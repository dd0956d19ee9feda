"""CLI entrypoint for layer-bridge."""

import logging
from collections.abc import Callable
from pathlib import Path

import rich_click as click

from layer_bridge import __version__
from layer_bridge.controllers import (
    AnalyzeCommand,
    BridgeCliController,
    CommandResult,
    ConvertCommand,
    ExtractCommand,
    GenerateCommand,
    RunCommand,
)
from layer_bridge.models import LayerType, TaskKind
from layer_bridge.workflow.builders import (
    AnalysisType,
    ExtractionMode,
    ExtractionType,
    GenerationType,
)

click.rich_click.USE_MARKDOWN = True
CONTROLLER = BridgeCliController()
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_FILE_ARGUMENT = click.Path(exists=True, dir_okay=False, path_type=Path)


def configure_logging(level: int) -> None:
    """Install a single stream handler on the package logger."""

    package_logger = logging.getLogger("layer_bridge")
    if not package_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        package_logger.addHandler(handler)
    package_logger.setLevel(level)


@click.group()
@click.version_option(version=__version__, prog_name="layer-bridge")
@click.option("-v", "--verbose", count=True, help="Log progress (-v) or debug detail (-vv).")
def layer_bridge(verbose: int) -> None:
    """Route AI tasks and workflows across Claude, Gemini and AI Studio."""

    if verbose:
        configure_logging(logging.DEBUG if verbose > 1 else logging.INFO)


@layer_bridge.command("run")
@click.argument("prompt")
@click.option(
    "--layer",
    type=click.Choice([layer.value for layer in LayerType]),
    default=None,
    help="Use this layer only (no fallback).",
)
@click.option("--file", "files", multiple=True, type=_FILE_ARGUMENT, help="Attach a file.")
@click.option(
    "--kind",
    type=click.Choice([kind.value for kind in TaskKind]),
    default=TaskKind.TEXT_PROMPT.value,
    show_default=True,
    help="Task kind.",
)
@click.option("--search", is_flag=True, help="Ask for grounded search.")
@click.option("--no-cache", is_flag=True, help="Bypass the result cache.")
def run(  # noqa: PLR0913
    prompt: str,
    layer: str | None,
    files: tuple[Path, ...],
    kind: str,
    search: bool,
    no_cache: bool,
) -> None:
    """Execute a single task on the best available layer."""

    _finish(
        _call(
            lambda: CONTROLLER.run(
                RunCommand(
                    prompt=prompt,
                    kind=kind,
                    layer=layer,
                    files=files,
                    search=search,
                    use_cache=not no_cache,
                ),
            ),
        ),
    )


@layer_bridge.command("status")
def status() -> None:
    """Show layer availability and credential status."""

    _finish(_call(CONTROLLER.status))


@layer_bridge.command("analyze")
@click.argument("files", nargs=-1, required=True, type=_FILE_ARGUMENT)
@click.option("--prompt", required=True, help="What to analyze.")
@click.option(
    "--type",
    "analysis_type",
    type=click.Choice([value.value for value in AnalysisType]),
    default=AnalysisType.COMPREHENSIVE.value,
    show_default=True,
    help="Analysis type.",
)
def analyze(files: tuple[Path, ...], prompt: str, analysis_type: str) -> None:
    """Run an analysis workflow over one or more files."""

    _finish(
        _call(
            lambda: CONTROLLER.analyze(
                AnalyzeCommand(files=files, prompt=prompt, analysis_type=analysis_type),
            ),
        ),
    )


@layer_bridge.command("generate")
@click.option(
    "--type",
    "generation_type",
    type=click.Choice([value.value for value in GenerationType]),
    required=True,
    help="Kind of content to generate.",
)
@click.option("--requirements", required=True, help="What the content must cover.")
@click.option("--format", "output_format", default=None, help="Output format, e.g. markdown.")
@click.option("--file", "files", multiple=True, type=_FILE_ARGUMENT, help="Source file.")
def generate(
    generation_type: str,
    requirements: str,
    output_format: str | None,
    files: tuple[Path, ...],
) -> None:
    """Plan, write and review content with a generation workflow."""

    _finish(
        _call(
            lambda: CONTROLLER.generate(
                GenerateCommand(
                    generation_type=generation_type,
                    requirements=requirements,
                    output_format=output_format,
                    files=files,
                ),
            ),
        ),
    )


@layer_bridge.command("convert")
@click.argument("files", nargs=-1, required=True, type=_FILE_ARGUMENT)
@click.option("--to", "target_format", required=True, help="Target extension, e.g. pdf.")
def convert(files: tuple[Path, ...], target_format: str) -> None:
    """Convert files to another format."""

    _finish(
        _call(
            lambda: CONTROLLER.convert(ConvertCommand(files=files, target_format=target_format)),
        ),
    )


@layer_bridge.command("extract")
@click.argument("files", nargs=-1, required=True, type=_FILE_ARGUMENT)
@click.option(
    "--type",
    "extraction_types",
    multiple=True,
    type=click.Choice([value.value for value in ExtractionType]),
    help="Content to extract; repeat for several. Defaults to text.",
)
@click.option(
    "--mode",
    type=click.Choice([value.value for value in ExtractionMode]),
    default=None,
    help="Run a focused extraction pipeline instead.",
)
@click.option("--target", "targets", multiple=True, help="Focused target, e.g. persons.")
@click.option("--format", "output_format", default="json", show_default=True)
def extract(
    files: tuple[Path, ...],
    extraction_types: tuple[str, ...],
    mode: str | None,
    targets: tuple[str, ...],
    output_format: str,
) -> None:
    """Extract text, data, entities or metadata from files."""

    _finish(
        _call(
            lambda: CONTROLLER.extract(
                ExtractCommand(
                    files=files,
                    extraction_types=extraction_types,
                    mode=mode,
                    targets=targets,
                    output_format=output_format,
                ),
            ),
        ),
    )


def _call(action: Callable[[], CommandResult]) -> CommandResult:
    try:
        return action()
    except ValueError as error:
        raise click.ClickException(f"Configuration error: {error}") from error


def _finish(result: CommandResult) -> None:
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Command failed.")


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    layer_bridge()
