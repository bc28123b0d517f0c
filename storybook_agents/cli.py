from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import Any

from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.pretty import Pretty
from rich.table import Table

from storybook_agents.config import load_config
from storybook_agents.config.loader import masked_env_snapshot
from storybook_agents.domain.models import Run
from storybook_agents.pipeline.page_count import check_page_count, count_paragraphs, count_words
from storybook_agents.pipeline.service import StorybookService
from storybook_agents.pipeline.styles import ART_STYLES
from storybook_agents.storage.db import init_db_service, shutdown_db_service
from storybook_agents.utils.logging import setup_logging

console = Console()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="storybook-agents")
    parser.add_argument("--config", type=Path, default=None, help="Path to custom config YAML")
    parser.add_argument("--profile", type=str, default=None, help="Config profile name")
    parser.add_argument("--data-dir", type=Path, default=None, help="Override data directory")
    parser.add_argument("--assets-dir", type=Path, default=None, help="Override generated image directory")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("config", help="Validate and print effective config")
    subparsers.add_parser("styles", help="List the art style catalogue")

    create_parser = subparsers.add_parser("create", help="Create a storybook from a story text file")
    create_parser.add_argument("--input", type=Path, required=True, help="Path to story text file")
    create_parser.add_argument("--style", type=str, default=None, help="Art style key (see `styles`)")
    create_parser.add_argument("--custom-style", type=str, default=None, help="Free-form style prompt")
    create_parser.add_argument("--pages", type=int, default=None, help="Page count (default: estimated)")
    create_parser.add_argument("--audience", type=str, default=None, help="Target audience")
    create_parser.add_argument("--owner", type=str, default=None, help="Owner id recorded with the draft")
    create_parser.add_argument("--no-cover", action="store_true", help="Skip cover generation")

    continue_parser = subparsers.add_parser("continue", help="Resume a saved draft and run it to completion")
    continue_parser.add_argument("--run-id", type=str, required=True, help="Run id of the draft")

    batch_parser = subparsers.add_parser("batch", help="Illustrate every remaining page of a draft")
    batch_parser.add_argument("--run-id", type=str, required=True, help="Run id of the draft")

    drafts_parser = subparsers.add_parser("drafts", help="List saved drafts")
    drafts_parser.add_argument("--owner", type=str, default=None, help="Only drafts of this owner")

    batches_parser = subparsers.add_parser("batches", help="List batch requests")
    batches_parser.add_argument("--owner", type=str, default=None, help="Only batches of this owner")
    batches_parser.add_argument("--run-id", type=str, default=None, help="Only batches of this run")

    estimate_parser = subparsers.add_parser("estimate", help="Estimate the page count of a story")
    estimate_parser.add_argument("--input", type=Path, required=True, help="Path to story text file")
    estimate_parser.add_argument("--pages", type=int, default=None, help="Page count to check")

    return parser


def _build_overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if args.data_dir:
        overrides["app"] = {"data_dir": str(args.data_dir)}
    if args.assets_dir:
        overrides["storage"] = {"assets_dir": str(args.assets_dir)}
    return overrides


def _print_config(config) -> None:
    console.print(Panel(Pretty(config.model_dump(mode="json")), title="Effective Config"))
    console.print(Panel(Pretty(masked_env_snapshot(config)), title="Env Snapshot"))


def _print_run(run_state: Run, title: str) -> None:
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("Metric")
    table.add_column("Value")
    table.add_row("Run ID", run_state.id)
    table.add_row("Title", run_state.title or "-")
    table.add_row("Phase / status", f"{run_state.phase.value} / {run_state.status.value}")
    table.add_row("Progress", f"{run_state.progress}%")
    table.add_row("Art style", run_state.art_style_decision.selected_style if run_state.art_style_decision else "-")
    table.add_row("Characters", str(len(run_state.characters)))
    table.add_row(
        "Pages illustrated",
        f"{sum(1 for page in run_state.pages if page.is_illustrated)}/{len(run_state.pages)}",
    )
    table.add_row("Cover", "yes" if run_state.cover and run_state.cover.is_illustrated else "no")
    if run_state.error:
        table.add_row("Error", run_state.error)
    console.print(table)


def _read_story(path: Path) -> str:
    return path.read_text(encoding="utf-8")


async def _main_async() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    config = load_config(
        config_path=args.config,
        profile=args.profile,
        overrides=_build_overrides(args),
    )

    setup_logging(config.app.log_level, log_dir=config.app.data_dir / "logs")
    logger.info("Loaded configuration")

    if args.command == "config":
        _print_config(config)
        return

    if args.command == "styles":
        table = Table(title="Art Styles", show_header=True, header_style="bold")
        table.add_column("Key")
        table.add_column("Name")
        table.add_column("Best for")
        for style in ART_STYLES.values():
            table.add_row(style.key, style.name, ", ".join(style.best_for))
        console.print(table)
        return

    if args.command == "estimate":
        story = _read_story(args.input)
        pipeline = config.pipeline
        check = check_page_count(
            story,
            args.pages or 0,
            min_pages=pipeline.min_pages,
            max_pages=pipeline.max_pages,
        )
        table = Table(title="Page Estimate", show_header=True, header_style="bold")
        table.add_column("Metric")
        table.add_column("Value")
        table.add_row("Words", str(count_words(story)))
        table.add_row("Paragraphs", str(count_paragraphs(story)))
        table.add_row("Recommended pages", str(check.recommended))
        if args.pages is not None:
            table.add_row("Requested pages", str(args.pages))
            table.add_row("Words per page", str(check.words_per_page))
            table.add_row("Warnings", "; ".join(check.warnings) or "-")
        console.print(table)
        return

    await init_db_service(config.storage.sqlite_path)
    service = StorybookService(config)

    try:
        if args.command == "create":
            run_state = await service.create_run(
                _read_story(args.input),
                owner_id=args.owner,
                target_audience=args.audience,
                page_count=args.pages,
                generate_cover=False if args.no_cover else None,
            )
            console.print(Panel(f"Run {run_state.id} created", title="Create"))
            run_state = await service.run_to_completion(
                run_state.id, style_key=args.style, custom_prompt=args.custom_style
            )
            _print_run(run_state, "Storybook Summary")
            return

        if args.command == "continue":
            run_state = await service.resume_draft(args.run_id)
            run_state = await service.run_to_completion(run_state.id)
            _print_run(run_state, "Storybook Summary")
            return

        if args.command == "batch":
            await service.resume_draft(args.run_id)
            handle = await service.create_batch(args.run_id)
            with console.status(f"Batch #{handle.batch_id} running"):
                outcome = await handle.wait()
            table = Table(title="Batch Summary", show_header=True, header_style="bold")
            table.add_column("Metric")
            table.add_column("Value")
            table.add_row("Batch ID", str(outcome.batch_id))
            table.add_row("Status", outcome.status.value)
            table.add_row("Units (done/total)", f"{outcome.completed_units}/{outcome.total_units}")
            table.add_row("Failed units", ", ".join(outcome.failed_units) or "-")
            console.print(table)
            _print_run(service.get_run(args.run_id), "Run")
            return

        if args.command == "drafts":
            table = Table(title="Drafts", show_header=True, header_style="bold")
            for column in ("Run ID", "Title", "Phase", "Status", "Step", "Progress"):
                table.add_column(column)
            for draft in await service.list_drafts(args.owner):
                table.add_row(
                    draft.run_id,
                    draft.title or "-",
                    draft.phase,
                    draft.status,
                    str(draft.current_step),
                    f"{draft.progress}%",
                )
            console.print(table)
            return

        if args.command == "batches":
            table = Table(title="Batch Requests", show_header=True, header_style="bold")
            for column in ("ID", "Run ID", "Title", "Status", "Units", "Error"):
                table.add_column(column)
            for row in await service.list_batches(owner_id=args.owner, run_id=args.run_id):
                table.add_row(
                    str(row.id),
                    row.run_id,
                    row.story_title or "-",
                    row.status,
                    f"{row.completed_units}/{row.total_units}",
                    row.error_message or "-",
                )
            console.print(table)
            return
    finally:
        await shutdown_db_service()


def main() -> None:
    asyncio.run(_main_async())


if __name__ == "__main__":
    main()
