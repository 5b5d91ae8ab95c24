from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

from ..core.errors import AllProvidersFailedError, QuizLLMError
from ..core.logging_utils import configure_logging
from ..core.provider_config import provider_config_loader, use_mock_providers
from ..core.quiz_generator import DEFAULT_QUIZ_COUNT, QuizGenerator
from ..core.types import QuizItem
from ..core.validator import validate_quiz

app = typer.Typer()


@app.callback()
def main(log_level: str = typer.Option(None, help="Log level (defaults to OJT_QUIZ_LOG_LEVEL or INFO)")) -> None:
    configure_logging(level=log_level)


@app.command("status")
def status() -> None:
    """Show which providers are configured and whether they answer."""
    orchestrator = provider_config_loader.build_orchestrator()
    if use_mock_providers():
        typer.echo("🧪 Mock mode (OJT_QUIZ_ENV=mock)")
    if not orchestrator.providers:
        typer.echo("❌ No providers configured. Set GEMINI_API_KEY, GROQ_API_KEY or run Ollama locally.")
        raise typer.Exit(1)

    typer.echo(f"🔗 Fallback chain: {' → '.join(orchestrator.fallback_chain)}")
    typer.echo(f"⭐ Active provider: {orchestrator.default_provider}")
    typer.echo("")
    statuses = asyncio.run(orchestrator.check_all_status())
    for name, st in statuses.items():
        if st.get("online"):
            latency = st.get("latency_ms")
            suffix = f" ({latency}ms)" if latency is not None else ""
            typer.echo(f"  ✅ {name} - {st.get('model')}{suffix}")
        else:
            typer.echo(f"  ❌ {name} - {st.get('error', 'offline')}")


@app.command("generate")
def generate(
    text_file: Optional[Path] = typer.Option(None, "--text-file", help="Plain text source"),
    url: Optional[str] = typer.Option(None, "--url", help="Web page source"),
    file: Optional[Path] = typer.Option(None, "--file", help="PDF or image, uploaded to Gemini"),
    title: str = typer.Option("", "--title"),
    count: int = typer.Option(DEFAULT_QUIZ_COUNT, "--count", min=1, max=50),
    provider: Optional[str] = typer.Option(None, "--provider", help="Override the active provider"),
    no_fallback: bool = typer.Option(False, "--no-fallback", help="Fail instead of walking the chain"),
    out: Optional[Path] = typer.Option(None, "--out", help="Write the quiz JSON here"),
) -> None:
    """Generate a quiz set from exactly one source."""
    sources = [s for s in (text_file, url, file) if s]
    if len(sources) != 1:
        typer.echo("❌ Pass exactly one of --text-file, --url or --file")
        raise typer.Exit(2)

    generator = QuizGenerator(
        provider_config_loader.build_orchestrator(),
        ingestor=provider_config_loader.build_ingestor(),
    )
    use_fallback = not no_fallback

    async def _run():
        if text_file:
            content = text_file.read_text(encoding="utf-8")
            return await generator.generate_from_text(
                content, title or text_file.stem, count, provider=provider, use_fallback=use_fallback
            )
        if url:
            return await generator.generate_from_url(
                url, title or None, count, provider=provider, use_fallback=use_fallback
            )
        return await generator.generate_from_file(
            file, count, title=title or None, provider=provider, use_fallback=use_fallback
        )

    try:
        outcome = asyncio.run(_run())
    except AllProvidersFailedError as e:
        typer.echo("❌ All providers failed:")
        for name, reason in e.attempts:
            typer.echo(f"  • {name}: {reason}")
        raise typer.Exit(1)
    except QuizLLMError as e:
        typer.echo(f"❌ {e}")
        raise typer.Exit(1)

    via = f"{outcome.provider} (fallback)" if outcome.fallback_used else outcome.provider
    typer.echo(f"🤖 Generated via {via}")
    if outcome.parse_failed:
        typer.echo("⚠️  Response was not valid quiz JSON")
    report = outcome.validation
    icon = "✅" if report.valid else "⚠️ "
    typer.echo(f"{icon} {report.stats.get('valid_count', 0)}/{report.stats.get('total', 0)} items pass validation")
    for issue in report.issues:
        where = f"#{issue.index + 1} " if issue.index is not None else ""
        typer.echo(f"  • {where}{issue.type}: {issue.message}")

    payload = json.dumps(outcome.to_dict(), ensure_ascii=False, indent=2)
    if out:
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(payload, encoding="utf-8")
        typer.echo(f"📁 Quiz written to {out}")
    else:
        typer.echo(payload)


@app.command("validate")
def validate(quiz: Path) -> None:
    """Validate a quiz JSON file (a list or an object with a "quiz" key)."""
    try:
        data = json.loads(quiz.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        typer.echo(f"❌ Could not read {quiz}: {e}")
        raise typer.Exit(1)
    raw_items = data.get("quiz", []) if isinstance(data, dict) else data
    if not isinstance(raw_items, list):
        typer.echo(f"❌ {quiz} does not hold a list of quiz items")
        raise typer.Exit(1)
    malformed = [i + 1 for i, raw in enumerate(raw_items) if not isinstance(raw, dict)]
    if malformed:
        typer.echo(f"❌ Item(s) {', '.join(f'#{n}' for n in malformed)} are not quiz objects")
        raise typer.Exit(1)
    items = [QuizItem.from_dict(raw, i) for i, raw in enumerate(raw_items)]
    report = validate_quiz(items)
    for issue in report.issues:
        where = f"#{issue.index + 1} " if issue.index is not None else ""
        typer.echo(f"  • {where}{issue.type}: {issue.message}")
    if report.valid:
        typer.echo(f"✅ {len(items)} item(s) valid")
        return
    typer.echo(f"❌ {len(report.issues)} issue(s) found")
    raise typer.Exit(1)


if __name__ == "__main__":
    app()
