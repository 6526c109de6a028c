"""
Main entry point for the transaction auto-categorizer.

Provides the command line: run a categorization pass, serve the API,
seed the merchant store and inspect statistics.
"""
import json
import sys
from pathlib import Path
from typing import Optional

# Add project root to Python path for module imports
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

import typer
from dotenv import load_dotenv

from core.config import get_settings
from core.exceptions import CategorizerException, ConfigurationError
from core.logger import setup_logger
from core.schema import MerchantRule
from services.factory import build_service, build_store, build_usage_tracker

# Load environment variables from .env file
_env_file = PROJECT_ROOT / ".env"
if _env_file.exists():
    load_dotenv(_env_file)

logger = setup_logger(__name__)

app = typer.Typer(help="Merchant-learning transaction auto-categorizer")

EXIT_CODE_FAIL = 1

EXAMPLE_MERCHANT_RULES = [
    MerchantRule(merchant_name="Sunoco", category_name="Gas & Transportation", confidence_score=95),
    MerchantRule(merchant_name="ExxonMobil", category_name="Gas & Transportation", confidence_score=95),
    MerchantRule(merchant_name="Instacart", category_name="Groceries", confidence_score=90),
    MerchantRule(merchant_name="Amazon", category_name="Stuff I Forgot to Budget For", confidence_score=70),
    MerchantRule(merchant_name="Claude.ai", category_name="Other Subscriptions", confidence_score=95),
    MerchantRule(merchant_name="River Financial", category_name="Brokerage", confidence_score=90),
    MerchantRule(merchant_name="Foresters Financial", category_name="Whole Life Insurance", confidence_score=85),
]


@app.command()
def run():
    """Categorize unapproved ledger transactions once."""
    try:
        summary = build_service().run()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e.message}")
        if e.details:
            logger.error(f"Details: {e.details}")
        raise typer.Exit(EXIT_CODE_FAIL)
    except Exception as e:
        logger.error(f"Daily categorization failed: {e}", exc_info=True)
        raise typer.Exit(EXIT_CODE_FAIL)

    typer.echo(json.dumps(summary.stats()))


@app.command()
def serve():
    """Start the HTTP API."""
    settings = get_settings()

    import uvicorn
    from app.api import app as api_app

    logger.info(f"Starting {settings.app_name}")
    logger.info(f"Classifier Model: {settings.classifier_model}")
    logger.info(f"Database: {settings.database_path}")
    logger.info(f"Starting server on {settings.host}:{settings.port}")

    uvicorn.run(
        api_app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower()
    )


@app.command()
def seed(
    rules_file: Optional[Path] = typer.Option(
        None,
        "--rules-file",
        "-r",
        help="JSON list of merchant rules to import instead of the built-in examples",
    ),
):
    """Initialize the merchant store and import merchant rules."""
    store = build_store(get_settings())

    if rules_file is not None:
        try:
            rules = json.loads(rules_file.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            typer.echo(f"Cannot read rules file {rules_file}: {e}", err=True)
            raise typer.Exit(EXIT_CODE_FAIL)
    else:
        rules = EXAMPLE_MERCHANT_RULES

    try:
        result = store.import_merchant_rules(rules)
    except CategorizerException as e:
        typer.echo(f"Import failed: {e.message}", err=True)
        raise typer.Exit(EXIT_CODE_FAIL)

    typer.echo(f"Imported {result['imported']} merchant rules ({result['errors']} errors)")


@app.command()
def stats():
    """Show merchant store statistics and provider usage."""
    settings = get_settings()
    store = build_store(settings)
    tracker = build_usage_tracker(settings)

    typer.echo(json.dumps({"store": store.get_stats(), "usage": tracker.snapshot()}, indent=2))


@app.command()
def backup(path: Path = typer.Argument(..., help="Destination file for the database copy")):
    """Back up the merchant store."""
    store = build_store(get_settings())
    store.backup_database(str(path))
    typer.echo(f"Backed up merchant store to {path}")


if __name__ == "__main__":
    app()
