import argparse
import asyncio
import csv
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from playwright.async_api import async_playwright

# It's important to set up logging before other imports that might use it.
from core.logger import setup_logging
from config import config, AppConfig

setup_logging()
logger = logging.getLogger(__name__)


def validate_bot_mode(bot_mode: str, valid_modes: list[str]) -> None:
    """
    Validates that the provided BOT_MODE is in the list of valid modes.

    Raises:
        ValueError: If bot_mode is not in valid_modes
    """
    if bot_mode not in valid_modes:
        raise ValueError(
            f"Invalid BOT_MODE: '{bot_mode}'. "
            f"Valid modes are: {', '.join(valid_modes)}"
        )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Detect web forms and fill them from batches of data rows."
    )
    parser.add_argument("--url", help="Page to inspect in detect mode")
    parser.add_argument("--csv", type=Path, help="CSV file with one data row per line (batch mode)")
    parser.add_argument("--profile", default="default", help="Profile the batch runs under")
    parser.add_argument("--batch-id", help="Batch to retry; the latest failed batch when omitted")
    parser.add_argument(
        "--rules",
        type=Path,
        default=None,
        help="Mapping rules file (YAML or JSON); overrides detection.rules_path",
    )
    return parser.parse_args(argv)


def read_csv_rows(csv_path: Path) -> List[dict]:
    """Reads a CSV file into a list of dicts keyed by the header row."""
    with open(csv_path, "r", encoding="utf-8", newline="") as f:
        rows = [dict(row) for row in csv.DictReader(f)]
    logger.info(f"Read {len(rows)} rows from {csv_path}")
    return rows


def load_rules(rules_path: Optional[Path], app_config: AppConfig):
    from detection import DEFAULT_MAPPING_RULES, load_mapping_rules

    rules = load_mapping_rules(rules_path or app_config.detection.rules_path)
    if not rules:
        logger.info("Using built-in mapping rules.")
        return list(DEFAULT_MAPPING_RULES)
    return rules


async def run_detect(args: argparse.Namespace, app_config: AppConfig, browser_context, rules) -> None:
    """Prints the forms detected on a page together with the suggested mappings."""
    from automation import detect_page_forms
    from detection import suggest_mappings

    url = args.url or app_config.automation.default_url
    if not url:
        raise ValueError("detect mode needs --url or AUTOMATION__DEFAULT_URL")

    page = await browser_context.new_page()
    try:
        await page.goto(
            url,
            wait_until="domcontentloaded",
            timeout=app_config.automation.navigation_timeout_ms,
        )
        forms = await detect_page_forms(page, app_config)
        report = []
        for form in forms:
            entry = form.to_dict()
            entry["mappings"] = {
                s.field.key: s.mapping for s in suggest_mappings(form.fields, rules)
            }
            report.append(entry)
        logger.info(f"Detected {len(forms)} form(s) on {url}")
        print(json.dumps(report, indent=2, ensure_ascii=False))
    finally:
        await page.close()


async def run_batch(args: argparse.Namespace, processor) -> None:
    """Schedules and executes one batch built from a CSV file."""
    if args.csv is None:
        raise ValueError("batch mode needs --csv")
    rows = read_csv_rows(args.csv)

    batch_id = await processor.schedule_batch_run(args.profile, {"source": str(args.csv)})
    result = await processor.execute_batch(args.profile, rows)
    batch = processor.get_batch(batch_id)
    logger.info(
        f"Batch {batch_id} finished with status '{batch.status.value}': "
        f"{batch.summary.succeeded} succeeded, {batch.summary.failed} failed"
    )
    for failure in result.failures:
        logger.warning(f"Row failed: {failure.error}")
    print(batch.summary.model_dump_json(indent=2))


async def run_retry(args: argparse.Namespace, processor, retry_engine) -> None:
    """Retries the failed rows of a stored batch."""
    from batch import BatchStatus

    batch_id = args.batch_id
    if batch_id is None:
        failed = sorted(
            processor.list_batches(profile=args.profile, status=BatchStatus.FAILED),
            key=lambda b: b.updated_at,
        )
        if not failed:
            logger.info(f"No failed batch to retry for profile '{args.profile}'.")
            return
        batch_id = failed[-1].id

    result = await processor.retry_batch_failures(batch_id, retry_engine)
    logger.info(
        f"Retry of batch {batch_id}: {len(result.succeeded)} succeeded, "
        f"{len(result.failures)} still failing"
    )
    for failure in result.failures:
        logger.warning(f"Row still failing after attempt {failure.attempt}: {failure.error}")


# --- Main Orchestrator ---
async def main(argv: Optional[List[str]] = None):
    """Main orchestrator for form detection and batch runs."""
    from automation import FormSubmitter
    from batch import BatchProcessor, BatchRepository, RetryEngine, create_batch_store

    args = parse_args(argv)

    try:
        validate_bot_mode(config.bot_mode.mode, config.bot_mode.valid_modes)
    except ValueError as e:
        logger.error(str(e))
        return

    logger.info(f"Starting in mode: {config.bot_mode.mode}")
    rules = load_rules(args.rules, config)

    store = create_batch_store(config)
    try:
        async with async_playwright() as p:
            browser = await p.chromium.launch(
                headless=config.automation.browser_headless,
                args=["--disable-setuid-sandbox", "--no-sandbox"],
            )
            context = await browser.new_context(ignore_https_errors=True)
            try:
                if config.bot_mode.mode == "detect":
                    await run_detect(args, config, context, rules)
                    return

                submitter = FormSubmitter(context, rules, app_config=config)
                processor = BatchProcessor(
                    BatchRepository(store), submitter.process_row, app_config=config
                )
                await processor.load()

                if config.bot_mode.mode == "batch":
                    await run_batch(args, processor)
                elif config.bot_mode.mode == "retry":
                    retry_engine = RetryEngine(submitter.process_row, app_config=config)
                    await run_retry(args, processor, retry_engine)
            finally:
                await context.close()
                await browser.close()
    finally:
        close = getattr(store, "close", None)
        if close is not None:
            close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except ValueError as e:
        logger.error(str(e))
        sys.exit(2)
