# finance_tracker/cli.py
import logging
import time

import click
from dotenv import load_dotenv

from finance_tracker.categories import seed_default_categories
from finance_tracker.config import load_config, parse_run_at
from finance_tracker.database import Store
from finance_tracker.processor import RecurringProcessor
from finance_tracker.scheduler import RecurringScheduler


@click.group()
@click.option(
    '--config', 'config_path',
    default=None,
    type=click.Path(dir_okay=False),
    help='Path to config.yaml (defaults apply when missing)'
)
@click.option(
    '--env-file', 'env_file',
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help='Optional .env file with FINTRACK_* overrides'
)
@click.option(
    '--db', 'db_path',
    default=None,
    type=click.Path(dir_okay=False),
    help='SQLite database file (overrides config)'
)
@click.pass_context
def main(ctx, config_path, env_file, db_path):
    """Personal finance tracker: categories and recurring transactions."""
    if env_file:
        load_dotenv(env_file)

    cfg = load_config(config_path)
    if db_path:
        cfg['db_path'] = db_path
    logging.basicConfig(
        level=str(cfg['log_level']).upper(),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    ctx.obj = {'config': cfg, 'store': Store(cfg['db_path'])}


@main.command('init-db')
@click.pass_obj
def init_db(obj):
    """Create the schema and seed the shared default categories."""
    store = obj['store']
    store.init_schema()
    seeded = 0
    if obj['config'].get('seed_default_categories'):
        seeded = seed_default_categories(store)
    click.echo(f"Initialised {store.db_path} ({seeded} default categories added).")


@main.command('process-recurring')
@click.pass_obj
def process_recurring(obj):
    """Run one recurring processing cycle now."""
    store = obj['store']
    store.init_schema()
    scheduler = RecurringScheduler(RecurringProcessor(store))
    result = scheduler.run_now()
    if result.status == 'failure':
        raise click.ClickException(f"Recurring processing failed: {result.error}")
    click.echo(
        f"Processed {result.processed} recurring categor"
        f"{'y' if result.processed == 1 else 'ies'}, {result.failed} failed."
    )
    for category_id in result.failed_categories:
        click.echo(f"⚠️  Failed category: {category_id}", err=True)


@main.command('schedule')
@click.pass_obj
def schedule(obj):
    """Run the daily recurring scheduler until interrupted."""
    store = obj['store']
    store.init_schema()
    try:
        run_at = parse_run_at(obj['config']['scheduler']['run_at'])
    except ValueError as e:
        raise click.BadParameter(str(e))
    scheduler = RecurringScheduler(RecurringProcessor(store), run_at=run_at)
    scheduler.start()
    click.echo(f"Recurring scheduler running daily at {run_at.strftime('%H:%M')} UTC.")
    try:
        while True:
            time.sleep(3600)
    except KeyboardInterrupt:
        scheduler.stop(timeout=5)


@main.command('serve')
@click.option('--host', default='127.0.0.1', help='Host to bind')
@click.option('--port', default=8000, type=int, help='Port to bind')
@click.option(
    '--with-scheduler/--without-scheduler',
    default=True,
    help='Also run the daily recurring scheduler in this process'
)
@click.pass_obj
def serve(obj, host, port, with_scheduler):
    """Serve the HTTP API."""
    import uvicorn

    from webapp.main import create_app

    app = create_app(obj['config'], start_scheduler=with_scheduler)
    uvicorn.run(app, host=host, port=port)
