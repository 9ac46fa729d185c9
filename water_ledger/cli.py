'''
To Run:
water-ledger add-customer "Ahmed Alaoui" 1042 120
water-ledger add-month 1042 134
water-ledger export-xlsx ledger.xlsx
'''
import asyncio
import click
import logging
from pathlib import Path

from water_ledger import lifecycle
from water_ledger.config import load_settings
from water_ledger.datatypes import Customer, Ledger, PaymentStatus, normalize_meter
from water_ledger.errors import LedgerError, NotFound, RollbackNotConfirmed
from water_ledger.importer import import_workbook
from water_ledger.reporting import (
    compute_statistics, customer_status, format_customer_report, format_statistics_report,
)
from water_ledger.snapshot import dumps, loads
from water_ledger.store import JsonDirectoryStorage, LedgerStore
from water_ledger.workbook import write_workbook

# Set up logging
logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
logger = logging.getLogger(__name__)


def resolve_customer(ledger: Ledger, ref: str) -> Customer:
    """A customer by id, or else by meter number"""
    customer = ledger.find(ref) or ledger.find_by_meter(normalize_meter(ref))
    if customer is None:
        raise NotFound(f"No customer with id or meter number {ref}")
    return customer


def run_with_store(ctx: click.Context, action):
    """
    Open the store, run `action(store)` and wait for pending writes.

    Ledger errors become a ClickException (message plus non-zero exit).
    """
    async def runner():
        settings = load_settings()
        data_dir = ctx.obj.get('data_dir') or settings.storage_dir
        store = LedgerStore(JsonDirectoryStorage(data_dir), settings)
        await store.initialize()
        try:
            return await action(store)
        finally:
            await store.flush()

    try:
        return asyncio.run(runner())
    except LedgerError as e:
        raise click.ClickException(str(e))


def _confirm_rollback(e: RollbackNotConfirmed, assume_yes: bool) -> None:
    if assume_yes:
        return
    if not click.confirm(f"⚠ {e}. Record it anyway (meter replaced or reset)?"):
        raise click.Abort()


@click.group()
@click.option('--data-dir', type=click.Path(file_okay=False, path_type=Path), default=None,
              help='Directory holding the ledger snapshots (default from ledger_config.yaml)')
@click.option('-v', '--verbose', is_flag=True, help='Show debug logging')
@click.pass_context
def main(ctx, data_dir, verbose):
    """Water meter customer ledger: readings, billing and payments."""
    ctx.ensure_object(dict)
    ctx.obj['data_dir'] = data_dir
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


# -------------------- customers --------------------

@main.command('add-customer')
@click.argument('full_name')
@click.argument('meter_number')
@click.argument('reading')
@click.option('--phone', default='', help='Phone number')
@click.option('--registration-date', default='', help='Registration date, YYYY-MM-DD')
@click.pass_context
def add_customer_cmd(ctx, full_name, meter_number, reading, phone, registration_date):
    """Register a customer with its current meter reading."""
    async def action(store):
        customer = lifecycle.add_customer(store.ledger, full_name, meter_number, reading,
                                          phone=phone, registration_date=registration_date)
        store.commit()
        first = customer.last_month
        click.echo(f"✔ Added {customer.full_name} (meter {customer.meter_number}): "
                   f"{first.label}, {first.consumption} t, {first.total_price:.2f}")
    run_with_store(ctx, action)


@main.command('edit-customer')
@click.argument('customer')
@click.option('--name', 'full_name', default=None)
@click.option('--meter', 'meter_number', default=None)
@click.option('--phone', default=None)
@click.option('--registration-date', default=None)
@click.option('--reading', default=None, help='Corrected reading of the last month')
@click.option('--yes', 'assume_yes', is_flag=True, help='Accept a reading lower than the previous one')
@click.pass_context
def edit_customer_cmd(ctx, customer, full_name, meter_number, phone, registration_date, reading, assume_yes):
    """Change customer details and correct the last month's reading."""
    async def action(store):
        c = resolve_customer(store.ledger, customer)
        args = dict(
            full_name=c.full_name if full_name is None else full_name,
            meter_number=c.meter_number if meter_number is None else meter_number,
            phone=c.phone if phone is None else phone,
            registration_date=c.registration_date if registration_date is None else registration_date,
            current_reading=c.last_month.new_reading if reading is None else reading,
        )
        try:
            lifecycle.edit_customer(store.ledger, c.id, **args)
        except RollbackNotConfirmed as e:
            _confirm_rollback(e, assume_yes)
            lifecycle.edit_customer(store.ledger, c.id, allow_rollback=True, **args)
        store.commit()
        last = c.last_month
        click.echo(f"✔ Updated {c.full_name}; {last.label}: {last.consumption} t, {last.total_price:.2f}")
    run_with_store(ctx, action)


@main.command('delete-customer')
@click.argument('customer')
@click.confirmation_option(prompt='Delete this customer and all of its months?')
@click.pass_context
def delete_customer_cmd(ctx, customer):
    """Remove a customer and its whole history."""
    async def action(store):
        c = resolve_customer(store.ledger, customer)
        lifecycle.delete_customer(store.ledger, c.id)
        store.commit()
        click.echo(f"🗑 Deleted {c.full_name} (meter {c.meter_number})")
    run_with_store(ctx, action)


# -------------------- months --------------------

@main.command('add-month')
@click.argument('customer')
@click.argument('reading')
@click.option('--yes', 'assume_yes', is_flag=True, help='Accept a reading lower than the previous one')
@click.pass_context
def add_month_cmd(ctx, customer, reading, assume_yes):
    """Bill the month following the customer's last one."""
    async def action(store):
        c = resolve_customer(store.ledger, customer)
        try:
            month = lifecycle.add_month(store.ledger, c.id, reading)
        except RollbackNotConfirmed as e:
            _confirm_rollback(e, assume_yes)
            month = lifecycle.add_month(store.ledger, c.id, reading, allow_rollback=True)
        store.commit()
        click.echo(f"✔ {c.full_name}: {month.label}, {month.consumption} t, {month.total_price:.2f}")
    run_with_store(ctx, action)


@main.command('delete-month')
@click.argument('customer')
@click.argument('index', type=int)
@click.pass_context
def delete_month_cmd(ctx, customer, index):
    """Delete month INDEX (as listed by `show`)."""
    async def action(store):
        c = resolve_customer(store.ledger, customer)
        month = lifecycle.delete_month(store.ledger, c.id, index)
        store.commit()
        click.echo(f"🗑 Deleted {month.label} of {c.full_name}")
    run_with_store(ctx, action)


@main.command('toggle-month')
@click.argument('customer')
@click.argument('index', type=int)
@click.pass_context
def toggle_month_cmd(ctx, customer, index):
    """Flip month INDEX between paid and unpaid."""
    async def action(store):
        c = resolve_customer(store.ledger, customer)
        month = lifecycle.toggle_month_status(store.ledger, c.id, index)
        store.commit()
        click.echo(f"✔ {c.full_name}, {month.label}: {month.status.value}")
    run_with_store(ctx, action)


@main.command('set-price')
@click.argument('price')
@click.pass_context
def set_price_cmd(ctx, price):
    """Set the price per ton for months added from now on."""
    async def action(store):
        new_price = lifecycle.change_global_price(store.ledger, price)
        store.commit()
        click.echo(f"✔ Price per ton is now {new_price}; existing months keep their totals")
    run_with_store(ctx, action)


# -------------------- listing & reports --------------------

@main.command('list')
@click.option('--search', default='', help='Name or meter number fragment')
@click.option('--status', type=click.Choice(['all', 'paid', 'unpaid']), default='all')
@click.option('--sort', 'sort_key', type=click.Choice(lifecycle.SORT_KEYS), default='name')
@click.option('--desc', is_flag=True, help='Sort descending')
@click.pass_context
def list_cmd(ctx, search, status, sort_key, desc):
    """List customers. The chosen sort order is saved."""
    async def action(store):
        lifecycle.sort_customers(store.ledger, sort_key, desc)
        store.commit()
        wanted = {'paid': PaymentStatus.PAID, 'unpaid': PaymentStatus.UNPAID}.get(status)
        customers = lifecycle.search_customers(store.ledger, search, wanted)
        if not customers:
            click.echo("No customers")
            return
        for c in customers:
            click.echo(f"{c.meter_number:>8}  {c.full_name:<30} {c.last_month.new_reading:>10}  {customer_status(c)}")
        click.echo(f"\n{len(customers)} of {len(store.ledger.customers)} customers")
    run_with_store(ctx, action)


@main.command('show')
@click.argument('customer')
@click.pass_context
def show_cmd(ctx, customer):
    """Show a customer's months."""
    async def action(store):
        click.echo(format_customer_report(resolve_customer(store.ledger, customer)))
    run_with_store(ctx, action)


@main.command('stats')
@click.pass_context
def stats_cmd(ctx):
    """Consumption and revenue totals."""
    async def action(store):
        stats = compute_statistics(store.ledger)
        click.echo(format_statistics_report(stats, store.ledger.price_per_ton))
    run_with_store(ctx, action)


# -------------------- import / export --------------------

@main.command('export-json')
@click.argument('path', type=click.Path(dir_okay=False, path_type=Path))
@click.pass_context
def export_json_cmd(ctx, path):
    """Write the whole ledger as a JSON snapshot."""
    async def action(store):
        await asyncio.to_thread(path.write_text, dumps(store.ledger), encoding='utf-8')
        click.echo(f"📄 Exported {len(store.ledger.customers)} customers to {path}")
    run_with_store(ctx, action)


@main.command('export-xlsx')
@click.argument('path', type=click.Path(dir_okay=False, path_type=Path))
@click.pass_context
def export_xlsx_cmd(ctx, path):
    """Write the summary grid and Transactions sheet to an Excel file."""
    async def action(store):
        await asyncio.to_thread(write_workbook, store.ledger, path)
        click.echo(f"📊 Exported {len(store.ledger.customers)} customers to {path}")
    run_with_store(ctx, action)


def _read_import(path: Path, current_price) -> Ledger:
    if path.suffix.lower() == '.json':
        return loads(path.read_text(encoding='utf-8'), current_price)
    ledger, report = import_workbook(path, current_price)
    click.echo(f"ℹ {report.summary()}")
    return ledger


@main.command('import')
@click.argument('path', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('--yes', 'assume_yes', is_flag=True, help='Replace the current ledger without asking')
@click.pass_context
def import_cmd(ctx, path, assume_yes):
    """Replace the ledger with a JSON snapshot or an Excel workbook."""
    async def action(store):
        ledger = await asyncio.to_thread(_read_import, path, store.ledger.price_per_ton)
        if store.ledger.customers and not assume_yes:
            if not click.confirm(f"Replace {len(store.ledger.customers)} customers with "
                                 f"{len(ledger.customers)} from {path.name}?"):
                raise click.Abort()
        store.replace(ledger)
        click.echo(f"✔ Imported {len(ledger.customers)} customers, price per ton {ledger.price_per_ton}")
    run_with_store(ctx, action)


@main.command('backup')
@click.pass_context
def backup_cmd(ctx):
    """Copy the ledger to the backup slot now."""
    async def action(store):
        if await store.backup():
            click.echo("💾 Backup written")
        else:
            raise click.ClickException(f"Backup failed: {store.last_error}")
    run_with_store(ctx, action)


if __name__ == '__main__':
    main()
