"""Command-line interface for warehouse stock operations."""

import json
import sys
import click
from typing import Optional

from pydantic import ValidationError

from .models.product import Direction, Product
from .services.inventory_service import InventoryService, SORT_KEYS
from .services.scan_session import MODES, ScanEvent, ScanSession, StreamDecoder
from .utils.config import get_config
from .utils.exceptions import BaseAppException, ConfigurationError


def _make_service() -> InventoryService:
    try:
        return InventoryService()
    except ValidationError as e:
        raise ConfigurationError(
            "Missing or invalid settings (is FIRESTORE_PROJECT_ID set?)",
            details={"errors": e.errors()},
        )


def _fail(error: BaseAppException):
    click.echo(click.style(f"✗ [{error.kind}] {error.message}", fg="red"), err=True)
    sys.exit(1)


def _echo_json(data):
    click.echo(json.dumps(data, indent=2, default=str))


def _show_product(product: Product):
    click.echo(f"  Name:      {product.name}")
    click.echo(f"  Barcode:   {product.barcode}")
    click.echo(f"  Quantity:  {product.quantity}")
    if product.price is not None:
        click.echo(f"  Price:     {product.price}")
    click.echo(f"  Id:        {product.id}")
    if product.updated_at:
        click.echo(f"  Updated:   {product.updated_at:%Y-%m-%d %H:%M:%S}")


@click.group()
@click.version_option(version="1.0.0")
def cli():
    """
    Warehouse stock manager.

    Look up products by barcode, load and unload stock, record new
    products and browse the inventory.
    """
    pass


@cli.command()
@click.argument("code")
@click.option("--json", "as_json", is_flag=True, help="Print the product as JSON")
def lookup(code: str, as_json: bool):
    """
    Find a product by barcode.

    CODE: Barcode to look up
    """
    try:
        with _make_service() as service:
            product = service.find_by_barcode(code)
            if product is None:
                if service.last_error is not None:
                    _fail(service.last_error)
                click.echo(click.style(f"✗ No product with barcode {code.strip()}", fg="yellow"))
                sys.exit(1)

            if as_json:
                _echo_json(product.to_dict())
                return

            click.echo(click.style("✓ Product found", fg="green", bold=True))
            _show_product(product)

    except BaseAppException as e:
        _fail(e)


def _adjust(code: str, quantity: int, direction: Direction, as_json: bool):
    try:
        with _make_service() as service:
            adjustment = service.adjust_quantity(code, quantity, direction)

        if as_json:
            _echo_json(adjustment.to_dict())
            return

        verb = "Loaded" if direction is Direction.INCREASE else "Unloaded"
        product = adjustment.product
        click.echo(click.style(f"✓ {verb} {adjustment.delta} × {product.name}", fg="green", bold=True))
        click.echo(f"  Stock: {adjustment.previous_quantity} → {adjustment.new_quantity}")

    except BaseAppException as e:
        _fail(e)


@cli.command("stock-in")
@click.argument("code")
@click.option("-q", "--quantity", default=1, show_default=True, help="Units to load")
@click.option("--json", "as_json", is_flag=True, help="Print the adjustment as JSON")
def stock_in(code: str, quantity: int, as_json: bool):
    """
    Load stock into the warehouse.

    CODE: Barcode of the product
    """
    _adjust(code, quantity, Direction.INCREASE, as_json)


@cli.command("stock-out")
@click.argument("code")
@click.option("-q", "--quantity", default=1, show_default=True, help="Units to unload")
@click.option("--json", "as_json", is_flag=True, help="Print the adjustment as JSON")
def stock_out(code: str, quantity: int, as_json: bool):
    """
    Unload stock from the warehouse.

    CODE: Barcode of the product
    """
    _adjust(code, quantity, Direction.DECREASE, as_json)


@cli.command()
@click.argument("barcode")
@click.argument("name")
@click.option("-q", "--quantity", default="0", show_default=True, help="Starting stock")
@click.option("--price", default=None, help="Unit price")
def add(barcode: str, name: str, quantity: str, price: Optional[str]):
    """
    Record a new product.

    BARCODE: Barcode of the new product

    NAME: Display name
    """
    try:
        with _make_service() as service:
            product = service.add_product(barcode, name, quantity=quantity, price=price)

        click.echo(click.style("✓ Product added", fg="green", bold=True))
        _show_product(product)

    except BaseAppException as e:
        _fail(e)


@cli.command()
@click.argument("product_id")
@click.option("--name", default=None, help="New name")
@click.option("--barcode", default=None, help="New barcode")
@click.option("--quantity", default=None, help="New stock count")
@click.option("--price", default=None, help="New unit price")
def edit(product_id: str, name, barcode, quantity, price):
    """
    Edit a product record.

    PRODUCT_ID: Document id of the product
    """
    fields = {
        key: value
        for key, value in (("name", name), ("barcode", barcode), ("quantity", quantity), ("price", price))
        if value is not None
    }

    try:
        with _make_service() as service:
            product = service.edit_product(product_id, **fields)

        click.echo(click.style("✓ Product updated", fg="green", bold=True))
        _show_product(product)

    except BaseAppException as e:
        _fail(e)


@cli.command("list")
@click.option("-s", "--search", default=None, help="Filter by name or barcode")
@click.option(
    "--sort",
    "sort_by",
    type=click.Choice(list(SORT_KEYS)),
    default="name",
    show_default=True,
    help="Column to sort by"
)
@click.option("--desc", is_flag=True, help="Sort descending")
def list_products(search: Optional[str], sort_by: str, desc: bool):
    """Show the inventory table."""
    try:
        with _make_service() as service:
            products = service.list_products(search=search, sort_by=sort_by, descending=desc, refresh=True)
            summary = service.summarize(products)

        if not products:
            if search:
                click.echo(f"No products match \"{search}\"")
            else:
                click.echo("No products in the inventory")
            return

        click.echo(f"{'Name':<32} {'Barcode':<20} {'Qty':>6}  {'Updated':<19}")
        click.echo("─" * 80)
        for product in products:
            name = product.name if len(product.name) <= 30 else product.name[:27] + "..."
            updated = f"{product.updated_at:%Y-%m-%d %H:%M:%S}" if product.updated_at else "-"
            click.echo(f"{name:<32} {product.barcode:<20} {product.quantity:>6}  {updated:<19}")
        click.echo("─" * 80)
        click.echo(f"Products: {summary.product_count}    Total quantity: {summary.total_quantity}")

    except BaseAppException as e:
        _fail(e)


@cli.command()
@click.option(
    "--mode",
    type=click.Choice(MODES),
    default=None,
    help="lookup only, load (in) or unload (out) on every scan"
)
@click.option("-q", "--quantity", default=1, show_default=True, help="Units per scan in load/unload mode")
@click.option(
    "--input",
    "source",
    type=click.File("r"),
    default="-",
    show_default=True,
    help="Decoder output, one barcode per line"
)
@click.option("--cooldown", type=float, default=None, help="Seconds to ignore a repeated code")
@click.option("--json", "as_json", is_flag=True, help="Print the session result as JSON")
def scan(mode: Optional[str], quantity: int, source, cooldown: Optional[float], as_json: bool):
    """
    Process barcodes from an external decoder.

    Pipe the decoder's output in, e.g. ``zbarcam --raw | stockscan scan --mode out``.
    """
    def echo_event(event: ScanEvent):
        if event.status == "found":
            click.echo(f"✓ {event.barcode}: {event.product.name} (stock {event.product.quantity})")
        elif event.status == "adjusted":
            adj = event.adjustment
            click.echo(click.style(
                f"✓ {event.barcode}: {adj.product.name} {adj.previous_quantity} → {adj.new_quantity}",
                fg="green"
            ))
        elif event.status == "missing":
            click.echo(click.style(f"✗ {event.barcode}: not found", fg="yellow"))
        elif event.status == "error":
            click.echo(click.style(f"✗ {event.barcode}: [{event.error.kind}] {event.error.message}", fg="red"))

    try:
        with _make_service() as service:
            session = ScanSession(service, StreamDecoder(source), mode=mode, quantity=quantity, cooldown=cooldown)
            with session:
                result = session.run(on_event=None if as_json else echo_event)

        if as_json:
            _echo_json(result.to_dict())
        else:
            click.echo("─" * 60)
            click.echo(result.get_summary())
        sys.exit(0 if result.success else 1)

    except BaseAppException as e:
        _fail(e)


@cli.command("test-connection")
def test_connection():
    """
    Test connectivity to the document store.

    Validates that the project, credentials and security rules allow
    reading the products collection.
    """
    click.echo("Testing Firestore connection...")

    try:
        with _make_service() as service:
            service.store.ping()
        click.echo(click.style("✓ Connected successfully", fg="green", bold=True))

    except BaseAppException as e:
        _fail(e)


@cli.command("config-info")
def config_info():
    """Display current configuration settings."""
    try:
        config = get_config()
    except ValidationError as e:
        _fail(ConfigurationError(f"Error loading config: {e.errors()[0]['msg']}"))

    click.echo("Configuration Settings:")
    click.echo("=" * 60)
    click.echo()

    click.echo("Environment:")
    click.echo(f"  Environment:     {config.env.environment}")
    click.echo(f"  Log level:       {config.logging.level}")
    click.echo()

    click.echo("Firestore:")
    click.echo(f"  Endpoint:        {config.env.firestore_base_url}")
    click.echo(f"  Project:         {config.env.firestore_project_id}")
    click.echo(f"  Database:        {config.env.firestore_database}")
    click.echo(f"  Collection:      {config.store.collection}")
    api_key = config.env.firestore_api_key
    click.echo(f"  API key:         {api_key[:6] + '...' if api_key else '(none)'}")
    click.echo(f"  Auth token:      {'set' if config.env.firestore_auth_token else '(none)'}")
    click.echo()

    click.echo("Inventory:")
    click.echo(f"  Conflict retries: {config.inventory.max_conflict_retries}")
    click.echo(f"  Scan cooldown:    {config.scanner.cooldown_seconds}s")
    click.echo(f"  Default mode:     {config.scanner.default_mode}")
    click.echo()


if __name__ == "__main__":
    cli()
