"""
Command-line interface for multicloud-ecs.

Thin wrapper over ``MultiCloudEcsService``: every command builds the service
from settings, runs one operation and renders the result.
"""

import asyncio
import json
import sys
from typing import Any, Optional

import aiofiles
import click
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from ..config.settings import get_settings
from ..ecs.base import (
    BandwidthMode,
    CreateInstanceRequest,
    InstanceChargeMode,
    PriceInfo,
    VirtualMachine,
)
from ..ecs.errors import EcsError
from ..ecs.factory import build_service
from ..logging_utils.setup import configure_logging

console = Console()


def _parse_tags(values: tuple[str, ...]) -> dict[str, str]:
    tags = {}
    for value in values:
        if "=" not in value:
            raise click.BadParameter(f"expected KEY=VALUE, got '{value}'", param_hint="--tag")
        key, _, tag_value = value.partition("=")
        tags[key.strip()] = tag_value.strip()
    return tags


def _fail(error: EcsError) -> None:
    console.print(
        f"[red]Error[/red] [{error.error_code}] ({error.provider_code}) {error.message}"
    )
    if error.request_id:
        console.print(f"  request id: {error.request_id}")
    sys.exit(1)


def _render_vm(vm: VirtualMachine) -> None:
    table = Table(title=f"Instance {vm.instance_id or '-'}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for field_name in (
        "instance_name",
        "status",
        "provider",
        "region",
        "zone",
        "instance_type",
        "image_id",
        "private_ip",
        "public_ip",
        "tenant_id",
        "created_at",
    ):
        value = getattr(vm, field_name)
        if hasattr(value, "value"):
            value = value.value
        table.add_row(field_name, "" if value is None else str(value))
    if vm.tags:
        table.add_row("tags", ", ".join(f"{k}={v}" for k, v in vm.tags.items()))
    console.print(table)


def _render_price(price: PriceInfo) -> None:
    table = Table(title=f"Price for {price.instance_type} in {price.region}")
    table.add_column("Item", style="cyan")
    table.add_column(f"Price ({price.currency})", justify="right")
    rows = (
        ("Instance / hour", price.instance_price_per_hour),
        ("Instance / month", price.instance_price_per_month),
        ("Disk / GB / month", price.system_disk_price_per_gb_per_month),
        ("Traffic / GB", price.traffic_price_per_gb),
        ("Total / hour", price.total_price_per_hour),
        ("Total / month", price.total_price_per_month),
    )
    for label, amount in rows:
        if amount is not None:
            table.add_row(label, f"{amount:.4f}")
    console.print(table)


async def _write_output(path: str, data: dict[str, Any]) -> None:
    async with aiofiles.open(path, "w") as f:
        await f.write(json.dumps(data, indent=2, default=str))
    console.print(f"Result saved to {path}")


def _request_options(func):
    """Options shared by create and price."""
    options = [
        click.option("--provider", "-p", help="Provider code, e.g. AWS"),
        click.option("--tenant", "tenant_id", required=True, help="Tenant id"),
        click.option("--user", "user_id", required=True, help="Owning user id"),
        click.option("--region", "-r", required=True, help="Vendor region"),
        click.option("--zone", "-z", help="Availability zone"),
        click.option("--name", "instance_name", required=True, help="Instance name"),
        click.option("--image", "image_key", required=True, help="Image key"),
        click.option("--instance-type", "-t", help="Vendor instance type"),
        click.option("--gpu-model", help="GPU model, e.g. T4"),
        click.option("--cpu", type=int, help="vCPU count"),
        click.option("--memory", type=int, help="Memory in GB"),
        click.option("--disk-size", type=int, help="System disk size in GB"),
        click.option("--disk-type", help="System disk type"),
        click.option("--public-ip", is_flag=True, help="Allocate a public address"),
        click.option("--port", "ports", type=int, multiple=True, help="Inbound TCP port to open"),
        click.option("--bandwidth", type=int, help="Public bandwidth in Mbps"),
        click.option(
            "--bandwidth-mode",
            type=click.Choice([mode.value for mode in BandwidthMode], case_sensitive=False),
            default=BandwidthMode.FIXED.value,
        ),
        click.option(
            "--charge-mode",
            type=click.Choice([mode.value for mode in InstanceChargeMode], case_sensitive=False),
            default=InstanceChargeMode.ON_DEMAND.value,
        ),
        click.option("--key-pair", "key_pair_name", help="SSH key pair name"),
        click.option("--quantity", type=int, default=1, show_default=True),
        click.option("--tag", "tags", multiple=True, help="Extra tag KEY=VALUE"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _build_request(provider: Optional[str], **kwargs) -> CreateInstanceRequest:
    settings = get_settings()
    try:
        return CreateInstanceRequest(
            provider=provider or settings.ecs.default_provider,
            region=kwargs["region"],
            zone=kwargs["zone"],
            tenant_id=kwargs["tenant_id"],
            user_id=kwargs["user_id"],
            instance_name=kwargs["instance_name"],
            image_key=kwargs["image_key"],
            instance_type=kwargs["instance_type"],
            gpu_model=kwargs["gpu_model"],
            cpu=kwargs["cpu"],
            memory=kwargs["memory"],
            system_disk_size=kwargs["disk_size"],
            system_disk_type=kwargs["disk_type"],
            allocate_public_ip=kwargs["public_ip"],
            open_ports=list(kwargs["ports"]),
            public_ip_bandwidth=kwargs["bandwidth"],
            bandwidth_mode=BandwidthMode(kwargs["bandwidth_mode"].upper()),
            instance_charge_mode=InstanceChargeMode(kwargs["charge_mode"].upper()),
            key_pair_name=kwargs["key_pair_name"],
            quantity=kwargs["quantity"],
            tags=_parse_tags(kwargs["tags"]),
        )
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
            for err in e.errors()
        )
        raise click.BadParameter(problems) from e


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx, verbose):
    """multicloud-ecs - provision virtual machines across cloud vendors"""
    configure_logging(get_settings().monitoring, verbose=verbose)
    ctx.ensure_object(dict)


@cli.command()
def providers():
    """List registered providers."""
    service = build_service()
    codes = service.get_registered_providers()
    if not codes:
        console.print("No providers registered")
        return

    table = Table(title="Providers")
    table.add_column("Code", style="cyan")
    table.add_column("Name")
    table.add_column("Priority", justify="right")
    table.add_column("Available")
    for client in service.registry.list_clients():
        available = service.is_provider_available(client.provider_code)
        table.add_row(
            client.provider_code,
            client.provider_name,
            str(client.priority),
            "[green]yes[/green]" if available else "[red]no[/red]",
        )
    console.print(table)


@cli.command()
@_request_options
@click.option("--output", "-o", type=click.Path(), help="Save result to JSON file")
def create(provider, output, **kwargs):
    """Create an instance.

    Examples:
      multicloud-ecs create -p AWS --tenant t1 --user u1 -r us-west-2 --name web-1 --image ubuntu-20.04
    """

    async def _create():
        service = build_service()
        request = _build_request(provider, **kwargs)
        try:
            vm = await service.create_instance(request)
        except EcsError as e:
            _fail(e)
            return
        _render_vm(vm)
        if output:
            await _write_output(output, vm.model_dump(mode="json"))

    asyncio.run(_create())


@cli.command()
@_request_options
def price(provider, **kwargs):
    """Quote the price of an instance."""

    async def _price():
        service = build_service()
        request = _build_request(provider, **kwargs)
        try:
            quote = await service.calculate_price(request)
        except EcsError as e:
            _fail(e)
            return
        _render_price(quote)

    asyncio.run(_price())


@cli.command()
@click.argument("provider")
@click.argument("instance_id")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
def get(provider, instance_id, as_json):
    """Show an instance."""

    async def _get():
        service = build_service()
        try:
            vm = await service.get_instance(provider, instance_id)
        except EcsError as e:
            _fail(e)
            return
        if vm is None:
            console.print(f"Instance {instance_id} not found on {provider}")
            sys.exit(1)
        if as_json:
            console.print_json(json.dumps(vm.model_dump(mode="json")))
        else:
            _render_vm(vm)

    asyncio.run(_get())


@cli.command()
@click.argument("provider")
@click.argument("instance_name")
def find(provider, instance_name):
    """Resolve an instance name to its id."""

    async def _find():
        service = build_service()
        try:
            instance_id = await service.find_instance_id_by_name(provider, instance_name)
        except EcsError as e:
            _fail(e)
            return
        if instance_id is None:
            console.print(f"No instance named {instance_name} on {provider}")
            sys.exit(1)
        console.print(instance_id)

    asyncio.run(_find())


def _instance_action_command(name: str, verb: str):
    @cli.command(name=name)
    @click.argument("provider")
    @click.argument("instance_id")
    def command(provider, instance_id):
        async def _action():
            service = build_service()
            action = getattr(service, f"{name}_instance")
            try:
                accepted = await action(provider, instance_id)
            except EcsError as e:
                _fail(e)
                return
            if not accepted:
                console.print(f"[yellow]{instance_id} was not {verb}[/yellow]")
                sys.exit(1)
            console.print(f"[green]{instance_id} {verb}[/green]")

        asyncio.run(_action())

    command.__doc__ = f"{name.capitalize()} an instance."
    return command


start = _instance_action_command("start", "started")
stop = _instance_action_command("stop", "stopped")
restart = _instance_action_command("restart", "restarted")
delete = _instance_action_command("delete", "deleted")


@cli.command()
def config():
    """Show the effective configuration with secrets masked."""
    console.print_json(json.dumps(get_settings().get_safe_dict(), default=str))


def main():
    cli()


if __name__ == "__main__":
    main()
