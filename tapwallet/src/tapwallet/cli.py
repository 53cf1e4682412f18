"""
Taproot Wallet CLI - Manage secrets, compile descriptors and build a chain of
Taproot transactions.

Every invocation loads the state file, applies one command and saves the
state again if the command succeeded.
"""

from __future__ import annotations

import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import typer
from loguru import logger

from tapcore.errors import TapError
from tapcore.models import NetworkType, parse_hex32
from tapcore.script import script_to_asm
from tapwallet import assembler, draft
from tapwallet.address import descriptor_address
from tapwallet.config import get_settings
from tapwallet.state import WalletState, init_state, load_state, save_state

app = typer.Typer(
    name="tap-wallet",
    help="Taproot descriptor wallet",
    add_completion=False,
)
key_app = typer.Typer(help="Manage key pairs")
image_app = typer.Typer(help="Manage hash preimages")
addr_app = typer.Typer(help="Inbound address and funding")
utxo_app = typer.Typer(help="Inspect UTXOs")
input_app = typer.Typer(help="Edit draft inputs")
output_app = typer.Typer(help="Edit draft outputs")

app.add_typer(key_app, name="key")
app.add_typer(image_app, name="image")
app.add_typer(addr_app, name="addr")
app.add_typer(utxo_app, name="utxo")
app.add_typer(input_app, name="input")
app.add_typer(output_app, name="output")


def setup_logging(level: str = "INFO") -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


@app.callback()
def callback(
    ctx: typer.Context,
    state_file: Path | None = typer.Option(None, "--state", "-s", help="State file path"),
    network: str | None = typer.Option(None, "--network", "-n", help="Bitcoin network"),
    log_level: str | None = typer.Option(None, "--log-level", "-l"),
) -> None:
    settings = get_settings()
    setup_logging(log_level or settings.log_level)

    try:
        network_type = NetworkType(network) if network is not None else settings.network
    except ValueError:
        logger.error(f"Invalid network: {network}")
        raise typer.Exit(1)

    ctx.obj = {
        "state_file": state_file or settings.state_file,
        "network": network_type,
    }


@contextmanager
def wallet(ctx: typer.Context, save: bool = True) -> Iterator[WalletState]:
    """Load the state, run a command on it and save it unless the command failed."""
    path: Path = ctx.obj["state_file"]
    try:
        state = load_state(path)
        yield state
        if save:
            save_state(state, path)
    except (TapError, ValueError) as e:
        logger.error(str(e))
        raise typer.Exit(1)


def _network(ctx: typer.Context) -> NetworkType:
    return ctx.obj["network"]


@app.command()
def init(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing state file"),
) -> None:
    """Create an empty state file."""
    try:
        init_state(ctx.obj["state_file"], force)
    except TapError as e:
        logger.error(str(e))
        raise typer.Exit(1)
    typer.echo(f"Initialized {ctx.obj['state_file']}")


@app.command("print")
def print_state(
    ctx: typer.Context,
    secrets: bool = typer.Option(False, "--secrets", help="Also show secret keys and preimages"),
) -> None:
    """Show keys, images, inbound address, UTXOs and the draft."""
    with wallet(ctx, save=False) as state:
        typer.echo(render_state(state, _network(ctx), secrets))


def render_state(state: WalletState, network: NetworkType, secrets: bool = False) -> str:
    lines = []
    for active in (True, False):
        lines.append(f"Keys [{'active' if active else 'passive'}]:")
        for pair in state.store.keys:
            if pair.active != active:
                continue
            if pair.secret is None:
                lines.append(f"  {pair.public} (public only)")
            elif secrets:
                lines.append(f"  {pair.public}: {pair.secret}")
            else:
                lines.append(f"  {pair.public}")
    for active in (True, False):
        lines.append(f"Images [{'active' if active else 'passive'}]:")
        for image in state.store.images:
            if image.active != active:
                continue
            if image.preimage is None:
                lines.append(f"  {image.image} (no preimage)")
            elif secrets:
                lines.append(f"  {image.image}: {image.preimage}")
            else:
                lines.append(f"  {image.image}")

    if state.inbound is None:
        lines.append("Inbound: none")
    else:
        address = descriptor_address(state.parse(state.inbound), network)
        lines.append(f"Inbound: {address} {state.inbound}")

    lines.append("UTXOs:")
    for index, utxo in enumerate(state.utxos):
        lines.append(f"  {index}: {utxo.outpoint} {utxo.value} sat {utxo.descriptor}")

    lines.append("Inputs:")
    for index in sorted(state.draft.inputs):
        tx_input = state.draft.inputs[index]
        spent = tx_input.utxo.outpoint if tx_input.utxo is not None else "unbound"
        relative = (
            f"relative timelock {tx_input.sequence} block(s)"
            if tx_input.sequence is not None
            else "no relative timelock"
        )
        lines.append(f"  {index}: {spent} ({relative})")

    lines.append("Outputs:")
    for index in sorted(state.draft.outputs):
        output = state.draft.outputs[index]
        value = f"{output.value} sat" if output.value is not None else "remainder"
        lines.append(f"  {index}: {value} {output.descriptor}")

    enabled = "enabled" if state.draft.has_relative_timelock() else "disabled"
    locktime = state.draft.locktime if state.draft.locktime is not None else "none"
    lines.append(f"Locktime: {locktime} [{enabled}]")
    lines.append(f"Fee: {state.draft.fee} sat")
    return "\n".join(lines)


@key_app.command("gen")
def key_gen(ctx: typer.Context, count: int = typer.Argument(1, min=1)) -> None:
    """Generate key pairs."""
    with wallet(ctx) as state:
        for pair in state.store.generate_keys(count):
            typer.echo(pair.public)


@key_app.command("import")
def key_import(
    ctx: typer.Context,
    value: str = typer.Argument(..., help="32-byte secret key or x-only public key (hex)"),
    public: bool = typer.Option(False, "--public", help="VALUE is an x-only public key"),
) -> None:
    """Import a secret key, or a public-only key with --public."""
    with wallet(ctx) as state:
        raw = parse_hex32(value, "public key" if public else "secret key")
        pair = state.store.import_public(raw) if public else state.store.import_secret(raw)
        typer.echo(pair.public)


@key_app.command("enable")
def key_enable(ctx: typer.Context, pubkey: str) -> None:
    """Make a key available for signing."""
    with wallet(ctx) as state:
        state.store.set_key_active(parse_hex32(pubkey, "public key"), True)


@key_app.command("disable")
def key_disable(ctx: typer.Context, pubkey: str) -> None:
    """Keep a key but stop signing with it."""
    with wallet(ctx) as state:
        state.store.set_key_active(parse_hex32(pubkey, "public key"), False)


@key_app.command("toggle")
def key_toggle(ctx: typer.Context, pubkey: str) -> None:
    with wallet(ctx) as state:
        pair = state.store.toggle_key(parse_hex32(pubkey, "public key"))
        typer.echo(f"{pair.public}: {'active' if pair.active else 'passive'}")


@image_app.command("gen")
def image_gen(ctx: typer.Context, count: int = typer.Argument(1, min=1)) -> None:
    """Generate random preimages and print their SHA-256 images."""
    with wallet(ctx) as state:
        for pair in state.store.generate_images(count):
            typer.echo(pair.image)


@image_app.command("import")
def image_import(
    ctx: typer.Context,
    value: str = typer.Argument(..., help="32-byte preimage or SHA-256 image (hex)"),
    image: bool = typer.Option(False, "--image", help="VALUE is an image without preimage"),
) -> None:
    """Import a preimage, or an image alone with --image."""
    with wallet(ctx) as state:
        raw = parse_hex32(value, "image" if image else "preimage")
        pair = state.store.import_image(raw) if image else state.store.import_preimage(raw)
        typer.echo(pair.image)


@image_app.command("enable")
def image_enable(ctx: typer.Context, image: str) -> None:
    with wallet(ctx) as state:
        state.store.set_image_active(parse_hex32(image, "image"), True)


@image_app.command("disable")
def image_disable(ctx: typer.Context, image: str) -> None:
    with wallet(ctx) as state:
        state.store.set_image_active(parse_hex32(image, "image"), False)


@image_app.command("toggle")
def image_toggle(ctx: typer.Context, image: str) -> None:
    with wallet(ctx) as state:
        pair = state.store.toggle_image(parse_hex32(image, "image"))
        typer.echo(f"{pair.image}: {'active' if pair.active else 'passive'}")


@app.command("compile")
def compile_descriptor(ctx: typer.Context, descriptor: str) -> None:
    """Show the Taproot commitment of a descriptor."""
    with wallet(ctx, save=False) as state:
        parsed = state.parse(descriptor)
        tree = parsed.taptree
        typer.echo(f"Descriptor:   {parsed.with_checksum()}")
        typer.echo(f"Internal key: {tree.internal_key.hex()}")
        for leaf in tree.leaves:
            typer.echo(f"Leaf #{leaf.index}:     {leaf.miniscript}")
            typer.echo(f"  script:       {script_to_asm(leaf.miniscript.elements())}")
            typer.echo(f"  leaf hash:    {leaf.leaf_hash.hex()}")
            typer.echo(f"  control block: {tree.control_block(leaf).hex()}")
        merkle_root = tree.merkle_root.hex() if tree.merkle_root is not None else "none"
        typer.echo(f"Merkle root:  {merkle_root}")
        typer.echo(f"Output key:   {tree.output_key.hex()}")
        typer.echo(f"scriptPubKey: {parsed.script_pubkey().hex()}")
        typer.echo(f"Address:      {descriptor_address(parsed, _network(ctx))}")


@addr_app.command("set")
def addr_set(ctx: typer.Context, descriptor: str) -> None:
    """Set the descriptor that receives the next funding transaction."""
    with wallet(ctx) as state:
        parsed = state.set_inbound(descriptor)
        typer.echo(descriptor_address(parsed, _network(ctx)))


@addr_app.command("utxo")
def addr_utxo(
    ctx: typer.Context,
    txid: str,
    vout: int = typer.Argument(..., min=0),
    value: int = typer.Argument(..., min=0, help="Value in sat"),
) -> None:
    """Record a payment to the inbound address as a UTXO."""
    with wallet(ctx) as state:
        utxo = state.fund_inbound(txid, vout, value)
        typer.echo(f"UTXO #{state.utxos.index(utxo)}: {utxo.outpoint}")


@utxo_app.command("list")
def utxo_list(ctx: typer.Context) -> None:
    with wallet(ctx, save=False) as state:
        for index, utxo in enumerate(state.utxos):
            typer.echo(f"{index}: {utxo.outpoint} {utxo.value} sat {utxo.descriptor}")


@input_app.command("new")
def input_new(
    ctx: typer.Context,
    index: int = typer.Argument(..., min=0),
    utxo_index: int = typer.Argument(..., min=0),
) -> None:
    """Spend a UTXO as input INDEX."""
    with wallet(ctx) as state:
        draft.add_input(state, index, utxo_index)


@input_app.command("del")
def input_del(ctx: typer.Context, index: int) -> None:
    with wallet(ctx) as state:
        draft.delete_input(state, index)


@input_app.command("seq")
def input_seq(
    ctx: typer.Context,
    index: int,
    height: int = typer.Argument(0, help="Relative timelock in blocks"),
    disable: bool = typer.Option(False, "--disable", help="Disable the relative timelock"),
) -> None:
    """Enable (or --disable) the relative timelock of an input."""
    with wallet(ctx) as state:
        if disable:
            draft.disable_sequence(state, index)
        else:
            draft.set_sequence(state, index, height)


@output_app.command("new")
def output_new(
    ctx: typer.Context,
    index: int = typer.Argument(..., min=0),
    descriptor: str = typer.Argument(...),
    value: int | None = typer.Argument(None, min=0, help="Value in sat, omit for the remainder"),
) -> None:
    """Pay to a descriptor as output INDEX."""
    with wallet(ctx) as state:
        draft.add_output(state, index, descriptor, value)


@output_app.command("del")
def output_del(ctx: typer.Context, index: int) -> None:
    with wallet(ctx) as state:
        draft.delete_output(state, index)


@app.command()
def locktime(
    ctx: typer.Context,
    height: int | None = typer.Argument(None, help="Absolute locktime (block height)"),
    clear: bool = typer.Option(False, "--clear", help="Remove the locktime"),
) -> None:
    """Set the absolute locktime of the draft."""
    with wallet(ctx) as state:
        if clear:
            draft.clear_locktime(state)
        elif height is None:
            raise ValueError("Give a block height or --clear")
        else:
            draft.set_locktime(state, height)


@app.command()
def fee(ctx: typer.Context, value: int = typer.Argument(..., min=0, help="Fee in sat")) -> None:
    with wallet(ctx) as state:
        draft.set_fee(state, value)


@app.command()
def spend(ctx: typer.Context) -> None:
    """Sign the draft and print the raw transaction."""
    with wallet(ctx, save=False) as state:
        built = assembler.build(state)
        typer.echo(f"Fee rate: {built.fee_rate:.2f} sat/vB")
        typer.echo(built.hex)


@app.command()
def final(
    ctx: typer.Context,
    txid: str | None = typer.Argument(None, help="Txid reported by the node"),
    no_chain: bool = typer.Option(
        False, "--no-chain", help="Do not spend output 0 in the next draft"
    ),
) -> None:
    """Mark the draft as broadcast and turn its outputs into UTXOs."""
    with wallet(ctx) as state:
        created = assembler.finalize(state, txid, chain=not no_chain)
        for utxo in created:
            typer.echo(f"New UTXO: {utxo.outpoint} {utxo.value} sat")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
