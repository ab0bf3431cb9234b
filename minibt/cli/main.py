"""Command-line interface for minibt.

Commands:
- decode: decode a bencoded value and print it as JSON
- info: show torrent metadata
- peers: announce to the tracker and list peers
- handshake: handshake with one peer and print its id
- download-piece: download and verify a single piece
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, NoReturn

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from minibt import __version__
from minibt.config import init_config
from minibt.core.bencode import to_jsonable
from minibt.models import LogLevel, Metainfo, PeerInfo
from minibt.session.client import TorrentClient
from minibt.utils.exceptions import ConfigurationError, MiniBTError
from minibt.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)

console = Console(soft_wrap=True)


def _raise_cli_error(stage: str, error: Exception) -> NoReturn:
    """Raise a ClickException naming the stage that failed."""
    msg = f"{stage} failed: {error}"
    raise click.ClickException(msg) from error


def _parse_peer(value: str) -> PeerInfo:
    """Parse ``ip:port`` into a PeerInfo."""
    host, sep, port = value.rpartition(":")
    if not sep or not host or not port.isdigit():
        msg = f"expected <ip>:<port>, got {value!r}"
        raise click.BadParameter(msg, param_hint="PEER")
    try:
        return PeerInfo(ip=host, port=int(port))
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="PEER") from e


def _client(ctx: click.Context) -> TorrentClient:
    return ctx.obj["client"]


def _load(ctx: click.Context, torrent: str) -> Metainfo:
    try:
        return _client(ctx).load(torrent)
    except MiniBTError as e:
        _raise_cli_error("Loading torrent", e)


def _run(stage: str, coro) -> Any:
    """Run a client coroutine, mapping typed errors to ClickException."""
    try:
        return asyncio.run(coro)
    except MiniBTError as e:
        _raise_cli_error(stage, e)


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, dir_okay=False),
    help="Configuration file path",
)
@click.option(
    "--log-level",
    type=click.Choice([level.value for level in LogLevel], case_sensitive=False),
    help="Override the configured log level",
)
@click.version_option(__version__, prog_name="minibt")
@click.pass_context
def cli(ctx, config, log_level):
    """Minimal BitTorrent client."""
    ctx.ensure_object(dict)
    try:
        config_manager = init_config(config, setup_log=False)
    except ConfigurationError as e:
        _raise_cli_error("Loading configuration", e)

    cfg = config_manager.config
    if log_level:
        observability = cfg.observability.model_copy(
            update={"log_level": LogLevel(log_level.upper())}
        )
        cfg = cfg.model_copy(update={"observability": observability})
        config_manager.config = cfg
    setup_logging(cfg.observability)

    ctx.obj["config"] = cfg
    ctx.obj["client"] = TorrentClient(cfg)


@cli.command()
@click.argument("value")
@click.pass_context
def decode(ctx, value):
    """Decode a bencoded VALUE and print it as JSON."""
    try:
        decoded = _client(ctx).decode_value(value)
    except MiniBTError as e:
        _raise_cli_error("Decoding", e)
    click.echo(json.dumps(to_jsonable(decoded)))


@cli.command()
@click.argument("torrent", type=click.Path(exists=True, dir_okay=False))
@click.option("--table", "as_table", is_flag=True, help="Show metadata as a table")
@click.pass_context
def info(ctx, torrent, as_table):
    """Show metadata of a TORRENT file."""
    summary = _client(ctx).info(_load(ctx, torrent))

    if as_table:
        table = Table(title=escape(summary["name"]))
        table.add_column("Field", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Tracker URL", escape(summary["tracker_url"]))
        table.add_row("Length", str(summary["length"]))
        table.add_row("Info Hash", summary["info_hash"])
        table.add_row("Piece Length", str(summary["piece_length"]))
        table.add_row("Pieces", str(summary["num_pieces"]))
        console.print(table)
        return

    console.print(f"Tracker URL: {escape(summary['tracker_url'])}")
    console.print(f"Length: {summary['length']}")
    console.print(f"Info Hash: {summary['info_hash']}")
    console.print(f"Piece Length: {summary['piece_length']}")
    console.print("Piece Hashes:")
    for digest in summary["piece_hashes"]:
        console.print(digest)


@cli.command()
@click.argument("torrent", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def peers(ctx, torrent):
    """Announce TORRENT to its tracker and list peers."""
    metainfo = _load(ctx, torrent)
    peer_list = _run("Tracker announce", _client(ctx).peers(metainfo))
    if not peer_list:
        console.print("[yellow]Tracker returned no peers[/yellow]")
        return
    for peer in peer_list:
        console.print(str(peer))


@cli.command()
@click.argument("torrent", type=click.Path(exists=True, dir_okay=False))
@click.argument("peer")
@click.pass_context
def handshake(ctx, torrent, peer):
    """Handshake with PEER (ip:port) for TORRENT."""
    peer_info = _parse_peer(peer)
    metainfo = _load(ctx, torrent)
    peer_id = _run("Handshake", _client(ctx).handshake(metainfo, peer_info))
    console.print(f"Peer ID: {peer_id.hex()}")


@cli.command("download-piece")
@click.option(
    "--output",
    "-o",
    required=True,
    type=click.Path(dir_okay=False, writable=True),
    help="File to write the piece to",
)
@click.option(
    "--peer",
    "peer_addrs",
    multiple=True,
    help="Peer to download from (ip:port); skips the tracker. Repeatable",
)
@click.option(
    "--in-place",
    is_flag=True,
    help="Write the piece at its offset within the whole payload",
)
@click.argument("torrent", type=click.Path(exists=True, dir_okay=False))
@click.argument("index", type=click.IntRange(min=0))
@click.pass_context
def download_piece(ctx, output, peer_addrs, in_place, torrent, index):
    """Download piece INDEX of TORRENT and verify its hash."""
    peer_list = [_parse_peer(addr) for addr in peer_addrs] or None
    metainfo = _load(ctx, torrent)
    _run(
        "Piece download",
        _client(ctx).download_piece(
            metainfo, index, output, peers=peer_list, in_place=in_place
        ),
    )
    console.print(f"Piece {index} downloaded to {escape(output)}.")


def main():
    """Main CLI entry point."""
    cli()


if __name__ == "__main__":
    main()
