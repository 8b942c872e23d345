"""Command-line entry point for the TogoMQ client."""

from __future__ import annotations

import logging
import signal
import sys
import threading
from typing import Iterator, Optional, Tuple

import click

from togomq.client import Client
from togomq.config import (
    Config,
    load_config,
    new_config,
    with_host,
    with_log_level,
    with_port,
    with_token,
    with_use_tls,
)
from togomq.errors import TogoMQError
from togomq.message import Message, new_subscribe_options


def _parse_variables(pairs: Tuple[str, ...]) -> dict:
    variables = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got '{pair}'", param_hint="--var")
        variables[key] = value
    return variables


def _open_client(ctx: click.Context) -> Client:
    try:
        client = Client(ctx.obj)
    except TogoMQError as exc:
        raise click.ClickException(str(exc))
    ctx.call_on_close(client.close)
    return client


def _build_config(
    config_path: Optional[str],
    log_level: Optional[str],
    host: Optional[str],
    port: Optional[int],
    token: Optional[str],
    insecure: bool,
) -> Config:
    cfg = load_config(config_path) if config_path else new_config()
    options = []
    if log_level is not None:
        options.append(with_log_level(log_level.lower()))
    if host is not None:
        options.append(with_host(host))
    if port is not None:
        options.append(with_port(port))
    if token is not None:
        options.append(with_token(token))
    if insecure:
        options.append(with_use_tls(False))
    for option in options:
        cfg = option(cfg)
    return cfg


@click.group()
@click.option(
    "-c",
    "--config",
    "config_path",
    default=None,
    type=click.Path(exists=True, file_okay=True, dir_okay=False, readable=True),
    help="Path to a YAML configuration file.",
)
@click.option(
    "-l",
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "NONE"], case_sensitive=False),
    help="Logging verbosity level (overrides the config file; default INFO).",
)
@click.option("--host", default=None, help="Server host (overrides the config file).")
@click.option("--port", default=None, type=int, help="Server port (overrides the config file).")
@click.option("--token", envvar="TOGOMQ_TOKEN", default=None, help="Authentication token.")
@click.option("--insecure", is_flag=True, default=False, help="Connect without TLS.")
@click.pass_context
def main(
    ctx: click.Context,
    config_path: Optional[str],
    log_level: Optional[str],
    host: Optional[str],
    port: Optional[int],
    token: Optional[str],
    insecure: bool,
) -> None:
    """togomq: publish, subscribe and count messages on a TogoMQ server.

    Example:

        togomq --token "$TOKEN" pub orders --body '{"id": 1}'
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        stream=sys.stderr,
    )
    try:
        ctx.obj = _build_config(config_path, log_level, host, port, token, insecure)
    except TogoMQError as exc:
        raise click.ClickException(str(exc))


@main.command()
@click.argument("topic")
@click.option("--body", default=None, help="Publish a single message with this body.")
@click.option("--var", "variables", multiple=True, help="Message variable as KEY=VALUE.")
@click.option("--postpone", default=0, type=int, help="Delay before delivery, in seconds.")
@click.option("--retention", default=0, type=int, help="Retention period, in seconds.")
@click.pass_context
def pub(
    ctx: click.Context,
    topic: str,
    body: Optional[str],
    variables: Tuple[str, ...],
    postpone: int,
    retention: int,
) -> None:
    """Publish to TOPIC, one message per stdin line unless --body is given."""
    parsed = _parse_variables(variables)
    client = _open_client(ctx)

    def _messages() -> Iterator[Message]:
        lines = [body] if body is not None else (line.rstrip("\n") for line in sys.stdin)
        for line in lines:
            yield Message(
                topic=topic,
                body=line.encode("utf-8"),
                variables=dict(parsed),
                postpone=postpone,
                retention=retention,
            )

    try:
        response = client.publish(_messages())
    except TogoMQError as exc:
        raise click.ClickException(str(exc))
    click.echo(f"published {response.messages_received} messages")


@main.command()
@click.argument("pattern")
@click.option("--batch", default=0, type=int, help="Messages per server push (0 = server default).")
@click.option("--speed", default=0, type=int, help="Max messages per second (0 = unlimited).")
@click.option(
    "--max-messages",
    default=None,
    type=int,
    help="Stop after this many messages (default: run until the stream ends).",
)
@click.option("--timeout", default=None, type=float, help="Stop after this many seconds.")
@click.pass_context
def sub(
    ctx: click.Context,
    pattern: str,
    batch: int,
    speed: int,
    max_messages: Optional[int],
    timeout: Optional[float],
) -> None:
    """Print messages from topics matching PATTERN (e.g. orders, orders.*, *)."""
    client = _open_client(ctx)
    stop = threading.Event()

    def _handle_signal(sig, frame):
        logging.getLogger(__name__).info("Signal %s received, shutting down…", sig)
        stop.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    options = new_subscribe_options(pattern).with_batch(batch).with_speed_per_sec(speed)
    try:
        subscription = client.subscribe(options, cancel_event=stop, timeout=timeout)
    except TogoMQError as exc:
        raise click.ClickException(str(exc))

    received = 0
    with subscription:
        for msg in subscription:
            variables = " ".join(f"{k}={v}" for k, v in sorted(msg.variables.items()))
            click.echo(f"{msg.topic}\t{msg.uuid}\t{msg.body.decode('utf-8', 'replace')}\t{variables}")
            received += 1
            if max_messages is not None and received >= max_messages:
                break

    if subscription.error is not None:
        raise click.ClickException(str(subscription.error))


@main.command()
@click.argument("pattern")
@click.pass_context
def count(ctx: click.Context, pattern: str) -> None:
    """Print the number of messages matching PATTERN."""
    client = _open_client(ctx)
    try:
        click.echo(client.count_messages(pattern))
    except TogoMQError as exc:
        raise click.ClickException(str(exc))


if __name__ == "__main__":
    main()
