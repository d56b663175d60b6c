"""``busbridge sign``: show every stage of a Signature Version 4 signature.

Useful for comparing against a server's "canonical request" error
message when a signature is rejected.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel

from busbridge.core.signer import (
    SigningError,
    build_canonical_request,
    build_string_to_sign,
    compute_authorization_header,
    hash_content,
)
from busbridge.models.credentials import Credentials
from busbridge.models.signing import AMZ_DATE_FORMAT, SigningContext

console = Console()


def _parse_headers(values: list[str]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for item in values:
        name, sep, value = item.partition(":")
        if not sep or not name.strip():
            raise typer.BadParameter(f"Header must look like 'name: value', got {item!r}")
        headers[name.strip()] = value.strip()
    return headers


def sign_cmd(
    host: str = typer.Option(..., "--host", help="Request host header."),
    method: str = typer.Option("POST", "--method", "-X", help="HTTP method."),
    uri: str = typer.Option("/", "--uri", help="Request path."),
    query: str = typer.Option("", "--query", "-q", help="Raw query string."),
    header: list[str] = typer.Option([], "--header", "-H", help="Extra signed header, 'name: value'."),
    body_file: str = typer.Option(None, "--body", "-d", help="File whose bytes are the request body."),
    region: str = typer.Option("us-east-1", "--region", help="Signing region."),
    service: str = typer.Option("events", "--service", help="Signing service."),
    access_key: str = typer.Option(..., "--access-key", envvar="AWS_ACCESS_KEY_ID"),
    secret_key: str = typer.Option(..., "--secret-key", envvar="AWS_SECRET_ACCESS_KEY"),
    session_token: str = typer.Option(None, "--session-token", envvar="AWS_SESSION_TOKEN"),
    timestamp: str = typer.Option(
        None, "--timestamp", help="Request time as yyyyMMddTHHmmssZ (default: now)."
    ),
) -> None:
    """Print the canonical request, string to sign and Authorization header."""
    if timestamp:
        try:
            now = datetime.strptime(timestamp, AMZ_DATE_FORMAT).replace(tzinfo=timezone.utc)
        except ValueError:
            raise typer.BadParameter("timestamp must be yyyyMMddTHHmmssZ")
    else:
        now = datetime.now(timezone.utc)

    body = Path(body_file).read_bytes() if body_file else b""
    credentials = Credentials(
        access_key_id=access_key,
        secret_access_key=secret_key,
        session_token=session_token or None,
        region=region,
        expires_at=now + timedelta(hours=1),
    )
    context = SigningContext.at(credentials, region, service, now=now)

    headers = {"host": host, "x-amz-date": context.amz_date}
    headers.update(_parse_headers(header))
    if session_token:
        headers["x-amz-security-token"] = session_token

    try:
        payload_hash = hash_content(body)
        canonical = build_canonical_request(method, uri, query, headers, payload_hash)
        string_to_sign = build_string_to_sign(
            context.amz_date, context.date_stamp, region, service, canonical
        )
        authorization = compute_authorization_header(
            method, uri, query, headers, payload_hash, context
        )
    except SigningError as exc:
        console.print(f"[red]Signing failed:[/red] {exc}")
        raise typer.Exit(code=1)

    console.print(Panel(canonical, title="[bold]Canonical request[/bold]", border_style="cyan"))
    console.print(Panel(string_to_sign, title="[bold]String to sign[/bold]", border_style="cyan"))
    console.print(Panel(authorization, title="[bold]Authorization[/bold]", border_style="green"))

    # Unwrapped header value for scripting
    typer.echo(authorization)
