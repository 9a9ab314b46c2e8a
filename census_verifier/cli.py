"""
Command-Line Interface for the census verifier

Runs the verifier service and provides operator and client helpers for
keys, registrations, Merkle proofs, identities and attestations.
"""

import json
import logging
import sys
from functools import partial
from pathlib import Path

import click
from nacl.encoding import Base64Encoder, HexEncoder
from nacl.signing import SigningKey
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from census_verifier import __version__, print_disclaimer
from census_verifier.census.attestation import (
    Attestation,
    scope_to_external_nullifier,
    verify_attestation,
)
from census_verifier.census.config import ATTESTATION_MAX_AGE_SECONDS, PUBLIC_KEY_BYTES
from census_verifier.census.exceptions import CensusError, ConfigError
from census_verifier.census.hashing import load_hasher
from census_verifier.census.identity import Identity, derive_identity
from census_verifier.server.keystore import load_signing_key, write_keypair
from census_verifier.server.settings import load_settings
from census_verifier.server.storage import CitizenStore

console = Console()


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
    )


def _fail(message: str) -> None:
    click.echo(click.style(f"✗ {message}", fg="red"), err=True)
    sys.exit(1)


def _settings(ctx, **overrides):
    try:
        return load_settings(ctx.obj.get("config"), **overrides)
    except CensusError as e:
        _fail(str(e))


def _hasher(name):
    try:
        return load_hasher(name)
    except (ValueError, ImportError, TypeError) as e:
        raise ConfigError(str(e)) from e


def _open_store(settings) -> CitizenStore:
    return CitizenStore(
        settings.citizens_file,
        depth=settings.tree_depth,
        hasher=_hasher(settings.hasher),
        root_history_size=settings.root_history_size,
    )


def _parse_public_key(text: str) -> bytes:
    text = text.strip()
    try:
        if len(text) == 2 * PUBLIC_KEY_BYTES:
            raw = HexEncoder.decode(text.encode("ascii"))
        else:
            raw = Base64Encoder.decode(text.encode("ascii"))
    except (ValueError, UnicodeEncodeError) as e:
        raise click.BadParameter(f"not a hex or base64 key: {e}")
    if len(raw) != PUBLIC_KEY_BYTES:
        raise click.BadParameter(f"public key must be {PUBLIC_KEY_BYTES} bytes")
    return raw


def _scope_option(f):
    return click.option(
        '--scope',
        type=int,
        default=None,
        help='Census scope (u64) used as the externalNullifier'
    )(f)


@click.group()
@click.version_option(version=__version__)
@click.option(
    '--config',
    type=click.Path(dir_okay=False),
    envvar='CENSUS_CONFIG',
    help='YAML settings file'
)
@click.option(
    '--log-level',
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False),
    default=None,
    help='Logging level (default: from settings, INFO)'
)
@click.pass_context
def main(ctx, config, log_level):
    """
    Anonymous census verifier.

    Verifies Groth16 proofs of census membership and issues Ed25519
    attestations for a downstream ledger.
    """
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["log_level"] = log_level


@main.command()
@click.option('--host', type=str, default=None, help='Bind address (default: 127.0.0.1)')
@click.option('--port', type=int, default=None, help='Bind port (default: 3001)')
@click.option('--data-dir', type=click.Path(file_okay=False), default=None, help='Data directory')
@click.option('--vk', 'vk_path', type=click.Path(dir_okay=False), default=None, help='Verification key JSON')
@click.option('--registry-url', type=str, default=None, help='Nullifier registry URL (memory:// or SQLAlchemy URL)')
@_scope_option
@click.pass_context
def serve(ctx, host, port, data_dir, vk_path, registry_url, scope):
    """
    Run the verifier HTTP service.

    Examples:

        # Serve with defaults from ./data
        census-verifier serve

        # Pin the census scope and use Postgres for nullifiers
        census-verifier serve --scope 1 --registry-url postgresql+psycopg://census@db/census
    """
    import trio
    from hypercorn.config import Config
    from hypercorn.trio import serve as hypercorn_serve

    from census_verifier.server.app import create_app
    from census_verifier.server.context import build_runtime

    settings = _settings(
        ctx,
        host=host,
        port=port,
        data_dir=data_dir,
        verification_key_path=vk_path,
        registry_url=registry_url,
        scope=scope,
    )
    _configure_logging(ctx.obj.get("log_level") or settings.log_level)

    try:
        runtime = build_runtime(settings)
    except CensusError as e:
        _fail(f"Startup failed: {e}")

    config = Config()
    config.bind = [f"{settings.host}:{settings.port}"]
    config.accesslog = "-"

    click.echo(click.style("census-verifier", fg="cyan", bold=True) + f" v{__version__}")
    click.echo(f"  Data directory: {settings.data_dir}")
    click.echo(f"  Listening on:   http://{settings.host}:{settings.port}")
    if not runtime.context.ready:
        click.echo(click.style(
            f"⚠️  Degraded: {', '.join(runtime.context.missing())} missing", fg="yellow"
        ))

    trio.run(partial(hypercorn_serve, create_app(runtime), config))


@main.command()
@click.option(
    '--output',
    type=click.Path(dir_okay=False),
    default=None,
    help='Keypair file (default: <data-dir>/verifier-keypair.json)'
)
@click.option('--force', is_flag=True, help='Overwrite an existing keypair')
@click.pass_context
def keygen(ctx, output, force):
    """Generate a verifier signing keypair."""
    settings = _settings(ctx, keypair_path=output)
    path = settings.signer_keypair_path
    if path.exists():
        if not force:
            _fail(f"Keypair already exists: {path} (use --force to replace it)")
        path.unlink()

    signing_key = SigningKey.generate()
    try:
        write_keypair(path, signing_key)
    except OSError as e:
        _fail(f"Cannot write keypair: {e}")
    click.echo(click.style(f"✓ Keypair written to: {path}", fg="green"))
    click.echo(f"  Public key: {signing_key.verify_key.encode(Base64Encoder).decode('ascii')}")


@main.command()
@click.option('--keypair', type=click.Path(dir_okay=False), default=None, help='Keypair file')
@click.option(
    '--format', 'fmt',
    type=click.Choice(['base64', 'hex', 'bytes'], case_sensitive=False),
    default='base64',
    help='Output encoding'
)
@click.pass_context
def pubkey(ctx, keypair, fmt):
    """Print the verifier public key."""
    settings = _settings(ctx, keypair_path=keypair)
    try:
        verify_key = load_signing_key(settings.signer_keypair_path).verify_key
    except CensusError as e:
        _fail(str(e))

    if fmt == 'hex':
        click.echo(verify_key.encode(HexEncoder).decode("ascii"))
    elif fmt == 'bytes':
        click.echo(json.dumps(list(bytes(verify_key))))
    else:
        click.echo(verify_key.encode(Base64Encoder).decode("ascii"))


@main.command()
@click.argument('commitment')
@click.option('--data-dir', type=click.Path(file_okay=False), default=None, help='Data directory')
@click.pass_context
def register(ctx, commitment, data_dir):
    """Append an identity commitment to the census tree."""
    settings = _settings(ctx, data_dir=data_dir)
    try:
        store = _open_store(settings)
        citizen, created = store.register(commitment)
    except CensusError as e:
        _fail(str(e))

    if created:
        click.echo(click.style(f"✓ Registered at leaf {citizen.leaf_index}", fg="green"))
    else:
        click.echo(click.style(f"⚠️  Already registered at leaf {citizen.leaf_index}", fg="yellow"))
    click.echo(f"  Root: {store.root}")


@main.command()
@click.option('--data-dir', type=click.Path(file_okay=False), default=None, help='Data directory')
@click.pass_context
def root(ctx, data_dir):
    """Show the current census root."""
    settings = _settings(ctx, data_dir=data_dir)
    try:
        store = _open_store(settings)
    except CensusError as e:
        _fail(str(e))

    table = Table(title="Census tree")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Root", str(store.root))
    table.add_row("Leaves", str(len(store)))
    table.add_row("Depth", str(store.tree.depth))
    console.print(table)


@main.command()
@click.option('--index', 'leaf_index', type=int, default=None, help='Leaf index')
@click.option('--commitment', type=str, default=None, help='Identity commitment')
@click.option('--data-dir', type=click.Path(file_okay=False), default=None, help='Data directory')
@click.pass_context
def proof(ctx, leaf_index, commitment, data_dir):
    """Print a Merkle inclusion proof as JSON."""
    if (leaf_index is None) == (commitment is None):
        raise click.UsageError("Pass exactly one of --index or --commitment")

    settings = _settings(ctx, data_dir=data_dir)
    try:
        store = _open_store(settings)
        if leaf_index is not None:
            merkle_proof = store.proof(leaf_index)
        else:
            merkle_proof = store.proof_for(commitment)
    except CensusError as e:
        _fail(str(e))
    click.echo(json.dumps(merkle_proof.to_dict(), indent=2))


@main.group()
def identity():
    """Create census identities (client side)."""


def _identity_output(ident, scope, hasher_name):
    hasher = _hasher(hasher_name)
    data = ident.to_dict()
    data["identityCommitment"] = str(ident.commitment(hasher))
    if scope is not None:
        external_nullifier = scope_to_external_nullifier(scope)
        data["externalNullifier"] = str(external_nullifier)
        data["nullifierHash"] = str(ident.nullifier_hash(external_nullifier, hasher))
    click.echo(json.dumps(data, indent=2))


@identity.command('new')
@_scope_option
@click.pass_context
def identity_new(ctx, scope):
    """Generate a random identity. Keep the output secret."""
    settings = _settings(ctx)
    try:
        _identity_output(Identity.generate(), scope, settings.hasher)
    except CensusError as e:
        _fail(str(e))


@identity.command('derive')
@click.argument('seed')
@click.argument('account')
@click.option('--salt', type=str, default=None, help='Optional trapdoor salt')
@_scope_option
@click.pass_context
def identity_derive(ctx, seed, account, salt, scope):
    """Derive an identity from issuance SEED bound to ACCOUNT."""
    settings = _settings(ctx)
    try:
        ident = derive_identity(seed, account, salt)
        _identity_output(ident, scope, settings.hasher)
    except (CensusError, ValueError) as e:
        _fail(str(e))


@main.command('verify-attestation')
@click.argument('attestation_file', type=click.File('r'))
@click.option('--pubkey', 'public_key', required=True, help='Trusted verifier public key (base64 or hex)')
@click.option('--root', 'expected_root', type=str, default=None, help='Root the consumer accepts')
@_scope_option
@click.option(
    '--max-age',
    type=int,
    default=ATTESTATION_MAX_AGE_SECONDS,
    help=f'Freshness window in seconds (default: {ATTESTATION_MAX_AGE_SECONDS})'
)
@click.option('--now', type=int, default=None, help='Override the current unix time')
def verify_attestation_cmd(attestation_file, public_key, expected_root, scope, max_age, now):
    """
    Check an attestation the way a consumer would.

    ATTESTATION_FILE holds either the attestation object or a full
    /verify response.
    """
    key = _parse_public_key(public_key)
    try:
        data = json.load(attestation_file)
    except json.JSONDecodeError as e:
        _fail(f"Invalid JSON: {e}")
    if isinstance(data, dict) and isinstance(data.get("attestation"), dict):
        data = data["attestation"]
    if not isinstance(data, dict):
        _fail("Attestation must be a JSON object")

    try:
        attestation = Attestation.from_dict(data)
        verify_attestation(
            attestation,
            key,
            now=now,
            max_age_seconds=max_age,
            expected_root=expected_root,
            expected_external_nullifier=(
                scope_to_external_nullifier(scope) if scope is not None else None
            ),
        )
    except CensusError as e:
        _fail(f"Attestation rejected ({e.code}): {e}")

    click.echo(click.style("✓ Attestation valid", fg="green"))
    click.echo(f"  Nullifier hash: {attestation.nullifier_hash}")
    click.echo(f"  Timestamp:      {attestation.timestamp}")


@main.command()
def version():
    """Show version and disclaimer information."""
    click.echo(f"\ncensus-verifier v{__version__}\n")
    print_disclaimer()


if __name__ == "__main__":
    main()
