import os

from certcat.app import create_app, db

from flask_migrate import Migrate
from flask.cli import FlaskGroup
import click
from flask import current_app
from certcat.models import Certificate
from certcat.services.certificates import render_certificate_pdf
from certcat.services.export import ExportError
from certcat.services.generation import purge_expired_tests as purge_expired
from certcat.shared.storage import write_atomic


migrate = Migrate()


def create_certcat_app():
    app = create_app()
    migrate.init_app(app, db)
    return app


cli = FlaskGroup(create_app=create_certcat_app)


@cli.command("export_cert")
@click.option("--id", "cert_id", required=True)
@click.option("--out", "out_path", required=True, type=click.Path(dir_okay=False))
def export_cert(cert_id: str, out_path: str):
    """Write a certificate's PDF to a file."""
    cert = db.session.get(Certificate, cert_id)
    if not cert:
        click.echo("Not found", err=True)
        return
    try:
        result = render_certificate_pdf(cert)
    except ExportError as exc:
        click.echo(str(exc), err=True)
        raise SystemExit(1)
    write_atomic(os.path.abspath(out_path), result.pdf)
    for warning in result.warnings:
        click.echo(warning, err=True)
    click.echo(out_path)


@cli.command("purge_expired_tests")
@click.option(
    "--dry-run", is_flag=True, help="List expired test certificates without deleting"
)
def purge_expired_tests(dry_run: bool):
    ids = purge_expired(dry_run=dry_run)
    for cert_id in ids[:5]:
        click.echo(cert_id)
    summary = f"expired={len(ids)} deleted={0 if dry_run else len(ids)}"
    click.echo(summary)
    current_app.logger.info("[CERT-PURGE] %s", summary)


if __name__ == "__main__":
    cli()
