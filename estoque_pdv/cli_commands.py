"""
Flask CLI commands for stock maintenance.

Commands:
- flask init-db: Create missing tables
- flask reconcile-stock: Find (and optionally repair) ledger drift
- flask low-stock: List products at or below minimum stock
"""

import click
from estoque_pdv.database import Base, get_session
from estoque_pdv.exceptions import EstoqueError
from estoque_pdv.services.reconciliation_service import find_stock_drift, repair_stock_drift
from estoque_pdv.services.stock_status_service import list_low_stock


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create all tables that do not exist yet."""
        import estoque_pdv.models  # noqa: F401
        from estoque_pdv import database

        Base.metadata.create_all(database.engine)
        click.echo(click.style('✅ Tabelas criadas.', fg='green'))

    @app.cli.command('reconcile-stock')
    @click.option('--tenant', 'tenant_id', required=True, help='Tenant ID')
    @click.option('--user', 'user_id', default='cli', show_default=True, help='Actor recorded on corrections')
    @click.option('--apply', 'apply_fix', is_flag=True, help='Record corrective movements (default: dry run)')
    def reconcile_stock(tenant_id, user_id, apply_fix):
        """Compare stored stock with the movement ledger."""
        session = get_session()

        try:
            if apply_fix:
                results = repair_stock_drift(session, tenant_id, user_id, dry_run=False)
            else:
                results = find_stock_drift(session, tenant_id)
        except EstoqueError as e:
            raise click.ClickException(e.message)

        if not results:
            click.echo(click.style('✅ Estoque consistente com o histórico.', fg='green'))
            return

        for item in results:
            line = (
                f"  {item['code']} {item['name']}: estoque={item['stock']} "
                f"histórico={item['ledger_stock']} (diferença {item['drift']:+d})"
            )
            if item.get('status') == 'repaired':
                line += f" -> ajuste {item['movement_type']} #{item['movement_id']}"
            click.echo(line)

        if apply_fix:
            click.echo(click.style(f'\n✅ {len(results)} produto(s) ajustado(s).', fg='green', bold=True))
        else:
            click.echo(click.style(
                f'\n⚠️  {len(results)} produto(s) com divergência. Use --apply para registrar ajustes.',
                fg='yellow'
            ))

    @app.cli.command('low-stock')
    @click.option('--tenant', 'tenant_id', required=True, help='Tenant ID')
    def low_stock(tenant_id):
        """List active products at or below their minimum stock."""
        products = list_low_stock(get_session(), tenant_id)
        if not products:
            click.echo('Nenhum produto com estoque baixo.')
            return
        for product in products:
            click.echo(f'  {product.code} {product.name}: {product.stock} (mínimo {product.min_stock})')
