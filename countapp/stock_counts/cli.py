import json

import click

from countapp.extensions import db
from countapp.models import StockCount, StockCountStatus

from . import repository
from .ordering import compute_order
from .reconciliation import category_progress, summarize_count


def register_cli(app):
    @app.cli.command("stock-count-summary")
    @click.argument("stock_count_id", type=int)
    def stock_count_summary(stock_count_id: int) -> None:
        """Print status, progress and walk order of a stock count."""
        stock_count = repository.get_stock_count(stock_count_id)
        order = compute_order(stock_count)
        progress = category_progress(stock_count, order)
        payload = {
            "id": stock_count.id,
            "status": stock_count.status_label,
            "summary": summarize_count(stock_count).to_dict(),
            "orderSource": order.source,
            "categories": [entry.to_dict() for entry in progress],
        }
        click.echo(json.dumps(payload, indent=2, sort_keys=True, default=str))

    @app.cli.command("normalize-stock-count-statuses")
    def normalize_stock_count_statuses() -> None:
        """Rewrite legacy status spellings to the canonical values."""
        updated = 0
        for alias, canonical in StockCountStatus.LEGACY_ALIASES.items():
            updated += StockCount.query.filter(StockCount.status == alias).update(
                {"status": canonical}, synchronize_session=False
            )
        db.session.commit()
        click.echo(f"Normalized {updated} stock count status value(s).")
