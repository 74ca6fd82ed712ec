"""
Module ORM Registry (``billing_modules._orm_registry``).

Ensures every module-level SQLAlchemy model is imported so that
``Base.metadata`` holds its table before ``create_tables()`` runs.
Imported lazily by ``billing_kernel.db.engine.create_tables``.
"""


def import_all_orm_models() -> None:
    """Import the kernel sequence table and every ``billing_modules.*.orm``.

    Invoices must be registered before billing cycles, whose ``invoice_id``
    references ``invoices.id``.  Idempotent.
    """
    import billing_kernel.services.sequence_service  # noqa: F401
    # fmt: off
    import billing_modules.tax.orm  # noqa: F401
    import billing_modules.invoicing.orm  # noqa: F401
    import billing_modules.subscriptions.orm  # noqa: F401
    import billing_modules.cycles.orm  # noqa: F401
    import billing_modules.usage.orm  # noqa: F401
    # fmt: on
