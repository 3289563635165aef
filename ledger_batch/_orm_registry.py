"""Import every ORM module so Base.metadata knows all tables."""


def import_all_orm_models() -> None:
    import ledger_kernel.models  # noqa: F401
    import ledger_kernel.services.sequence_service  # noqa: F401
    import ledger_batch.models.batch  # noqa: F401
