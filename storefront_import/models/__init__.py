"""ORM models for import jobs.  Import before ``create_tables()``."""

from storefront_import.models.import_job import ImportFailureModel, ImportJobModel

__all__ = ["ImportFailureModel", "ImportJobModel"]
