# In scripts/cleanup_exports.py
# Deletes exported PDFs older than EXPORT_RETENTION_HOURS. Meant to be run from cron,
# e.g. hourly: `python -m scripts.cleanup_exports`
import logging

from app import config
from app.utils import StudyMaterialExporter

logger = logging.getLogger("cleanup_exports")


def main() -> int:
    config.configure_logging()
    exporter = StudyMaterialExporter(config.EXPORT_DIR, config.EXPORT_RETENTION_HOURS)
    removed = exporter.cleanup_old_files()
    logger.info("Removed %d export file(s) older than %.0fh from %s", len(removed), exporter.retention_hours, exporter.export_dir)
    return len(removed)


if __name__ == "__main__":
    main()
