import asyncio
import logging
from datetime import datetime, timezone

from google.cloud import storage
from google.oauth2 import service_account

from . import config
from .errors import ConfigError
from .services.expenses import aggregate_all, compute_summary
from .services.firestore import create_client
from .services.gcs import write_csv_to_gcs


logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def build_report_rows(db) -> list:
    rows = [["id", "username", "month", "approved"]]
    for item in await aggregate_all(db):
        rows.append([item["id"], item["username"], item["month"], item["approved"]])

    summary = await compute_summary(db)
    rows.append([])
    rows.append(["totalExpenses", str(summary.total)])
    rows.append(["approvedExpenses", str(summary.approved)])
    rows.append(["rejectedExpenses", str(summary.rejected)])
    return rows


def run(db=None, storage_client=None, bucket: str = None) -> str:
    """Export the approval listing and summary totals as a CSV report."""
    bucket = bucket or config.REPORT_BUCKET
    if not bucket:
        raise ConfigError("REPORT_BUCKET is not set")

    if db is None or storage_client is None:
        info = config.load_service_account_info()
        db = db or create_client(info)
        if storage_client is None:
            credentials = service_account.Credentials.from_service_account_info(info)
            storage_client = storage.Client(project=info["project_id"], credentials=credentials)

    rows = asyncio.run(build_report_rows(db))

    now = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    uri = write_csv_to_gcs(bucket, f"reports/expenses-{now}.csv", rows, client=storage_client)
    logger.info("Wrote %s (%d periods)", uri, len(rows) - 5)
    return uri


if __name__ == "__main__":
    run()
