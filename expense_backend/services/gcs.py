import csv
from typing import Iterable, List, Optional

from google.cloud import storage


def write_csv_to_gcs(
    bucket_name: str,
    object_name: str,
    rows: Iterable[List],
    client: Optional[storage.Client] = None,
    project: Optional[str] = None,
) -> str:
    """Stream ``rows`` as CSV into a bucket object and return its gs:// URI."""
    client = client or storage.Client(project=project)
    blob = client.bucket(bucket_name).blob(object_name)
    with blob.open("w", content_type="text/csv") as f:
        writer = csv.writer(f)
        writer.writerows(rows)
    return f"gs://{bucket_name}/{object_name}"
