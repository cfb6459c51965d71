import csv
import logging
from pathlib import Path
from typing import Union

from .database.ops import DBOperations

class ReportGenerator:
    """CSV exports of the audit ledger and error table."""
    def __init__(self, db_ops: DBOperations):
        self.db = db_ops

    def export_batch(self, batch_id: str, output_csv: Union[str, Path]) -> int:
        """
        Writes every ledger entry of a batch, in creation order.
        Returns the number of rows written.
        """
        operations = self.db.get_operations_by_batch(batch_id)
        if not operations:
            raise ValueError(f"Batch {batch_id} not found.")

        logging.info(f"Exporting batch {batch_id} -> {output_csv}")

        headers = [
            "Operation ID",
            "Created At",
            "Type",
            "Status",
            "File ID",
            "Source Path",
            "Destination Path",
            "Hash",
            "Reason",
        ]

        with open(output_csv, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(headers)
            for op in operations:
                writer.writerow([
                    op.id,
                    op.created_at,
                    op.operation_type,
                    op.status,
                    op.file_id if op.file_id is not None else "",
                    op.source_path,
                    op.destination_path or "",
                    op.hash_used or "",
                    op.reason or "",
                ])

        return len(operations)

    def export_errors(self, output_csv: Union[str, Path], limit: int = 10000) -> int:
        """Writes the most recent errors. Returns the number of rows written."""
        errors = self.db.list_errors(limit=limit)
        logging.info(f"Exporting {len(errors)} errors -> {output_csv}")

        with open(output_csv, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(["Error ID", "Created At", "Type", "File ID", "File Path", "Message"])
            for err in errors:
                writer.writerow([
                    err.id,
                    err.created_at,
                    err.error_type,
                    err.file_id if err.file_id is not None else "",
                    err.file_path,
                    err.error_message or "",
                ])

        return len(errors)
