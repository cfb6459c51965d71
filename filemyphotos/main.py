import argparse
import logging
import sys
from pathlib import Path

from . import config
from .core import FileMyPhotosApp
from .exceptions import FileMyPhotosError
from .models import STATE_COMPLETED


def setup_logging(db_path: Path, verbose: bool):
    """Sets up logging to both console and a file next to the catalog."""
    log_level = logging.DEBUG if verbose else logging.INFO

    db_path.parent.mkdir(parents=True, exist_ok=True)
    log_file = db_path.parent / "filemyphotos.log"

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ]
    )

    # Silence chatty libraries
    logging.getLogger("exifread").setLevel(logging.ERROR)
    logging.getLogger("PIL").setLevel(logging.WARNING)


def format_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024:
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} TB"


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="FileMyPhotos: catalog, organize by date, and revert")
    p.add_argument("--db", type=Path, default=config.DB_PATH, help=f"SQLite catalog path (default: {config.DB_PATH})")
    p.add_argument("--workers", type=int, default=3, help="Worker threads for scanning")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    sub = p.add_subparsers(dest="command", required=True)

    s = sub.add_parser("scan", help="Catalog every file under a directory")
    s.add_argument("src", type=Path, help="Directory to scan")
    s.add_argument("--no-recursive", action="store_true", help="Only scan the top-level directory")

    s = sub.add_parser("organize", help="Move pending files into dest/YYYY/MM/DD")
    s.add_argument("dest", type=Path, help="Destination library root")
    s.add_argument("--dry-run", action="store_true", help="Record decisions without touching disk")
    s.add_argument("--ids", type=int, nargs="+", default=None, help="Only organize these file ids")

    s = sub.add_parser("preview", help="Show where pending files would go")
    s.add_argument("dest", type=Path, help="Destination library root")
    s.add_argument("--limit", type=int, default=50)

    s = sub.add_parser("duplicates", help="List duplicate groups")
    s.add_argument("--mark", action="store_true", help="Mark pending duplicates in the catalog")
    s.add_argument("--stats", action="store_true", help="Only print summary statistics")

    s = sub.add_parser("revert", help="Move organized files back")
    target = s.add_mutually_exclusive_group(required=True)
    target.add_argument("--batch", help="Revert every move in a batch")
    target.add_argument("--operation", type=int, help="Revert a single move operation")
    s.add_argument("--preview", action="store_true", help="Only report what can be reverted")

    s = sub.add_parser("history", help="Operation history for one file")
    s.add_argument("file_id", type=int)

    s = sub.add_parser("batches", help="List recent batches")
    s.add_argument("--limit", type=int, default=20)

    s = sub.add_parser("errors", help="List recorded errors")
    s.add_argument("--limit", type=int, default=50)

    sub.add_parser("stats", help="Catalog summary")

    s = sub.add_parser("search", help="Search the catalog")
    s.add_argument("query", nargs="?", default=None, help="Substring of filename or path")
    s.add_argument("--from", dest="date_from", help="Earliest resolved date (YYYY-MM-DD)")
    s.add_argument("--to", dest="date_to", help="Latest resolved date (YYYY-MM-DD)")
    s.add_argument("--category", help="image / video / document")
    s.add_argument("--ext", help="File extension")
    s.add_argument("--status", help="pending / moved / duplicate / error")
    s.add_argument("--limit", type=int, default=50)

    s = sub.add_parser("report", help="Export a batch or the error log to CSV")
    s.add_argument("output", type=Path, help="CSV file to write")
    s.add_argument("--batch", help="Batch to export (default: error log)")

    return p.parse_args(argv)


# --- Commands ---

def cmd_scan(app: FileMyPhotosApp, args):
    result = app.scan_directory(args.src.resolve(), recursive=not args.no_recursive)
    print(f"Scan {result.status}: {result.processed_files}/{result.total_files} processed, "
          f"{result.new_files} new, {result.skipped_files} skipped, {result.error_files} errors")
    return 0 if result.status == STATE_COMPLETED else 1


def cmd_organize(app: FileMyPhotosApp, args):
    result = app.organize_files(args.dest.resolve(), dry_run=args.dry_run, file_ids=args.ids)
    label = "Dry run" if result.dry_run else "Organize"
    print(f"{label} {result.status} (batch {result.batch_id}): {result.moved_files} moved, "
          f"{result.duplicate_files} duplicates, {result.skipped_files} skipped, {result.error_files} errors")
    return 0 if result.error_files == 0 and result.status == STATE_COMPLETED else 1


def cmd_preview(app: FileMyPhotosApp, args):
    decisions = app.preview_organization(args.dest.resolve())
    for d in decisions[:args.limit]:
        target = d.destination_path or ""
        print(f"{d.file_id:6d} | {d.action.ljust(9)} | {d.source_path} -> {target}")
    if len(decisions) > args.limit:
        print(f"... {len(decisions) - args.limit} more")
    return 0


def cmd_duplicates(app: FileMyPhotosApp, args):
    if args.mark:
        marked = app.mark_duplicates()
        print(f"Marked {marked['files_marked']} files in {marked['groups_found']} groups")

    stats = app.calculate_duplicate_stats()
    print(f"{stats.duplicate_groups} groups, {stats.total_duplicate_files} duplicate files, "
          f"{format_size(stats.potential_space_savings)} reclaimable")
    if args.stats:
        return 0

    for group in app.find_all_duplicate_groups():
        print(f"\n{group.hash[:16]}  ({group.count} files, {format_size(group.reclaimable_size)} reclaimable)")
        print(f"  original:  [{group.original.id}] {group.original.location}")
        for dup in group.duplicates:
            print(f"  duplicate: [{dup.id}] {dup.location}")
    return 0


def cmd_revert(app: FileMyPhotosApp, args):
    if args.operation is not None:
        if args.preview:
            check = app.can_revert(args.operation)
            print("Can revert" if check.can_revert else f"Cannot revert: {check.reason}")
            return 0
        result = app.revert_operation(args.operation)
        print(f"Reverted {result.reverted_from} -> {result.original_path}")
        return 0

    if args.preview:
        for p in app.preview_batch_revert(args.batch):
            status = "ok" if p.can_revert else p.reason
            print(f"{p.operation_id:6d} | {p.current_path} -> {p.original_path} | {status}")
        return 0

    result = app.revert_batch(args.batch)
    print(f"Batch {result.batch_id}: {result.reverted} reverted, {result.skipped} skipped, {result.failed} failed")
    for err in result.errors:
        print(f"  operation {err['operation_id']}: {err['error']}")
    return 0 if result.failed == 0 else 1


def cmd_history(app: FileMyPhotosApp, args):
    record = app.get_file(args.file_id)
    print(f"[{record.id}] {record.filename} ({record.status}) at {record.location}")
    for op in app.file_history(args.file_id):
        print(f"  {op.created_at} | {op.operation_type.ljust(9)} | {op.status.ljust(9)} | "
              f"{op.source_path} -> {op.destination_path or ''}")
    return 0


def cmd_batches(app: FileMyPhotosApp, args):
    print("batch_id                             | type      | ops  | revertible | started_at")
    for b in app.recent_batches(args.limit):
        print(f"{b['batch_id']} | {b['operation_type'].ljust(9)} | {b['count']:4d} | "
              f"{b['revertible']:10d} | {b['started_at']}")
    return 0


def cmd_errors(app: FileMyPhotosApp, args):
    for err in app.list_errors(limit=args.limit):
        print(f"{err.created_at} | {err.error_type} | {err.file_path} | {err.error_message}")
    return 0


def cmd_stats(app: FileMyPhotosApp, args):
    stats = app.catalog_stats()
    print(f"Files:      {stats['total_files']} ({format_size(stats['total_size'])})")
    for status, count in sorted(stats['by_status'].items()):
        print(f"  {status.ljust(10)} {count}")
    print(f"Date range: {stats['date_range']['min'] or '-'} .. {stats['date_range']['max'] or '-'}")
    print(f"Errors:     {stats['errors']}")
    for ext, count in stats['extensions'][:10]:
        print(f"  {ext.ljust(6)} {count}")
    return 0


def cmd_search(app: FileMyPhotosApp, args):
    date_to = args.date_to
    if date_to and len(date_to) == 10:
        date_to = f"{date_to}T23:59:59.999+00:00"
    rows, total = app.search_files(
        query=args.query,
        date_from=args.date_from,
        date_to=date_to,
        category=args.category,
        extension=args.ext,
        status=args.status,
        limit=args.limit,
    )
    for r in rows:
        date = r.resolved_date.date().isoformat() if r.resolved_date else "-"
        print(f"{r.id:6d} | {date} | {r.status.ljust(9)} | {r.location}")
    print(f"{len(rows)} of {total} matching files")
    return 0


def cmd_report(app: FileMyPhotosApp, args):
    if args.batch:
        count = app.export_batch(args.batch, args.output)
    else:
        count = app.export_errors(args.output)
    print(f"Wrote {count} rows to {args.output}")
    return 0


COMMANDS = {
    "scan": cmd_scan,
    "organize": cmd_organize,
    "preview": cmd_preview,
    "duplicates": cmd_duplicates,
    "revert": cmd_revert,
    "history": cmd_history,
    "batches": cmd_batches,
    "errors": cmd_errors,
    "stats": cmd_stats,
    "search": cmd_search,
    "report": cmd_report,
}


def main(argv=None):
    args = parse_args(argv)
    db_path = args.db.expanduser().resolve()

    setup_logging(db_path, args.verbose)
    logging.debug(f"Catalog: {db_path}")

    app = FileMyPhotosApp(db_path, max_workers=args.workers, progress=True)
    try:
        return COMMANDS[args.command](app, args)
    except KeyboardInterrupt:
        logging.warning("Operation cancelled by user.")
        return 1
    except (FileMyPhotosError, LookupError, ValueError) as e:
        logging.error(str(e))
        return 1
    except Exception:
        logging.exception(f"Fatal error during {args.command}.")
        return 1
    finally:
        app.close()


if __name__ == "__main__":
    sys.exit(main())
