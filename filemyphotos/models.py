import json
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Optional, List, Dict, Any, Union, Tuple

# File lifecycle
STATUS_PENDING = 'pending'
STATUS_MOVED = 'moved'
STATUS_DUPLICATE = 'duplicate'
STATUS_ERROR = 'error'

# Resolved-date provenance
SOURCE_METADATA = 'metadata'
SOURCE_CREATED = 'created'
SOURCE_MODIFIED = 'modified'
SOURCE_DISCOVERED = 'discovered'

# Ledger
OP_SCAN = 'scan'
OP_MOVE = 'move'
OP_SKIP = 'skip'
OP_DUPLICATE = 'duplicate'
OP_ERROR = 'error'
OP_REVERT = 'revert'

OP_COMPLETED = 'completed'
OP_REVERTED = 'reverted'
OP_FAILED = 'failed'

# Scan sessions / organize batches
STATE_IDLE = 'idle'
STATE_IN_PROGRESS = 'in_progress'
STATE_COMPLETED = 'completed'
STATE_ERROR = 'error'
STATE_CANCELLED = 'cancelled'


# --- Extracted metadata (tagged union) ---

@dataclass(frozen=True)
class NoMetadata:
    """Extraction was attempted but nothing usable was embedded."""
    kind = 'none'


@dataclass(frozen=True)
class Unsupported:
    """The file's category carries no embedded metadata we read."""
    reason: str = ''
    kind = 'unsupported'


@dataclass(frozen=True)
class ImageExif:
    # Date fields hold either a datetime or the raw EXIF text ("YYYY:MM:DD HH:MM:SS")
    date_time_original: Optional[Union[datetime, str]] = None
    create_date: Optional[Union[datetime, str]] = None
    date_time_digitized: Optional[Union[datetime, str]] = None
    modify_date: Optional[Union[datetime, str]] = None
    make: Optional[str] = None
    model: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    orientation: Optional[str] = None
    gps_latitude: Optional[str] = None
    gps_longitude: Optional[str] = None
    kind = 'image_exif'

    def date_candidates(self) -> List[Optional[Union[datetime, str]]]:
        """Date fields in capture-time priority order."""
        return [self.date_time_original, self.create_date, self.date_time_digitized, self.modify_date]


ExtractedMetadata = Union[NoMetadata, ImageExif, Unsupported]


def metadata_to_json(category: Optional[str], meta: ExtractedMetadata) -> str:
    payload: Dict[str, Any] = {'kind': meta.kind}
    for key, value in asdict(meta).items():
        payload[key] = value.isoformat() if isinstance(value, datetime) else value
    return json.dumps({'category': category, 'metadata': payload})


def metadata_from_json(text: Optional[str]) -> Tuple[Optional[str], ExtractedMetadata]:
    if not text:
        return None, NoMetadata()
    data = json.loads(text)
    payload = dict(data.get('metadata') or {})
    kind = payload.pop('kind', NoMetadata.kind)

    meta: ExtractedMetadata
    if kind == ImageExif.kind:
        meta = ImageExif(**payload)
    elif kind == Unsupported.kind:
        meta = Unsupported(**payload)
    else:
        meta = NoMetadata()
    return data.get('category'), meta


# --- Catalog rows ---

@dataclass
class FileRecord:
    """
    One discovered file, keyed by the path it was first found at.
    """
    original_path: str
    filename: str
    extension: str
    size: int
    id: Optional[int] = None
    current_path: Optional[str] = None

    # Identity
    hash_sha256: Optional[str] = None
    hash_partial: Optional[str] = None

    # Classification
    mime_type: Optional[str] = None
    category: Optional[str] = None

    # Dates (UTC)
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None
    exif_date: Optional[datetime] = None
    resolved_date: Optional[datetime] = None
    date_source: Optional[str] = None

    status: str = STATUS_PENDING
    duplicate_of: Optional[int] = None
    metadata: ExtractedMetadata = field(default_factory=NoMetadata)

    created_timestamp: Optional[str] = None
    updated_timestamp: Optional[str] = None

    @property
    def location(self) -> str:
        """Where the file should live on disk right now."""
        return self.current_path or self.original_path


@dataclass
class OperationEntry:
    batch_id: str
    operation_type: str
    source_path: str
    file_id: Optional[int] = None
    destination_path: Optional[str] = None
    hash_used: Optional[str] = None
    reason: Optional[str] = None
    status: str = OP_COMPLETED
    id: Optional[int] = None
    created_at: Optional[str] = None


@dataclass
class ErrorRecord:
    file_path: str
    error_type: str
    error_message: Optional[str] = None
    stack_trace: Optional[str] = None
    file_id: Optional[int] = None
    id: Optional[int] = None
    created_at: Optional[str] = None


@dataclass
class ScanSession:
    source_path: str
    status: str = STATE_IN_PROGRESS
    total_files: int = 0
    processed_files: int = 0
    id: Optional[int] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


# --- Component inputs/outputs ---

@dataclass
class FileStat:
    size: int
    created_at: Optional[datetime]
    modified_at: Optional[datetime]
    is_file: bool
    is_directory: bool


@dataclass
class ResolvedDate:
    date: datetime
    source: str


@dataclass
class DateComponents:
    year: str
    month: str
    day: str


@dataclass
class ScanResult:
    """
    Progress snapshot of one scan. Mutated in place while the walk runs and
    returned to the caller when it finishes.
    """
    source_path: str
    session_id: Optional[int] = None
    status: str = STATE_IN_PROGRESS
    total_files: int = 0
    processed_files: int = 0
    new_files: int = 0
    skipped_files: int = 0
    error_files: int = 0
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    error: Optional[str] = None
    cancel_requested: bool = False

    @property
    def percent_complete(self) -> float:
        if not self.total_files:
            return 100.0 if self.status == STATE_COMPLETED else 0.0
        return min(100.0, 100.0 * self.processed_files / self.total_files)


@dataclass
class OrganizeDecision:
    """What organize did (or would do) with one catalog entry."""
    file_id: int
    filename: str
    source_path: str
    action: str                     # move / would_move / duplicate
    destination_path: Optional[str] = None
    duplicate_of: Optional[int] = None
    resolved_date: Optional[datetime] = None
    date_source: Optional[str] = None
    size: int = 0


@dataclass
class BatchResult:
    """State of one organize batch."""
    batch_id: str
    destination_base: str
    dry_run: bool = False
    status: str = STATE_IN_PROGRESS
    total_files: int = 0
    processed_files: int = 0
    moved_files: int = 0
    skipped_files: int = 0
    duplicate_files: int = 0
    error_files: int = 0
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    error: Optional[str] = None
    cancel_requested: bool = False
    operations: List[OrganizeDecision] = field(default_factory=list)


@dataclass
class DuplicateGroup:
    hash: str
    files: List[FileRecord]

    @property
    def original(self) -> FileRecord:
        return self.files[0]

    @property
    def duplicates(self) -> List[FileRecord]:
        return self.files[1:]

    @property
    def count(self) -> int:
        return len(self.files)

    @property
    def total_size(self) -> int:
        return sum(f.size for f in self.files)

    @property
    def reclaimable_size(self) -> int:
        return sum(f.size for f in self.duplicates)


@dataclass
class DuplicateMatch:
    record: FileRecord
    match_type: str     # hash / partial_hash
    confidence: str     # exact / likely


@dataclass
class DuplicateStats:
    duplicate_groups: int = 0
    total_duplicate_files: int = 0
    potential_space_savings: int = 0
    largest_group: Optional[Dict[str, Any]] = None


@dataclass
class RevertResult:
    operation_id: int
    file_id: int
    original_path: str
    reverted_from: str
    revert_batch_id: str


@dataclass
class RevertCheck:
    can_revert: bool
    reason: Optional[str] = None


@dataclass
class RevertPreview:
    operation_id: int
    file_id: Optional[int]
    current_path: Optional[str]
    original_path: str
    can_revert: bool
    reason: Optional[str] = None


@dataclass
class BatchRevertResult:
    batch_id: str
    total_operations: int = 0
    reverted: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
