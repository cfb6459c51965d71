import logging
import mimetypes
import os
from pathlib import Path
from datetime import datetime, UTC
from typing import Optional, Union, Iterable, Tuple

import exifread
import filetype

from .. import config
from ..exceptions import MetadataExtractionError
from ..models import (
    FileRecord, FileStat, ImageExif, NoMetadata, Unsupported, ExtractedMetadata,
)

PathLike = Union[str, Path]


def parse_exif_value(value) -> Optional[datetime]:
    """
    Normalises one EXIF date field to an aware UTC datetime.

    Accepts datetime objects and text in the EXIF "YYYY:MM:DD HH:MM:SS"
    layout (ISO text is tolerated as well). Naive values are camera-local
    time. Returns None for anything unparseable, including the all-zero
    placeholder some cameras write.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            # Sub-second and offset suffixes are dropped; strptime rejects them
            dt = datetime.strptime(text[:19], config.EXIF_DATE_FORMAT)
        except ValueError:
            try:
                dt = datetime.fromisoformat(text.replace('Z', '+00:00'))
            except ValueError:
                return None

    try:
        if dt.tzinfo is None:
            dt = dt.astimezone()
        return dt.astimezone(UTC)
    except (ValueError, OverflowError, OSError):
        return None


def exif_date_from(meta: ExtractedMetadata) -> Optional[datetime]:
    """First parseable capture date, in original -> create -> digitized -> modify order."""
    if not isinstance(meta, ImageExif):
        return None
    for value in meta.date_candidates():
        dt = parse_exif_value(value)
        if dt:
            return dt
    return None


class MetadataExtractor:
    """
    Read-only metadata probes for a single path.

      - Category comes from the static extension table.
      - MIME type is sniffed from content with 'filetype', falling back to
        an extension guess.
      - Capture dates come from EXIF via 'exifread', images only.
    """
    def __init__(self,
                 skip_files: Optional[Iterable[str]] = None,
                 skip_directories: Optional[Iterable[str]] = None):
        self.skip_files = set(skip_files) if skip_files is not None else set(config.SKIP_FILES)
        self.skip_directories = (set(skip_directories) if skip_directories is not None
                                 else set(config.SKIP_DIRECTORIES))

    # --- Filesystem ---

    def stat(self, path: PathLike) -> FileStat:
        try:
            st = os.stat(path)
        except FileNotFoundError as e:
            raise MetadataExtractionError(f"Path does not exist: {path}") from e

        # Creation time is only reported where the platform tracks it (st_birthtime)
        birth = getattr(st, 'st_birthtime', None)
        return FileStat(
            size=st.st_size,
            created_at=datetime.fromtimestamp(birth, UTC) if birth else None,
            modified_at=datetime.fromtimestamp(st.st_mtime, UTC),
            is_file=Path(path).is_file(),
            is_directory=Path(path).is_dir(),
        )

    # --- Classification ---

    def category(self, path: PathLike) -> Tuple[str, str]:
        """Returns (extension, category). Pure lookup, no I/O."""
        ext = Path(path).suffix.lower()
        return ext, config.EXT_TO_CATEGORY.get(ext, 'other')

    def mime_type(self, path: PathLike) -> Optional[str]:
        try:
            kind = filetype.guess(str(path))
            if kind is not None:
                return kind.mime
        except OSError as e:
            logging.debug(f"MIME sniff failed for {path}: {e}")
        return self._mime_from_extension(path)

    def _mime_from_extension(self, path: PathLike) -> Optional[str]:
        guessed, _ = mimetypes.guess_type(str(path))
        if guessed:
            return guessed
        ext = Path(path).suffix.lower()
        return f"application/{ext[1:]}" if ext else "application/octet-stream"

    # --- Embedded metadata ---

    def read_exif(self, path: PathLike) -> ExtractedMetadata:
        """EXIF fields of an image. Never raises; absent or unreadable EXIF gives NoMetadata."""
        try:
            with open(path, 'rb') as f:
                # details=False skips maker notes and thumbnails
                tags = exifread.process_file(f, details=False)
        except Exception as e:
            logging.warning(f"ExifRead failed for {path}: {e}")
            return NoMetadata()

        if not tags:
            return NoMetadata()

        def tag(name: str) -> Optional[str]:
            value = tags.get(name)
            return str(value).strip() if value is not None else None

        def int_tag(name: str) -> Optional[int]:
            value = tag(name)
            try:
                return int(value) if value is not None else None
            except ValueError:
                return None

        return ImageExif(
            date_time_original=tag(config.DATE_TAGS['date_time_original']),
            create_date=tag(config.DATE_TAGS['create_date']),
            date_time_digitized=tag(config.DATE_TAGS['date_time_digitized']),
            modify_date=tag(config.DATE_TAGS['modify_date']),
            make=tag('Image Make'),
            model=tag('Image Model'),
            width=int_tag('EXIF ExifImageWidth'),
            height=int_tag('EXIF ExifImageLength'),
            orientation=tag('Image Orientation'),
            gps_latitude=tag('GPS GPSLatitude'),
            gps_longitude=tag('GPS GPSLongitude'),
        )

    def embedded_metadata(self, path: PathLike, category: Optional[str] = None) -> ExtractedMetadata:
        if category is None:
            _, category = self.category(path)
        if category != 'image':
            return Unsupported(reason=f"no embedded metadata for category '{category}'")
        return self.read_exif(path)

    def embedded_date(self, path: PathLike) -> Optional[datetime]:
        """Capture time from EXIF for images; None for anything else or on failure."""
        return exif_date_from(self.embedded_metadata(path))

    # --- Skip rules ---

    def should_skip_file(self, name: str) -> bool:
        return name.startswith('.') or name in self.skip_files

    def should_skip_directory(self, name: str) -> bool:
        return name.startswith('.') or name in self.skip_directories

    # --- Aggregate ---

    def extract(self, path: PathLike) -> FileRecord:
        """
        Builds an uncatalogued FileRecord with stat, type and EXIF fields filled.
        Hashes and the resolved date are left for the caller.
        """
        p = Path(path)
        st = self.stat(p)
        ext, category = self.category(p)
        meta = self.embedded_metadata(p, category)

        return FileRecord(
            original_path=str(p),
            current_path=str(p),
            filename=p.name,
            extension=ext,
            size=st.size,
            mime_type=self.mime_type(p),
            category=category,
            created_at=st.created_at,
            modified_at=st.modified_at,
            exif_date=exif_date_from(meta),
            metadata=meta,
        )
