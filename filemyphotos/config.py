"""
Configuration constants for File My Photos.
"""
import os
from pathlib import Path

# --- File Type Definitions ---
IMAGE_EXTS = {'.jpg', '.jpeg', '.png', '.gif', '.bmp', '.webp', '.heic', '.heif',
              '.tiff', '.tif', '.raw', '.cr2', '.nef', '.arw'}
VIDEO_EXTS = {'.mp4', '.mov', '.avi', '.mkv', '.wmv', '.flv', '.webm', '.m4v', '.3gp'}
DOCUMENT_EXTS = {'.pdf', '.doc', '.docx', '.xls', '.xlsx', '.ppt', '.pptx',
                 '.txt', '.rtf', '.odt', '.ods', '.odp'}

# Extension to Category Mapping
EXT_TO_CATEGORY = {}
for ext in IMAGE_EXTS: EXT_TO_CATEGORY[ext] = 'image'
for ext in VIDEO_EXTS: EXT_TO_CATEGORY[ext] = 'video'
for ext in DOCUMENT_EXTS: EXT_TO_CATEGORY[ext] = 'document'

# --- Scanning ---
SKIP_FILES = {'.DS_Store', 'Thumbs.db', 'desktop.ini', '.gitkeep', '.gitignore'}
SKIP_DIRECTORIES = {'node_modules', '.git', '__pycache__', '.cache', '.Trash'}

# Files per directory chunk during the processing pass
BATCH_SIZE = int(os.environ.get('FILEMYPHOTOS_BATCH_SIZE', '100'))

# --- Metadata Parsing ---
# Priority order: original capture -> create -> digitized -> modify.
# exifread exposes the IFD0 copy of DateTimeOriginal as 'Image DateTimeOriginal',
# which is what some cameras write as their creation stamp.
DATE_TAGS = {
    'date_time_original': 'EXIF DateTimeOriginal',
    'create_date': 'Image DateTimeOriginal',
    'date_time_digitized': 'EXIF DateTimeDigitized',
    'modify_date': 'Image DateTime',
}
EXIF_DATE_FORMAT = "%Y:%m:%d %H:%M:%S"

# --- Hashing ---
PREFIX_HASH_SIZE = int(os.environ.get('FILEMYPHOTOS_PREFIX_HASH_SIZE', str(64 * 1024)))
HASH_CHUNK_SIZE = 1024 * 1024  # 1 MB reads

# --- Organization ---
MAX_COLLISION_ATTEMPTS = 100
HASH_SUFFIX_LENGTH = 8

# --- Catalog ---
DB_PATH = Path(os.environ.get('FILEMYPHOTOS_DB_PATH', str(Path.home() / '.filemyphotos' / 'catalog.db')))
