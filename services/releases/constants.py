"""Constants shared across the release manager modules."""

from __future__ import annotations

API_BASE_URL = "https://api.github.com"
RELEASES_PATH = "/repos/{repo}/releases"
DEFAULT_USER_AGENT = "RecompReleaseManager"

VERSION_MARKER = "version.txt"
PORTABLE_MARKER = "portable.txt"
PORTABLE_DISABLED_MARKER = "portable_disabled.txt"
SELECTED_EXECUTABLE_MARKER = "selected_executable.txt"
LAST_PLAYED_MARKER = "LastPlayed.txt"
LAST_PLAYED_FORMAT = "%Y-%m-%d %H:%M:%S"

USER_MARKERS = (
    PORTABLE_MARKER,
    PORTABLE_DISABLED_MARKER,
    SELECTED_EXECUTABLE_MARKER,
    LAST_PLAYED_MARKER,
)

FULL_FRESHNESS_SECONDS = 24 * 60 * 60
INSTALLED_REVALIDATION_SECONDS = 6 * 60 * 60
NOT_INSTALLED_REVALIDATION_SECONDS = 24 * 60 * 60

DOWNLOAD_CHUNK_SIZE = 64 * 1024
PROGRESS_PREFLIGHT_END = 0.10
PROGRESS_DOWNLOAD_END = 0.90

BARE_EXECUTABLE_SUFFIXES = (".exe", ".appimage", ".x86_64", ".arm64", ".aarch64")
ZIP_SUFFIXES = (".zip",)
TAR_SUFFIXES = (".tar.gz", ".tgz", ".tar.xz")
LINUX_RUNTIME_SUFFIXES = (".x86_64", ".appimage", ".arm64", ".aarch64")
NON_EXECUTABLE_SUFFIXES = (
    ".so",
    ".dll",
    ".dylib",
    ".txt",
    ".md",
    ".json",
    ".ini",
    ".cfg",
    ".pak",
    ".png",
    ".jpg",
    ".ico",
    ".dat",
    ".log",
    ".xml",
    ".yaml",
    ".yml",
    ".pdb",
    ".sh",
)

# Extensionless files smaller than this are treated as data, not programs.
MIN_EXECUTABLE_BYTES = 100 * 1024

MAX_ARCHIVE_TOTAL_BYTES = 4 * 1024 * 1024 * 1024  # 4 GiB
MAX_ARCHIVE_FILE_SIZE = 2 * 1024 * 1024 * 1024  # 2 GiB per file
MAX_ARCHIVE_ENTRIES = 20000
MAX_COMPRESSION_RATIO = 200  # Uncompressed vs compressed bytes

DELETE_RETRY_ATTEMPTS = 5
DELETE_RETRY_INITIAL_DELAY = 0.2

LOCAL_RELEASES_FILE = "releases.json"

COMPAT_LAYER_COMMANDS = ("umu-run", "wine", "wine64")
STEAM_ROOT_CANDIDATES = (
    "~/.steam/steam",
    "~/.steam/root",
    "~/.local/share/Steam",
    "~/.var/app/com.valvesoftware.Steam/data/Steam",
)
