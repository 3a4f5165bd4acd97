#!/usr/bin/env python3
"""appbundler - package an executable or a Java JAR into a macOS .app bundle.

This module provides tools for:
1. Creating the .app directory hierarchy (Contents, MacOS, Resources, Java)
2. Writing the Info.plist and PkgInfo metadata files
3. Staging a native binary, or a JAR with a generated launcher script and
   an optional embedded Java runtime
4. Optionally signing, verifying and notarizing the resulting bundle

The bundle is described by a YAML file (``application.yaml`` by default)
holding flat string fields such as ``id``, ``name``, ``version``,
``executable`` and ``exec_file``.

Usage (CLI):
    # Build MyApp.app from application.yaml in the current directory
    appbundler

    # Rebuild from scratch, sign and notarize
    appbundler --application app.yaml --clean --sign --notarize --profile AC

Usage (API):
    from appbundler import AppBundler, load_descriptor

    descriptor = load_descriptor("application.yaml")
    AppBundler(descriptor, clean=True).create()
"""

import argparse
import datetime
import itertools
import logging
import os
import re
import shutil
import subprocess
import sys
import tempfile
import threading
import time
import tomllib
from dataclasses import dataclass
from pathlib import Path

import yaml
from dotenv import load_dotenv

# ----------------------------------------------------------------------------
# Constants

__version__ = "0.3.0"

# Type aliases
Pathlike = Path | str

# Default application description file
DEFAULT_DESCRIPTION_FILE = "application.yaml"

# Bundle extension
BUNDLE_EXT = ".app"

# PkgInfo defaults (APPL = Application, ???? = unknown creator code)
DEFAULT_PACKAGE_TYPE = "APPL"
DEFAULT_SIGNATURE = "????"

# Permission bits for created directories, binaries and launcher scripts
DIR_MODE = 0o755
EXEC_MODE = 0o755

# Default notarization wait (seconds); notarytool usually takes minutes
DEFAULT_NOTARIZE_TIMEOUT = 1800

# Environment variable names
ENV_DEV_ID = "DEV_ID"
ENV_KEYCHAIN_PROFILE = "KEYCHAIN_PROFILE"

INFO_PLIST_TMPL = """\
<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE plist PUBLIC "-//Apple//DTD PLIST 1.0//EN" "http://www.apple.com/DTDs/PropertyList-1.0.dtd">
<plist version="1.0">
<dict>
    <key>CFBundleIdentifier</key>
    <string>{bundle_identifier}</string>
    <key>CFBundleName</key>
    <string>{bundle_name}</string>
    <key>CFBundleDisplayName</key>
    <string>{display_name}</string>
    <key>CFBundleVersion</key>
    <string>{bundle_version}</string>
    <key>CFBundleShortVersionString</key>
    <string>{short_version}</string>
    <key>CFBundleExecutable</key>
    <string>{executable}</string>
    <key>CFBundleSignature</key>
    <string>{signature}</string>
    <key>LSMinimumSystemVersion</key>
    <string>{min_system_version}</string>
    <key>CFBundleIconFile</key>
    <string>{icon_file}</string>
    <key>CFBundlePackageType</key>
    <string>{package_type}</string>
    <key>NSHumanReadableCopyright</key>
    <string>{copyright}</string>
{optional_keys}</dict>
</plist>
"""

PLIST_ENTRY_TMPL = """\
    <key>{key}</key>
    <string>{value}</string>
"""

# Launcher for a JAR running on a Java runtime embedded in the bundle
BUNDLED_JAVA_LAUNCHER_TMPL = """\
#!/bin/bash

DIR="$(cd "$(dirname "$0")" && pwd)"
export JAVA_HOME="$DIR/../Java/runtime"
"$JAVA_HOME/bin/java" -jar "$DIR/{jar_file}"
"""

# Launcher for a JAR running on the system Java
SYSTEM_JAVA_LAUNCHER_TMPL = """\
#!/bin/bash

DIR="$(cd "$(dirname "$0")" && pwd)"
java -jar "$DIR/{jar_file}"
"""

# ----------------------------------------------------------------------------
# Configuration file support


def load_config(config_path: Path | None = None) -> dict[str, object]:
    """Load tool defaults from a TOML file.

    Searches for configuration in the following order:
    1. Explicit config_path if provided
    2. .appbundler.toml in current directory
    3. appbundler.toml in current directory

    Args:
        config_path: Optional explicit path to config file

    Returns:
        Configuration dictionary (empty if no config found)

    Raises:
        ConfigurationError: If a config file exists but cannot be parsed

    Example .appbundler.toml:
        [build]
        application = "packaging/application.yaml"
        output = "dist"
        profile = "AC_PROFILE"
        logdir = "logs"
    """
    if config_path is not None:
        if not config_path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")
        paths_to_try = [config_path]
    else:
        cwd = Path.cwd()
        paths_to_try = [
            cwd / ".appbundler.toml",
            cwd / "appbundler.toml",
        ]

    for path in paths_to_try:
        if path.exists():
            try:
                with open(path, "rb") as f:
                    data: dict[str, object] = tomllib.load(f)
            except (OSError, tomllib.TOMLDecodeError) as e:
                raise ConfigurationError(
                    f"Cannot read config file {path}: {e}"
                ) from e
            return data

    return {}


def get_config_value(
    config: dict[str, object],
    section: str,
    key: str,
    default: str | None = None,
) -> str | None:
    """Get a value from config with section.key lookup.

    Args:
        config: Configuration dictionary
        section: Section name (e.g., "build")
        key: Key name within section
        default: Default value if not found

    Returns:
        Configuration value (as a string) or default
    """
    section_config = config.get(section, {})
    if not isinstance(section_config, dict):
        return default
    value = section_config.get(key, default)
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return default


# ----------------------------------------------------------------------------
# Error handling


class BundlerError(Exception):
    """Base exception class for appbundler errors."""

    exit_code: int = 1


class CommandError(BundlerError):
    """Exception raised when a command fails."""

    def __init__(
        self, command: str, returncode: int, output: str | None = None
    ):
        self.command = command
        self.returncode = returncode
        self.output = output
        message = f"Command '{command}' failed with return code {returncode}"
        if output and output.strip():
            message = f"{message}\n{output.strip()}"
        super().__init__(message)


class CommandTimeoutError(BundlerError):
    """Exception raised when a command exceeds its time limit."""

    def __init__(self, command: str, timeout: float):
        self.command = command
        self.timeout = timeout
        super().__init__(f"Command '{command}' timed out after {timeout}s")


class ToolNotFoundError(BundlerError):
    """Exception raised when a required program is not on PATH."""


class FileError(BundlerError):
    """Exception raised when a file operation fails."""


class ConfigurationError(BundlerError):
    """Exception raised when configuration is invalid."""


class ValidationError(BundlerError):
    """Exception raised when bundle metadata is incomplete."""


class CodesignError(BundlerError):
    """Exception raised when codesigning fails."""


class NotarizationError(BundlerError):
    """Exception raised when notarization fails."""


class NotarizationTimeoutError(NotarizationError):
    """Notarization did not finish in time; submitting again may succeed."""

    exit_code = 75
    retryable = True


# ----------------------------------------------------------------------------
# Bundle description


# Mapping of YAML keys to BundleDescriptor attributes
DESCRIPTOR_KEYS = {
    "id": "identifier",
    "name": "name",
    "version": "version",
    "display_name": "display_name",
    "type": "package_type",
    "executable": "executable",
    "signature": "signature",
    "exec_file": "exec_file",
    "exec_file_directory": "exec_file_directory",
    "icon_file": "icon_file",
    "icon_file_directory": "icon_file_directory",
    "system_minimal_os_version": "min_system_version",
    "document_types": "document_types",
    "short_version_string": "short_version",
    "readable_copyright": "copyright",
    "main_nib_file": "main_nib_file",
    "principle_class": "principal_class",
    "local_java": "local_java",
    "local_java_home": "local_java_home",
    "local_exec_directory": "local_exec_directory",
}

# Fields that must be non-empty before Info.plist can be written
MANDATORY_KEYS = (
    "id",
    "version",
    "name",
    "executable",
    "system_minimal_os_version",
    "icon_file",
)


@dataclass(frozen=True)
class BundleDescriptor:
    """Resolved description of the bundle to build.

    Every field is a plain string; absent fields are empty.
    """

    identifier: str = ""
    name: str = ""
    version: str = ""
    display_name: str = ""
    package_type: str = ""
    executable: str = ""
    signature: str = ""
    exec_file: str = ""
    exec_file_directory: str = ""
    icon_file: str = ""
    icon_file_directory: str = ""
    min_system_version: str = ""
    document_types: str = ""
    short_version: str = ""
    copyright: str = ""
    main_nib_file: str = ""
    principal_class: str = ""
    local_java: str = ""
    local_java_home: str = ""
    local_exec_directory: str = ""

    @classmethod
    def from_mapping(cls, data: dict[str, object]) -> "BundleDescriptor":
        """Build a descriptor from a mapping keyed by YAML field names.

        Raises:
            ConfigurationError: If a known field holds a list or mapping
        """
        log = logging.getLogger(cls.__name__)
        values: dict[str, str] = {}
        for key, value in data.items():
            attr = DESCRIPTOR_KEYS.get(str(key))
            if attr is None:
                log.debug("ignoring unknown field: %s", key)
                continue
            if value is None:
                values[attr] = ""
            elif isinstance(value, (dict, list)):
                raise ConfigurationError(
                    f"Field '{key}' must be a single value"
                )
            else:
                values[attr] = str(value)
        return cls(**values)

    def get(self, key: str) -> str:
        """Return a field by its YAML name; unknown names give ''."""
        attr = DESCRIPTOR_KEYS.get(key)
        if attr is None:
            return ""
        return getattr(self, attr)

    @property
    def use_local_java(self) -> bool:
        return self.local_java.lower() == "true"

    @property
    def is_jar(self) -> bool:
        # suffix match is case-sensitive: "app.JAR" is a binary payload
        return self.exec_file.endswith("jar")

    @property
    def executable_dir(self) -> Path:
        return Path(self.local_exec_directory or self.exec_file_directory)

    @property
    def executable_source(self) -> Path:
        return self.executable_dir / self.exec_file

    @property
    def icon_source(self) -> Path:
        return Path(self.icon_file_directory) / self.icon_file

    @property
    def java_home(self) -> Path:
        return Path(self.local_java_home)

    def missing_fields(self) -> list[str]:
        """Return the mandatory YAML fields that are empty."""
        return [key for key in MANDATORY_KEYS if not self.get(key)]

    def check_sources(self) -> None:
        """Check that every file the bundle is built from exists.

        Raises:
            ConfigurationError: If the executable, icon or Java home is
                missing, or a JAR launcher would replace the JAR
        """
        if not self.exec_file:
            raise ConfigurationError("No executable file (exec_file) defined")
        if not self.executable_source.exists():
            raise ConfigurationError(
                f"Executable file not found: {self.executable_source}"
            )
        if self.is_jar and self.executable == self.exec_file:
            # the launcher script would overwrite the staged JAR
            raise ConfigurationError(
                f"Executable name '{self.executable}' must differ from "
                "the JAR file name for a JAR payload"
            )
        if self.icon_file and not self.icon_source.exists():
            raise ConfigurationError(
                f"Icon file not found: {self.icon_source}"
            )
        if self.use_local_java:
            if not self.local_java_home:
                raise ConfigurationError(
                    "local_java is enabled but local_java_home is not set"
                )
            if not self.java_home.exists():
                raise ConfigurationError(
                    f"Local Java home directory not found: {self.java_home}"
                )


def load_descriptor(path: Pathlike) -> BundleDescriptor:
    """Read a bundle description from a YAML file.

    Scalars are kept exactly as written (``1.10`` stays ``"1.10"``,
    ``true`` stays ``"true"``).

    Args:
        path: Path to the YAML description file

    Returns:
        The parsed BundleDescriptor

    Raises:
        ConfigurationError: If the file is missing or malformed
    """
    path = Path(path)
    log = logging.getLogger("appbundler")
    log.debug("reading bundle description: %s", path)
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.load(f, Loader=yaml.BaseLoader)
    except FileNotFoundError as e:
        raise ConfigurationError(
            f"Description file not found: {path}"
        ) from e
    except OSError as e:
        raise ConfigurationError(
            f"Cannot read description file {path}: {e}"
        ) from e
    except UnicodeDecodeError as e:
        raise ConfigurationError(
            f"Description file {path} is not valid UTF-8: {e}"
        ) from e
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Invalid YAML in description file {path}: {e}"
        ) from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Description file {path} must contain a mapping of fields"
        )
    return BundleDescriptor.from_mapping(data)


def validate_descriptor(descriptor: BundleDescriptor) -> None:
    """Ensure the fields Info.plist requires are present.

    Raises:
        ValidationError: If any mandatory field is empty
    """
    missing = descriptor.missing_fields()
    if missing:
        raise ValidationError(
            "Info.plist mandatory fields missing: " + ", ".join(missing)
        )


# ----------------------------------------------------------------------------
# Certificate validation

# Developer ID format: "Name" or "Name (TEAM_ID)" where TEAM_ID is 10 alphanumeric chars
# The full signing identity is "Developer ID Application: Name (TEAM_ID)"
DEVELOPER_ID_PATTERN = re.compile(
    r"^[A-Za-z][A-Za-z0-9\s\.\-\,\']+(?:\s+\([A-Z0-9]{10}\))?$"
)

# One line of `security find-identity` output: '  1) 0123ABCD... "Name"'
IDENTITY_PATTERN = re.compile(r'\d+\)\s+[A-F0-9]+\s+"(.+?)"')


def validate_developer_id(dev_id: str) -> None:
    """Validate Developer ID string format.

    Developer ID should be in one of these formats:
    - "John Doe" (name only)
    - "John Doe (ABCD123456)" (name with 10-character Team ID)

    Args:
        dev_id: The Developer ID name to validate

    Raises:
        ValidationError: If the Developer ID format is invalid
    """
    if not dev_id or not dev_id.strip():
        raise ValidationError("Developer ID cannot be empty")

    dev_id = dev_id.strip()

    if len(dev_id) < 2:
        raise ValidationError(f"Developer ID is too short: '{dev_id}'")

    if len(dev_id) > 100:
        raise ValidationError(
            f"Developer ID is too long (max 100 characters): '{dev_id}'"
        )

    if not DEVELOPER_ID_PATTERN.match(dev_id):
        raise ValidationError(
            f"Developer ID has invalid format: '{dev_id}'. "
            "Expected format: 'Name' or 'Name (TEAM_ID)' where TEAM_ID is 10 alphanumeric characters"
        )


# ----------------------------------------------------------------------------
# Progress indicator


class ProgressSpinner:
    """A simple terminal spinner for long-running operations.

    Example:
        with ProgressSpinner("Waiting for notarization"):
            time.sleep(5)
    """

    SPINNER_CHARS = ["|", "/", "-", "\\"]

    def __init__(self, message: str = ""):
        self.message = message
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def _spin(self) -> None:
        spinner = itertools.cycle(self.SPINNER_CHARS)
        while not self._stop_event.is_set():
            sys.stdout.write(f"\r{self.message} {next(spinner)} ")
            sys.stdout.flush()
            time.sleep(0.1)
        sys.stdout.write(f"\r{self.message} done\n")
        sys.stdout.flush()

    def start(self) -> None:
        """Start the spinner."""
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._spin, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the spinner."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=1.0)

    def __enter__(self) -> "ProgressSpinner":
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()


# ----------------------------------------------------------------------------
# Logging configuration


class CustomFormatter(logging.Formatter):
    """Custom logging formatting class with color support."""

    class color:
        """Text colors for terminal output."""

        white = "\x1b[97;20m"
        grey = "\x1b[38;20m"
        green = "\x1b[32;20m"
        cyan = "\x1b[36;20m"
        yellow = "\x1b[33;20m"
        red = "\x1b[31;20m"
        bold_red = "\x1b[31;1m"
        reset = "\x1b[0m"

    cfmt = (
        f"{color.white}%(delta)s{color.reset} - "
        f"{{}}%(levelname)s{color.reset} - "
        f"{color.white}%(name)s.%(funcName)s{color.reset} - "
        f"{color.grey}%(message)s{color.reset}"
    )

    FORMATS = {
        logging.DEBUG: cfmt.format(color.grey),
        logging.INFO: cfmt.format(color.green),
        logging.WARNING: cfmt.format(color.yellow),
        logging.ERROR: cfmt.format(color.red),
        logging.CRITICAL: cfmt.format(color.bold_red),
    }

    def __init__(self, use_color: bool = True):
        self.use_color = use_color
        self.fmt = (
            "%(delta)s - %(levelname)s - %(name)s.%(funcName)s - %(message)s"
        )

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record with color if enabled."""
        if not self.use_color:
            log_fmt = self.fmt
        else:
            log_fmt = self.FORMATS[record.levelno]
        duration = datetime.datetime.fromtimestamp(
            record.relativeCreated / 1000, datetime.timezone.utc
        )
        record.delta = duration.strftime("%H:%M:%S")
        formatter = logging.Formatter(log_fmt)
        return formatter.format(record)


# Handlers installed by setup_logging/add_file_logging
_handlers: list[logging.Handler] = []


def setup_logging(
    debug: bool = False, use_color: bool = True, silent: bool = False
) -> None:
    """Configure console logging for the application.

    Calling it again replaces the handlers a previous call installed.

    Args:
        debug: Whether to enable debug logging
        use_color: Whether to use colored output
        silent: Only report errors on the console
    """
    root = logging.getLogger()
    while _handlers:
        handler = _handlers.pop()
        root.removeHandler(handler)
        handler.close()

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(CustomFormatter(use_color))
    if silent:
        stream_handler.setLevel(logging.ERROR)
    root.addHandler(stream_handler)
    _handlers.append(stream_handler)
    root.setLevel(logging.DEBUG if debug else logging.INFO)


def add_file_logging(app_name: str, log_dir: Pathlike) -> Path:
    """Also write log records to ``<log_dir>/<app_name>_<timestamp>.log``.

    Returns:
        Path of the log file

    Raises:
        FileError: If the directory or file cannot be created
    """
    log_dir = Path(log_dir)
    stamp = datetime.datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    log_file = log_dir / f"{app_name or 'appbundler'}_{stamp}.log"
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
    except OSError as e:
        raise FileError(f"Cannot open log file {log_file}: {e}") from e
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(levelname)s - %(name)s.%(funcName)s - %(message)s"
        )
    )
    logging.getLogger().addHandler(file_handler)
    _handlers.append(file_handler)
    return log_file


# ----------------------------------------------------------------------------
# Command execution utilities


def find_program(name: str) -> str:
    """Locate a program on PATH.

    Raises:
        ToolNotFoundError: If the program cannot be found
    """
    path = shutil.which(name)
    if path is None:
        raise ToolNotFoundError(f"Program '{name}' not found in PATH")
    return path


def run_command(
    command: list[str],
    log: logging.Logger | None = None,
    cwd: Pathlike | None = None,
    timeout: float | None = None,
) -> str:
    """Run a command and return its output.

    Uses shell=False; stdout and stderr are captured.

    Args:
        command: The command as a list of arguments
        log: Optional logger for debug output
        cwd: Working directory for the command
        timeout: Seconds to wait before giving up (None waits forever)

    Returns:
        The command stdout output

    Raises:
        CommandError: If the command fails
        CommandTimeoutError: If the command does not finish in time
    """
    cmd_str = " ".join(command)
    if log:
        log.debug("%s", cmd_str)
    try:
        result = subprocess.run(
            command,
            shell=False,
            check=True,
            text=True,
            capture_output=True,
            cwd=cwd,
            timeout=timeout,
        )
        return result.stdout
    except subprocess.CalledProcessError as e:
        raise CommandError(cmd_str, e.returncode, e.stderr or e.output) from e
    except subprocess.TimeoutExpired as e:
        raise CommandTimeoutError(cmd_str, e.timeout) from e
    except OSError as e:
        raise CommandError(cmd_str, -1, str(e)) from e


# ----------------------------------------------------------------------------
# Filesystem helpers


def remove_tree(path: Pathlike) -> None:
    """Recursively delete path; a missing path is not an error.

    Raises:
        FileError: If the path exists but cannot be removed
    """
    path = Path(path)
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        elif path.exists() or path.is_symlink():
            path.unlink()
    except OSError as e:
        raise FileError(f"Cannot remove {path}: {e}") from e


def copy_tree(src: Pathlike, dest: Pathlike) -> None:
    """Mirror the contents of src into dest.

    Symbolic links are recreated as links, and every entry keeps the
    permission bits and owner/group of its source.

    Raises:
        FileError: If any entry cannot be copied
    """
    src = Path(src)
    dest = Path(dest)
    try:
        shutil.copytree(src, dest, symlinks=True, dirs_exist_ok=True)
        for root, dirs, files in os.walk(src):
            relative = Path(root).relative_to(src)
            for name in itertools.chain(dirs, files):
                st = os.lstat(Path(root) / name)
                os.lchown(dest / relative / name, st.st_uid, st.st_gid)
    except OSError as e:
        raise FileError(f"Cannot copy {src} to {dest}: {e}") from e


# ----------------------------------------------------------------------------
# Bundle layout


@dataclass(frozen=True)
class BundleLayout:
    """Directory paths of a bundle, all derived from its root."""

    root: Path

    @classmethod
    def from_name(
        cls, root_name: str, output_dir: Pathlike | None = None
    ) -> "BundleLayout":
        base = Path(output_dir) if output_dir else Path.cwd()
        return cls(base / f"{root_name}{BUNDLE_EXT}")

    @property
    def contents(self) -> Path:
        return self.root / "Contents"

    @property
    def macos(self) -> Path:
        return self.contents / "MacOS"

    @property
    def resources(self) -> Path:
        return self.contents / "Resources"

    @property
    def java(self) -> Path:
        return self.contents / "Java"

    @property
    def java_runtime(self) -> Path:
        return self.java / "runtime"

    @property
    def info_plist(self) -> Path:
        return self.contents / "Info.plist"

    @property
    def pkg_info(self) -> Path:
        return self.contents / "PkgInfo"

    def directories(self) -> list[Path]:
        """Directories of the bundle in creation order."""
        return [
            self.root,
            self.contents,
            self.macos,
            self.resources,
            self.java,
            self.java_runtime,
        ]


class DirectoryBuilder:
    """Creates and removes the bundle directory skeleton.

    Args:
        output_dir: Directory the bundle is created in (default: cwd)
    """

    def __init__(self, output_dir: Pathlike | None = None):
        self.output_dir = Path(output_dir) if output_dir else Path.cwd()
        self.layout: BundleLayout | None = None
        # outermost directory created by build(); removed by teardown()
        self.created: Path | None = None
        self.log = logging.getLogger(self.__class__.__name__)

    @staticmethod
    def _outermost_missing(path: Path) -> Path | None:
        missing = None
        for candidate in (path, *path.parents):
            if candidate.exists() or candidate.is_symlink():
                break
            missing = candidate
        return missing

    def layout_for(self, root_name: str) -> BundleLayout:
        """Return the layout for root_name without touching the disk."""
        if not root_name:
            raise ConfigurationError(
                "Application root directory cannot be empty"
            )
        return BundleLayout.from_name(root_name, self.output_dir)

    def build(self, root_name: str) -> BundleLayout:
        """Create the bundle directories for root_name.

        A missing output directory is created as well. If any directory
        cannot be created, everything this call created is removed before
        the error is raised.

        Returns:
            The created layout

        Raises:
            ConfigurationError: If root_name is empty
            FileError: If a directory cannot be created
        """
        layout = self.layout_for(root_name)
        self.layout = layout
        self.created = self._outermost_missing(layout.root) or layout.root
        self.log.info("Creating bundle directories at %s", layout.root)
        for directory in layout.directories():
            try:
                directory.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
                os.chmod(directory, DIR_MODE)
            except OSError as e:
                self.log.debug("error creating directory %s: %s", directory, e)
                self.teardown()
                raise FileError(
                    f"Cannot create directory {directory}: {e}"
                ) from e
        return layout

    def teardown(self) -> None:
        """Delete the bundle root, and any output directory build() made."""
        if self.layout is None:
            return
        target = self.created or self.layout.root
        self.log.info("Deleting bundle %s", target)
        remove_tree(target)


# ----------------------------------------------------------------------------
# Metadata generation


def render_info_plist(descriptor: BundleDescriptor) -> str:
    """Render the Info.plist document for descriptor.

    Values are inserted verbatim. NSPrincipalClass and NSMainNibFile are
    only emitted when set.

    Raises:
        ValidationError: If any mandatory field is empty
    """
    validate_descriptor(descriptor)
    optional_keys = ""
    if descriptor.principal_class:
        optional_keys += PLIST_ENTRY_TMPL.format(
            key="NSPrincipalClass", value=descriptor.principal_class
        )
    if descriptor.main_nib_file:
        optional_keys += PLIST_ENTRY_TMPL.format(
            key="NSMainNibFile", value=descriptor.main_nib_file
        )
    return INFO_PLIST_TMPL.format(
        bundle_identifier=descriptor.identifier,
        bundle_name=descriptor.name,
        display_name=descriptor.display_name,
        bundle_version=descriptor.version,
        short_version=descriptor.short_version,
        executable=descriptor.executable,
        signature=descriptor.signature,
        min_system_version=descriptor.min_system_version,
        icon_file=descriptor.icon_file,
        # deliberate: "APP" is not a valid package type, so the fallback
        # matches the PkgInfo default instead
        package_type=descriptor.package_type or DEFAULT_PACKAGE_TYPE,
        copyright=descriptor.copyright,
        optional_keys=optional_keys,
    )


def _four_char_code(value: str, default: str) -> bytes:
    data = value.encode("utf-8")
    if len(data) != 4:
        return default.encode("ascii")
    return data


def render_pkg_info(descriptor: BundleDescriptor) -> bytes:
    """Return the 8-byte PkgInfo content: package type + signature."""
    return _four_char_code(
        descriptor.package_type, DEFAULT_PACKAGE_TYPE
    ) + _four_char_code(descriptor.signature, DEFAULT_SIGNATURE)


class MetadataGenerator:
    """Writes Contents/Info.plist and Contents/PkgInfo."""

    def __init__(self, descriptor: BundleDescriptor, layout: BundleLayout):
        self.descriptor = descriptor
        self.layout = layout
        self.log = logging.getLogger(self.__class__.__name__)

    def _write(self, path: Path, data: bytes) -> None:
        try:
            path.write_bytes(data)
        except OSError as e:
            raise FileError(f"Cannot write {path}: {e}") from e

    def create_info_plist(self) -> None:
        """Create the Info.plist file; nothing is written if invalid."""
        content = render_info_plist(self.descriptor)
        self._write(self.layout.info_plist, content.encode("utf-8"))
        self.log.debug("wrote %s", self.layout.info_plist)

    def create_pkg_info(self) -> None:
        """Create the PkgInfo file."""
        self._write(self.layout.pkg_info, render_pkg_info(self.descriptor))
        self.log.debug("wrote %s", self.layout.pkg_info)

    def create(self) -> None:
        """Validate the descriptor, then write PkgInfo and Info.plist."""
        self.log.info("Creating Info.plist and PkgInfo")
        validate_descriptor(self.descriptor)
        self.create_pkg_info()
        self.create_info_plist()


# ----------------------------------------------------------------------------
# Payload and icon staging


def render_launcher_script(jar_file: str, bundled_java: bool) -> str:
    """Return the shell launcher that runs jar_file from the MacOS folder."""
    if bundled_java:
        return BUNDLED_JAVA_LAUNCHER_TMPL.format(jar_file=jar_file)
    return SYSTEM_JAVA_LAUNCHER_TMPL.format(jar_file=jar_file)


class PayloadStager:
    """Copies the executable payload into Contents/MacOS.

    A payload whose file name ends in ``jar`` is staged with a launcher
    script named after the bundle executable, and optionally with a copy
    of a local Java installation. Anything else is copied as a binary.

    Args:
        descriptor: The bundle description
        layout: The created bundle layout
    """

    def __init__(self, descriptor: BundleDescriptor, layout: BundleLayout):
        self.descriptor = descriptor
        self.layout = layout
        self.log = logging.getLogger(self.__class__.__name__)

    @property
    def source(self) -> Path:
        return self.descriptor.executable_source

    @property
    def launcher(self) -> Path:
        return self.layout.macos / self.descriptor.executable

    def stage(self) -> None:
        """Stage the payload with the strategy matching its file name."""
        self.log.info("Copying the executable %s", self.source)
        if self.descriptor.is_jar:
            self.stage_jar()
        else:
            self.stage_binary()

    def stage_binary(self) -> Path:
        """Copy a native executable and make it executable."""
        dest = self.layout.macos / self.descriptor.exec_file
        try:
            shutil.copyfile(self.source, dest)
            os.chmod(dest, EXEC_MODE)
        except OSError as e:
            raise FileError(
                f"Cannot copy executable {self.source} to {dest}: {e}"
            ) from e
        return dest

    def stage_java_runtime(self) -> None:
        """Copy the local Java installation into Contents/Java/runtime."""
        java_home = self.descriptor.java_home
        self.log.info("Copying Java runtime from %s", java_home)
        copy_tree(java_home, self.layout.java_runtime)

    def stage_jar(self) -> None:
        """Stage a JAR, its launcher script and the optional runtime."""
        bundled_java = self.descriptor.use_local_java
        if bundled_java:
            self.stage_java_runtime()

        jar_dest = self.layout.macos / self.descriptor.exec_file
        try:
            shutil.copyfile(self.source, jar_dest)
        except OSError as e:
            raise FileError(
                f"Cannot copy JAR {self.source} to {jar_dest}: {e}"
            ) from e

        self.create_launcher(bundled_java)

    def create_launcher(self, bundled_java: bool) -> Path:
        """Write the launcher script for the staged JAR."""
        script = render_launcher_script(self.descriptor.exec_file, bundled_java)
        try:
            self.launcher.write_text(script, encoding="utf-8")
            os.chmod(self.launcher, EXEC_MODE)
        except OSError as e:
            raise FileError(
                f"Cannot create launcher script {self.launcher}: {e}"
            ) from e
        self.log.debug("created launcher %s", self.launcher)
        return self.launcher


class IconStager:
    """Copies the icon into Contents/Resources with its source mode."""

    def __init__(self, descriptor: BundleDescriptor, layout: BundleLayout):
        self.descriptor = descriptor
        self.layout = layout
        self.log = logging.getLogger(self.__class__.__name__)

    def stage(self) -> Path:
        if not self.descriptor.icon_file:
            raise ConfigurationError("Icon filename is not defined")
        source = self.descriptor.icon_source
        dest = self.layout.resources / self.descriptor.icon_file
        self.log.info("Copying the icon %s", source)
        try:
            shutil.copyfile(source, dest)
            shutil.copymode(source, dest)
        except OSError as e:
            raise FileError(f"Cannot copy icon {source} to {dest}: {e}") from e
        return dest


# ----------------------------------------------------------------------------
# Codesigning and notarization


def find_signing_identity(log: logging.Logger | None = None) -> str:
    """Return the first valid code signing identity in the keychain.

    Raises:
        ToolNotFoundError: If the security tool is missing
        CodesignError: If no identity is listed
    """
    security = find_program("security")
    output = run_command(
        [security, "find-identity", "-p", "codesigning", "-v"], log=log
    )
    match = IDENTITY_PATTERN.search(output)
    if match is None:
        raise CodesignError("No valid code signing identity found in keychain")
    return match.group(1)


class Codesigner:
    """Sign a bundle with hardened runtime and verify the signature.

    Args:
        path: Path to the bundle to sign
        dev_id: Developer ID name; falls back to the DEV_ID environment
            variable, then to the first identity found in the keychain

    Example:
        signer = Codesigner("MyApp.app")
        signer.sign()
        signer.verify()
    """

    def __init__(self, path: Pathlike, dev_id: str | None = None) -> None:
        self.path = Path(path)
        self.log = logging.getLogger(self.__class__.__name__)

        if dev_id is None:
            dev_id = os.getenv(ENV_DEV_ID)
        self.authority: str | None
        if dev_id:
            validate_developer_id(dev_id)
            self.authority = f"Developer ID Application: {dev_id}"
        else:
            self.authority = None

    def resolve_identity(self) -> str:
        if self.authority:
            return self.authority
        return find_signing_identity(self.log)

    def sign(self) -> None:
        """Sign the bundle recursively.

        Raises:
            ToolNotFoundError: If codesign or security is missing
            CodesignError: If no identity is available or signing fails
        """
        codesign = find_program("codesign")
        self.log.debug("codesign found at: %s", codesign)
        identity = self.resolve_identity()
        self.log.info("Signing %s as '%s'", self.path, identity)
        command = [
            codesign,
            "--sign",
            identity,
            "--deep",
            "--force",
            "--options",
            "runtime",
            "--timestamp",
            str(self.path),
        ]
        try:
            run_command(command, log=self.log)
        except CommandError as e:
            raise CodesignError(f"Failed to sign {self.path}: {e}") from e

    def verify(self) -> None:
        """Strictly verify the bundle signature.

        Raises:
            CodesignError: If verification fails
        """
        codesign = find_program("codesign")
        command = [
            codesign,
            "--verify",
            "--deep",
            "--strict",
            "--verbose=2",
            str(self.path),
        ]
        try:
            run_command(command, log=self.log)
        except CommandError as e:
            raise CodesignError(
                f"Signature verification failed for {self.path}: {e}"
            ) from e
        self.log.info("verified: %s", self.path)

    def process(self) -> None:
        self.sign()
        self.verify()


class Notarizer:
    """Zip a signed bundle and submit it to Apple's notary service.

    Args:
        path: Path to the signed bundle
        keychain_profile: notarytool keychain profile; falls back to the
            KEYCHAIN_PROFILE environment variable
        timeout: Seconds to wait for the notary service (None waits forever)
        show_progress: Show a spinner while waiting
    """

    def __init__(
        self,
        path: Pathlike,
        keychain_profile: str | None = None,
        timeout: float | None = DEFAULT_NOTARIZE_TIMEOUT,
        show_progress: bool = True,
    ) -> None:
        self.path = Path(path)
        self.keychain_profile = keychain_profile or os.getenv(
            ENV_KEYCHAIN_PROFILE
        )
        if not self.keychain_profile:
            raise ConfigurationError(
                "Notarization requires a keychain profile. "
                "Use --profile or set the KEYCHAIN_PROFILE environment variable."
            )
        self.timeout = timeout
        self.show_progress = show_progress
        self.log = logging.getLogger(self.__class__.__name__)

    def create_archive(self, dest_dir: Path) -> Path:
        """Zip the bundle into dest_dir and return the archive path."""
        zip_program = find_program("zip")
        archive = dest_dir / f"{self.path.stem}.zip"
        self.log.info("Creating archive %s", archive)
        try:
            run_command(
                [zip_program, "-r", "-y", str(archive), self.path.name],
                log=self.log,
                cwd=self.path.parent,
            )
        except CommandError as e:
            raise NotarizationError(
                f"Failed to zip {self.path} for notarization: {e}"
            ) from e
        return archive

    def submit(self, archive: Path) -> str:
        """Submit archive and wait for the result.

        Raises:
            NotarizationTimeoutError: If the wait exceeds the timeout
            NotarizationError: If the submission fails
        """
        xcrun = find_program("xcrun")
        command = [
            xcrun,
            "notarytool",
            "submit",
            str(archive),
            "--keychain-profile",
            self.keychain_profile,
            "--wait",
        ]
        self.log.info("Submitting %s for notarization", archive.name)
        try:
            if self.show_progress:
                with ProgressSpinner("Waiting for notarization"):
                    output = run_command(
                        command, log=self.log, timeout=self.timeout
                    )
            else:
                output = run_command(command, log=self.log, timeout=self.timeout)
        except CommandTimeoutError as e:
            raise NotarizationTimeoutError(
                f"Notarization of {self.path} timed out after "
                f"{self.timeout}s; it may be retried"
            ) from e
        except CommandError as e:
            raise NotarizationError(
                f"Notarization failed for {self.path}: {e}"
            ) from e
        self.log.debug("notarization output:\n%s", output)
        return output

    def process(self) -> None:
        """Archive and submit the bundle; the archive is discarded after."""
        with tempfile.TemporaryDirectory(prefix="appbundler-") as tmpdir:
            archive = self.create_archive(Path(tmpdir))
            self.submit(archive)
        self.log.info("Notarization completed: %s", self.path)


# ----------------------------------------------------------------------------
# Bundle assembly


class AppBundler:
    """Builds a complete .app bundle from a BundleDescriptor.

    Stages run in a fixed order and the first failure stops the build:
    validate, create directories, write metadata, stage the payload, stage
    the icon, then optionally sign, verify, notarize and delete. Once the
    directories exist, any failure removes the whole bundle before the
    error is raised.

    Args:
        descriptor: The bundle description
        output_dir: Directory the bundle is created in (default: cwd)
        app_name: Bundle root name (default: descriptor name)
        clean: Remove an existing bundle before building
        sign: Sign and verify the bundle
        dev_id: Developer ID used for signing
        notarize: Notarize the signed bundle (requires sign and a profile)
        profile: notarytool keychain profile
        timeout: Notarization wait limit in seconds
        delete: Remove the bundle after a successful build
        show_progress: Show a spinner during notarization

    Example:
        bundler = AppBundler(load_descriptor("application.yaml"))
        bundler.create()
    """

    def __init__(
        self,
        descriptor: BundleDescriptor,
        output_dir: Pathlike | None = None,
        app_name: str | None = None,
        clean: bool = False,
        sign: bool = False,
        dev_id: str | None = None,
        notarize: bool = False,
        profile: str | None = None,
        timeout: float | None = DEFAULT_NOTARIZE_TIMEOUT,
        delete: bool = False,
        show_progress: bool = True,
    ):
        self.descriptor = descriptor
        self.root_name = app_name or descriptor.name
        self.clean = clean
        self.sign = sign
        self.dev_id = dev_id
        self.notarize = notarize
        self.profile = profile
        self.timeout = timeout
        self.delete = delete
        self.show_progress = show_progress
        self.builder = DirectoryBuilder(output_dir)
        self.layout: BundleLayout | None = None
        self.signer: Codesigner | None = None
        self.notarizer: Notarizer | None = None
        self.log = logging.getLogger(self.__class__.__name__)

    def validate(self) -> None:
        """Check the request and its sources before touching the disk.

        Raises:
            ConfigurationError: For inconsistent options or missing sources
            ValidationError: For missing mandatory metadata
        """
        if self.notarize and not self.sign:
            raise ConfigurationError("Notarization requires signing (--sign)")
        layout = self.builder.layout_for(self.root_name)
        validate_descriptor(self.descriptor)
        self.descriptor.check_sources()
        if self.sign:
            self.signer = Codesigner(layout.root, dev_id=self.dev_id)
        if self.notarize:
            self.notarizer = Notarizer(
                layout.root,
                keychain_profile=self.profile,
                timeout=self.timeout,
                show_progress=self.show_progress,
            )

    def remove_existing(self) -> None:
        """Remove a bundle left by a previous build, if any."""
        root = self.builder.layout_for(self.root_name).root
        self.log.info("Removing previous bundle %s", root)
        remove_tree(root)

    def assemble(self, layout: BundleLayout) -> None:
        MetadataGenerator(self.descriptor, layout).create()
        PayloadStager(self.descriptor, layout).stage()
        IconStager(self.descriptor, layout).stage()
        if self.signer:
            self.signer.sign()
            self.signer.verify()
        if self.notarizer:
            self.log.info(
                "Starting notarization (this may take several minutes)"
            )
            self.notarizer.process()

    def create(self) -> Path:
        """Build the bundle.

        Returns:
            Path to the bundle root
        """
        self.validate()
        if self.clean:
            self.remove_existing()

        self.layout = self.builder.build(self.root_name)
        try:
            self.assemble(self.layout)
        except BaseException:
            self.log.error("Bundle creation failed, removing %s", self.layout.root)
            try:
                self.builder.teardown()
            except FileError as cleanup_error:
                self.log.error("%s", cleanup_error)
            raise

        if self.delete:
            self.builder.teardown()
        else:
            self.log.info("Bundle created successfully: %s", self.layout.root)
        return self.layout.root


# ----------------------------------------------------------------------------
# Functional API


def make_bundle(
    description: Pathlike,
    output_dir: Pathlike | None = None,
    app_name: str | None = None,
    clean: bool = False,
    sign: bool = False,
    dev_id: str | None = None,
    notarize: bool = False,
    profile: str | None = None,
    timeout: float | None = DEFAULT_NOTARIZE_TIMEOUT,
    delete: bool = False,
    show_progress: bool = True,
) -> Path:
    """Create a macOS application bundle from a YAML description file.

    This is a convenience function that loads the description, creates an
    AppBundler instance and calls create() on it. The keyword arguments
    are those of AppBundler.

    Returns:
        Path to the created bundle

    Example:
        bundle_path = make_bundle("application.yaml", clean=True)
    """
    descriptor = load_descriptor(description)
    bundler = AppBundler(
        descriptor,
        output_dir=output_dir,
        app_name=app_name,
        clean=clean,
        sign=sign,
        dev_id=dev_id,
        notarize=notarize,
        profile=profile,
        timeout=timeout,
        delete=delete,
        show_progress=show_progress,
    )
    return bundler.create()


# ----------------------------------------------------------------------------
# Command-line interface


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="appbundler",
        description="Package an executable or JAR into a macOS .app bundle.",
        epilog=(
            "Examples:\n"
            "  appbundler\n"
            "  appbundler --application app.yaml --clean\n"
            "  appbundler --sign --notarize --profile AC_PROFILE\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--application",
        metavar="FILE",
        help=f"bundle description file (default: {DEFAULT_DESCRIPTION_FILE})",
    )
    parser.add_argument(
        "--app",
        metavar="NAME",
        help="bundle name (default: 'name' in the description file)",
    )
    parser.add_argument(
        "-o",
        "--output",
        metavar="DIR",
        help="directory to create the bundle in (default: current directory)",
    )
    parser.add_argument(
        "--clean",
        action="store_true",
        help="remove an existing bundle before building",
    )
    parser.add_argument(
        "--sign",
        action="store_true",
        help="sign the bundle with a keychain code signing identity",
    )
    parser.add_argument(
        "--dev-id",
        metavar="ID",
        help="Developer ID name used for signing (or set DEV_ID env var)",
    )
    parser.add_argument(
        "--notarize",
        action="store_true",
        help="notarize the signed bundle for distribution",
    )
    parser.add_argument(
        "--profile",
        metavar="PROFILE",
        help="keychain profile for notarytool (or set KEYCHAIN_PROFILE env var)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        metavar="SECONDS",
        help=(
            "notarization wait limit, 0 waits forever "
            f"(default: {DEFAULT_NOTARIZE_TIMEOUT})"
        ),
    )
    parser.add_argument(
        "--delete",
        action="store_true",
        help="delete the bundle after building",
    )
    parser.add_argument(
        "--silent",
        action="store_true",
        help="only report errors",
    )
    parser.add_argument(
        "--logdir",
        metavar="DIR",
        help="also write a log file to this directory",
    )
    parser.add_argument(
        "--config",
        metavar="FILE",
        help="TOML file with tool defaults (default: .appbundler.toml)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="enable verbose/debug logging",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="disable colored output",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    return parser


def _parse_timeout(value: object) -> float | None:
    try:
        timeout = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid timeout: {value!r}") from e
    return timeout if timeout > 0 else None


def _cmd_build(args: argparse.Namespace) -> None:
    log = logging.getLogger("appbundler")

    config = load_config(Path(args.config) if args.config else None)
    description = args.application or get_config_value(
        config, "build", "application", DEFAULT_DESCRIPTION_FILE
    )
    output = args.output or get_config_value(config, "build", "output")
    profile = args.profile or get_config_value(config, "build", "profile")
    dev_id = args.dev_id or get_config_value(config, "build", "dev_id")
    logdir = args.logdir or get_config_value(config, "build", "logdir")
    timeout = args.timeout
    if timeout is None:
        timeout = get_config_value(
            config, "build", "timeout", str(DEFAULT_NOTARIZE_TIMEOUT)
        )

    descriptor = load_descriptor(description)
    log.debug("bundle description file: %s", description)

    app_name = args.app or descriptor.name
    if logdir:
        try:
            log_file = add_file_logging(app_name, logdir)
            log.info("Logging to file: %s", log_file)
        except FileError as e:
            log.warning("File logging disabled: %s", e)

    bundler = AppBundler(
        descriptor,
        output_dir=output,
        app_name=args.app,
        clean=args.clean,
        sign=args.sign,
        dev_id=dev_id,
        notarize=args.notarize,
        profile=profile,
        timeout=_parse_timeout(timeout),
        delete=args.delete,
        show_progress=not args.silent,
    )
    bundler.create()
    log.info("Application bundler completed successfully")


def main(argv: list[str] | None = None) -> None:
    """Command line interface for appbundler."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose, not args.no_color, args.silent)
    try:
        load_dotenv()
        _cmd_build(args)
    except BundlerError as e:
        logging.error(str(e))
        sys.exit(e.exit_code)
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        sys.exit(130)
    except Exception as e:
        logging.error("Unexpected error: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
