"""Shared fixtures for appbundler tests."""

from pathlib import Path

import pytest

from appbundler import BundleDescriptor, DirectoryBuilder


@pytest.fixture
def source_dir(tmp_path: Path) -> Path:
    """Directory holding the files a bundle is built from."""
    src = tmp_path / "src"
    src.mkdir()
    tool = src / "tool"
    tool.write_bytes(b"\xcf\xfa\xed\xfe" + b"\x00" * 60)
    tool.chmod(0o644)
    (src / "app.jar").write_bytes(b"PK\x03\x04fake jar")
    icon = src / "icon.icns"
    icon.write_bytes(b"icns fake icon")
    icon.chmod(0o640)
    return src


@pytest.fixture
def complete_descriptor(source_dir: Path) -> BundleDescriptor:
    """A descriptor for a native binary with every mandatory field set."""
    return BundleDescriptor(
        identifier="com.example.sample",
        name="Sample",
        version="1.0",
        display_name="Sample App",
        executable="tool",
        exec_file="tool",
        exec_file_directory=str(source_dir),
        icon_file="icon.icns",
        icon_file_directory=str(source_dir),
        min_system_version="10.13.0",
        short_version="1.0.0",
        copyright="(c) Example",
    )


@pytest.fixture
def out_dir(tmp_path: Path) -> Path:
    out = tmp_path / "out"
    out.mkdir()
    return out


@pytest.fixture
def layout(out_dir: Path):
    """A freshly created Sample.app layout."""
    return DirectoryBuilder(out_dir).build("Sample")
