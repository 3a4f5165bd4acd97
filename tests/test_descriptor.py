"""Unit tests for BundleDescriptor and description file loading."""

from dataclasses import replace
from pathlib import Path

import pytest

from appbundler import (
    BundleDescriptor,
    ConfigurationError,
    ValidationError,
    load_descriptor,
    validate_descriptor,
)

SAMPLE_YAML = """\
id: com.example.sample
name: Sample
version: 1.10
display_name: Sample App
executable: launch
signature: SMPL
exec_file: app.jar
exec_file_directory: build
icon_file: icon.icns
icon_file_directory: assets
system_minimal_os_version: 10.13.0
readable_copyright: (c) Example
local_java: TRUE
local_java_home: /opt/jdk
"""


@pytest.fixture
def description_file(tmp_path: Path) -> Path:
    path = tmp_path / "application.yaml"
    path.write_text(SAMPLE_YAML)
    return path


class TestLoadDescriptor:
    """Tests for load_descriptor()."""

    def test_fields_are_read(self, description_file: Path) -> None:
        descriptor = load_descriptor(description_file)
        assert descriptor.identifier == "com.example.sample"
        assert descriptor.name == "Sample"
        assert descriptor.display_name == "Sample App"
        assert descriptor.executable == "launch"
        assert descriptor.exec_file == "app.jar"
        assert descriptor.min_system_version == "10.13.0"
        assert descriptor.copyright == "(c) Example"

    def test_scalars_are_not_coerced(self, description_file: Path) -> None:
        """Versions such as 1.10 must not become floats."""
        descriptor = load_descriptor(description_file)
        assert descriptor.version == "1.10"
        assert descriptor.local_java == "TRUE"

    def test_absent_fields_are_empty(self, description_file: Path) -> None:
        descriptor = load_descriptor(description_file)
        assert descriptor.main_nib_file == ""
        assert descriptor.principal_class == ""
        assert descriptor.local_exec_directory == ""

    def test_null_field_is_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "app.yaml"
        path.write_text("name: Sample\nicon_file:\n")
        descriptor = load_descriptor(path)
        assert descriptor.icon_file == ""

    def test_unknown_fields_ignored(self, tmp_path: Path) -> None:
        path = tmp_path / "app.yaml"
        path.write_text("name: Sample\nflavour: vanilla\n")
        descriptor = load_descriptor(path)
        assert descriptor.name == "Sample"

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="not found"):
            load_descriptor(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "app.yaml"
        path.write_text("name: [unclosed\n")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_descriptor(path)

    def test_top_level_must_be_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "app.yaml"
        path.write_text("- one\n- two\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            load_descriptor(path)

    def test_nested_value_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "app.yaml"
        path.write_text("name:\n  - a\n  - b\n")
        with pytest.raises(ConfigurationError, match="name"):
            load_descriptor(path)

    def test_not_utf8(self, tmp_path: Path) -> None:
        path = tmp_path / "app.yaml"
        path.write_bytes(b"name: \xff\xfe bad\n")
        with pytest.raises(ConfigurationError, match="UTF-8"):
            load_descriptor(path)

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "app.yaml"
        path.write_text("")
        assert load_descriptor(path) == BundleDescriptor()


class TestDescriptorAccessors:
    """Tests for derived BundleDescriptor values."""

    def test_get_by_yaml_name(self) -> None:
        descriptor = BundleDescriptor(
            identifier="com.x", principal_class="NSApplication"
        )
        assert descriptor.get("id") == "com.x"
        assert descriptor.get("principle_class") == "NSApplication"
        assert descriptor.get("no_such_key") == ""

    @pytest.mark.parametrize(
        "value,expected",
        [("true", True), ("TRUE", True), ("True", True), ("false", False),
         ("yes", False), ("", False)],
    )
    def test_use_local_java(self, value: str, expected: bool) -> None:
        assert BundleDescriptor(local_java=value).use_local_java is expected

    def test_is_jar_is_case_sensitive(self) -> None:
        assert BundleDescriptor(exec_file="app.jar").is_jar
        assert BundleDescriptor(exec_file="appjar").is_jar
        assert not BundleDescriptor(exec_file="app.JAR").is_jar
        assert not BundleDescriptor(exec_file="app").is_jar

    def test_local_exec_directory_overrides(self) -> None:
        descriptor = BundleDescriptor(
            exec_file="tool",
            exec_file_directory="build",
            local_exec_directory="local",
        )
        assert descriptor.executable_source == Path("local") / "tool"

    def test_executable_source_default(self) -> None:
        descriptor = BundleDescriptor(exec_file="tool", exec_file_directory="build")
        assert descriptor.executable_source == Path("build") / "tool"

    def test_icon_source(self) -> None:
        descriptor = BundleDescriptor(icon_file="a.icns", icon_file_directory="res")
        assert descriptor.icon_source == Path("res") / "a.icns"
        assert BundleDescriptor(icon_file="a.icns").icon_source == Path("a.icns")

    def test_missing_fields(self) -> None:
        descriptor = BundleDescriptor(identifier="com.x", name="X")
        assert descriptor.missing_fields() == [
            "version",
            "executable",
            "system_minimal_os_version",
            "icon_file",
        ]


class TestValidateDescriptor:
    """Tests for validate_descriptor()."""

    def test_complete(self, complete_descriptor: BundleDescriptor) -> None:
        validate_descriptor(complete_descriptor)

    @pytest.mark.parametrize(
        "attr",
        ["identifier", "version", "name", "executable",
         "min_system_version", "icon_file"],
    )
    def test_mandatory_field_empty(
        self, complete_descriptor: BundleDescriptor, attr: str
    ) -> None:
        descriptor = replace(complete_descriptor, **{attr: ""})
        with pytest.raises(ValidationError, match="mandatory"):
            validate_descriptor(descriptor)


class TestCheckSources:
    """Tests for the pre-flight source checks."""

    def test_all_present(self, tmp_path: Path) -> None:
        (tmp_path / "tool").write_bytes(b"binary")
        (tmp_path / "icon.icns").write_bytes(b"icon")
        descriptor = BundleDescriptor(
            exec_file="tool",
            exec_file_directory=str(tmp_path),
            icon_file="icon.icns",
            icon_file_directory=str(tmp_path),
        )
        descriptor.check_sources()

    def test_missing_executable(self, tmp_path: Path) -> None:
        descriptor = BundleDescriptor(
            exec_file="tool", exec_file_directory=str(tmp_path)
        )
        with pytest.raises(ConfigurationError, match="Executable file not found"):
            descriptor.check_sources()

    def test_no_executable_defined(self) -> None:
        with pytest.raises(ConfigurationError, match="exec_file"):
            BundleDescriptor().check_sources()

    def test_missing_icon(self, tmp_path: Path) -> None:
        (tmp_path / "tool").write_bytes(b"binary")
        descriptor = BundleDescriptor(
            exec_file="tool",
            exec_file_directory=str(tmp_path),
            icon_file="icon.icns",
            icon_file_directory=str(tmp_path),
        )
        with pytest.raises(ConfigurationError, match="Icon file not found"):
            descriptor.check_sources()

    def test_missing_java_home(self, tmp_path: Path) -> None:
        (tmp_path / "app.jar").write_bytes(b"jar")
        descriptor = BundleDescriptor(
            exec_file="app.jar",
            exec_file_directory=str(tmp_path),
            local_java="true",
            local_java_home=str(tmp_path / "jdk"),
        )
        with pytest.raises(ConfigurationError, match="Java home"):
            descriptor.check_sources()

    def test_java_home_ignored_without_local_java(self, tmp_path: Path) -> None:
        (tmp_path / "app.jar").write_bytes(b"jar")
        descriptor = BundleDescriptor(
            exec_file="app.jar",
            exec_file_directory=str(tmp_path),
            local_java="false",
            local_java_home=str(tmp_path / "jdk"),
        )
        descriptor.check_sources()

    def test_launcher_named_like_jar(self, tmp_path: Path) -> None:
        (tmp_path / "app.jar").write_bytes(b"jar")
        descriptor = BundleDescriptor(
            executable="app.jar",
            exec_file="app.jar",
            exec_file_directory=str(tmp_path),
        )
        with pytest.raises(ConfigurationError, match="must differ"):
            descriptor.check_sources()

    def test_binary_named_like_executable(self, tmp_path: Path) -> None:
        (tmp_path / "tool").write_bytes(b"binary")
        descriptor = BundleDescriptor(
            executable="tool", exec_file="tool", exec_file_directory=str(tmp_path)
        )
        descriptor.check_sources()
