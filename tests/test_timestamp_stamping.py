"""Tests for restoring file timestamps on copied media."""

import os
import platform
import subprocess
import sys
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest

# Add the package to the path for testing
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from iosextractor.core.metadata import MediaTimestamps
from iosextractor.core.stamping import (
    SetFileTimestampStamper,
    TimestampStamper,
    UtimeTimestampStamper,
    WindowsTimestampStamper,
    get_timestamp_stamper,
    set_file_timestamps,
)

MODIFIED = datetime(2024, 7, 14, 18, 5, 30)
BIRTH = datetime(2024, 7, 14, 18, 4, 0)


@pytest.fixture
def media_file(temp_dir):
    path = temp_dir / "IMG_0042.heic"
    path.write_bytes(b"photo")
    return path


class RecordingStamper(TimestampStamper):
    name = "recording"

    def __init__(self, error=None):
        self.calls = []
        self.error = error

    def stamp(self, path, modified, birth):
        if self.error:
            raise self.error
        self.calls.append((path, modified, birth))
        return True


@pytest.mark.unit
class TestSetFileTimestamps:
    """Test the stamping decision made after each copy."""

    def test_both_timestamps_applied(self, media_file):
        stamper = RecordingStamper()

        applied = set_file_timestamps(
            media_file, MediaTimestamps(MODIFIED, BIRTH), stamper
        )

        assert applied
        assert stamper.calls == [(media_file, MODIFIED, BIRTH)]

    @pytest.mark.parametrize(
        "timestamps",
        [
            MediaTimestamps(MODIFIED, None),
            MediaTimestamps(None, BIRTH),
            MediaTimestamps(None, None),
        ],
    )
    def test_nothing_changed_without_both(self, media_file, timestamps):
        stamper = RecordingStamper()

        assert not set_file_timestamps(media_file, timestamps, stamper)
        assert stamper.calls == []

    def test_failure_is_not_fatal(self, media_file, capsys):
        stamper = RecordingStamper(error=PermissionError("read-only filesystem"))

        applied = set_file_timestamps(
            media_file, MediaTimestamps(MODIFIED, BIRTH), stamper, verbose=True
        )

        assert not applied
        assert "Could not set timestamps" in capsys.readouterr().err

    def test_modification_time_only_is_reported(self, media_file, capsys):
        applied = set_file_timestamps(
            media_file,
            MediaTimestamps(MODIFIED, BIRTH),
            UtimeTimestampStamper(),
            verbose=True,
        )

        assert applied
        assert "Creation time not set" in capsys.readouterr().err

    def test_creation_time_set_is_silent(self, media_file, capsys):
        set_file_timestamps(
            media_file, MediaTimestamps(MODIFIED, BIRTH), RecordingStamper(), True
        )

        assert capsys.readouterr().err == ""



@pytest.mark.unit
class TestUtimeStamper:
    def test_sets_modification_time(self, media_file):
        stamped_birth = UtimeTimestampStamper().stamp(media_file, MODIFIED, BIRTH)

        assert stamped_birth is False
        assert media_file.stat().st_mtime == MODIFIED.timestamp()


@pytest.mark.unit
class TestSetFileStamper:
    """macOS SetFile stamper, with subprocess mocked."""

    def test_unavailable_falls_back_to_utime(self, media_file, temp_dir):
        stamper = SetFileTimestampStamper(str(temp_dir / "no-such-SetFile"))

        assert stamper.stamp(media_file, MODIFIED, BIRTH) is False
        assert media_file.stat().st_mtime == MODIFIED.timestamp()

    def test_availability_checked_once(self):
        stamper = SetFileTimestampStamper()
        usage = MagicMock(stdout="", stderr="Usage: SetFile [option...] file...")

        with patch("subprocess.run", return_value=usage) as mock_run:
            assert stamper.is_available()
            assert stamper.is_available()

        assert mock_run.call_count == 1

    def test_runs_setfile_with_both_dates(self, media_file):
        stamper = SetFileTimestampStamper("/usr/bin/SetFile")
        stamper._available = True

        with patch(
            "subprocess.run", return_value=MagicMock(returncode=0)
        ) as mock_run:
            assert stamper.stamp(media_file, MODIFIED, BIRTH) is True

        command = mock_run.call_args[0][0]
        assert command == [
            "/usr/bin/SetFile",
            "-d",
            "07/14/2024 18:04:00",
            "-m",
            "07/14/2024 18:05:30",
            str(media_file),
        ]

    def test_setfile_failure_falls_back(self, media_file):
        stamper = SetFileTimestampStamper("/usr/bin/SetFile")
        stamper._available = True

        with patch(
            "subprocess.run",
            side_effect=subprocess.TimeoutExpired("SetFile", 30),
        ):
            assert stamper.stamp(media_file, MODIFIED, BIRTH) is False

        assert media_file.stat().st_mtime == MODIFIED.timestamp()


@pytest.mark.unit
class TestStamperSelection:
    @pytest.mark.parametrize(
        "system, expected",
        [
            ("Darwin", SetFileTimestampStamper),
            ("Windows", WindowsTimestampStamper),
            ("Linux", UtimeTimestampStamper),
            ("FreeBSD", UtimeTimestampStamper),
        ],
    )
    def test_platform_mapping(self, system, expected):
        assert isinstance(get_timestamp_stamper(system), expected)

    @pytest.mark.skipif(platform.system() != "Windows", reason="Windows only")
    def test_windows_sets_creation_time(self, media_file):
        assert WindowsTimestampStamper().stamp(media_file, MODIFIED, BIRTH) is True

        assert media_file.stat().st_mtime == MODIFIED.timestamp()
