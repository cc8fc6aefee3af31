"""Unit tests for directory rotation."""

from pathlib import Path

from proxy_overlord.core.rotation import backup_path, rotate_directory


def mark(directory: Path, label: str) -> None:
    (directory / "marker").write_text(label)


def label_of(directory: Path) -> str:
    return (directory / "marker").read_text()


class TestRotateDirectory:
    def test_missing_directory_is_created(self, tmp_path: Path) -> None:
        logs = tmp_path / "logs"

        rotate_directory(logs)

        assert logs.is_dir()
        assert not backup_path(logs, 1).exists()

    def test_first_rotation_keeps_previous_contents(self, tmp_path: Path) -> None:
        logs = tmp_path / "logs"
        logs.mkdir()
        mark(logs, "run1")

        rotate_directory(logs)

        assert list(logs.iterdir()) == []
        assert label_of(backup_path(logs, 1)) == "run1"

    def test_keeps_exactly_two_generations(self, tmp_path: Path) -> None:
        """After three rotations, .2 holds what existed before the second-to-last one."""
        logs = tmp_path / "logs"
        logs.mkdir()

        for run in ("run1", "run2", "run3"):
            mark(logs, run)
            rotate_directory(logs)

        assert label_of(backup_path(logs, 1)) == "run3"
        assert label_of(backup_path(logs, 2)) == "run2"
        assert not backup_path(logs, 3).exists()
        assert list(logs.iterdir()) == []

    def test_backup_path_naming(self) -> None:
        assert backup_path(Path("/var/logs"), 2) == Path("/var/logs.2")
