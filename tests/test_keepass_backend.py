"""
Unit tests for the keepassxc-cli driver.
"""

import subprocess
import unittest
from unittest.mock import Mock

from keepassx_cli.credentials import ResolvedSession
from keepassx_cli.exceptions import (
    AttachmentNotFoundError,
    BackendError,
    BackendUnavailableError,
    EntryNotFoundError,
    InvalidCredentialsError,
)
from keepassx_cli.keepass import (
    BackendResult,
    KeePassXCCli,
    classify_failure,
    find_backend,
    strip_banner,
)

DB = "/tmp/test.kdbx"
BANNER = f"Enter password to unlock {DB}: "


def completed(returncode=0, stdout=b"", stderr=b""):
    return subprocess.CompletedProcess(
        args=[], returncode=returncode, stdout=stdout, stderr=stderr
    )


class TestKeePassXCCli(unittest.TestCase):
    """Test cases for KeePassXCCli class."""

    def setUp(self):
        """Set up test fixtures."""
        self.runner = Mock(return_value=completed(stdout=b"s3cret\n", stderr=BANNER.encode()))
        self.cli = KeePassXCCli(
            DB, "pw", command=["/usr/bin/keepassxc-cli"], runner=self.runner
        )

    def test_password_is_fed_on_stdin_not_argv(self):
        self.cli.get_password("MyEntry")
        argv = self.runner.call_args.args[0]
        kwargs = self.runner.call_args.kwargs
        self.assertEqual(
            argv,
            ["/usr/bin/keepassxc-cli", "show", "-s", "-a", "Password", DB, "MyEntry"],
        )
        self.assertNotIn("pw", argv)
        self.assertEqual(kwargs["input"], b"pw\n")
        self.assertEqual(kwargs["stdout"], subprocess.PIPE)
        self.assertEqual(kwargs["stderr"], subprocess.PIPE)

    def test_get_password_strips_newline(self):
        self.assertEqual(self.cli.get_password("MyEntry"), "s3cret")

    def test_banner_on_stdout_is_stripped(self):
        self.runner.return_value = completed(stdout=(BANNER + "\nTitle: X\n").encode())
        self.assertEqual(self.cli.show_entry("X"), "Title: X\n")

    def test_list_entries_options(self):
        self.runner.return_value = completed(stdout=b"A\nB/\n")
        self.assertEqual(self.cli.list_entries(flatten=True), ["A", "B/"])
        self.assertEqual(
            self.runner.call_args.args[0][1:], ["ls", "-R", "-f", DB]
        )
        self.cli.list_entries(group="B")
        self.assertEqual(self.runner.call_args.args[0][1:], ["ls", "-R", DB, "B"])

    def test_export_attachment_returns_bytes(self):
        self.runner.return_value = completed(stdout=b"\x00\x01binary")
        data = self.cli.export_attachment("MyEntry", "id.pem")
        self.assertEqual(data, b"\x00\x01binary")
        self.assertEqual(
            self.runner.call_args.args[0][1:],
            ["attachment-export", "--stdout", DB, "MyEntry", "id.pem"],
        )

    def test_wrong_password(self):
        self.runner.return_value = completed(
            returncode=1,
            stderr=(
                BANNER + "\nError while reading the database: Invalid credentials "
                "were provided, please try again.\n"
            ).encode(),
        )
        with self.assertRaises(InvalidCredentialsError):
            self.cli.get_password("MyEntry")

    def test_missing_executable(self):
        self.runner.side_effect = FileNotFoundError("keepassxc-cli")
        with self.assertRaises(BackendUnavailableError):
            self.cli.get_password("MyEntry")

    def test_from_session(self):
        session = ResolvedSession(
            profile_name="demo",
            db_path=DB,
            password="pw",
            key_query="MyEntry",
            no_prompt=False,
        )
        cli = KeePassXCCli.from_session(session, command=["kc"], runner=self.runner)
        self.assertEqual(cli.db_path, DB)
        self.assertEqual(cli.password, "pw")
        self.assertEqual(cli.command, ["kc"])


class TestClassifyFailure(unittest.TestCase):
    """Test cases for classify_failure."""

    def result(self, returncode, stderr="", stdout=b""):
        return BackendResult(returncode=returncode, stdout=stdout, stderr=stderr, db_path=DB)

    def test_success_passes(self):
        classify_failure(self.result(0, BANNER), "show")

    def test_entry_not_found(self):
        with self.assertRaises(EntryNotFoundError):
            classify_failure(
                self.result(1, "Could not find entry with path Nope."), "show", key="Nope"
            )

    def test_group_not_found(self):
        with self.assertRaises(EntryNotFoundError):
            classify_failure(self.result(1, "Cannot find group Nope."), "ls", key="Nope")

    def test_attachment_not_found(self):
        with self.assertRaises(AttachmentNotFoundError):
            classify_failure(
                self.result(1, "Could not find attachment with name file.pem."),
                "attachment-export",
                key="MyEntry",
                attachment="file.pem",
            )

    def test_attachment_not_found_older_wording(self):
        with self.assertRaises(AttachmentNotFoundError):
            classify_failure(
                self.result(1, "No attachment named file.pem found."),
                "attachment-export",
                key="MyEntry",
                attachment="file.pem",
            )

    def test_other_failure_surfaces_diagnostics(self):
        with self.assertRaises(BackendError) as ctx:
            classify_failure(self.result(2, BANNER + "\nboom\n"), "show")
        self.assertIn("boom", str(ctx.exception))
        self.assertNotIn("Enter password", str(ctx.exception))

    def test_entry_data_is_not_scanned_on_success(self):
        classify_failure(self.result(0, "", b"Notes: could not find entry\n"), "show")


class TestFindBackend(unittest.TestCase):
    """Test cases for find_backend."""

    def test_prefers_installed_executable(self):
        which = Mock(side_effect=lambda name: f"/usr/bin/{name}")
        self.assertEqual(find_backend(which=which), ["/usr/bin/keepassxc-cli"])

    def test_falls_back_to_flatpak(self):
        which = Mock(side_effect=lambda name: "/usr/bin/flatpak" if name == "flatpak" else None)
        runner = Mock(return_value=completed(0))
        self.assertEqual(
            find_backend(which=which, runner=runner),
            [
                "/usr/bin/flatpak",
                "run",
                "--command=keepassxc-cli",
                "org.keepassxc.KeePassXC",
            ],
        )

    def test_flatpak_without_app(self):
        which = Mock(side_effect=lambda name: "/usr/bin/flatpak" if name == "flatpak" else None)
        runner = Mock(return_value=completed(1))
        with self.assertRaises(BackendUnavailableError):
            find_backend(which=which, runner=runner)

    def test_nothing_installed(self):
        with self.assertRaises(BackendUnavailableError):
            find_backend(which=Mock(return_value=None))


class TestStripBanner(unittest.TestCase):
    """Test cases for strip_banner."""

    def test_banner_sharing_line_with_output(self):
        self.assertEqual(strip_banner(BANNER + "secret\n", DB), "secret\n")

    def test_banner_without_known_path(self):
        self.assertEqual(strip_banner("Enter password to unlock x.kdbx: \nA\n"), "A\n")

    def test_other_lines_untouched(self):
        self.assertEqual(strip_banner("A\n\nB\n", DB), "A\n\nB\n")


if __name__ == "__main__":
    unittest.main()
