"""Tests for expertise priming."""

from unittest.mock import Mock, patch

import pytest

from fleet.errors import MulchError
from fleet.mulch import MulchClient, infer_domain, infer_domains_from_files


@pytest.mark.parametrize("file_path,domain", [
    ("src/fleet/spawn.py", "fleet"),
    ("tests/runtimes/test_claude.py", "runtimes"),
    ("docs/guide.md", "docs"),
    ("setup.cfg", None),
    ("src/main.py", None),
    ("./api/routes.py", "api"),
])
def test_infer_domain(file_path, domain):
    assert infer_domain(file_path) == domain


def test_domains_unique_in_order():
    files = ["src/api/a.py", "src/db/b.py", "src/api/c.py", "README.md"]
    assert infer_domains_from_files(files) == ["api", "db"]


class TestMulchClient:

    def test_prime_arguments(self, tmp_path):
        with patch("fleet.mulch.subprocess.run", return_value=Mock(returncode=0, stdout="## api\n- rule")) as mock_run:
            text = MulchClient(tmp_path).prime(files=["src/api/a.py"], domains=["api"])

        assert text == "## api\n- rule"
        assert mock_run.call_args.args[0] == ["ml", "prime", "api", "--files", "src/api/a.py"]
        assert mock_run.call_args.kwargs["cwd"] == str(tmp_path)

    def test_missing_cli(self, tmp_path):
        with patch("fleet.mulch.subprocess.run", side_effect=FileNotFoundError()):
            with pytest.raises(MulchError) as exc_info:
                MulchClient(tmp_path).prime(domains=["api"])

        assert "ml CLI not found" in exc_info.value.message

    def test_non_zero_exit(self, tmp_path):
        with patch("fleet.mulch.subprocess.run", return_value=Mock(returncode=3, stdout="", stderr="no expertise dir")):
            with pytest.raises(MulchError) as exc_info:
                MulchClient(tmp_path).prime()

        assert "exit 3" in exc_info.value.message
