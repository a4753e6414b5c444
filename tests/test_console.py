"""Tests for console.py module."""

from unittest.mock import patch

import pytest

from kubeception import console


class TestConsoleOutput:
    """Tests for console output functions."""

    @pytest.mark.parametrize(
        ("func", "symbol"),
        [
            (console.info, "ℹ"),
            (console.success, "✓"),
            (console.warning, "⚠"),
            (console.error, "✗"),
            (console.action, "→"),
            (console.step, "•"),
        ],
    )
    def test_message_symbol(self, func, symbol):
        """Test every message kind is logged with its symbol."""
        with patch.object(console.console, "log") as mock_log:
            func("Test message")

            mock_log.assert_called_once()
            call_arg = mock_log.call_args[0][0]
            assert symbol in call_arg
            assert "Test message" in call_arg

    def test_traceback(self):
        """Test traceback prints the active exception."""
        with patch.object(console.console, "print_exception") as mock_print:
            try:
                raise RuntimeError("boom")
            except RuntimeError:
                console.traceback()

            mock_print.assert_called_once()


class TestHighlight:
    """Tests for highlight function."""

    def test_highlight_wraps_text(self):
        """Test highlight wraps text in markup."""
        assert console.highlight("cluster-demo/root-ca") == "[highlight]cluster-demo/root-ca[/highlight]"


class TestSpinner:
    """Tests for spinner context manager."""

    def test_spinner_context(self):
        """Test spinner shows a status while the block runs."""
        with patch.object(console.console, "status") as mock_status:
            with console.spinner("Waiting for caches to sync..."):
                pass

            mock_status.assert_called_once()
            assert "Waiting for caches to sync..." in mock_status.call_args[0][0]


class TestSummaryPanel:
    """Tests for summary_panel function."""

    def test_summary_panel(self):
        """Test summary panel is printed once."""
        with patch.object(console.console, "print") as mock_print:
            console.summary_panel("Cluster controller", {"Workers": "5"})

            mock_print.assert_called_once()
