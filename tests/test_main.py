"""
Tests for the command-line entry point.

## Test Perspectives Table

| Case ID | Input / Precondition | Perspective (Equivalence / Boundary) | Expected Result | Notes |
|---------|---------------------|---------------------------------------|-----------------|-------|
| TC-CLI-N-01 | run_crawl on scripted site | Equivalence – normal | Completed status dict | Browser/OCR/AI patched |
| TC-CLI-A-01 | crawl without --url | Abnormal | Exit code 2 | - |
| TC-CLI-A-02 | crawl with invalid URL / depth | Abnormal | Exit code 2 | - |
"""

import sys

import pytest

from pagelens import main as main_module
from pagelens.advisory import client as advisory_module
from pagelens.ocr import recognition as recognition_module
from pagelens.scheduler import registry as registry_module
from pagelens.storage.database import close_database
from pagelens.utils.config import get_settings

pytestmark = pytest.mark.integration

ROOT = "https://cli.example.com/"


class TestRunCrawl:
    @pytest.mark.asyncio
    async def test_run_crawl(
        self, monkeypatch, temp_dir, make_capture, make_recognition, make_advisory
    ):
        """TC-CLI-N-01: A crawl runs in-process and returns its final status."""
        # Given: External services replaced and a working directory for data
        monkeypatch.chdir(temp_dir)
        monkeypatch.setenv("PAGELENS_CRAWLER__RATE_LIMIT_MS", "0")
        monkeypatch.setenv("PAGELENS_CRAWLER__SCROLL_WAIT_MS", "0")
        get_settings.cache_clear()
        capture = make_capture({ROOT: [f"{ROOT}news"]})

        async def factory(job_id, options):
            return capture

        monkeypatch.setattr(registry_module, "open_playwright_session", factory)
        monkeypatch.setattr(recognition_module, "TesseractRecognitionClient", make_recognition)
        monkeypatch.setattr(advisory_module, "GeminiAdvisoryClient", make_advisory)

        # When: Running a crawl
        try:
            status = await main_module.run_crawl(ROOT, 1)
        finally:
            await close_database()

        # Then: Both pages were processed
        assert status["status"] == "completed"
        assert status["pages_processed"] == 2
        assert capture.navigations == [ROOT, f"{ROOT}news"]
        assert (temp_dir / "data" / "pagelens.db").exists()


class TestArguments:
    @pytest.mark.parametrize(
        "argv",
        [
            ["pagelens", "crawl"],
            ["pagelens", "crawl", "--url", "mailto:someone@example.com"],
            ["pagelens", "crawl", "--url", ROOT, "--depth", "0"],
            ["pagelens", "unknown"],
        ],
    )
    def test_invalid_arguments_exit(self, monkeypatch, argv):
        """TC-CLI-A-01/02: Bad arguments stop before anything starts."""
        monkeypatch.setattr(sys, "argv", argv)
        called = []
        monkeypatch.setattr(main_module, "initialize", lambda: called.append(True))

        with pytest.raises(SystemExit) as exc_info:
            main_module.main()

        assert exc_info.value.code == 2
        assert called == []
