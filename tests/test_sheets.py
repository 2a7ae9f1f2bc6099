"""Tests for the Google Sheets writer wrapper."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from allotsync.sheets import GoogleSheetsWriter, load_credentials


class TestGoogleSheetsWriter:
    def test_batch_update_body(self) -> None:
        service = MagicMock()
        execute = service.spreadsheets.return_value.values.return_value.batchUpdate.return_value.execute
        execute.return_value = {"totalUpdatedCells": 2}

        writer = GoogleSheetsWriter(service)
        resp = writer.batch_write("sheet-1", [("'T'!D12", "http://x"), ("'T'!F12", "3/7/2026")])

        assert resp == {"totalUpdatedCells": 2}
        batch = service.spreadsheets.return_value.values.return_value.batchUpdate
        batch.assert_called_once_with(
            spreadsheetId="sheet-1",
            body={
                "valueInputOption": "USER_ENTERED",
                "data": [
                    {"range": "'T'!D12", "values": [["http://x"]]},
                    {"range": "'T'!F12", "values": [["3/7/2026"]]},
                ],
            },
        )

    def test_transport_errors_propagate(self) -> None:
        service = MagicMock()
        service.spreadsheets.return_value.values.return_value.batchUpdate.return_value.execute.side_effect = (
            RuntimeError("403 caller does not have permission")
        )
        with pytest.raises(RuntimeError):
            GoogleSheetsWriter(service).batch_write("sheet-1", [("'T'!A1", "x")])


class TestCredentials:
    def test_no_source_configured(self) -> None:
        with pytest.raises(ValueError, match="No Google credentials"):
            load_credentials()
