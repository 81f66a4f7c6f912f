# ruff: noqa: S106,N802,N803,A002
"""Shared pytest fixtures for mintable tests.

This module provides common fixtures used across the test suite, including
settings cleanup, sample configurations and an in-memory stand-in for the
Google Sheets v4 service.
"""

import re
from collections.abc import Callable, Generator
from typing import Any

import pytest

from mintable.config import (
    Config,
    GoogleConfig,
    GoogleCredentials,
    GoogleTemplate,
    PlaidAccountConfig,
    PlaidConfig,
    PlaidCredentials,
    clear_settings_cache,
)


@pytest.fixture(autouse=True)
def clean_settings_state() -> Generator[None, None, None]:
    """Clear cached settings and the config path override around every test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def google_config() -> GoogleConfig:
    return GoogleConfig(
        credentials=GoogleCredentials(
            client_id="client-id",
            client_secret="client-secret",
            access_token="access",
            refresh_token="refresh",
        ),
        document_ids=["doc-main", "doc-investments"],
        template=GoogleTemplate(sheet_title="Template"),
    )


@pytest.fixture
def sample_config(google_config: GoogleConfig) -> Config:
    """Config with Plaid and Google Sheets and one Plaid account."""
    config = Config()
    config = config.with_integration(
        "plaid",
        PlaidConfig(
            credentials=PlaidCredentials(client_id="plaid-id", secret="plaid-secret")
        ),
    )
    config = config.with_integration("google", google_config)
    return config.with_account(
        PlaidAccountConfig(id="chase", token="access-sandbox-123")
    )


# In-memory Google Sheets service

_CELL = re.compile(r"^([A-Z]*)(\d*)$")


def column_index(letters: str) -> int:
    index = 0
    for char in letters:
        index = index * 26 + (ord(char) - ord("A") + 1)
    return index - 1


def parse_a1(a1: str) -> tuple[str, int, int, float, float]:
    """Parse ``Sheet!A1:C3`` into (title, row0, col0, row1, col1), inclusive, 0-based."""
    if "!" not in a1:
        return a1, 0, 0, float("inf"), float("inf")

    title, cells = a1.rsplit("!", 1)
    start, _, end = cells.partition(":")
    start_col, start_row = _CELL.match(start).groups()
    r0 = int(start_row) - 1 if start_row else 0
    c0 = column_index(start_col) if start_col else 0

    if not end:
        return title, r0, c0, r0, c0

    end_col, end_row = _CELL.match(end).groups()
    r1 = int(end_row) - 1 if end_row else float("inf")
    c1 = column_index(end_col) if end_col else float("inf")
    return title, r0, c0, r1, c1


class FakeRequest:
    def __init__(self, fn: Callable[[], dict[str, Any]]):
        self._fn = fn

    def execute(self) -> dict[str, Any]:
        return self._fn()


class FakeDocument:
    """One spreadsheet: sheets by title, each a sparse grid of cells."""

    def __init__(self, titles: list[str], next_id: Callable[[], int]):
        self.next_id = next_id
        self.sheets: dict[str, dict[str, Any]] = {}
        for title in titles:
            self.add(title)

    def add(self, title: str) -> dict[str, Any]:
        sheet = {"sheetId": self.next_id(), "title": title, "cells": {}}
        self.sheets[title] = sheet
        return sheet

    def by_id(self, sheet_id: int) -> dict[str, Any]:
        return next(s for s in self.sheets.values() if s["sheetId"] == sheet_id)

    def properties(self) -> list[dict[str, Any]]:
        return [
            {
                "properties": {
                    "sheetId": s["sheetId"],
                    "title": s["title"],
                    "index": i,
                    "gridProperties": {"columnCount": 26},
                }
            }
            for i, s in enumerate(self.sheets.values())
        ]

    def rows(self, title: str) -> list[list[Any]]:
        """All values of a sheet as a dense grid starting at A1."""
        return self.read(title)

    def read(self, a1: str) -> list[list[Any]]:
        title, r0, c0, r1, c1 = parse_a1(a1)
        cells = self.sheets[title]["cells"]
        inside = [(r, c) for (r, c) in cells if r0 <= r <= r1 and c0 <= c <= c1]
        if not inside:
            return []
        last_row = max(r for r, _ in inside)
        values = []
        for r in range(r0, last_row + 1):
            cols = [c for (rr, c) in inside if rr == r]
            if not cols:
                values.append([])
                continue
            values.append([cells.get((r, c), "") for c in range(c0, max(cols) + 1)])
        return values

    def write(self, a1: str, values: list[list[Any]]) -> None:
        title, r0, c0, _, _ = parse_a1(a1)
        cells = self.sheets[title]["cells"]
        for i, row in enumerate(values):
            for j, value in enumerate(row):
                if value == "":
                    cells.pop((r0 + i, c0 + j), None)
                else:
                    cells[(r0 + i, c0 + j)] = value

    def clear(self, a1: str) -> None:
        title, r0, c0, r1, c1 = parse_a1(a1)
        cells = self.sheets[title]["cells"]
        for r, c in list(cells):
            if r0 <= r <= r1 and c0 <= c <= c1:
                del cells[(r, c)]


class FakeValues:
    def __init__(self, service: "FakeSheetsService"):
        self.service = service

    def batchClear(self, spreadsheetId: str, body: dict[str, Any]) -> FakeRequest:
        def run() -> dict[str, Any]:
            self.service.calls.append(("batchClear", spreadsheetId, body["ranges"]))
            for a1 in body["ranges"]:
                self.service.documents[spreadsheetId].clear(a1)
            return {"clearedRanges": body["ranges"]}

        return FakeRequest(run)

    def batchUpdate(self, spreadsheetId: str, body: dict[str, Any]) -> FakeRequest:
        def run() -> dict[str, Any]:
            ranges = [d["range"] for d in body["data"]]
            self.service.calls.append(("values.batchUpdate", spreadsheetId, ranges))
            for data in body["data"]:
                self.service.documents[spreadsheetId].write(data["range"], data["values"])
            return {"totalUpdatedRanges": len(ranges)}

        return FakeRequest(run)

    def get(self, spreadsheetId: str, range: str) -> FakeRequest:
        def run() -> dict[str, Any]:
            values = self.service.documents[spreadsheetId].read(range)
            result: dict[str, Any] = {"range": range}
            if values:
                result["values"] = values
            return result

        return FakeRequest(run)


class FakeSheetTabs:
    def __init__(self, service: "FakeSheetsService"):
        self.service = service

    def copyTo(
        self, spreadsheetId: str, sheetId: int, body: dict[str, Any]
    ) -> FakeRequest:
        def run() -> dict[str, Any]:
            source = self.service.documents[spreadsheetId].by_id(sheetId)
            destination = self.service.documents[body["destinationSpreadsheetId"]]
            copy = destination.add(f"Copy of {source['title']}")
            copy["cells"] = dict(source["cells"])
            self.service.calls.append(("copyTo", spreadsheetId, source["title"]))
            return {"sheetId": copy["sheetId"], "title": copy["title"]}

        return FakeRequest(run)


class FakeSpreadsheets:
    def __init__(self, service: "FakeSheetsService"):
        self.service = service

    def get(self, spreadsheetId: str) -> FakeRequest:
        def run() -> dict[str, Any]:
            self.service.calls.append(("get", spreadsheetId))
            return {"sheets": self.service.documents[spreadsheetId].properties()}

        return FakeRequest(run)

    def batchUpdate(self, spreadsheetId: str, body: dict[str, Any]) -> FakeRequest:
        def run() -> dict[str, Any]:
            document = self.service.documents[spreadsheetId]
            replies: list[dict[str, Any]] = []
            for request in body["requests"]:
                if "addSheet" in request:
                    title = request["addSheet"]["properties"]["title"]
                    sheet = document.add(title)
                    self.service.calls.append(("addSheet", spreadsheetId, title))
                    replies.append(
                        {"addSheet": {"properties": {"sheetId": sheet["sheetId"], "title": title}}}
                    )
                elif "updateSheetProperties" in request:
                    properties = request["updateSheetProperties"]["properties"]
                    sheet = document.by_id(properties["sheetId"])
                    if "title" in properties:
                        del document.sheets[sheet["title"]]
                        sheet["title"] = properties["title"]
                        document.sheets[sheet["title"]] = sheet
                        self.service.calls.append(("rename", spreadsheetId, sheet["title"]))
                    replies.append({})
                else:
                    replies.append({})
            return {"replies": replies}

        return FakeRequest(run)

    def values(self) -> FakeValues:
        return FakeValues(self.service)

    def sheets(self) -> FakeSheetTabs:
        return FakeSheetTabs(self.service)


class FakeSheetsService:
    """Minimal in-memory implementation of the Sheets v4 resources Mintable uses."""

    def __init__(self, documents: dict[str, list[str]]):
        self._ids = iter(range(1, 10_000))
        self.documents = {
            doc_id: FakeDocument(titles, lambda: next(self._ids))
            for doc_id, titles in documents.items()
        }
        self.calls: list[tuple[Any, ...]] = []

    def spreadsheets(self) -> FakeSpreadsheets:
        return FakeSpreadsheets(self)


@pytest.fixture
def sheets_service() -> FakeSheetsService:
    """Two spreadsheets; the main one carries the monthly template tab."""
    return FakeSheetsService({"doc-main": ["Template"], "doc-investments": []})
