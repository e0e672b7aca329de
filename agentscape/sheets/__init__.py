"""Spreadsheet service backends."""

from agentscape.sheets.base import SheetsBackend
from agentscape.sheets.http import HttpSheetsBackend
from agentscape.sheets.memory import InMemorySpreadsheet

__all__ = ["HttpSheetsBackend", "InMemorySpreadsheet", "SheetsBackend"]
