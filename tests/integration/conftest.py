"""
Fixtures for gateway-level tests on the in-memory store.
"""

import pytest

from dynamic_record import DynamicRecord

ROWS = [
    {"string": "Velit tempor.", "int": 42, "float": 3.1415926536},
    {"string": "Fugiat laboris cillum quis pariatur.", "int": 42, "float": 2.7182818285},
    {"string": "Reprehenderit sint.", "int": 10958, "float": 2.7182818285},
]


@pytest.fixture
def rows():
    """Three valid random_table rows."""
    return [dict(row) for row in ROWS]


@pytest.fixture
def Random(store, registry):
    """Gateway on random_table."""
    return DynamicRecord("random_table", store=store)


@pytest.fixture
def Counted(store, registry):
    """Gateway on counted_table (auto-increment "id")."""
    return DynamicRecord("counted_table", store=store)
