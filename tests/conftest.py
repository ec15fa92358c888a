"""
Shared fixtures for the finances import tests.

Every test that touches the database gets its own SQLite file under
tmp_path, so tests never see each other's rows.
"""

import io
from datetime import datetime

import pytest
from openpyxl import Workbook

import database_manager as db
from database_model import RecurringExpense
from utils import generate_uid


@pytest.fixture(scope="function")
def setup_test_db(tmp_path):
    """Setup test database before each test, teardown after."""
    db.initialize_sqlite(str(tmp_path / "finances_test.db"))
    db.create_tables_if_not_exist()

    yield

    db.close_connection()


@pytest.fixture
def seed_owner_data():
    """Create a small pre-existing data set for an owner and return its ids."""

    def _seed(owner_id: str) -> dict:
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        with db.unit_of_work():
            category = db.create_category({
                "id": generate_uid(),
                "user_id": owner_id,
                "name": "Old category",
                "sort_order": 0,
                "created_at": timestamp
            })
            month = db.create_month({
                "id": generate_uid(),
                "user_id": owner_id,
                "year": 2023,
                "month": 12,
                "salary": "1800.00",
                "created_at": timestamp,
                "updated_at": timestamp
            })
            db.create_expense({
                "id": generate_uid(),
                "user_id": owner_id,
                "month_id": month.id,
                "category_id": category.id,
                "item_name": "Old expense",
                "amount": "10.00",
                "expense_date": "2023-12-03",
                "created_at": timestamp,
                "updated_at": timestamp
            })
            db.create_income({
                "id": generate_uid(),
                "user_id": owner_id,
                "month_id": month.id,
                "source": "Old income",
                "amount": "50.00",
                "income_date": "2023-12-20",
                "created_at": timestamp,
                "updated_at": timestamp
            })
            RecurringExpense.create(**{
                "id": generate_uid(),
                "user_id": owner_id,
                "category_id": category.id,
                "item_name": "Internet",
                "amount": "25.00",
                "day_of_month": 15,
                "created_at": timestamp,
                "updated_at": timestamp
            })
        return {"category_id": category.id, "month_id": month.id}

    return _seed


@pytest.fixture
def make_workbook():
    """
    Build an .xlsx file in memory and return its bytes.

    Args (of the returned function):
        sheets: {sheet name: {cell ref: value}}
        categories: category names for the "Kategorijos" sheet (column B from row 2),
                    or None to leave the sheet out
    """

    def _make(sheets: dict, categories=None) -> bytes:
        wb = Workbook()
        wb.remove(wb.active)

        if categories is not None:
            category_sheet = wb.create_sheet("Kategorijos")
            category_sheet["B1"] = "Kategorija"
            for idx, name in enumerate(categories, start=2):
                category_sheet[f"B{idx}"] = name

        for sheet_name, cells in sheets.items():
            sheet = wb.create_sheet(sheet_name)
            for ref, value in cells.items():
                sheet[ref] = value

        buffer = io.BytesIO()
        wb.save(buffer)
        return buffer.getvalue()

    return _make
