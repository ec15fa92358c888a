"""
Import logic for the finances service.

Handles Excel file parsing, document validation, and import execution.
Supports two Excel layouts (format profiles) that share the sheet-naming
convention but differ in column order, first data row and salary cell:
- "tomas" format (category column E, salary in J3, data from row 7)
- "ugne" format (no category column, salary in G2, data from row 5)

An import always REPLACES the owner's data: everything the owner had is
deleted and the document is loaded inside one transaction.

This module follows the same architectural pattern as the rest of the app:
- NO direct database calls - always use database_manager module
- UUIDs generated via utils.generate_uid()
- Timestamps set here (not in database)
- Empty strings converted to NULL via utils.empty_to_none()
"""

import io
import logging
import re
import threading
from dataclasses import dataclass
from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional

from dateutil import parser as date_parser
from openpyxl import load_workbook
from openpyxl.utils.datetime import from_excel

from utils import (
    generate_uid, now_timestamp, empty_to_none, to_money,
    validate_date_format, validate_month, validate_year, first_day_of_month
)
import database_manager as db

logger = logging.getLogger(__name__)

CATEGORY_SHEET = "Kategorijos"
CATEGORY_COLUMN = "B"
CATEGORY_FIRST_ROW = 2
FALLBACK_CATEGORY = "Kita"
MONTH_SHEET_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")

# Largest value a DecimalField(max_digits=12, decimal_places=2) column holds
MAX_AMOUNT = Decimal("9999999999.99")


# ==================== ERRORS ====================

class ImportValidationError(ValueError):
    """Import document is structurally invalid. Message is safe to show to the user."""


class ImportInProgressError(RuntimeError):
    """Another import for the same owner is still running."""


class ImportCancelledError(Exception):
    """Caller went away before commit; the transaction was rolled back."""


# ==================== FORMAT PROFILES ====================

class ImportFormat(str, Enum):
    TOMAS = "tomas"
    UGNE = "ugne"


@dataclass(frozen=True)
class FormatProfile:
    """
    Column layout of one spreadsheet format.

    Columns are Excel letters. category_column is None when the format has
    no category column, in which case every row gets the fallback category.
    category_header_row, when set, must hold a value in category_column for
    the column to be used at all.
    """
    salary_cell: str
    first_data_row: int
    item_column: str
    amount_column: str
    vendor_column: str
    date_column: str
    comment_column: str
    category_column: Optional[str] = None
    category_header_row: Optional[int] = None


FORMAT_PROFILES = {
    ImportFormat.TOMAS: FormatProfile(
        salary_cell="J3",
        first_data_row=7,
        item_column="A",
        amount_column="B",
        vendor_column="C",
        date_column="D",
        category_column="E",
        category_header_row=6,
        comment_column="F",
    ),
    ImportFormat.UGNE: FormatProfile(
        salary_cell="G2",
        first_data_row=5,
        date_column="A",
        item_column="B",
        amount_column="C",
        vendor_column="D",
        comment_column="E",
    ),
}


def get_format_profile(format_name) -> FormatProfile:
    """
    Look up the profile for a format token.

    Raises:
        ValueError: Unknown format
    """
    try:
        return FORMAT_PROFILES[ImportFormat(format_name)]
    except ValueError:
        supported = ", ".join(f.value for f in ImportFormat)
        raise ValueError(f"Unknown import format '{format_name}'. Supported formats: {supported}")


# ==================== CELL HELPERS ====================

def _cell_text(sheet, ref: str) -> Optional[str]:
    """
    Read a cell as trimmed text.

    Returns None for empty cells. Whole floats lose their ".0" so an item
    named 12 in the sheet stays "12".
    """
    value = sheet[ref].value
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return empty_to_none(str(value).strip())


def _cell_amount(sheet, ref: str) -> Optional[Decimal]:
    """
    Read a monetary cell.

    Returns:
        Decimal rounded to 2 places, or None if the cell is empty or not a number.
        Date cells are not amounts.
    """
    value = sheet[ref].value
    if isinstance(value, (datetime, date)):
        return None
    return to_money(value)


def _cell_date(sheet, ref: str, year: int, month: int) -> str:
    """
    Read a date cell and return it as YYYY-MM-DD.

    Accepts real date cells, spreadsheet serial numbers and date strings.
    Anything unreadable falls back to the first day of the sheet's month;
    a bad date never blocks a row.
    """
    value = sheet[ref].value
    fallback = first_day_of_month(year, month)

    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            decoded = from_excel(value)
        except (ValueError, OverflowError, TypeError):
            decoded = None
        if isinstance(decoded, datetime):
            return decoded.date().isoformat()
        if isinstance(decoded, date):
            return decoded.isoformat()
        return fallback.isoformat()

    text = empty_to_none(str(value).strip()) if value is not None else None
    if text:
        try:
            # Missing parts (e.g. "15" or "03-15") are taken from the sheet's month
            parsed = date_parser.parse(text, default=datetime(year, month, 1))
            return parsed.date().isoformat()
        except (ValueError, OverflowError):
            pass

    return fallback.isoformat()


def _resolve_category(raw_name: Optional[str], lookup: dict) -> str:
    """Map a sheet category to its canonical name (case-insensitive) or the fallback."""
    if raw_name:
        return lookup.get(raw_name.casefold(), FALLBACK_CATEGORY)
    return FALLBACK_CATEGORY


# ==================== EXCEL PARSING ====================

def parse_excel_file(file_content: bytes, format_name: str) -> dict:
    """
    Parse an Excel workbook into a canonical import document.

    Structure shared by all formats:
    - "Kategorijos" sheet: category names in column B, starting row 2
    - "YYYY-MM" sheets: one sheet per month (salary + expense rows)
    - Any other sheet (e.g. "2024-02 kred") is ignored

    Args:
        file_content: Raw .xlsx bytes
        format_name: Format profile token ("tomas" or "ugne")

    Returns:
        {
            "document": {
                "categories": ["Maistas", "Kita"],
                "months": [
                    {
                        "year": 2024, "month": 1, "salary": Decimal("2500.00"),
                        "expenses": [{"itemName": "Pienas", "amount": Decimal("3.50"), ...}],
                        "incomes": []
                    }
                ]
            },
            "summary": {"categoryCount": 2, "monthCount": 1, "totalExpenses": 1, "totalIncomes": 0},
            "warnings": ["2024-01 row 9: category 'Auto' not found, using 'Kita'"]
        }

    Raises:
        ValueError: Unknown format or unreadable workbook
    """
    profile = get_format_profile(format_name)

    try:
        wb = load_workbook(io.BytesIO(file_content), data_only=True)
    except Exception as e:
        raise ValueError(f"Failed to load Excel file: {e}")

    warnings = []
    categories = _parse_categories_sheet(wb)
    months = _parse_month_sheets(wb, profile, categories, warnings)

    document = {
        "categories": categories,
        "months": months
    }
    summary = summarize_document(document)

    logger.info(f"Parsed workbook ({format_name}): {summary['monthCount']} months, "
                f"{summary['totalExpenses']} expenses, {summary['categoryCount']} categories, "
                f"{len(warnings)} warnings")

    return {
        "document": document,
        "summary": summary,
        "warnings": warnings
    }


def _parse_categories_sheet(wb) -> list:
    """
    Read category names from the category sheet.

    The fallback category is always present at the end of the list so
    every expense resolves to something.
    """
    categories = []

    if CATEGORY_SHEET not in wb.sheetnames:
        logger.info(f"No '{CATEGORY_SHEET}' sheet - using fallback category only")
        return [FALLBACK_CATEGORY]

    sheet = wb[CATEGORY_SHEET]
    for row_idx in range(CATEGORY_FIRST_ROW, sheet.max_row + 1):
        name = _cell_text(sheet, f"{CATEGORY_COLUMN}{row_idx}")
        if name and name not in categories:
            categories.append(name)

    if FALLBACK_CATEGORY not in categories:
        categories.append(FALLBACK_CATEGORY)

    return categories


def _parse_month_sheets(wb, profile: FormatProfile, categories: list, warnings: list) -> list:
    """Parse every sheet named YYYY-MM into a month entry, sorted by date."""
    lookup = {}
    for name in categories:
        lookup.setdefault(name.casefold(), name)

    months = []
    for sheet_name in wb.sheetnames:
        match = MONTH_SHEET_PATTERN.match(sheet_name)
        if not match:
            if sheet_name != CATEGORY_SHEET:
                logger.info(f"Skipping sheet: {sheet_name}")
            continue

        year = int(match.group(1))
        month = int(match.group(2))
        if year < 1 or not validate_month(month):
            warnings.append(f"{sheet_name}: not a calendar month, sheet ignored")
            continue
        sheet = wb[sheet_name]

        salary = _cell_amount(sheet, profile.salary_cell)
        expenses = _parse_expense_rows(sheet, sheet_name, profile, year, month, lookup, warnings)

        logger.info(f"Found month: {sheet_name}, salary={salary or 0}, expenses={len(expenses)}")

        # Salary is stored on the month record, so no income rows come from the sheet
        months.append({
            "year": year,
            "month": month,
            "salary": salary if salary is not None else Decimal("0.00"),
            "expenses": expenses,
            "incomes": []
        })

    months.sort(key=lambda m: (m["year"], m["month"]))
    return months


def _parse_expense_rows(sheet, sheet_name: str, profile: FormatProfile, year: int, month: int,
                        lookup: dict, warnings: list) -> list:
    """
    Scan expense rows from the profile's first data row to the end of the sheet.

    Rows without an item name or a positive amount are skipped. Blank rows
    are skipped silently; half-filled rows add a warning.
    """
    use_category_column = bool(profile.category_column)
    if use_category_column and profile.category_header_row:
        header = _cell_text(sheet, f"{profile.category_column}{profile.category_header_row}")
        use_category_column = header is not None

    expenses = []
    for row_idx in range(profile.first_data_row, sheet.max_row + 1):
        item_name = _cell_text(sheet, f"{profile.item_column}{row_idx}")
        amount = _cell_amount(sheet, f"{profile.amount_column}{row_idx}")

        if not item_name or amount is None or amount <= 0:
            if item_name or sheet[f"{profile.amount_column}{row_idx}"].value is not None:
                warnings.append(f"{sheet_name} row {row_idx}: skipped (missing item name or non-positive amount)")
            continue

        raw_category = None
        if use_category_column:
            raw_category = _cell_text(sheet, f"{profile.category_column}{row_idx}")
        category_name = _resolve_category(raw_category, lookup)
        if raw_category and category_name == FALLBACK_CATEGORY and raw_category.casefold() != FALLBACK_CATEGORY.casefold():
            warnings.append(f"{sheet_name} row {row_idx}: category '{raw_category}' not found, using '{FALLBACK_CATEGORY}'")

        expenses.append({
            "itemName": item_name,
            "amount": amount,
            "categoryName": category_name,
            "vendor": _cell_text(sheet, f"{profile.vendor_column}{row_idx}"),
            "expenseDate": _cell_date(sheet, f"{profile.date_column}{row_idx}", year, month),
            "comment": _cell_text(sheet, f"{profile.comment_column}{row_idx}")
        })

    return expenses


def summarize_document(document: dict) -> dict:
    """Counts shown to the user before they confirm the import."""
    months = document.get("months") or []
    return {
        "categoryCount": len(document.get("categories") or []),
        "monthCount": len(months),
        "totalExpenses": sum(len(m.get("expenses") or []) for m in months),
        "totalIncomes": sum(len(m.get("incomes") or []) for m in months)
    }


# ==================== VALIDATION ====================

def _required_text(value) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return empty_to_none(value.strip())


def _validate_positive_amount(value, context: str, label: str) -> Decimal:
    amount = to_money(value)
    if amount is None or amount <= 0:
        raise ImportValidationError(f"{label} amount must be positive in {context}")
    if amount > MAX_AMOUNT:
        raise ImportValidationError(f"{label} amount exceeds {MAX_AMOUNT} in {context}")
    return amount


def _validate_entry_date(value, context: str, label: str) -> str:
    if not isinstance(value, str) or not validate_date_format(value.strip()):
        raise ImportValidationError(f"Invalid {label} date '{value}' in {context}")
    return datetime.strptime(value.strip(), "%Y-%m-%d").date().isoformat()


def validate_import_document(document: dict) -> dict:
    """
    Structural validation of an import document before any database change.

    Works on documents coming straight from JSON (floats, strings) as well
    as parser output (Decimals).

    Args:
        document: {"categories": [...], "months": [...]}

    Returns:
        Normalized copy of the document (Decimal amounts, trimmed text,
        empty optional text as None)

    Raises:
        ImportValidationError: First problem found, naming the month and row
    """
    if not isinstance(document, dict):
        raise ImportValidationError("Import document must be an object")

    categories = document.get("categories")
    if not isinstance(categories, list) or not categories:
        raise ImportValidationError("At least one category is required")

    clean_categories = []
    for idx, name in enumerate(categories):
        text = _required_text(name)
        if text is None:
            raise ImportValidationError(f"Category name is required (position {idx + 1})")
        clean_categories.append(text)

    months = document.get("months")
    if not isinstance(months, list) or not months:
        raise ImportValidationError("At least one month is required")

    clean_months = []
    for entry in months:
        if not isinstance(entry, dict):
            raise ImportValidationError("Month entry must be an object")

        year = entry.get("year")
        month = entry.get("month")
        if not validate_month(month):
            raise ImportValidationError(f"Invalid month value: {month}. Must be between 1 and 12")
        if not validate_year(year):
            raise ImportValidationError(f"Invalid year value: {year}. Must be between 2000 and 2100")

        context = f"{year}-{month:02d}"

        salary = to_money(entry.get("salary", 0))
        if salary is None:
            raise ImportValidationError(f"Salary must be a number for {context}")
        if salary < 0:
            raise ImportValidationError(f"Salary cannot be negative for {context}")
        if salary > MAX_AMOUNT:
            raise ImportValidationError(f"Salary exceeds {MAX_AMOUNT} for {context}")

        clean_expenses = []
        for row, expense in enumerate(entry.get("expenses") or [], start=1):
            row_context = f"{context} (expense {row})"
            if not isinstance(expense, dict):
                raise ImportValidationError(f"Expense entry must be an object in {row_context}")
            item_name = _required_text(expense.get("itemName"))
            if item_name is None:
                raise ImportValidationError(f"Expense item name is required in {row_context}")
            amount = _validate_positive_amount(expense.get("amount"), row_context, "Expense")
            category_name = _required_text(expense.get("categoryName"))
            if category_name is None:
                raise ImportValidationError(f"Expense category name is required in {row_context}")
            expense_date = _validate_entry_date(expense.get("expenseDate"), row_context, "expense")

            clean_expenses.append({
                "itemName": item_name,
                "amount": amount,
                "categoryName": category_name,
                "vendor": empty_to_none(expense.get("vendor")),
                "expenseDate": expense_date,
                "comment": empty_to_none(expense.get("comment"))
            })

        clean_incomes = []
        for row, income in enumerate(entry.get("incomes") or [], start=1):
            row_context = f"{context} (income {row})"
            if not isinstance(income, dict):
                raise ImportValidationError(f"Income entry must be an object in {row_context}")
            source = _required_text(income.get("source"))
            if source is None:
                raise ImportValidationError(f"Income source is required in {row_context}")
            amount = _validate_positive_amount(income.get("amount"), row_context, "Income")
            income_date = _validate_entry_date(income.get("incomeDate"), row_context, "income")

            clean_incomes.append({
                "source": source,
                "amount": amount,
                "incomeDate": income_date,
                "comment": empty_to_none(income.get("comment"))
            })

        clean_months.append({
            "year": year,
            "month": month,
            "salary": salary,
            "expenses": clean_expenses,
            "incomes": clean_incomes
        })

    return {
        "categories": clean_categories,
        "months": clean_months
    }


# ==================== EXECUTION ====================

# One import at a time per owner within this process. Only owners with an
# import running have an entry.
_owner_locks = {}
_owner_locks_guard = threading.Lock()


def _acquire_owner_lock(owner_id: str) -> threading.Lock:
    with _owner_locks_guard:
        lock = _owner_locks.setdefault(owner_id, threading.Lock())
        if not lock.acquire(blocking=False):
            raise ImportInProgressError(f"An import is already running for user {owner_id}")
    return lock


def _release_owner_lock(owner_id: str, lock: threading.Lock) -> None:
    with _owner_locks_guard:
        lock.release()
        if _owner_locks.get(owner_id) is lock:
            del _owner_locks[owner_id]


def _check_cancelled(should_cancel: Optional[Callable[[], bool]], stage: str) -> None:
    if should_cancel is not None and should_cancel():
        raise ImportCancelledError(f"Import cancelled {stage}")


def execute_import(owner_id: str, document: dict,
                   should_cancel: Optional[Callable[[], bool]] = None) -> dict:
    """
    Replace all of the owner's financial data with the import document.

    Steps (one transaction):
    1. Wipe expenses, incomes, months, recurring expenses, categories
    2. Create categories in document order (sort_order = position)
    3. Create months; expenses whose category cannot be resolved are
       skipped, incomes are always created
    4. Commit

    Any error in steps 1-3 rolls everything back, leaving the owner's
    previous data untouched.

    Args:
        owner_id: Owner whose data is replaced
        document: Import document (validated here before anything is deleted)
        should_cancel: Optional callable; returning True aborts and rolls back

    Returns:
        {
            "categoriesCreated": 12,
            "monthsCreated": 24,
            "expensesCreated": 830,
            "incomesCreated": 3,
            "expensesSkipped": 0,
            "warnings": []
        }

    Raises:
        ImportValidationError: Document rejected, nothing changed
        ImportInProgressError: Another import for the owner is running
        ImportCancelledError: should_cancel() returned True, rolled back
        peewee.PeeweeException: Database failure, rolled back
    """
    owner_id = _required_text(owner_id)
    if owner_id is None:
        raise ImportValidationError("Owner id is required")

    clean = validate_import_document(document)
    lock = _acquire_owner_lock(owner_id)

    try:
        logger.info(f"Starting import for user {owner_id}: {len(clean['months'])} months, "
                    f"{len(clean['categories'])} categories")
        with db.unit_of_work():
            result = _load_document(owner_id, clean, should_cancel)
        logger.info(f"Import committed for user {owner_id}: {result['monthsCreated']} months, "
                    f"{result['expensesCreated']} expenses, {result['incomesCreated']} incomes, "
                    f"{result['expensesSkipped']} expenses skipped")
        return result
    except ImportCancelledError as e:
        logger.warning(f"Import rolled back for user {owner_id}: {e}")
        raise
    except Exception as e:
        logger.error(f"Import failed for user {owner_id}, transaction rolled back: {e}", exc_info=True)
        raise
    finally:
        _release_owner_lock(owner_id, lock)


def _load_document(owner_id: str, document: dict, should_cancel) -> dict:
    """Wipe-and-load body. Must run inside db.unit_of_work()."""
    deleted = db.wipe_owner_data(owner_id)
    logger.info(f"Wiped previous data for user {owner_id}: {deleted}")

    timestamp = now_timestamp()

    category_ids = {}
    for position, name in enumerate(document["categories"]):
        category = db.create_category({
            "id": generate_uid(),
            "user_id": owner_id,
            "name": name,
            "sort_order": position,
            "is_archived": False,
            "created_at": timestamp
        })
        category_ids.setdefault(name.casefold(), category.id)

    months_created = 0
    expenses_created = 0
    incomes_created = 0
    warnings = []

    for entry in document["months"]:
        _check_cancelled(should_cancel, f"before {entry['year']}-{entry['month']:02d}")

        month = db.create_month({
            "id": generate_uid(),
            "user_id": owner_id,
            "year": entry["year"],
            "month": entry["month"],
            "salary": entry["salary"],
            "notes": None,
            "created_at": timestamp,
            "updated_at": timestamp
        })
        months_created += 1

        for expense in entry["expenses"]:
            category_id = category_ids.get(expense["categoryName"].casefold())
            if category_id is None:
                # Unknown category - drop the row, keep the import going
                warnings.append(f"{entry['year']}-{entry['month']:02d}: skipped expense "
                                f"'{expense['itemName']}' (unknown category '{expense['categoryName']}')")
                continue

            db.create_expense({
                "id": generate_uid(),
                "user_id": owner_id,
                "month_id": month.id,
                "category_id": category_id,
                "item_name": expense["itemName"],
                "amount": expense["amount"],
                "vendor": expense["vendor"],
                "expense_date": expense["expenseDate"],
                "comment": expense["comment"],
                "is_recurring_instance": False,
                "is_completed": True,
                "created_at": timestamp,
                "updated_at": timestamp
            })
            expenses_created += 1

        for income in entry["incomes"]:
            db.create_income({
                "id": generate_uid(),
                "user_id": owner_id,
                "month_id": month.id,
                "source": income["source"],
                "amount": income["amount"],
                "income_date": income["incomeDate"],
                "comment": income["comment"],
                "created_at": timestamp,
                "updated_at": timestamp
            })
            incomes_created += 1

    _check_cancelled(should_cancel, "before commit")

    for warning in warnings:
        logger.warning(f"Import for user {owner_id}: {warning}")

    return {
        "categoriesCreated": len(document["categories"]),
        "monthsCreated": months_created,
        "expensesCreated": expenses_created,
        "incomesCreated": incomes_created,
        "expensesSkipped": len(warnings),
        "warnings": warnings
    }
