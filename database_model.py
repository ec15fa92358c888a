"""
Database models for the finances import service.

All models use PeeWee ORM and follow these principles:
- UUIDs generated in import_logic.py via utils.generate_uid()
- Every row belongs to one owner (user_id); owners never share rows
- Currency amounts stored as decimals with 2 places
- Empty strings converted to NULL via utils.empty_to_none()
- NO LOGIC IN MODELS - pure data structures only
- Timestamps set explicitly by the calling module (YYYY-MM-DD HH:MM:SS format)
"""

from peewee import (
    Model,
    DatabaseProxy,
    CharField,
    IntegerField,
    SmallIntegerField,
    DecimalField,
    BooleanField,
    DateField,
    DateTimeField,
    TextField,
    ForeignKeyField,
)


# Database connection placeholder
# Bound in database_manager.py to pooled MySQL or SQLite depending on configuration
database = DatabaseProxy()


class BaseModel(Model):
    """
    Base model with common fields.

    All models inherit from this to get:
    - id field (UUID - set by the caller)
    - user_id of the owning account
    - created_at timestamp (set by the caller)
    - Shared database connection
    """
    id = CharField(primary_key=True, max_length=36)
    user_id = CharField(max_length=36, index=True)
    created_at = DateTimeField()

    class Meta:
        database = database


class Category(BaseModel):
    """
    Expense categories of one owner.

    sort_order keeps the order categories were given in (import order or
    user-defined). Name matching during import is case-insensitive.
    """
    name = CharField(max_length=255)
    icon = CharField(max_length=50, null=True)
    sort_order = IntegerField(default=0)
    is_archived = BooleanField(default=False)

    class Meta:
        table_name = 'finances_categories'


class Month(BaseModel):
    """
    One calendar month of an owner's budget, carrying the month's salary.

    Business rules:
    - Unique constraint on (user_id, year, month)
    - Month must be 1-12
    """
    year = IntegerField()
    month = SmallIntegerField()  # 1-12
    salary = DecimalField(max_digits=12, decimal_places=2, auto_round=True)
    notes = TextField(null=True)
    updated_at = DateTimeField()

    class Meta:
        table_name = 'finances_months'
        indexes = (
            (('user_id', 'year', 'month'), True),  # One row per owner and month
        )


class Expense(BaseModel):
    """
    Money spent within a month, always attached to a category.
    """
    month_id = ForeignKeyField(Month, column_name='month_id')
    category_id = ForeignKeyField(Category, column_name='category_id')
    item_name = CharField(max_length=255)
    amount = DecimalField(max_digits=12, decimal_places=2, auto_round=True)
    vendor = CharField(max_length=255, null=True)
    expense_date = DateField()
    comment = TextField(null=True)
    is_recurring_instance = BooleanField(default=False)
    is_completed = BooleanField(default=True)
    updated_at = DateTimeField()

    class Meta:
        table_name = 'finances_expenses'
        indexes = (
            (('expense_date',), False),  # Index for date-based queries
        )


class Income(BaseModel):
    """
    Money received within a month besides the salary.
    """
    month_id = ForeignKeyField(Month, column_name='month_id')
    source = CharField(max_length=255)
    amount = DecimalField(max_digits=12, decimal_places=2, auto_round=True)
    income_date = DateField()
    comment = TextField(null=True)
    updated_at = DateTimeField()

    class Meta:
        table_name = 'finances_incomes'


class RecurringExpense(BaseModel):
    """
    Template for an expense that repeats every month on day_of_month.

    Templates reference categories, so they are wiped together with them
    when an import replaces the owner's data.
    """
    category_id = ForeignKeyField(Category, column_name='category_id')
    item_name = CharField(max_length=255)
    amount = DecimalField(max_digits=12, decimal_places=2, auto_round=True)
    vendor = CharField(max_length=255, null=True)
    comment = TextField(null=True)
    day_of_month = SmallIntegerField(default=1)
    is_active = BooleanField(default=True)
    updated_at = DateTimeField()

    class Meta:
        table_name = 'finances_recurring_expenses'


# List of all models for easy reference
ALL_MODELS = [
    Category,
    Month,
    Expense,
    Income,
    RecurringExpense,
]

# Deletion order that respects foreign keys (children before parents)
OWNER_WIPE_ORDER = [
    Expense,
    Income,
    Month,
    RecurringExpense,
    Category,
]
