import calendar
from datetime import date, timedelta

TRANSACTION_TYPES = {"income", "expense"}
FREQUENCIES = {"daily", "weekly", "monthly", "yearly"}
BUDGET_PERIODS = {"weekly", "monthly", "yearly"}
CATEGORY_TYPES = {"task", "transaction", "both"}
ASSET_TYPES = {"crypto", "stock", "bond", "real_estate", "commodity", "other"}

DEFAULT_CATEGORIES = [
    # Expense categories
    {"name": "Food", "icon": "utensils", "color": "#10b981", "type": "transaction"},
    {"name": "Transport", "icon": "car", "color": "#3b82f6", "type": "transaction"},
    {"name": "Housing", "icon": "home", "color": "#8b5cf6", "type": "transaction"},
    {"name": "Entertainment", "icon": "film", "color": "#ec4899", "type": "transaction"},
    {"name": "Health", "icon": "heart", "color": "#ef4444", "type": "transaction"},
    {"name": "Shopping", "icon": "shopping-bag", "color": "#f59e0b", "type": "transaction"},
    {"name": "Education", "icon": "book", "color": "#06b6d4", "type": "transaction"},
    {"name": "Bills", "icon": "file-text", "color": "#64748b", "type": "transaction"},
    {"name": "Other", "icon": "more-horizontal", "color": "#6b7280", "type": "transaction"},
    # Income categories
    {"name": "Salary", "icon": "dollar-sign", "color": "#10b981", "type": "transaction"},
    {"name": "Freelance", "icon": "briefcase", "color": "#3b82f6", "type": "transaction"},
    {"name": "Investment", "icon": "trending-up", "color": "#8b5cf6", "type": "transaction"},
    {"name": "Gift", "icon": "gift", "color": "#ec4899", "type": "transaction"},
]


def add_months(value, months, day_of_month=None):
    """Shift by whole months, clamping the day to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    wanted = day_of_month or value.day
    return date(year, month, min(wanted, calendar.monthrange(year, month)[1]))


def calculate_next_date(frequency, start_date, day_of_month=None):
    """Date of the occurrence following `start_date` for the given frequency."""
    if frequency == "daily":
        return start_date + timedelta(days=1)
    if frequency == "weekly":
        return start_date + timedelta(days=7)
    if frequency == "monthly":
        return add_months(start_date, 1, day_of_month)
    if frequency == "yearly":
        return add_months(start_date, 12)
    raise ValueError(f"Unknown frequency: {frequency}")


def due_occurrences(next_date, frequency, today, end_date=None, day_of_month=None):
    """
    All occurrence dates from `next_date` up to and including `today`
    (bounded by `end_date`), plus the next date after the last one.
    """
    dates = []
    current = next_date
    while current <= today and (end_date is None or current <= end_date):
        dates.append(current)
        current = calculate_next_date(frequency, current, day_of_month)
    return dates, current


def budget_window(period, today=None, start_date=None):
    """Inclusive (start, end) dates of the budget period containing `today`."""
    today = today or date.today()
    if period == "monthly":
        return today.replace(day=1), today.replace(day=calendar.monthrange(today.year, today.month)[1])
    if period == "yearly":
        return date(today.year, 1, 1), date(today.year, 12, 31)
    if period == "weekly":
        monday = today - timedelta(days=today.weekday())
        return monday, monday + timedelta(days=6)
    return start_date or today, today


def budget_progress(budget, transactions, today=None):
    """Spent / remaining / percentage for a budget over its current period window."""
    window_start, window_end = budget_window(budget.period, today, budget.start_date)
    spent = sum(
        tx.amount
        for tx in transactions
        if tx.type == "expense"
        and tx.category_id == budget.category_id
        and window_start <= tx.date <= window_end
    )
    percentage = (spent / budget.amount) * 100 if budget.amount else 0
    return {
        "spent": round(spent, 2),
        "remaining": round(budget.amount - spent, 2),
        "percentage": min(round(percentage, 2), 100),
        "isExceeded": spent > budget.amount,
    }


def holding_stats(holding):
    """Invested amount, current value and profit/loss of one lot; unpriced lots are valued at cost."""
    invested = holding.quantity * holding.purchase_price
    current_value = holding.quantity * (holding.current_price or holding.purchase_price)
    profit_loss = current_value - invested
    return {
        "invested": round(invested, 2),
        "currentValue": round(current_value, 2),
        "profitLoss": round(profit_loss, 2),
        "profitLossPercent": round(profit_loss / invested * 100, 2) if invested > 0 else 0,
    }


def asset_stats(holdings):
    """Totals over every lot of an asset, plus the weighted average purchase price."""
    total_invested = sum(h.quantity * h.purchase_price for h in holdings)
    current_value = sum(h.quantity * (h.current_price or h.purchase_price) for h in holdings)
    total_quantity = sum(h.quantity for h in holdings)
    profit_loss = current_value - total_invested
    return {
        "totalInvested": round(total_invested, 2),
        "currentValue": round(current_value, 2),
        "profitLoss": round(profit_loss, 2),
        "profitLossPercent": round(profit_loss / total_invested * 100, 2) if total_invested > 0 else 0,
        "totalQuantity": total_quantity,
        "avgPrice": round(total_invested / total_quantity, 2) if total_quantity > 0 else 0,
    }
