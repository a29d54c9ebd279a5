from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime, date

db = SQLAlchemy()


def _iso(value):
    return value.isoformat() if value else None


class User(UserMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=True)
    password_hash = db.Column(db.String(200), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relationships
    settings = db.relationship('UserSettings', backref='user', uselist=False, cascade="all, delete-orphan")
    events = db.relationship('CalendarEvent', backref='owner', lazy=True, cascade="all, delete-orphan")
    notes = db.relationship('StickyNote', backref='owner', lazy=True, cascade="all, delete-orphan")
    tasks = db.relationship('Task', backref='owner', lazy=True, cascade="all, delete-orphan")
    categories = db.relationship('Category', backref='owner', lazy=True, cascade="all, delete-orphan")
    transactions = db.relationship('Transaction', backref='owner', lazy=True, cascade="all, delete-orphan")
    budgets = db.relationship('Budget', backref='owner', lazy=True, cascade="all, delete-orphan")
    recurring = db.relationship('RecurringTransaction', backref='owner', lazy=True, cascade="all, delete-orphan")
    assets = db.relationship('Asset', backref='owner', lazy=True, cascade="all, delete-orphan")

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)


class UserSettings(db.Model):
    """Per-user preferences and third-party credentials."""
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, unique=True)
    openai_api_key = db.Column(db.String(255), nullable=True)
    github_token = db.Column(db.String(255), nullable=True)
    github_client_id = db.Column(db.String(255), nullable=True)
    github_client_secret = db.Column(db.String(255), nullable=True)
    language = db.Column(db.String(5), default='ru')  # ru | en
    calendar_start_hour = db.Column(db.Integer, default=6)
    calendar_end_hour = db.Column(db.Integer, default=20)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'openaiApiKey': self.openai_api_key,
            'githubToken': self.github_token,
            'githubClientId': self.github_client_id,
            'githubClientSecret': self.github_client_secret,
            'language': self.language,
            'calendarStartHour': self.calendar_start_hour,
            'calendarEndHour': self.calendar_end_hour,
        }


class CalendarEvent(db.Model):
    """
    Weekly calendar block. Position is day-of-week (Monday=0) plus a week offset
    relative to the current calendar week; times are whole hours plus a
    quarter-hour minute.
    """
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.String(200), nullable=True)
    day = db.Column(db.Integer, nullable=False)  # 0-6
    start_time = db.Column(db.Integer, nullable=False)  # hours 0-24
    start_minute = db.Column(db.Integer, default=0)
    end_time = db.Column(db.Integer, nullable=False)
    end_minute = db.Column(db.Integer, default=0)
    color = db.Column(db.String(20), nullable=True)
    week = db.Column(db.Integer, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'day': self.day,
            'startTime': self.start_time,
            'startMinute': self.start_minute or 0,
            'endTime': self.end_time,
            'endMinute': self.end_minute or 0,
            'color': self.color,
            'week': self.week or 0,
            'createdAt': _iso(self.created_at),
        }


class StickyNote(db.Model):
    """Sticker on the notes wall."""
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    text = db.Column(db.Text, nullable=False, default='')
    x = db.Column(db.Float, default=0)
    y = db.Column(db.Float, default=0)
    color = db.Column(db.String(20), nullable=True)
    collapsed = db.Column(db.Boolean, default=False)
    width = db.Column(db.Float, nullable=True)
    height = db.Column(db.Float, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'text': self.text,
            'x': self.x,
            'y': self.y,
            'color': self.color,
            'collapsed': bool(self.collapsed),
            'width': self.width,
            'height': self.height,
        }


class Category(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)  # NULL for defaults
    name = db.Column(db.String(80), nullable=False)
    color = db.Column(db.String(20), nullable=False)
    icon = db.Column(db.String(40), nullable=True)
    type = db.Column(db.String(20), nullable=False, default='transaction')  # task | transaction | both
    is_default = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'color': self.color,
            'icon': self.icon,
            'type': self.type,
            'isDefault': bool(self.is_default),
        }


class Task(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    priority = db.Column(db.String(10), default='medium')  # low | medium | high
    status = db.Column(db.String(20), default='todo')  # todo | in_progress | done
    due_date = db.Column(db.Date, nullable=True)
    category_id = db.Column(db.Integer, db.ForeignKey('category.id'), nullable=True)
    category = db.relationship('Category')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = db.relationship(
        'TaskItem',
        backref='task',
        lazy=True,
        cascade="all, delete-orphan",
        order_by="TaskItem.order"
    )

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'priority': self.priority,
            'status': self.status,
            'dueDate': _iso(self.due_date),
            'categoryId': self.category_id,
            'category': self.category.to_dict() if self.category else None,
            'items': [item.to_dict() for item in self.items],
            'createdAt': _iso(self.created_at),
        }


class TaskItem(db.Model):
    """Checklist line inside a task."""
    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.Integer, db.ForeignKey('task.id'), nullable=False)
    text = db.Column(db.String(300), nullable=False)
    completed = db.Column(db.Boolean, default=False)
    order = db.Column(db.Integer, default=0)

    def to_dict(self):
        return {
            'id': self.id,
            'taskId': self.task_id,
            'text': self.text,
            'completed': bool(self.completed),
            'order': self.order,
        }


class Transaction(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    type = db.Column(db.String(10), nullable=False)  # income | expense
    amount = db.Column(db.Float, nullable=False)
    description = db.Column(db.String(300), nullable=True)
    category_id = db.Column(db.Integer, db.ForeignKey('category.id'), nullable=True)
    category = db.relationship('Category')
    date = db.Column(db.Date, nullable=False, default=date.today)
    recurring_id = db.Column(db.Integer, db.ForeignKey('recurring_transaction.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'type': self.type,
            'amount': self.amount,
            'description': self.description,
            'categoryId': self.category_id,
            'category': self.category.to_dict() if self.category else None,
            'date': _iso(self.date),
            'recurringId': self.recurring_id,
        }


class Budget(db.Model):
    __table_args__ = (
        db.UniqueConstraint('user_id', 'category_id', 'period', name='uq_budget_user_category_period'),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    category_id = db.Column(db.Integer, db.ForeignKey('category.id'), nullable=False)
    category = db.relationship('Category')
    amount = db.Column(db.Float, nullable=False)
    period = db.Column(db.String(10), default='monthly')  # weekly | monthly | yearly
    start_date = db.Column(db.Date, nullable=False, default=date.today)
    end_date = db.Column(db.Date, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'categoryId': self.category_id,
            'category': self.category.to_dict() if self.category else None,
            'amount': self.amount,
            'period': self.period,
            'startDate': _iso(self.start_date),
            'endDate': _iso(self.end_date),
        }


class RecurringTransaction(db.Model):
    """Template that materialises a Transaction on every due date."""
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    type = db.Column(db.String(10), nullable=False)
    amount = db.Column(db.Float, nullable=False)
    description = db.Column(db.String(300), nullable=True)
    category_id = db.Column(db.Integer, db.ForeignKey('category.id'), nullable=True)
    category = db.relationship('Category')
    frequency = db.Column(db.String(10), nullable=False)  # daily | weekly | monthly | yearly
    day_of_month = db.Column(db.Integer, nullable=True)
    day_of_week = db.Column(db.Integer, nullable=True)
    start_date = db.Column(db.Date, nullable=False, default=date.today)
    end_date = db.Column(db.Date, nullable=True)
    next_date = db.Column(db.Date, nullable=False)
    active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'type': self.type,
            'amount': self.amount,
            'description': self.description,
            'categoryId': self.category_id,
            'category': self.category.to_dict() if self.category else None,
            'frequency': self.frequency,
            'dayOfMonth': self.day_of_month,
            'dayOfWeek': self.day_of_week,
            'startDate': _iso(self.start_date),
            'endDate': _iso(self.end_date),
            'nextDate': _iso(self.next_date),
            'active': bool(self.active),
        }


class Asset(db.Model):
    """Tradable instrument in the user's portfolio; one row per symbol."""
    __table_args__ = (
        db.UniqueConstraint('user_id', 'symbol', name='uq_asset_user_symbol'),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    type = db.Column(db.String(20), nullable=False)  # crypto | stock | bond | real_estate | commodity | other
    symbol = db.Column(db.String(20), nullable=False)
    name = db.Column(db.String(120), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    holdings = db.relationship(
        'Holding',
        backref='asset',
        lazy=True,
        cascade="all, delete-orphan",
        order_by="Holding.purchase_date.desc()"
    )

    def to_dict(self, include_holdings=True):
        data = {
            'id': self.id,
            'type': self.type,
            'symbol': self.symbol,
            'name': self.name,
            'createdAt': _iso(self.created_at),
        }
        if include_holdings:
            data['holdings'] = [h.to_dict(include_asset=False) for h in self.holdings]
        return data


class Holding(db.Model):
    """A single purchase lot of an asset."""
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    asset_id = db.Column(db.Integer, db.ForeignKey('asset.id'), nullable=False)
    quantity = db.Column(db.Float, nullable=False)
    purchase_price = db.Column(db.Float, nullable=False)
    purchase_date = db.Column(db.Date, nullable=False, default=date.today)
    current_price = db.Column(db.Float, nullable=True)
    last_updated = db.Column(db.DateTime, nullable=True)
    notes = db.Column(db.String(300), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self, include_asset=True):
        data = {
            'id': self.id,
            'assetId': self.asset_id,
            'quantity': self.quantity,
            'purchasePrice': self.purchase_price,
            'purchaseDate': _iso(self.purchase_date),
            'currentPrice': self.current_price,
            'lastUpdated': _iso(self.last_updated),
            'notes': self.notes,
        }
        if include_asset:
            data['asset'] = self.asset.to_dict(include_holdings=False) if self.asset else None
        return data
