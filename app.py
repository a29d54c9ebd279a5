import os
import random
from datetime import datetime

from dotenv import load_dotenv
from flask import Flask, request, jsonify, session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

load_dotenv()

from ai_service import interpret_schedule_request
from backend.ai_client import resolve_api_key
from models import (
    db, User, UserSettings, CalendarEvent, StickyNote, Task, TaskItem,
    Category, Transaction, Budget, RecurringTransaction, Asset, Holding,
)
from services.event_layout import layout_week
from services.finance_service import (
    ASSET_TYPES, BUDGET_PERIODS, CATEGORY_TYPES, DEFAULT_CATEGORIES, FREQUENCIES, TRANSACTION_TYPES,
    asset_stats, budget_progress, calculate_next_date, due_occurrences, holding_stats,
)
from services.validation_service import (
    clean_event_payload, parse_amount, parse_bool, parse_day_value, parse_int, parse_week_offset,
)
from services.week_dates import build_week_context, local_today
from apscheduler.schedulers.background import BackgroundScheduler

app = Flask(__name__)
app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', 'sqlite:///planos.db')
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
app.config['PERMANENT_SESSION_LIFETIME'] = 365 * 24 * 60 * 60  # 1 year in seconds
app.config['API_SHARED_KEY'] = os.environ.get('API_SHARED_KEY')  # Optional shared key for API callers
app.config['OPENAI_API_KEY'] = os.environ.get('OPENAI_API_KEY')
app.config['OPENAI_MODEL'] = os.environ.get('OPENAI_MODEL', 'gpt-4o-mini')
app.config['DEFAULT_TIMEZONE'] = os.environ.get('DEFAULT_TIMEZONE', 'UTC')

db.init_app(app)
scheduler = None

EVENT_COLORS = [
    '#2563eb',  # blue
    '#059669',  # green
    '#dc2626',  # red
    '#ea580c',  # orange
    '#7c3aed',  # purple
    '#0891b2',  # cyan
    '#ca8a04',  # yellow
    '#be123c',  # rose
]
ALLOWED_PRIORITIES = {'low', 'medium', 'high'}
ALLOWED_TASK_STATUSES = {'todo', 'in_progress', 'done'}
SETTINGS_FIELDS = {
    'openaiApiKey': 'openai_api_key',
    'githubToken': 'github_token',
    'githubClientId': 'github_client_id',
    'githubClientSecret': 'github_client_secret',
    'language': 'language',
    'calendarStartHour': 'calendar_start_hour',
    'calendarEndHour': 'calendar_end_hour',
}


def get_current_user():
    """Resolve the current user from a shared API key + user id header, else fall back to session."""
    # Header-based auth for service callers
    api_key = request.headers.get('X-API-Key')
    api_user_id = request.headers.get('X-User-Id')
    shared_key = app.config.get('API_SHARED_KEY')
    if shared_key and api_key and api_user_id:
        try:
            api_uid_int = int(api_user_id)
        except (TypeError, ValueError):
            api_uid_int = None
        if api_uid_int and api_key == shared_key:
            user = db.session.get(User, api_uid_int)
            if user:
                return user

    # Session-based auth for browser users
    user_id = session.get('user_id')
    if user_id:
        return db.session.get(User, user_id)
    return None


def _unauthorized():
    return jsonify({'error': 'No user selected'}), 401


@app.errorhandler(SQLAlchemyError)
def _database_error(exc):
    db.session.rollback()
    app.logger.error(f"Database error on {request.method} {request.path}: {exc}")
    return jsonify({'error': 'Database error'}), 500


def _seed_default_categories():
    """Create the shared default categories once; safe to call on every start."""
    existing = {c.name for c in Category.query.filter(Category.is_default.is_(True)).all()}
    created = 0
    for entry in DEFAULT_CATEGORIES:
        if entry["name"] in existing:
            continue
        db.session.add(Category(user_id=None, is_default=True, **entry))
        created += 1
    if created:
        db.session.commit()
        app.logger.info(f"Seeded {created} default categories")


with app.app_context():
    db.create_all()
    _seed_default_categories()


def _get_or_create_settings(user):
    settings = user.settings
    if not settings:
        settings = UserSettings(user_id=user.id, language='ru', calendar_start_hour=6, calendar_end_hour=20)
        db.session.add(settings)
        db.session.commit()
    return settings


def _visible_category(category_id, user):
    """Return a default or user-owned category, None for a blank id; raise ValueError otherwise."""
    if category_id in (None, ''):
        return None
    category_id = parse_int(category_id, -1)
    category = db.session.get(Category, category_id) if 0 < category_id < 2 ** 63 else None
    if not category or not (category.is_default or category.user_id == user.id):
        raise ValueError('Category not found')
    return category


# --- Recurring transactions ---

def _apply_due_recurring_transactions(user_id=None, today=None):
    """Materialise every due occurrence of active recurring entries; returns the number created."""
    today = today or local_today(app.config['DEFAULT_TIMEZONE'])
    query = RecurringTransaction.query.filter(
        RecurringTransaction.active.is_(True),
        RecurringTransaction.next_date <= today,
    )
    if user_id is not None:
        query = query.filter(RecurringTransaction.user_id == user_id)

    created = 0
    for entry in query.all():
        occurrences, following = due_occurrences(
            entry.next_date, entry.frequency, today, entry.end_date, entry.day_of_month
        )
        for occurrence in occurrences:
            db.session.add(Transaction(
                user_id=entry.user_id,
                type=entry.type,
                amount=entry.amount,
                description=entry.description,
                category_id=entry.category_id,
                date=occurrence,
                recurring_id=entry.id,
            ))
            created += 1
        entry.next_date = following
        if entry.end_date and following > entry.end_date:
            entry.active = False
    db.session.commit()
    if created:
        app.logger.info(f"Materialised {created} recurring transaction(s)")
    return created


def _run_recurring_job():
    with app.app_context():
        try:
            _apply_due_recurring_transactions()
        except Exception as e:
            db.session.rollback()
            app.logger.error(f"Recurring transaction job failed: {e}")


def _start_scheduler():
    """Start background scheduler for recurring finance entries."""
    global scheduler
    if os.environ.get('ENABLE_FINANCE_JOBS', '1') != '1':
        return
    if scheduler and scheduler.running:
        return
    # Avoid double-start in Flask debug reloader
    if app.debug and os.environ.get('WERKZEUG_RUN_MAIN') != 'true':
        return
    scheduler = BackgroundScheduler(timezone=app.config['DEFAULT_TIMEZONE'])
    scheduler.add_job(_run_recurring_job, 'cron', hour=0, minute=15)
    scheduler.start()

_jobs_bootstrapped = False

@app.before_request
def _bootstrap_background_jobs():
    global _jobs_bootstrapped
    if _jobs_bootstrapped:
        return
    _start_scheduler()
    _jobs_bootstrapped = True


# User Routes
@app.route('/api/create-user', methods=['POST'])
def create_user():
    data = request.get_json(silent=True) or {}
    username = (data.get('username') or '').strip()
    password = data.get('password') or ''

    if not username:
        return jsonify({'error': 'Username is required'}), 400
    if len(password) < 4:
        return jsonify({'error': 'Password must be at least 4 characters'}), 400
    if User.query.filter_by(username=username).first():
        return jsonify({'error': 'Username already exists'}), 400

    user = User(username=username, email=(data.get('email') or '').strip() or None)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()

    session['user_id'] = user.id
    session.permanent = True
    return jsonify({'success': True, 'user_id': user.id, 'username': user.username}), 201


@app.route('/api/set-user/<int:user_id>', methods=['POST'])
def set_user(user_id):
    """Sign in as an existing user."""
    data = request.get_json(silent=True) or {}
    user = db.get_or_404(User, user_id)
    if not user.check_password(data.get('password') or ''):
        return jsonify({'error': 'Invalid password'}), 401
    session['user_id'] = user.id
    session.permanent = True
    return jsonify({'success': True, 'username': user.username, 'user_id': user.id})


@app.route('/api/logout', methods=['POST'])
def logout_user():
    session.pop('user_id', None)
    return jsonify({'success': True})


@app.route('/api/current-user')
def current_user_info():
    user = get_current_user()
    if user:
        return jsonify({'user_id': user.id, 'username': user.username})
    return jsonify({'user_id': None, 'username': None})


# Calendar API
@app.route('/api/calendar/week')
def calendar_week():
    """Dates and weekday labels of the week `offset` weeks from the current one."""
    try:
        offset = parse_week_offset(request.args.get('offset'))
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400
    lang = request.args.get('lang')
    if not lang:
        user = get_current_user()
        lang = _get_or_create_settings(user).language if user else 'ru'
    today = local_today(app.config['DEFAULT_TIMEZONE'])
    return jsonify({'offset': offset, 'days': build_week_context(offset, today, lang)})


@app.route('/api/user/events', methods=['GET', 'POST'])
def handle_events():
    user = get_current_user()
    if not user:
        return _unauthorized()

    if request.method == 'POST':
        data = request.get_json(silent=True) or {}
        try:
            fields = clean_event_payload(data)
        except ValueError as exc:
            return jsonify({'error': str(exc)}), 400
        event = CalendarEvent(user_id=user.id, **fields)
        db.session.add(event)
        db.session.commit()
        return jsonify(event.to_dict()), 201

    query = CalendarEvent.query.filter_by(user_id=user.id)
    if request.args.get('week') is not None:
        try:
            week = parse_week_offset(request.args.get('week'))
        except ValueError as exc:
            return jsonify({'error': str(exc)}), 400
        query = query.filter(CalendarEvent.week == week)
    events = query.order_by(CalendarEvent.created_at.desc(), CalendarEvent.id.desc()).all()
    return jsonify([e.to_dict() for e in events])


@app.route('/api/user/events/<int:event_id>', methods=['PUT', 'DELETE'])
def handle_event(event_id):
    user = get_current_user()
    if not user:
        return _unauthorized()

    event = CalendarEvent.query.filter_by(id=event_id, user_id=user.id).first_or_404()

    if request.method == 'DELETE':
        db.session.delete(event)
        db.session.commit()
        return '', 204

    data = request.get_json(silent=True) or {}
    try:
        fields = clean_event_payload(data, existing=event.to_dict())
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400
    for key, value in fields.items():
        setattr(event, key, value)
    db.session.commit()
    return jsonify(event.to_dict())


@app.route('/api/user/events/layout')
def events_layout():
    """Column placement of overlapping events, per day of one week."""
    user = get_current_user()
    if not user:
        return _unauthorized()

    try:
        week = parse_week_offset(request.args.get('week'))
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400
    events = CalendarEvent.query.filter_by(user_id=user.id, week=week).order_by(CalendarEvent.id.asc()).all()
    layout = layout_week([e.to_dict() for e in events])
    return jsonify({
        'week': week,
        'days': {
            str(day): [{'id': event_id, **placement} for event_id, placement in placements.items()]
            for day, placements in layout.items()
        },
    })


@app.route('/api/ai', methods=['POST'])
def ai_schedule():
    """Interpret a natural-language scheduling request into calendar events."""
    data = request.get_json(silent=True) or {}
    message = (data.get('message') or '').strip()
    if not message:
        return jsonify({'error': 'Message is required'}), 400
    try:
        week_offset = parse_week_offset(data.get('weekOffset'))
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400

    user = get_current_user()
    settings = _get_or_create_settings(user) if user else None
    api_key = resolve_api_key(
        data.get('apiKey'),
        settings.openai_api_key if settings else None,
        app.config.get('OPENAI_API_KEY'),
    )
    if not api_key:
        return jsonify({'error': 'OpenAI API key not configured. Please add it in Settings.'}), 400

    existing_events = data.get('existingEvents')
    if existing_events is None and user:
        existing_events = [
            e.to_dict() for e in CalendarEvent.query.filter_by(user_id=user.id, week=week_offset).all()
        ]
    calendar_hours = (
        (settings.calendar_start_hour, settings.calendar_end_hour) if settings else (6, 20)
    )

    result = interpret_schedule_request(
        message,
        week_offset,
        existing_events if isinstance(existing_events, list) else [],
        api_key=api_key,
        model=app.config.get('OPENAI_MODEL'),
        today=local_today(app.config['DEFAULT_TIMEZONE']),
        calendar_hours=calendar_hours,
        logger=app.logger,
    )

    if result['status'] == 'unavailable':
        return jsonify({'error': 'AI failed', 'message': result['message'], 'events': []}), 502

    events = result['events']
    if parse_bool(data.get('save')) and user and events:
        saved = []
        for draft in events:
            event = CalendarEvent(
                user_id=user.id,
                title=draft['title'],
                description=draft['description'] or None,
                day=draft['day'],
                start_time=draft['startTime'],
                start_minute=draft['startMinute'],
                end_time=draft['endTime'],
                end_minute=draft['endMinute'],
                color=random.choice(EVENT_COLORS),
                week=week_offset,
            )
            db.session.add(event)
            saved.append(event)
        db.session.commit()
        app.logger.info(f"Saved {len(saved)} AI-scheduled event(s) for user {user.id}")
        events = [e.to_dict() for e in saved]

    return jsonify({
        'status': result['status'],
        'events': events,
        'message': result['message'],
        'conflicts': result['conflicts'],
        'adjustments': result['adjustments'],
    })


# Sticky notes API
def _apply_note_fields(note, data):
    if 'text' in data:
        note.text = data.get('text') or ''
    for field in ('x', 'y', 'width', 'height'):
        if field in data:
            value = data.get(field)
            try:
                setattr(note, field, float(value) if value is not None else None)
            except (TypeError, ValueError):
                raise ValueError(f"{field} must be a number")
    if 'color' in data:
        note.color = data.get('color')
    if 'collapsed' in data:
        note.collapsed = parse_bool(data.get('collapsed'))


@app.route('/api/user/notes', methods=['GET', 'POST'])
def handle_notes():
    user = get_current_user()
    if not user:
        return _unauthorized()

    if request.method == 'POST':
        data = request.get_json(silent=True) or {}
        note = StickyNote(user_id=user.id, text='', x=0, y=0, collapsed=False)
        try:
            _apply_note_fields(note, data)
        except ValueError as exc:
            return jsonify({'error': str(exc)}), 400
        db.session.add(note)
        db.session.commit()
        return jsonify(note.to_dict()), 201

    notes = StickyNote.query.filter_by(user_id=user.id).order_by(StickyNote.created_at.desc(), StickyNote.id.desc()).all()
    return jsonify([n.to_dict() for n in notes])


@app.route('/api/user/notes/<int:note_id>', methods=['PUT', 'DELETE'])
def handle_note(note_id):
    user = get_current_user()
    if not user:
        return _unauthorized()

    note = StickyNote.query.filter_by(id=note_id, user_id=user.id).first_or_404()

    if request.method == 'DELETE':
        db.session.delete(note)
        db.session.commit()
        return '', 204

    data = request.get_json(silent=True) or {}
    try:
        _apply_note_fields(note, data)
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400
    db.session.commit()
    return jsonify(note.to_dict())


# Tasks API
def _apply_task_fields(task, data, user):
    if 'title' in data or task.title is None:
        title = (data.get('title') or '').strip()
        if not title:
            raise ValueError('Title is required')
        task.title = title
    if 'description' in data:
        task.description = (data.get('description') or '').strip() or None
    if 'priority' in data or task.priority is None:
        priority = data.get('priority') or 'medium'
        if priority not in ALLOWED_PRIORITIES:
            raise ValueError('Invalid priority')
        task.priority = priority
    if 'status' in data or task.status is None:
        status = data.get('status') or 'todo'
        if status not in ALLOWED_TASK_STATUSES:
            raise ValueError('Invalid status')
        task.status = status
    if 'dueDate' in data:
        raw_due = data.get('dueDate')
        due = parse_day_value(raw_due)
        if raw_due and not due:
            raise ValueError('Invalid dueDate (expected YYYY-MM-DD)')
        task.due_date = due
    if 'categoryId' in data:
        category = _visible_category(data.get('categoryId'), user)
        task.category_id = category.id if category else None


def _replace_task_items(task, items):
    task.items.clear()
    for index, item in enumerate(items or []):
        text = (str(item.get('text') or '')).strip() if isinstance(item, dict) else ''
        if not text:
            continue
        order = parse_int(item.get('order'), index)
        if not 0 <= order <= 100000:
            order = index
        task.items.append(TaskItem(text=text, completed=parse_bool(item.get('completed')), order=order))


@app.route('/api/user/tasks', methods=['GET', 'POST'])
def handle_tasks():
    user = get_current_user()
    if not user:
        return _unauthorized()

    if request.method == 'POST':
        data = request.get_json(silent=True) or {}
        task = Task(user_id=user.id)
        try:
            _apply_task_fields(task, data, user)
        except ValueError as exc:
            return jsonify({'error': str(exc)}), 400
        _replace_task_items(task, data.get('items'))
        db.session.add(task)
        db.session.commit()
        return jsonify(task.to_dict()), 201

    tasks = Task.query.filter_by(user_id=user.id).order_by(Task.created_at.desc(), Task.id.desc()).all()
    return jsonify([t.to_dict() for t in tasks])


@app.route('/api/user/tasks/<int:task_id>', methods=['PUT', 'DELETE'])
def handle_task(task_id):
    user = get_current_user()
    if not user:
        return _unauthorized()

    task = Task.query.filter_by(id=task_id, user_id=user.id).first_or_404()

    if request.method == 'DELETE':
        db.session.delete(task)
        db.session.commit()
        return '', 204

    data = request.get_json(silent=True) or {}
    try:
        _apply_task_fields(task, data, user)
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400
    if 'items' in data:
        _replace_task_items(task, data.get('items'))
    db.session.commit()
    return jsonify(task.to_dict())


@app.route('/api/user/tasks/<int:task_id>/items/<int:item_id>', methods=['PUT'])
def toggle_task_item(task_id, item_id):
    user = get_current_user()
    if not user:
        return _unauthorized()

    task = Task.query.filter_by(id=task_id, user_id=user.id).first_or_404()
    item = TaskItem.query.filter_by(id=item_id, task_id=task.id).first_or_404()
    data = request.get_json(silent=True) or {}
    item.completed = parse_bool(data.get('completed'), default=not item.completed)
    db.session.commit()
    return jsonify(item.to_dict())


# Categories API
def _apply_category_fields(category, data):
    name = (data.get('name') or '').strip()
    color = (data.get('color') or '').strip()
    category_type = data.get('type')
    if not name or not color or not category_type:
        raise ValueError('Missing required fields')
    if category_type not in CATEGORY_TYPES:
        raise ValueError('Invalid category type')
    category.name = name
    category.color = color
    category.icon = data.get('icon') or None
    category.type = category_type


@app.route('/api/user/categories', methods=['GET', 'POST'])
def handle_categories():
    user = get_current_user()

    if request.method == 'POST':
        if not user:
            return _unauthorized()
        data = request.get_json(silent=True) or {}
        category = Category(user_id=user.id, is_default=False)
        try:
            _apply_category_fields(category, data)
        except ValueError as exc:
            return jsonify({'error': str(exc)}), 400
        db.session.add(category)
        db.session.commit()
        return jsonify(category.to_dict()), 201

    category_type = request.args.get('type')
    defaults = Category.query.filter(Category.is_default.is_(True))
    if category_type and category_type != 'both':
        defaults = defaults.filter(Category.type == category_type)
    categories = defaults.order_by(Category.name.asc()).all()
    if user:
        own = Category.query.filter(Category.user_id == user.id)
        if category_type and category_type != 'both':
            own = own.filter(Category.type == category_type)
        categories += own.order_by(Category.name.asc()).all()
    return jsonify([c.to_dict() for c in categories])


@app.route('/api/user/categories/<int:category_id>', methods=['PUT', 'DELETE'])
def handle_category(category_id):
    user = get_current_user()
    if not user:
        return _unauthorized()

    category = db.get_or_404(Category, category_id)
    if category.is_default:
        return jsonify({'error': 'Cannot modify default categories'}), 403
    if category.user_id != user.id:
        return jsonify({'error': 'Category not found'}), 404

    if request.method == 'DELETE':
        db.session.delete(category)
        db.session.commit()
        return '', 204

    data = request.get_json(silent=True) or {}
    try:
        _apply_category_fields(category, data)
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400
    db.session.commit()
    return jsonify(category.to_dict())


# Transactions API
def _apply_transaction_fields(tx, data, user):
    tx_type = data.get('type')
    if tx_type not in TRANSACTION_TYPES:
        raise ValueError('type must be income or expense')
    tx.type = tx_type
    tx.amount = parse_amount(data.get('amount'))
    tx.description = (data.get('description') or '').strip() or None
    category = _visible_category(data.get('categoryId'), user)
    tx.category_id = category.id if category else None
    raw_date = data.get('date')
    tx_date = parse_day_value(raw_date)
    if raw_date and not tx_date:
        raise ValueError('Invalid date (expected YYYY-MM-DD)')
    tx.date = tx_date or local_today(app.config['DEFAULT_TIMEZONE'])


@app.route('/api/user/transactions', methods=['GET', 'POST'])
def handle_transactions():
    user = get_current_user()
    if not user:
        return _unauthorized()

    if request.method == 'POST':
        data = request.get_json(silent=True) or {}
        tx = Transaction(user_id=user.id)
        try:
            _apply_transaction_fields(tx, data, user)
        except ValueError as exc:
            return jsonify({'error': str(exc)}), 400
        db.session.add(tx)
        db.session.commit()
        return jsonify(tx.to_dict()), 201

    transactions = Transaction.query.filter_by(user_id=user.id).order_by(
        Transaction.date.desc(), Transaction.id.desc()
    ).all()
    return jsonify([t.to_dict() for t in transactions])


@app.route('/api/user/transactions/<int:tx_id>', methods=['PUT', 'DELETE'])
def handle_transaction(tx_id):
    user = get_current_user()
    if not user:
        return _unauthorized()

    tx = Transaction.query.filter_by(id=tx_id, user_id=user.id).first_or_404()

    if request.method == 'DELETE':
        db.session.delete(tx)
        db.session.commit()
        return '', 204

    data = request.get_json(silent=True) or {}
    try:
        _apply_transaction_fields(tx, data, user)
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400
    db.session.commit()
    return jsonify(tx.to_dict())


# Budgets API
def _apply_budget_fields(budget, data, user, creating=False):
    if creating:
        category = _visible_category(data.get('categoryId'), user)
        if not category:
            raise ValueError('categoryId is required')
        budget.category_id = category.id
    budget.amount = parse_amount(data.get('amount'))
    period = data.get('period') or budget.period or 'monthly'
    if period not in BUDGET_PERIODS:
        raise ValueError('Invalid period')
    budget.period = period
    if data.get('startDate') or creating:
        start = parse_day_value(data.get('startDate'))
        if data.get('startDate') and not start:
            raise ValueError('Invalid startDate (expected YYYY-MM-DD)')
        budget.start_date = start or local_today(app.config['DEFAULT_TIMEZONE'])
    if 'endDate' in data:
        end = parse_day_value(data.get('endDate'))
        if data.get('endDate') and not end:
            raise ValueError('Invalid endDate (expected YYYY-MM-DD)')
        budget.end_date = end


def _budget_dict(budget, transactions):
    data = budget.to_dict()
    data.update(budget_progress(budget, transactions, local_today(app.config['DEFAULT_TIMEZONE'])))
    return data


def _commit_budget(budget):
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({'error': 'Budget for this category and period already exists'}), 400
    transactions = Transaction.query.filter_by(user_id=budget.user_id, category_id=budget.category_id).all()
    return jsonify(_budget_dict(budget, transactions))


@app.route('/api/user/budgets', methods=['GET', 'POST'])
def handle_budgets():
    user = get_current_user()
    if not user:
        return _unauthorized()

    if request.method == 'POST':
        data = request.get_json(silent=True) or {}
        budget = Budget(user_id=user.id)
        try:
            _apply_budget_fields(budget, data, user, creating=True)
        except ValueError as exc:
            return jsonify({'error': str(exc)}), 400
        db.session.add(budget)
        response = _commit_budget(budget)
        if isinstance(response, tuple):
            return response
        return response, 201

    budgets = Budget.query.filter_by(user_id=user.id).order_by(Budget.created_at.desc(), Budget.id.desc()).all()
    transactions = Transaction.query.filter_by(user_id=user.id, type='expense').all()
    return jsonify([_budget_dict(b, transactions) for b in budgets])


@app.route('/api/user/budgets/<int:budget_id>', methods=['PUT', 'DELETE'])
def handle_budget(budget_id):
    user = get_current_user()
    if not user:
        return _unauthorized()

    budget = Budget.query.filter_by(id=budget_id, user_id=user.id).first_or_404()

    if request.method == 'DELETE':
        db.session.delete(budget)
        db.session.commit()
        return '', 204

    data = request.get_json(silent=True) or {}
    try:
        _apply_budget_fields(budget, data, user)
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400
    return _commit_budget(budget)


# Recurring transactions API
def _apply_recurring_fields(entry, data, user):
    tx_type = data.get('type')
    if tx_type not in TRANSACTION_TYPES:
        raise ValueError('type must be income or expense')
    frequency = data.get('frequency')
    if frequency not in FREQUENCIES:
        raise ValueError('Invalid frequency')
    entry.type = tx_type
    entry.frequency = frequency
    entry.amount = parse_amount(data.get('amount'))
    entry.description = (data.get('description') or '').strip() or None
    category = _visible_category(data.get('categoryId'), user)
    entry.category_id = category.id if category else None

    day_of_month = parse_int(data.get('dayOfMonth'))
    if day_of_month is not None and not 1 <= day_of_month <= 31:
        raise ValueError('dayOfMonth must be between 1 and 31')
    day_of_week = parse_int(data.get('dayOfWeek'))
    if day_of_week is not None and not 0 <= day_of_week <= 6:
        raise ValueError('dayOfWeek must be between 0 and 6')
    entry.day_of_month = day_of_month or None
    entry.day_of_week = day_of_week

    raw_start = data.get('startDate')
    start = parse_day_value(raw_start)
    if raw_start and not start:
        raise ValueError('Invalid startDate (expected YYYY-MM-DD)')
    entry.start_date = start or entry.start_date or local_today(app.config['DEFAULT_TIMEZONE'])
    raw_end = data.get('endDate')
    end = parse_day_value(raw_end)
    if raw_end and not end:
        raise ValueError('Invalid endDate (expected YYYY-MM-DD)')
    entry.end_date = end
    if entry.next_date is None or 'startDate' in data:
        entry.next_date = calculate_next_date(entry.frequency, entry.start_date, entry.day_of_month)
    if 'active' in data:
        entry.active = parse_bool(data.get('active'), default=True)


@app.route('/api/user/recurring', methods=['GET', 'POST'])
def handle_recurring():
    user = get_current_user()
    if not user:
        return _unauthorized()

    if request.method == 'POST':
        data = request.get_json(silent=True) or {}
        entry = RecurringTransaction(user_id=user.id, active=True)
        try:
            _apply_recurring_fields(entry, data, user)
        except ValueError as exc:
            return jsonify({'error': str(exc)}), 400
        db.session.add(entry)
        db.session.commit()
        return jsonify(entry.to_dict()), 201

    entries = RecurringTransaction.query.filter_by(user_id=user.id).order_by(
        RecurringTransaction.next_date.asc()
    ).all()
    return jsonify([e.to_dict() for e in entries])


@app.route('/api/user/recurring/<int:entry_id>', methods=['PUT', 'DELETE'])
def handle_recurring_entry(entry_id):
    user = get_current_user()
    if not user:
        return _unauthorized()

    entry = RecurringTransaction.query.filter_by(id=entry_id, user_id=user.id).first_or_404()

    if request.method == 'DELETE':
        db.session.delete(entry)
        db.session.commit()
        return '', 204

    data = request.get_json(silent=True) or {}
    try:
        _apply_recurring_fields(entry, data, user)
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400
    db.session.commit()
    return jsonify(entry.to_dict())


@app.route('/api/user/recurring/apply-now', methods=['POST'])
def apply_recurring_now():
    user = get_current_user()
    if not user:
        return _unauthorized()
    app.logger.info(f"Manual recurring run triggered by user {user.id}")
    created = _apply_due_recurring_transactions(user_id=user.id)
    return jsonify({'success': True, 'created': created})


# Investments API
def _asset_dict(asset):
    data = asset.to_dict()
    data['stats'] = asset_stats(asset.holdings)
    return data


def _holding_dict(holding):
    data = holding.to_dict()
    data.update(holding_stats(holding))
    return data


def _parse_positive(value, label):
    try:
        return parse_amount(value)
    except ValueError:
        raise ValueError(f"{label} must be a positive number")


@app.route('/api/user/assets', methods=['GET', 'POST'])
def handle_assets():
    user = get_current_user()
    if not user:
        return _unauthorized()

    if request.method == 'POST':
        data = request.get_json(silent=True) or {}
        asset_type = data.get('type')
        symbol = (data.get('symbol') or '').strip().upper()
        name = (data.get('name') or '').strip()
        if not asset_type or not symbol or not name:
            return jsonify({'error': 'Missing required fields'}), 400
        if asset_type not in ASSET_TYPES:
            return jsonify({'error': 'Invalid asset type'}), 400
        if Asset.query.filter_by(user_id=user.id, symbol=symbol).first():
            return jsonify({'error': 'Asset already exists'}), 400

        asset = Asset(user_id=user.id, type=asset_type, symbol=symbol, name=name)
        db.session.add(asset)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            return jsonify({'error': 'Asset already exists'}), 400
        return jsonify(_asset_dict(asset)), 201

    assets = Asset.query.filter_by(user_id=user.id).order_by(Asset.created_at.desc(), Asset.id.desc()).all()
    return jsonify([_asset_dict(a) for a in assets])


@app.route('/api/user/assets/<int:asset_id>', methods=['PUT', 'DELETE'])
def handle_asset(asset_id):
    user = get_current_user()
    if not user:
        return _unauthorized()

    asset = Asset.query.filter_by(id=asset_id, user_id=user.id).first_or_404()

    if request.method == 'DELETE':
        db.session.delete(asset)
        db.session.commit()
        app.logger.info(f"Deleted asset {asset_id} and its holdings for user {user.id}")
        return '', 204

    data = request.get_json(silent=True) or {}
    name = (data.get('name') or '').strip()
    if not name:
        return jsonify({'error': 'Missing required fields'}), 400
    asset.name = name
    db.session.commit()
    return jsonify(_asset_dict(asset))


def _apply_holding_fields(holding, data):
    if 'quantity' in data or holding.quantity is None:
        holding.quantity = _parse_positive(data.get('quantity'), 'quantity')
    if 'purchasePrice' in data or holding.purchase_price is None:
        holding.purchase_price = _parse_positive(data.get('purchasePrice'), 'purchasePrice')
    if 'purchaseDate' in data or holding.purchase_date is None:
        raw_date = data.get('purchaseDate')
        purchase_date = parse_day_value(raw_date)
        if raw_date and not purchase_date:
            raise ValueError('Invalid purchaseDate (expected YYYY-MM-DD)')
        holding.purchase_date = purchase_date or local_today(app.config['DEFAULT_TIMEZONE'])
    if 'notes' in data:
        holding.notes = (data.get('notes') or '').strip() or None
    if data.get('currentPrice') is not None:
        holding.current_price = _parse_positive(data.get('currentPrice'), 'currentPrice')
        holding.last_updated = datetime.utcnow()


@app.route('/api/user/holdings', methods=['GET', 'POST'])
def handle_holdings():
    user = get_current_user()
    if not user:
        return _unauthorized()

    if request.method == 'POST':
        data = request.get_json(silent=True) or {}
        asset_id = parse_int(data.get('assetId'))
        asset = (
            Asset.query.filter_by(id=asset_id, user_id=user.id).first()
            if asset_id and 0 < asset_id < 2 ** 63 else None
        )
        if not asset:
            return jsonify({'error': 'Asset not found'}), 400
        holding = Holding(user_id=user.id, asset_id=asset.id)
        try:
            _apply_holding_fields(holding, data)
        except ValueError as exc:
            return jsonify({'error': str(exc)}), 400
        db.session.add(holding)
        db.session.commit()
        return jsonify(_holding_dict(holding)), 201

    holdings = Holding.query.filter_by(user_id=user.id).order_by(
        Holding.purchase_date.desc(), Holding.id.desc()
    ).all()
    return jsonify([_holding_dict(h) for h in holdings])


@app.route('/api/user/holdings/<int:holding_id>', methods=['PUT', 'DELETE'])
def handle_holding(holding_id):
    user = get_current_user()
    if not user:
        return _unauthorized()

    holding = Holding.query.filter_by(id=holding_id, user_id=user.id).first_or_404()

    if request.method == 'DELETE':
        db.session.delete(holding)
        db.session.commit()
        return '', 204

    data = request.get_json(silent=True) or {}
    try:
        _apply_holding_fields(holding, data)
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400
    db.session.commit()
    return jsonify(_holding_dict(holding))


# Settings API
@app.route('/api/user/settings', methods=['GET', 'PUT'])
def handle_settings():
    user = get_current_user()
    if not user:
        return _unauthorized()

    settings = _get_or_create_settings(user)
    if request.method == 'GET':
        return jsonify(settings.to_dict())

    data = request.get_json(silent=True) or {}
    updates = {column: data[field] for field, column in SETTINGS_FIELDS.items() if field in data}

    if 'language' in updates and updates['language'] not in ('ru', 'en'):
        return jsonify({'error': 'language must be ru or en'}), 400
    start_hour = parse_int(updates.get('calendar_start_hour', settings.calendar_start_hour))
    end_hour = parse_int(updates.get('calendar_end_hour', settings.calendar_end_hour))
    if start_hour is None or end_hour is None or not 0 <= start_hour < end_hour <= 24:
        return jsonify({'error': 'Calendar hours must satisfy 0 <= start < end <= 24'}), 400
    updates['calendar_start_hour'] = start_hour
    updates['calendar_end_hour'] = end_hour

    for column, value in updates.items():
        setattr(settings, column, value)
    settings.updated_at = datetime.utcnow()
    db.session.commit()
    return jsonify(settings.to_dict())


if __name__ == '__main__':
    app.run(debug=os.environ.get('FLASK_DEBUG', '0') == '1')
