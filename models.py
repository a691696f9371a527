from flask_sqlalchemy import SQLAlchemy
from datetime import datetime

from recurrence import template_from_dict

db = SQLAlchemy()

class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relationships
    events = db.relationship('CalendarEvent', backref='owner', lazy=True, cascade="all, delete-orphan")
    todos = db.relationship('Todo', backref='owner', lazy=True, cascade="all, delete-orphan")
    assignments = db.relationship('Assignment', backref='owner', lazy=True, cascade="all, delete-orphan")

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class CalendarEvent(db.Model):
    """
    Timed calendar event. When `recurrence` is set the row is the template of a series
    anchored on `start_time`; single occurrences are changed through RecurrenceException rows.
    All datetimes are stored naive in the user's local time.
    """
    KIND = 'event'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    calendar_id = db.Column(db.Integer, nullable=True)  # opaque reference, calendars live elsewhere
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    start_time = db.Column(db.DateTime, nullable=False)
    end_time = db.Column(db.DateTime, nullable=False)
    recurrence = db.Column(db.String(20), nullable=True)  # daily | weekly | biweekly | monthly
    recurrence_until = db.Column(db.Date, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'calendar_id': self.calendar_id,
            'title': self.title,
            'description': self.description,
            'start_time': self.start_time.isoformat() if self.start_time else None,
            'end_time': self.end_time.isoformat() if self.end_time else None,
            'recurrence': self.recurrence,
            'recurrence_until': self.recurrence_until.isoformat() if self.recurrence_until else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def to_template(self):
        return template_from_dict(self.KIND, self.to_dict())


class Todo(db.Model):
    KIND = 'todo'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    due_date = db.Column(db.Date, nullable=True)  # undated to-dos never show on the calendar
    completed = db.Column(db.Boolean, default=False)  # only read for non-recurring to-dos
    type = db.Column(db.String(50), nullable=True)
    status = db.Column(db.String(50), nullable=True)
    course = db.Column(db.String(100), nullable=True)
    recurrence = db.Column(db.String(20), nullable=True)
    recurrence_until = db.Column(db.Date, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'title': self.title,
            'description': self.description,
            'due_date': self.due_date.isoformat() if self.due_date else None,
            'completed': bool(self.completed),
            'type': self.type,
            'status': self.status,
            'course': self.course,
            'recurrence': self.recurrence,
            'recurrence_until': self.recurrence_until.isoformat() if self.recurrence_until else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def to_template(self):
        return template_from_dict(self.KIND, self.to_dict())


class Assignment(db.Model):
    """Course assignment; same recurrence shape as Todo but always dated."""
    KIND = 'assignment'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    due_date = db.Column(db.Date, nullable=False)
    course = db.Column(db.String(100), nullable=True)
    completed = db.Column(db.Boolean, default=False)
    type = db.Column(db.String(50), nullable=True)
    status = db.Column(db.String(50), nullable=True)
    recurrence = db.Column(db.String(20), nullable=True)
    recurrence_until = db.Column(db.Date, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'title': self.title,
            'description': self.description,
            'due_date': self.due_date.isoformat() if self.due_date else None,
            'course': self.course,
            'completed': bool(self.completed),
            'type': self.type,
            'status': self.status,
            'recurrence': self.recurrence,
            'recurrence_until': self.recurrence_until.isoformat() if self.recurrence_until else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def to_template(self):
        return template_from_dict(self.KIND, self.to_dict())


class RecurrenceException(db.Model):
    """
    Deviation of one recurring template on one calendar date.
    exception_type: skipped | modified | completed. `overrides` is only set for 'modified'.
    """
    __table_args__ = (
        db.UniqueConstraint('parent_type', 'parent_id', 'exception_date', name='uq_recurrence_exception_key'),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    parent_type = db.Column(db.String(20), nullable=False)  # event | todo | assignment
    parent_id = db.Column(db.Integer, nullable=False)
    exception_date = db.Column(db.Date, nullable=False)
    exception_type = db.Column(db.String(20), nullable=False)
    overrides = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'parent_type': self.parent_type,
            'parent_id': self.parent_id,
            'exception_date': self.exception_date.isoformat() if self.exception_date else None,
            'exception_type': self.exception_type,
            'overrides': self.overrides,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


TEMPLATE_MODELS = {
    CalendarEvent.KIND: CalendarEvent,
    Todo.KIND: Todo,
    Assignment.KIND: Assignment,
}
