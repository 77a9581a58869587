from datetime import datetime, timezone

import pytest

from quarry import configure
from quarry.config import reset_settings
from quarry.core import (
    AuditedModel,
    BooleanField,
    DateTimeField,
    IntegerField,
    Model,
    ModelConfigurationError,
    StringField,
)
from quarry.errors import AuditFieldError


class User(Model):
    name = StringField(max_length=50, nullable=False)
    age = IntegerField(default=0)
    is_active = BooleanField(default=True)


class Journal(AuditedModel):
    title = StringField(nullable=False)


def test_model_metadata_collects_fields_in_order():
    assert list(User._meta.fields.keys()) == ["id", "name", "age", "is_active"]
    assert User._meta.primary_key.name == "id"
    assert User._meta.table_name == "user"


def test_model_initializes_defaults():
    user = User(name="Alice")
    assert user.name == "Alice"
    assert user.age == 0
    assert user.is_active is True
    assert user.pk is None
    assert user.is_managed is False


def test_unknown_keyword_is_rejected():
    with pytest.raises(TypeError):
        User(name="Alice", nickname="al")


def test_setting_field_enforces_choices():
    class Article(Model):
        status = StringField(choices=("draft", "published"), default="draft")

    article = Article()
    with pytest.raises(ValueError):
        article.status = "archived"


def test_non_nullable_field_rejects_none():
    class Profile(Model):
        email = StringField(nullable=False)

    profile = Profile(email="user@example.com")
    assert profile.email == "user@example.com"

    with pytest.raises(ValueError):
        profile.email = None


def test_custom_primary_key_prevents_auto_field():
    class Token(Model):
        token_id = StringField(primary_key=True)

    assert list(Token._meta.fields.keys()) == ["token_id"]
    assert Token._meta.primary_key.name == "token_id"


def test_model_pk_property_returns_primary_key_value():
    class Post(Model):
        identifier = IntegerField(primary_key=True)
        title = StringField()

    post = Post(identifier=12, title="Hello")
    assert post.pk == 12


def test_datetime_field_has_no_implicit_clock_default():
    class Appointment(Model):
        starts_at = DateTimeField()

    appointment = Appointment()
    assert appointment.starts_at is None
    appointment.starts_at = "2024-05-01T09:30:00+00:00"
    assert appointment.starts_at == datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)

    with pytest.raises(TypeError):
        DateTimeField(auto_now_add=True)


def test_duplicate_primary_key_raises_error():
    with pytest.raises(ModelConfigurationError):

        class BadModel(Model):
            code = IntegerField(primary_key=True)
            other = IntegerField(primary_key=True)


def test_manual_id_field_without_primary_key_errors():
    with pytest.raises(ModelConfigurationError):

        class BadIdentifier(Model):
            id = IntegerField()


def test_abstract_model_has_no_primary_key_to_require():
    with pytest.raises(ModelConfigurationError) as excinfo:
        AuditedModel._meta.require_primary_key()
    assert "AuditedModel" in str(excinfo.value)
    assert User._meta.require_primary_key() is User._meta.primary_key


def test_changed_fields_tracks_assignments():
    user = User._from_row({"id": 1, "name": "Alice", "age": 30, "is_active": True})
    assert user.changed_fields() == []
    user.age = 31
    assert user.changed_fields() == ["age"]
    assert user.is_dirty()
    user.age = 30
    assert not user.is_dirty()


def test_audited_model_inherits_timestamps():
    assert list(Journal._meta.fields) == ["id", "title", "created_date", "last_modified_date"]
    assert Journal._meta.created_field.updatable is False
    assert Journal._meta.modified_field.updatable is True
    with pytest.raises(ModelConfigurationError):
        AuditedModel()


def test_audit_fields_ignore_assignment_by_default():
    journal = Journal(title="Log")
    journal.created_date = datetime(2020, 1, 1, tzinfo=timezone.utc)
    assert journal.created_date is None


def test_strict_audit_fields_reject_assignment():
    configure(strict_audit_fields=True)
    try:
        journal = Journal(title="Log")
        with pytest.raises(AuditFieldError):
            journal.last_modified_date = datetime.now(timezone.utc)
    finally:
        reset_settings()


def test_from_row_loads_audit_values():
    stamp = datetime(2021, 5, 1, 12, 0, tzinfo=timezone.utc)
    journal = Journal._from_row({"id": 3, "title": "Log", "created_date": stamp.isoformat()})
    assert journal.created_date == stamp
    assert journal.to_dict() == {
        "id": 3,
        "created_date": stamp,
        "last_modified_date": None,
        "title": "Log",
    }
