import pytest

from quarry.adapters import ConnectionConfig, SQLiteAdapter
from quarry.core import ForeignKey, Model, OneToOneField, StringField, associate, dissociate
from quarry.core.relations import RelatedCollection, RelationshipError
from quarry.errors import DetachedInstanceError
from quarry.persistence import Session
from quarry.schema import SchemaBuilder


class Author(Model):
    name = StringField(nullable=False)


class Article(Model):
    title = StringField(nullable=False)
    author = ForeignKey(Author, related_name="articles", nullable=True)


class Comment(Model):
    body = StringField()
    post = ForeignKey("BlogPost", related_name="comments")


class BlogPost(Model):
    title = StringField()


class Passport(Model):
    number = StringField(nullable=False)
    holder = OneToOneField(Author, related_name="passports")


def make_session(tmp_path):
    adapter = SQLiteAdapter()
    config = ConnectionConfig(url=f"sqlite:///{tmp_path / 'relations.db'}")
    session = Session(adapter, connection_config=config)
    SchemaBuilder(session.dialect).create_all(session, [Article, Author])
    return session


def test_foreign_key_metadata_and_inverse_collection():
    field = Article._meta.get_field("author")
    assert field.remote_model is Author
    assert field.column_name() == "author_id"
    assert isinstance(Author.__dict__["articles"], RelatedCollection)
    assert Author._meta.collections["articles"] == (Article, field)


def test_deferred_model_resolution():
    field = Comment._meta.get_field("post")
    assert field.remote_model is BlogPost
    assert "comments" in BlogPost._meta.collections


def test_one_to_one_is_unique():
    assert Passport._meta.get_field("holder").unique is True


def test_foreign_key_id_accessor():
    author = Author(id=5, name="Alice")
    article = Article(title="T", author=author)
    assert article.author_id == 5
    assert article.author is author


def test_foreign_key_rejects_wrong_type():
    with pytest.raises(TypeError):
        Article(title="T", author=BlogPost(title="nope"))


def test_inverse_side_is_read_only():
    author = Author(name="Alice")
    with pytest.raises(AttributeError):
        author.articles = []


def test_associate_keeps_both_sides_in_step():
    alice = Author(name="Alice")
    bob = Author(name="Bob")
    article = Article(title="Draft")

    associate(article, "author", alice)
    assert article.author is alice
    assert alice.articles == [article]

    associate(article, "author", bob)
    assert alice.articles == []
    assert bob.articles == [article]

    dissociate(article, "author")
    assert article.author is None
    assert bob.articles == []


def test_associate_requires_foreign_key():
    with pytest.raises(RelationshipError):
        associate(Article(title="x"), "title", Author(name="a"))


def test_round_trip_after_clear(tmp_path):
    session = make_session(tmp_path)
    with session.transaction():
        alice = Author(name="Alice")
        article = Article(title="Hello")
        associate(article, "author", alice)
        session.add_all([alice, article])

    with session.transaction():
        loaded = session.query(Article).filter(title="Hello").one()
        assert loaded is not article
        assert loaded.author.name == "Alice"
        assert [a.title for a in loaded.author.articles] == ["Hello"]
        assert loaded.author.articles[0] is loaded
    session.close()


def test_lazy_load_on_detached_instance_raises(tmp_path):
    session = make_session(tmp_path)
    with session.transaction():
        alice = Author(name="Alice")
        session.add(alice)
        session.flush()
        session.add(Article(title="Hello", author=alice))

    with session.transaction():
        article = session.query(Article).one()
        author_id = article.author_id
    assert author_id is not None
    with pytest.raises(DetachedInstanceError):
        article.author
    session.close()


def test_fetched_association_survives_detach(tmp_path):
    session = make_session(tmp_path)
    with session.transaction():
        alice = Author(name="Alice")
        session.add(alice)
        session.flush()
        session.add(Article(title="Hello", author=alice))

    with session.transaction():
        article = session.query(Article).fetch("author").one()
    assert article.author.name == "Alice"
    session.close()


def test_reassignment_updates_foreign_key_column(tmp_path):
    session = make_session(tmp_path)
    with session.transaction():
        alice, bob = Author(name="Alice"), Author(name="Bob")
        session.add_all([alice, bob])
        session.flush()
        session.add(Article(title="Hello", author=alice))

    with session.transaction():
        article = session.query(Article).one()
        bob = session.query(Author).filter(name="Bob").one()
        associate(article, "author", bob)

    row = session.execute('SELECT author_id FROM "article"').fetchone()
    assert row[0] == bob.id
    session.close()
