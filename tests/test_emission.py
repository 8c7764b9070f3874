from __future__ import annotations

import pytest
from django.db import IntegrityError
from django.db import transaction

from livesync.lifecycles.store import DocumentStore
from tests.testapp.models import Article
from tests.testapp.models import Author
from tests.testapp.models import Tag
from tests.testapp.models import Ticket

ARTICLE = "testapp.article"


class BrokenStore(DocumentStore):
    def find_one(self, uid, document_id, populate=None):
        msg = "read replica unavailable"
        raise ConnectionError(msg)

    def find_many(self, uid, **query):
        msg = "read replica unavailable"
        raise ConnectionError(msg)


@pytest.fixture
def author(db):
    return Author.objects.create(
        name="Ada",
        email="ada@example.com",
        password="pbkdf2$secret",  # noqa: S106
        api_token="abc123",  # noqa: S106
    )


@pytest.mark.django_db
class TestCreate:
    def test_create_with_populate_publishes_populated_sanitized_record(
        self,
        subscribe,
        channel,
        author,
        django_capture_on_commit_callbacks,
    ):
        subscribe({"uid": ARTICLE, "actions": ["create"], "populate": ["author"]})

        with django_capture_on_commit_callbacks(execute=True):
            article = Article.objects.create(
                title="Hello",
                author=author,
                internal_notes="do not ship",
            )

        assert channel.subjects() == ["article:create"]
        data = channel.published[0][1]
        assert data["title"] == "Hello"
        assert data["document_id"] == str(article.document_id)
        assert data["author"]["name"] == "Ada"
        assert "password" not in data["author"]
        assert "api_token" not in data["author"]
        assert "internal_notes" not in data

    def test_create_without_populate_publishes_captured_snapshot(
        self,
        subscribe,
        channel,
        author,
        django_capture_on_commit_callbacks,
    ):
        subscribe(ARTICLE)

        with django_capture_on_commit_callbacks(execute=True):
            Article.objects.create(title="Plain", author=author)

        assert channel.subjects() == ["article:create"]
        data = channel.published[0][1]
        assert data["title"] == "Plain"
        assert "author" not in data

    def test_nothing_is_published_before_commit(
        self,
        subscribe,
        channel,
        django_capture_on_commit_callbacks,
    ):
        subscribe(ARTICLE)

        with django_capture_on_commit_callbacks(execute=False) as callbacks:
            Article.objects.create(title="Pending")
            assert channel.published == []

        assert len(callbacks) == 1
        callbacks[0]()
        assert channel.subjects() == ["article:create"]

    def test_rolled_back_create_is_never_published(
        self,
        subscribe,
        channel,
        django_capture_on_commit_callbacks,
    ):
        subscribe(ARTICLE)

        with django_capture_on_commit_callbacks(execute=True) as callbacks:
            try:
                with transaction.atomic():
                    Article.objects.create(title="Doomed")
                    msg = "constraint failed"
                    raise IntegrityError(msg)
            except IntegrityError:
                pass

        assert callbacks == []
        assert channel.published == []

    def test_unsubscribed_action_is_ignored(
        self,
        subscribe,
        channel,
        django_capture_on_commit_callbacks,
    ):
        subscribe({"uid": ARTICLE, "actions": ["delete"]})

        with django_capture_on_commit_callbacks(execute=True):
            article = Article.objects.create(title="Quiet")
            article.title = "Still quiet"
            article.save()

        assert channel.published == []

    def test_bulk_create_publishes_one_envelope_per_row(
        self,
        subscribe,
        channel,
        django_capture_on_commit_callbacks,
    ):
        subscribe({"uid": ARTICLE, "actions": ["create"]})

        with django_capture_on_commit_callbacks(execute=True):
            Article.objects.bulk_create(
                [Article(title="One"), Article(title="Two")],
            )

        assert channel.subjects() == ["article:create", "article:create"]
        assert [data["title"] for _, data in channel.published] == ["One", "Two"]


@pytest.mark.django_db
class TestUpdate:
    def test_populated_update_falls_back_to_snapshot_when_refetch_fails(
        self,
        subscribe,
        channel,
        author,
        django_capture_on_commit_callbacks,
    ):
        article = Article.objects.create(title="Draft", author=author)
        subscribe(
            {"uid": ARTICLE, "actions": ["update"], "populate": "*"},
            store=BrokenStore(),
        )

        with django_capture_on_commit_callbacks(execute=True):
            article.title = "Final"
            article.internal_notes = "editor only"
            article.save()

        assert channel.subjects() == ["article:update"]
        data = channel.published[0][1]
        assert data["title"] == "Final"
        assert "internal_notes" not in data
        assert "author" not in data

    def test_populated_update_refetches_by_custom_primary_key(
        self,
        subscribe,
        channel,
        author,
        django_capture_on_commit_callbacks,
    ):
        ticket = Ticket.objects.create(code="T-7", subject="Broken", reporter=author)
        subscribe({"uid": "testapp.ticket", "actions": ["update"], "populate": ["reporter"]})

        with django_capture_on_commit_callbacks(execute=True):
            ticket.subject = "Fixed"
            ticket.save()

        assert channel.published == [
            (
                "ticket:update",
                {
                    "code": "T-7",
                    "subject": "Fixed",
                    "reporter": {"id": author.pk, "name": "Ada", "email": "ada@example.com"},
                },
            ),
        ]

    def test_update_with_populate_includes_many_to_many(
        self,
        subscribe,
        channel,
        django_capture_on_commit_callbacks,
    ):
        article = Article.objects.create(title="Tagged")
        article.tags.add(Tag.objects.create(label="python"))
        subscribe(
            {
                "uid": ARTICLE,
                "actions": ["update"],
                "populate": {"tags": {"fields": ["label"]}},
            },
        )

        with django_capture_on_commit_callbacks(execute=True):
            article.save()

        data = channel.published[0][1]
        assert data["tags"] == [{"label": "python"}]

    def test_bulk_update_publishes_each_affected_row(
        self,
        subscribe,
        channel,
        author,
        django_capture_on_commit_callbacks,
    ):
        Article.objects.bulk_create(
            [Article(title=f"Post {i}", author=author) for i in range(3)]
            + [Article(title="Other", status=Article.Status.PUBLISHED)],
        )
        subscribe({"uid": ARTICLE, "actions": ["update"], "populate": ["author"]})

        with django_capture_on_commit_callbacks(execute=True):
            updated = Article.objects.filter(status=Article.Status.DRAFT).update(
                body="edited",
            )

        assert updated == 3
        assert channel.subjects() == ["article:update"] * 3
        for _, data in channel.published:
            assert data["body"] == "edited"
            assert data["author"]["name"] == "Ada"
            assert "password" not in data["author"]

    def test_bulk_update_with_untrackable_filter_is_skipped(
        self,
        subscribe,
        channel,
        django_capture_on_commit_callbacks,
    ):
        Article.objects.create(title="A")
        subscribe({"uid": ARTICLE, "actions": ["update"]})

        with django_capture_on_commit_callbacks(execute=True):
            Article.objects.exclude(title="B").update(body="edited")

        assert channel.published == []

    def test_bulk_update_read_back_failure_drops_batch(
        self,
        subscribe,
        channel,
        django_capture_on_commit_callbacks,
    ):
        Article.objects.create(title="A")
        subscribe({"uid": ARTICLE, "actions": ["update"]}, store=BrokenStore())

        with django_capture_on_commit_callbacks(execute=True):
            rows = Article.objects.filter(title="A").update(body="edited")

        assert rows == 1
        assert channel.published == []


@pytest.mark.django_db
class TestDelete:
    def test_delete_publishes_identity_only(
        self,
        subscribe,
        channel,
        author,
        django_capture_on_commit_callbacks,
    ):
        article = Article.objects.create(
            title="Gone",
            author=author,
            internal_notes="x",
        )
        pk, document_id = article.pk, str(article.document_id)
        subscribe({"uid": ARTICLE, "actions": ["delete"], "populate": "*"})

        with django_capture_on_commit_callbacks(execute=True):
            article.delete()

        assert channel.published == [
            ("article:delete", {"id": pk, "documentId": document_id}),
        ]

    def test_delete_without_document_id_field_uses_pk_for_both(
        self,
        subscribe,
        channel,
        author,
        django_capture_on_commit_callbacks,
    ):
        pk = author.pk
        subscribe({"uid": "testapp.author", "actions": ["delete"]})

        with django_capture_on_commit_callbacks(execute=True):
            author.delete()

        assert channel.published == [
            ("author:delete", {"id": pk, "documentId": pk}),
        ]

    def test_custom_primary_key_is_used_for_both(
        self,
        subscribe,
        channel,
        django_capture_on_commit_callbacks,
    ):
        ticket = Ticket.objects.create(code="T-1", subject="Printer on fire")
        subscribe({"uid": "testapp.ticket", "actions": ["delete"]})

        with django_capture_on_commit_callbacks(execute=True):
            ticket.delete()

        assert channel.published == [
            ("ticket:delete", {"id": "T-1", "documentId": "T-1"}),
        ]

    def test_queryset_delete_publishes_one_event_per_row(
        self,
        subscribe,
        channel,
        django_capture_on_commit_callbacks,
    ):
        first = Article.objects.create(title="One")
        second = Article.objects.create(title="Two")
        Article.objects.create(title="Kept", status=Article.Status.PUBLISHED)
        subscribe({"uid": ARTICLE, "actions": ["delete"]})

        with django_capture_on_commit_callbacks(execute=True):
            Article.objects.filter(status=Article.Status.DRAFT).delete()

        assert sorted(payload["documentId"] for _, payload in channel.published) == sorted(
            [str(first.document_id), str(second.document_id)],
        )
        assert channel.subjects() == ["article:delete", "article:delete"]


@pytest.mark.django_db
def test_publish_failure_does_not_break_the_write(
    subscribe,
    channel,
    monkeypatch,
    django_capture_on_commit_callbacks,
):
    def explode(subject, payload):
        msg = "transport down"
        raise RuntimeError(msg)

    monkeypatch.setattr(channel, "publish", explode)
    subscribe(ARTICLE)

    with django_capture_on_commit_callbacks(execute=True):
        article = Article.objects.create(title="Survives")

    assert Article.objects.filter(pk=article.pk).exists()


@pytest.mark.django_db
def test_failed_event_does_not_block_the_next_one(
    subscribe,
    channel,
    monkeypatch,
    django_capture_on_commit_callbacks,
):
    calls = []
    original = channel.publish

    def flaky(subject, payload):
        calls.append(subject)
        if len(calls) == 1:
            msg = "transport hiccup"
            raise RuntimeError(msg)
        original(subject, payload)

    monkeypatch.setattr(channel, "publish", flaky)
    subscribe(ARTICLE)

    with django_capture_on_commit_callbacks(execute=True):
        Article.objects.create(title="First")
        Article.objects.create(title="Second")

    assert len(calls) == 2
    assert [data["title"] for _, data in channel.published] == ["Second"]
