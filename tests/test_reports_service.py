import io

import pytest
from bson import ObjectId
from fastapi import UploadFile

from database import InMemoryDocumentStore
from errors import PersistenceError, ValidationError
from reports import ReportService
from schemas import ReportForm, User
from uploads import UploadStorage


def photo_url(filename):
    return f"http://testserver/uploads/{filename}"


class FailingReportStore(InMemoryDocumentStore):
    def create_document(self, collection_name, data):
        if collection_name == "report":
            raise PersistenceError("connection reset")
        return super().create_document(collection_name, data)


def make_user(store, name, email):
    user = User(name=name, email=email, password="hash")
    user.id = store.create_document("user", user.to_document())
    return user


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def uploads(tmp_path):
    return UploadStorage(str(tmp_path / "uploads"))


@pytest.fixture
def service(store, uploads):
    return ReportService(store, uploads)


@pytest.fixture
def asha(store):
    return make_user(store, "Asha", "asha@example.com")


@pytest.fixture
def ravi(store):
    return make_user(store, "Ravi", "ravi@example.com")


@pytest.mark.parametrize("title", [None, "", "   "])
def test_create_requires_title(service, store, asha, title):
    with pytest.raises(ValidationError) as exc:
        service.create_report(asha, ReportForm(title=title), None, photo_url)
    assert exc.value.message == "Title required"
    assert store.get_documents("report") == []


def test_create_without_photo(service, asha):
    report = service.create_report(
        asha,
        ReportForm(title="Broken streetlight", description="Dark corner", address="MG Road"),
        None,
        photo_url,
    )
    assert report.photoUrl is None
    assert report.title == "Broken streetlight"
    assert report.user.id == str(asha.id)
    assert report.user.email == "asha@example.com"


def test_create_with_photo(service, uploads, asha):
    photo = UploadFile(file=io.BytesIO(b"jpeg"), filename="lamp.jpg")
    report = service.create_report(asha, ReportForm(title="Lamp"), photo, photo_url)
    assert report.photoUrl.startswith("http://testserver/uploads/")
    filename = report.photoUrl.rsplit("/", 1)[1]
    assert uploads.path_for(filename).read_bytes() == b"jpeg"


@pytest.mark.parametrize(
    "raw, expected",
    [("12.97", 12.97), (" -77.5 ", -77.5), ("abc", None), ("", None), (None, None), ("nan", None), ("inf", None)],
)
def test_coordinates_are_parsed_or_omitted(service, asha, raw, expected):
    report = service.create_report(asha, ReportForm(title="t", latitude=raw, longitude=raw), None, photo_url)
    assert report.latitude == expected
    assert report.longitude == expected


def test_failed_write_discards_uploaded_photo(uploads):
    store = FailingReportStore()
    user = make_user(store, "Asha", "asha@example.com")
    service = ReportService(store, uploads)
    photo = UploadFile(file=io.BytesIO(b"jpeg"), filename="lamp.jpg")
    with pytest.raises(PersistenceError):
        service.create_report(user, ReportForm(title="Lamp"), photo, photo_url)
    assert list(uploads.directory.iterdir()) == []


def test_list_all_is_newest_first_across_users(service, asha, ravi):
    titles = ["first", "second", "third", "fourth"]
    for i, title in enumerate(titles):
        service.create_report(asha if i % 2 == 0 else ravi, ReportForm(title=title), None, photo_url)

    reports = service.list_all()
    assert [r.title for r in reports] == list(reversed(titles))
    assert [r.user.name for r in reports] == ["Ravi", "Asha", "Ravi", "Asha"]
    created = [r.createdAt for r in reports]
    assert created == sorted(created, reverse=True)


def test_list_mine_returns_only_callers_reports(service, asha, ravi):
    service.create_report(asha, ReportForm(title="a1"), None, photo_url)
    service.create_report(ravi, ReportForm(title="r1"), None, photo_url)
    service.create_report(asha, ReportForm(title="a2"), None, photo_url)

    mine = service.list_mine(asha)
    assert [r.title for r in mine] == ["a2", "a1"]
    assert all(r.user.id == str(asha.id) for r in mine)
    assert all(r.user.name == "Asha" for r in mine)


def test_list_all_with_unresolvable_owner(service, store):
    ghost = User(id=ObjectId(), name="Ghost", email="ghost@example.com", password="x")
    service.create_report(ghost, ReportForm(title="orphan"), None, photo_url)
    [report] = service.list_all()
    assert report.title == "orphan"
    assert report.user is None


def test_list_all_empty(service):
    assert service.list_all() == []
