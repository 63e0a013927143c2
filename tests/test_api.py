"""Tests for the HTTP surface."""

from fastapi.testclient import TestClient

from contact_store import InMemoryContactStore
from db_models import LinkPrecedence
from exceptions import StoreUnavailable
from main import create_app


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"message": "Bitespeed API is up"}


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_identify_new_contact(client):
    response = client.post("/identify", json={"email": "a@x.com", "phoneNumber": "123456"})

    assert response.status_code == 200
    assert response.json() == {
        "contact": {
            "primaryContactId": 1,
            "emails": ["a@x.com"],
            "phoneNumbers": ["123456"],
            "secondaryContactIds": [],
        }
    }
    assert response.headers["X-Request-ID"]


def test_identify_links_secondary(client):
    client.post("/identify", json={"email": "lorraine@hillvalley.edu", "phoneNumber": "123456"})

    response = client.post(
        "/identify", json={"email": "mcfly@hillvalley.edu", "phoneNumber": "123456"}
    )

    assert response.status_code == 200
    assert response.json()["contact"] == {
        "primaryContactId": 1,
        "emails": ["lorraine@hillvalley.edu", "mcfly@hillvalley.edu"],
        "phoneNumbers": ["123456"],
        "secondaryContactIds": [2],
    }


def test_identify_merges_primaries(client):
    client.post("/identify", json={"email": "george@hillvalley.edu", "phoneNumber": "919191"})
    client.post("/identify", json={"email": "biffsucks@hillvalley.edu", "phoneNumber": "717171"})

    response = client.post(
        "/identify", json={"email": "george@hillvalley.edu", "phoneNumber": "717171"}
    )

    assert response.json()["contact"] == {
        "primaryContactId": 1,
        "emails": ["george@hillvalley.edu", "biffsucks@hillvalley.edu"],
        "phoneNumbers": ["919191", "717171"],
        "secondaryContactIds": [2],
    }


def test_identify_requires_an_identifier(client):
    response = client.post("/identify", json={"email": None, "phoneNumber": ""})

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Validation Error"
    assert body["field"] is None


def test_identify_rejects_bad_email(client):
    response = client.post("/identify", json={"email": "not-an-email"})

    assert response.status_code == 400
    assert response.json()["field"] == "email"


def test_identify_rejects_wrong_type(client):
    response = client.post("/identify", json={"phoneNumber": ["123"]})

    assert response.status_code == 400
    assert response.json()["field"] == "phoneNumber"


class UnavailableStore(InMemoryContactStore):
    def find_by_email_or_phone(self, email=None, phone=None):
        raise StoreUnavailable("database is locked")


def test_store_failure_is_opaque():
    with TestClient(create_app(UnavailableStore())) as client:
        response = client.post("/identify", json={"email": "a@x.com"})

    assert response.status_code == 503
    assert "locked" not in response.json()["message"]


def test_consistency_violation_is_rejected():
    store = InMemoryContactStore()
    store.create("a@x.com", None, LinkPrecedence.SECONDARY, linked_id=99)

    with TestClient(create_app(store)) as client:
        response = client.post("/identify", json={"email": "a@x.com", "phoneNumber": "555"})

    assert response.status_code == 500
    assert store.find_by_email_or_phone(phone="555") == []
