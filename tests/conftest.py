"""Pytest configuration and shared fixtures."""
import os

# Keep the app's default engine off the working directory during tests
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from auditflow.database import Base
from auditflow.models.activity import ActivityEvent  # noqa: F401
from auditflow.models.domain import Category, ChecklistItem, Location, Template
from auditflow.models.enums import Urgency
from auditflow.models.snapshots import CategoryNode, ItemNode, TemplateGraph


@pytest.fixture
def db_session():
    """Create a fresh in-memory database for each test."""
    # StaticPool: one shared connection so the API test client sees the same data
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(engine)

    TestingSessionLocal = sessionmaker(bind=engine)
    session = TestingSessionLocal()

    yield session

    session.close()
    engine.dispose()


@pytest.fixture
def file_sessions(tmp_path):
    """
    Session factory on a file database, for tests that need two sessions
    with separate connections racing each other.
    """
    engine = create_engine(f"sqlite:///{tmp_path / 'auditflow.db'}")
    Base.metadata.create_all(engine)

    yield sessionmaker(bind=engine)

    engine.dispose()


def add_location(session):
    location = Location(
        organization_id="org_1",
        name="Store Amsterdam Centraal",
        city="Amsterdam",
        manager_id="manager_1"
    )
    session.add(location)
    session.commit()
    session.refresh(location)
    return location


def add_template(session):
    """
    Two categories (weights 1 and 2), one item each.

    The item in the weight-2 category creates a high-urgency action on fail,
    due in 7 days.
    """
    template = Template(organization_id="org_1", name="Store hygiene", pass_threshold=70)
    hygiene = Category(name="Hygiene", weight=1.0, sort_order=0)
    hygiene.items.append(ChecklistItem(title="Floors clean", weight=1.0, creates_action_on_fail=False))
    safety = Category(name="Safety", weight=2.0, sort_order=1)
    safety.items.append(ChecklistItem(
        title="Fire exit unobstructed",
        weight=1.0,
        creates_action_on_fail=True,
        action_urgency=Urgency.HIGH,
        action_deadline_days=7,
        requires_photo=True
    ))
    template.categories.extend([hygiene, safety])
    session.add(template)
    session.commit()
    session.refresh(template)
    return template


@pytest.fixture
def sample_location(db_session):
    """A location with a manager who receives generated actions."""
    return add_location(db_session)


@pytest.fixture
def sample_template(db_session):
    return add_template(db_session)


def item_ids(template):
    """(floors_item_id, fire_exit_item_id) of sample_template."""
    return template.categories[0].items[0].id, template.categories[1].items[0].id


def make_template(*categories, pass_threshold=70, template_id=1):
    """
    Build a TemplateGraph from (category_weight, [item, ...]) tuples, where an
    item is a weight or a dict of ItemNode fields. Ids are assigned 1, 2, 3...
    """
    next_id = 1
    nodes = []
    for c_index, (weight, items) in enumerate(categories, start=1):
        item_nodes = []
        for item in items:
            fields = item if isinstance(item, dict) else {"weight": item}
            fields = {"id": next_id, "title": f"Item {next_id}", **fields}
            item_nodes.append(ItemNode(**fields))
            next_id += 1
        nodes.append(CategoryNode(id=c_index, name=f"Category {c_index}", weight=weight, items=item_nodes))
    return TemplateGraph(id=template_id, pass_threshold=pass_threshold, categories=nodes)
